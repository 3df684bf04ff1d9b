"""Shared fixtures: an in-memory record store and fake collaborators."""

import os
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# Settings are read at import time.
os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from cupfortune.common.db import build_engine, create_schema, make_session_factory
from cupfortune.common.errors import AuthenticationRequired, ValidationError
from cupfortune.common.state_machine import PaymentStatus
from cupfortune.services.identity.service import IdentityProvider, Principal
from cupfortune.services.notification.service import NotificationService
from cupfortune.services.orchestrator.policy import SubmissionPolicy
from cupfortune.services.orchestrator.service import FortuneOrchestrator
from cupfortune.services.payment_adapter.service import PaymentIntentResult, PaymentService
from cupfortune.services.prediction.service import PredictionService
from cupfortune.services.records.store import SqlRecordStore
from cupfortune.services.staging.service import StagedUploadStore
from cupfortune.services.storage.service import ObjectStore


PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="
ALICE = Principal(user_id="user_alice", email="alice@example.com", email_verified=True)
BOB = Principal(user_id="user_bob", email="bob@example.com", email_verified=True)


class FakePredictor(PredictionService):
    def __init__(self, result="Good things ahead", error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    def predict(self, images, name, age, intent, about=""):
        self.calls.append({"images": list(images), "name": name, "age": age, "intent": intent, "about": about})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakePayments(PaymentService):
    def __init__(self, price=500, intent_status=PaymentStatus.SUCCEEDED):
        self.price = price
        self.intent_status = intent_status
        self.intents = []
        self.events = {}

    def get_price(self):
        return self.price

    def create_intent(self, amount, currency, metadata):
        external_id = f"pi_{len(self.intents) + 1}"
        self.intents.append({"amount": amount, "currency": currency, "metadata": metadata})
        return PaymentIntentResult(external_id=external_id, client_secret=f"{external_id}_secret")

    def get_intent_status(self, external_id):
        return self.intent_status

    def get_session_status(self, session_id):
        return "complete"

    def parse_webhook(self, payload, signature):
        if signature not in self.events:
            raise ValidationError("Invalid webhook signature")
        return self.events[signature]


class FakeNotifier(NotificationService):
    def __init__(self):
        self.sent = []

    def send_reading(self, email, fortune):
        self.sent.append((email, fortune.id))
        return f"email_{len(self.sent)}"


class FakeObjectStore(ObjectStore):
    def __init__(self):
        self.stored = []
        self.deleted = []

    def store(self, owner_id, content, filename, content_type="image/jpeg"):
        url = f"https://cdn.test/fortune-images/{owner_id}/{filename}"
        self.stored.append(url)
        return url

    def delete(self, url):
        self.deleted.append(url)


class FakeStaging(StagedUploadStore):
    def __init__(self):
        self.items = {}

    def stage(self, fortune_id, images):
        self.items[fortune_id] = list(images)
        return datetime.now(timezone.utc) + timedelta(hours=1)

    def fetch(self, fortune_id):
        return self.items.get(fortune_id)

    def discard(self, fortune_id):
        self.items.pop(fortune_id, None)


class FakeIdentity(IdentityProvider):
    def __init__(self, principals=(ALICE, BOB)):
        self.tokens = {f"{p.user_id}-token": p for p in principals}

    def authenticate(self, token):
        principal = self.tokens.get(token)
        if principal is None:
            raise AuthenticationRequired()
        return principal

    def verified_email(self, principal):
        return principal.email if principal.email_verified else None


@pytest.fixture
def store():
    engine = build_engine("sqlite://")
    create_schema(engine)
    return SqlRecordStore(make_session_factory(engine))


@pytest.fixture
def fakes(store):
    return SimpleNamespace(
        records=store,
        object_store=FakeObjectStore(),
        staging=FakeStaging(),
        predictor=FakePredictor(),
        payments=FakePayments(),
        notifier=FakeNotifier(),
        identity=FakeIdentity(),
    )


@pytest.fixture
def make_orchestrator(fakes):
    """Build an orchestrator over the shared fakes; keyword args override its settings."""

    def _make(**overrides):
        options = {
            "policy": SubmissionPolicy.CREATE_THEN_PAY,
            "require_payment": False,
            "prediction_timeout_seconds": 5.0,
            "payment_timeout_seconds": 5.0,
        }
        options.update(overrides)
        return FortuneOrchestrator(
            records=fakes.records,
            object_store=fakes.object_store,
            staging=fakes.staging,
            predictor=fakes.predictor,
            payments=fakes.payments,
            notifier=fakes.notifier,
            identity=fakes.identity,
            **options,
        )

    return _make
