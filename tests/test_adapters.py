"""Collaborator adapters: translation of library data and errors."""

import time

import jwt
import pytest

from cupfortune.common.errors import AuthenticationRequired, ConfigurationError, PredictionError, ValidationError
from cupfortune.common.state_machine import PaymentStatus
from cupfortune.services.identity.service import JwtIdentityProvider, Principal, _primary_verified_email
from cupfortune.services.notification.service import render_reading_html
from cupfortune.services.orchestrator.policy import SubmissionPolicy
from cupfortune.services.payment_adapter.service import StripePaymentService, webhook_update
from cupfortune.services.prediction.service import OpenAIPredictionService, build_prompt, to_image_url
from cupfortune.services.records.models import Fortune
from cupfortune.services.storage.service import decode_image, is_encoded_image

from conftest import FakeObjectStore, PNG_DATA_URL

SECRET = "test-signing-secret-with-enough-length"


def _token(**claims):
    payload = {"sub": "user_alice", "exp": int(time.time()) + 60}
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


def test_jwt_provider_accepts_valid_token():
    provider = JwtIdentityProvider(jwt_secret=SECRET)

    principal = provider.authenticate(_token(email="alice@example.com", email_verified=True))

    assert principal.user_id == "user_alice"
    assert provider.verified_email(principal) == "alice@example.com"


@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        jwt.encode({"sub": "user_alice", "exp": int(time.time()) - 10}, SECRET, algorithm="HS256"),
        jwt.encode({"sub": "user_alice", "exp": int(time.time()) + 60}, "another-signing-secret-of-enough-length", algorithm="HS256"),
        jwt.encode({"exp": int(time.time()) + 60}, SECRET, algorithm="HS256"),
    ],
)
def test_jwt_provider_rejects_bad_tokens(token):
    with pytest.raises(AuthenticationRequired):
        JwtIdentityProvider(jwt_secret=SECRET).authenticate(token)


def test_unverified_claim_email_is_not_used():
    provider = JwtIdentityProvider(jwt_secret=SECRET)

    principal = Principal(user_id="user_alice", email="alice@example.com", email_verified=False)

    assert provider.verified_email(principal) is None


def test_primary_verified_email_selection():
    user = {
        "primary_email_address_id": "idn_2",
        "email_addresses": [
            {"id": "idn_1", "email_address": "old@example.com", "verification": {"status": "verified"}},
            {"id": "idn_2", "email_address": "main@example.com", "verification": {"status": "verified"}},
            {"id": "idn_3", "email_address": "new@example.com", "verification": {"status": "unverified"}},
        ],
    }

    assert _primary_verified_email(user) == "main@example.com"
    assert _primary_verified_email({"email_addresses": []}) is None


def test_webhook_update_mapping():
    assert webhook_update({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}) == (
        "pi_1",
        PaymentStatus.SUCCEEDED,
    )
    assert webhook_update({"type": "charge.refunded", "data": {"object": {"id": "ch_1", "payment_intent": "pi_1"}}}) == (
        "pi_1",
        PaymentStatus.REFUNDED,
    )
    assert webhook_update({"type": "invoice.paid", "data": {"object": {"id": "in_1"}}}) is None


def test_stripe_price_defaults_without_price_id():
    assert StripePaymentService(secret_key="sk_test", default_price_cents=500).get_price() == 500


def test_stripe_refuses_non_positive_amount():
    with pytest.raises(ConfigurationError):
        StripePaymentService(secret_key="sk_test").create_intent(0, "usd", {})


def test_stripe_webhook_requires_signature():
    service = StripePaymentService(secret_key="sk_test", webhook_secret="whsec_test")

    with pytest.raises(ValidationError):
        service.parse_webhook(b"{}", None)
    with pytest.raises(ValidationError):
        service.parse_webhook(b"{}", "t=1,v1=forged")


def test_decode_image_accepts_data_urls_and_base64():
    content, mime = decode_image(PNG_DATA_URL)
    assert mime == "image/png"
    assert content.startswith(b"\x89PNG")

    _, mime = decode_image("iVBORw0KGgo=")
    assert mime == "image/jpeg"

    with pytest.raises(ValidationError):
        decode_image("data:image/png;base64,@@@")


def test_only_encoded_images_are_decoded():
    assert is_encoded_image(PNG_DATA_URL)
    assert is_encoded_image("data:image/png;base64,@@@")
    assert is_encoded_image("iVBORw0KGgo=")
    assert not is_encoded_image("a.jpg")
    assert not is_encoded_image("cups/monday.png")
    assert not is_encoded_image("https://example.com/cup.jpg")


def test_store_encoded_passes_references_through():
    store = FakeObjectStore()

    assert store.store_encoded("user_alice", "https://example.com/cup.jpg") == "https://example.com/cup.jpg"
    assert store.store_encoded("user_alice", "a.jpg") == "a.jpg"
    uploaded = store.store_encoded("user_alice", PNG_DATA_URL)
    assert uploaded.endswith(".png")
    assert store.stored == [uploaded]


def test_prompt_carries_subject_context():
    prompt = build_prompt("Sara", "29", "career", "", language="English")

    assert "Name: Sara" in prompt
    assert "Age: 29" in prompt
    assert "What they said about themselves: -" in prompt
    assert "Write the reading in English" in prompt


def test_image_urls_for_model():
    assert to_image_url("https://example.com/a.jpg") == "https://example.com/a.jpg"
    assert to_image_url("iVBORw0KGgo=") == "data:image/jpeg;base64,iVBORw0KGgo="


def test_prediction_without_images_fails():
    service = OpenAIPredictionService(api_key="sk-test", model="gpt-4.1")

    with pytest.raises(PredictionError):
        service.predict([], "Sara", "29", "career")


def test_reading_email_escapes_prediction():
    fortune = Fortune(id="f1", images=["https://cdn.test/a.jpg"], prediction="Line one\n<b>Line two</b>")

    body = render_reading_html(fortune, "https://app.test/")

    assert "<p>Line one</p>" in body
    assert "&lt;b&gt;Line two&lt;/b&gt;" in body
    assert 'src="https://cdn.test/a.jpg"' in body


def test_policy_parse():
    assert SubmissionPolicy.parse(" Create_Then_Pay ") is SubmissionPolicy.CREATE_THEN_PAY
    with pytest.raises(ValueError):
        SubmissionPolicy.parse("pay_later")
