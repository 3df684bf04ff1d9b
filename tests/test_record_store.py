"""Record store: conditional transitions, payment stamping and reconciliation."""

import pytest
from sqlalchemy import select

from cupfortune.common.errors import RecordStoreError
from cupfortune.common.state_machine import FortuneStatus, PaymentStatus
from cupfortune.services.records.models import FortuneTimeline
from cupfortune.services.records.store import SqlRecordStore


def _fortune(store, owner="user_alice"):
    return store.create_fortune(owner, ["https://cdn.test/a.jpg"], "Sara", "29", "love", "")


def _timeline(store, fortune_id):
    with store.session_factory() as db:
        rows = db.execute(
            select(FortuneTimeline).where(FortuneTimeline.fortune_id == fortune_id)
        ).scalars()
        return [(row.from_state, row.to_state) for row in rows]


def test_create_fortune_starts_pending_without_prediction(store):
    fortune = _fortune(store)

    loaded = store.get_fortune(fortune.id)
    assert loaded.status == "pending"
    assert loaded.prediction == ""
    assert loaded.payment_id is None
    assert loaded.images == ["https://cdn.test/a.jpg"]
    assert _timeline(store, fortune.id) == [(None, "pending")]


def test_stale_snapshot_loses_the_claim(store):
    fortune = _fortune(store)
    first = store.get_fortune(fortune.id)
    second = store.get_fortune(fortune.id)

    assert store.transition_fortune(first, FortuneStatus.PROCESSING, reason="processing_started") is True
    assert store.transition_fortune(second, FortuneStatus.PROCESSING, reason="processing_started") is False

    loaded = store.get_fortune(fortune.id)
    assert loaded.status == "processing"
    assert loaded.state_version == 1
    assert second.status == "pending"


def test_completed_requires_prediction(store):
    fortune = _fortune(store)
    store.transition_fortune(fortune, FortuneStatus.PROCESSING, reason="processing_started")

    with pytest.raises(ValueError):
        store.transition_fortune(fortune, FortuneStatus.COMPLETED, reason="done", prediction="  ")
    assert store.get_fortune(fortune.id).status == "processing"


def test_prediction_and_completed_status_written_together(store):
    fortune = _fortune(store)
    store.update_fortune_status(fortune.id, FortuneStatus.PROCESSING)

    assert store.update_fortune_prediction(fortune.id, "Good things ahead") is True

    loaded = store.get_fortune(fortune.id)
    assert loaded.status == "completed"
    assert loaded.prediction == "Good things ahead"
    assert _timeline(store, fortune.id) == [
        (None, "pending"),
        ("pending", "processing"),
        ("processing", "completed"),
    ]


def test_illegal_transition_raises(store):
    fortune = _fortune(store)

    with pytest.raises(ValueError):
        store.transition_fortune(fortune, FortuneStatus.FAILED, reason="skip")


def test_list_fortunes_by_owner_only_returns_owned(store):
    mine = _fortune(store, owner="user_alice")
    _fortune(store, owner="user_bob")

    assert [f.id for f in store.list_fortunes_by_owner("user_alice")] == [mine.id]


def test_create_payment_stamps_fortune(store):
    fortune = _fortune(store)

    payment = store.create_payment("user_alice", fortune.id, 500, "USD", "pi_1")

    assert payment.currency == "usd"
    assert payment.status == "pending"
    assert store.get_fortune(fortune.id).payment_id == payment.id
    assert store.get_payment_by_intent("pi_1").id == payment.id


class FlakyStampStore(SqlRecordStore):
    def __init__(self, session_factory, failures, stamp_attempts=3):
        super().__init__(session_factory, stamp_attempts=stamp_attempts)
        self.failures = failures
        self.stamp_calls = 0

    def stamp_fortune_payment(self, fortune_id, payment_id):
        self.stamp_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise RecordStoreError("Failed to stamp fortune payment", details="connection reset")
        super().stamp_fortune_payment(fortune_id, payment_id)


def test_stamp_is_retried(store):
    flaky = FlakyStampStore(store.session_factory, failures=1)
    fortune = _fortune(flaky)

    payment = flaky.create_payment("user_alice", fortune.id, 500, "usd", "pi_1")

    assert flaky.stamp_calls == 2
    assert flaky.get_fortune(fortune.id).payment_id == payment.id


def test_lost_stamp_is_reconciled_through_back_reference(store):
    flaky = FlakyStampStore(store.session_factory, failures=3, stamp_attempts=3)
    fortune = _fortune(flaky)

    payment = flaky.create_payment("user_alice", fortune.id, 500, "usd", "pi_1")

    assert flaky.get_payment(payment.id) is not None
    assert flaky.get_fortune(fortune.id).payment_id is None
    assert [p.id for p in flaky.list_unstamped_payments()] == [payment.id]

    stamped = flaky.reconcile_payment_stamps()

    assert [p.id for p in stamped] == [payment.id]
    assert flaky.get_fortune(fortune.id).payment_id == payment.id
    assert flaky.list_unstamped_payments() == []


def test_payment_status_updates_follow_transitions(store):
    fortune = _fortune(store)
    payment = store.create_payment("user_alice", fortune.id, 500, "usd", "pi_1")

    with pytest.raises(ValueError):
        store.update_payment_status(payment.id, PaymentStatus.REFUNDED)

    assert store.update_payment_status(payment.id, PaymentStatus.SUCCEEDED).status == "succeeded"
    assert store.update_payment_status(payment.id, PaymentStatus.SUCCEEDED).status == "succeeded"
    assert store.update_payment_status(payment.id, PaymentStatus.REFUNDED).status == "refunded"

    with pytest.raises(ValueError):
        store.update_payment_status("missing", PaymentStatus.SUCCEEDED)


def test_succeeded_payment_found_after_newer_intent_stamped(store):
    fortune = _fortune(store)
    first = store.create_payment("user_alice", fortune.id, 500, "usd", "pi_1")
    second = store.create_payment("user_alice", fortune.id, 500, "usd", "pi_2")

    assert store.get_fortune(fortune.id).payment_id == second.id
    assert store.get_succeeded_payment(fortune.id) is None

    store.update_payment_status(first.id, PaymentStatus.SUCCEEDED)

    assert store.get_succeeded_payment(fortune.id).id == first.id
    assert store.get_succeeded_payment(_fortune(store).id) is None
