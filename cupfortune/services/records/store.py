"""Record store: fortune/payment persistence and conditional status transitions.

Every fortune status write goes through `transition_fortune`, which is guarded
by `(id, status, state_version)` so that concurrent writers cannot both move
the same fortune out of a state. The caller that loses the race gets `False`
back and re-reads the record instead of raising.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from cupfortune.common.errors import RecordStoreError
from cupfortune.common.logging import logger
from cupfortune.common.state_machine import (
    FortuneStatus,
    PaymentStatus,
    validate_payment_transition,
    validate_transition,
)
from cupfortune.services.records.models import Fortune, FortuneTimeline, Payment


class RecordStore(ABC):
    """Persistence capability consumed by the orchestrator."""

    @abstractmethod
    def create_fortune(
        self,
        owner_id: str,
        images: list[str],
        name: str,
        age: str,
        intent: str,
        about: str = "",
    ) -> Fortune:
        raise NotImplementedError

    @abstractmethod
    def get_fortune(self, fortune_id: str) -> Fortune | None:
        raise NotImplementedError

    @abstractmethod
    def list_fortunes_by_owner(self, owner_id: str) -> list[Fortune]:
        raise NotImplementedError

    @abstractmethod
    def transition_fortune(
        self, fortune: Fortune, new_status: str, reason: str, prediction: str | None = None
    ) -> bool:
        """Apply one validated transition; return False if another writer got there first."""
        raise NotImplementedError

    @abstractmethod
    def create_payment(
        self, owner_id: str, fortune_id: str, amount: int, currency: str, external_intent_id: str
    ) -> Payment:
        raise NotImplementedError

    @abstractmethod
    def stamp_fortune_payment(self, fortune_id: str, payment_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_payment(self, payment_id: str) -> Payment | None:
        raise NotImplementedError

    @abstractmethod
    def get_payment_by_intent(self, external_intent_id: str) -> Payment | None:
        raise NotImplementedError

    @abstractmethod
    def get_succeeded_payment(self, fortune_id: str) -> Payment | None:
        """Any succeeded payment recorded against `fortune_id`, stamped or not."""
        raise NotImplementedError

    @abstractmethod
    def update_payment_status(self, payment_id: str, status: str) -> Payment:
        raise NotImplementedError

    @abstractmethod
    def list_unstamped_payments(self, limit: int = 500) -> list[Payment]:
        raise NotImplementedError

    def reconcile_payment_stamps(self, limit: int = 500) -> list[Payment]:
        """Stamp every payment whose fortune never recorded it; return those stamped."""

        stamped = []
        for payment in self.list_unstamped_payments(limit=limit):
            self.stamp_fortune_payment(payment.fortune_id, payment.id)
            logger.info("payment_stamp_reconciled payment_id=%s fortune_id=%s", payment.id, payment.fortune_id)
            stamped.append(payment)
        return stamped

    def update_fortune_status(self, fortune_id: str, status: str, reason: str = "status_update") -> bool:
        fortune = self.get_fortune(fortune_id)
        if fortune is None:
            return False
        return self.transition_fortune(fortune, status, reason=reason)

    def update_fortune_prediction(self, fortune_id: str, prediction: str) -> bool:
        """Store the prediction and move the fortune to COMPLETED in one write."""

        fortune = self.get_fortune(fortune_id)
        if fortune is None:
            return False
        return self.transition_fortune(
            fortune, FortuneStatus.COMPLETED, reason="prediction_succeeded", prediction=prediction
        )


class SqlRecordStore(RecordStore):
    """SQLAlchemy implementation backed by the relational store."""

    def __init__(self, session_factory, stamp_attempts: int = 3) -> None:
        self.session_factory = session_factory
        self.stamp_attempts = max(1, stamp_attempts)

    @contextmanager
    def _db(self, operation: str):
        try:
            with self.session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("record_store_error operation=%s error=%s", operation, exc)
            raise RecordStoreError(f"Failed to {operation.replace('_', ' ')}", details=str(exc)) from exc

    def create_fortune(self, owner_id, images, name, age, intent, about=""):
        with self._db("create_fortune") as db:
            fortune = Fortune(
                owner_id=owner_id,
                images=list(images),
                subject_name=name or "",
                subject_age=str(age or ""),
                intent=intent or "",
                about=about or "",
                prediction="",
                status=FortuneStatus.PENDING.value,
                state_version=0,
                payment_id=None,
            )
            db.add(fortune)
            db.flush()
            db.add(
                FortuneTimeline(
                    fortune_id=fortune.id,
                    from_state=None,
                    to_state=FortuneStatus.PENDING.value,
                    reason="submitted",
                )
            )
            db.commit()
            return fortune

    def get_fortune(self, fortune_id):
        with self._db("get_fortune") as db:
            return db.get(Fortune, fortune_id)

    def list_fortunes_by_owner(self, owner_id):
        with self._db("list_fortunes") as db:
            rows = db.execute(
                select(Fortune).where(Fortune.owner_id == owner_id).order_by(Fortune.created_at.desc())
            ).scalars()
            return list(rows)

    def transition_fortune(self, fortune, new_status, reason, prediction=None):
        new_status = FortuneStatus(new_status).value
        validate_transition(fortune.status, new_status)
        if new_status == FortuneStatus.COMPLETED.value and not (prediction or "").strip():
            raise ValueError("completed fortunes require a non-empty prediction")

        from_status = fortune.status
        current_version = fortune.state_version
        conditions = [
            Fortune.id == fortune.id,
            Fortune.status == from_status,
            Fortune.state_version == current_version,
        ]
        values = {
            "status": new_status,
            "state_version": current_version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        if new_status == FortuneStatus.PROCESSING.value:
            conditions.append(Fortune.prediction == "")
        if new_status == FortuneStatus.COMPLETED.value:
            values["prediction"] = prediction
        if new_status == FortuneStatus.FAILED.value:
            values["prediction"] = ""

        with self._db("update_fortune_status") as db:
            result = db.execute(
                update(Fortune).where(*conditions).values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                logger.info(
                    "transition_conflict fortune_id=%s from=%s to=%s expected_version=%s",
                    fortune.id,
                    from_status,
                    new_status,
                    current_version,
                )
                return False
            db.add(
                FortuneTimeline(
                    fortune_id=fortune.id,
                    from_state=from_status,
                    to_state=new_status,
                    reason=reason,
                )
            )
            db.commit()

        fortune.status = new_status
        fortune.state_version = current_version + 1
        if "prediction" in values:
            fortune.prediction = values["prediction"]
        return True

    def create_payment(self, owner_id, fortune_id, amount, currency, external_intent_id):
        with self._db("create_payment") as db:
            payment = Payment(
                owner_id=owner_id,
                fortune_id=fortune_id,
                amount=amount,
                currency=currency.lower(),
                external_intent_id=external_intent_id,
                status=PaymentStatus.PENDING.value,
            )
            db.add(payment)
            db.commit()

        # Second, separate write. A failure here leaves the payment reachable
        # through its fortune_id back-reference for `list_unstamped_payments`.
        for attempt in range(1, self.stamp_attempts + 1):
            try:
                self.stamp_fortune_payment(fortune_id, payment.id)
                break
            except RecordStoreError as exc:
                logger.warning(
                    "payment_stamp_failed payment_id=%s fortune_id=%s attempt=%s error=%s",
                    payment.id,
                    fortune_id,
                    attempt,
                    exc.details,
                )
        return payment

    def stamp_fortune_payment(self, fortune_id, payment_id):
        with self._db("stamp_fortune_payment") as db:
            db.execute(
                update(Fortune)
                .where(Fortune.id == fortune_id)
                .values(payment_id=payment_id, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def get_payment(self, payment_id):
        with self._db("get_payment") as db:
            return db.get(Payment, payment_id)

    def get_payment_by_intent(self, external_intent_id):
        with self._db("get_payment") as db:
            return db.execute(
                select(Payment).where(Payment.external_intent_id == external_intent_id)
            ).scalar_one_or_none()

    def get_succeeded_payment(self, fortune_id):
        with self._db("get_succeeded_payment") as db:
            return db.execute(
                select(Payment)
                .where(Payment.fortune_id == fortune_id, Payment.status == PaymentStatus.SUCCEEDED.value)
                .order_by(Payment.created_at)
                .limit(1)
            ).scalar_one_or_none()

    def update_payment_status(self, payment_id, status):
        status = PaymentStatus(status).value
        with self._db("update_payment_status") as db:
            payment = db.get(Payment, payment_id)
            if payment is None:
                raise ValueError(f"unknown payment {payment_id}")
            if payment.status == status:
                return payment
            validate_payment_transition(payment.status, status)
            payment.status = status
            payment.updated_at = datetime.now(timezone.utc)
            db.commit()
            return payment

    def list_unstamped_payments(self, limit=500):
        with self._db("list_unstamped_payments") as db:
            rows = db.execute(
                select(Payment)
                .join(Fortune, Fortune.id == Payment.fortune_id)
                .where(Fortune.payment_id.is_(None))
                .order_by(Payment.created_at)
                .limit(limit)
            ).scalars()
            return list(rows)
