"""Fortune and payment status transitions enforced by the orchestrator."""

from enum import Enum


class FortuneStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


# Tables are keyed by the stored string values, which is what the record
# store hands back.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"processing"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}

PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"succeeded", "failed"},
    "succeeded": {"refunded"},
    # A declined card can still be retried on the same intent.
    "failed": {"succeeded"},
    "refunded": set(),
}

TERMINAL_STATES = frozenset({"completed", "failed"})


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else status


def validate_transition(current, new) -> None:
    """Raise when a fortune transition is not allowed by the state machine."""

    current, new = _value(current), _value(new)
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def validate_payment_transition(current, new) -> None:
    """Raise when a payment status change is not allowed."""

    current, new = _value(current), _value(new)
    if new not in PAYMENT_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid payment transition: {current} -> {new}")


def is_terminal(status) -> bool:
    return _value(status) in TERMINAL_STATES
