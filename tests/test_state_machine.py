"""Unit tests for fortune and payment state-machine guardrails."""

import pytest

from cupfortune.common.state_machine import (
    FortuneStatus,
    PaymentStatus,
    is_terminal,
    validate_payment_transition,
    validate_transition,
)


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("pending", "processing")
    validate_transition(FortuneStatus.PROCESSING, FortuneStatus.FAILED)


def test_invalid_transition():
    """Skipping PROCESSING must raise to protect orchestration correctness."""

    with pytest.raises(ValueError):
        validate_transition("pending", "completed")


@pytest.mark.parametrize("terminal", ["completed", "failed"])
def test_terminal_states_have_no_exit(terminal):
    assert is_terminal(terminal)
    for target in FortuneStatus:
        with pytest.raises(ValueError):
            validate_transition(terminal, target)


def test_payment_refund_only_after_success():
    validate_payment_transition(PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED)
    with pytest.raises(ValueError):
        validate_payment_transition("pending", "refunded")
