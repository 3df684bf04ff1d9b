"""Submission and payment-gating strategies.

A deployment runs exactly one of these; handlers that belong to the other
strategy are rejected rather than silently mixed in.

PAY_THEN_CREATE
    `create-pending` stores the context fields and stages the encoded photos
    with a TTL. The reading is generated by `process-paid` only after the
    payment service reports the intent succeeded. An abandoned checkout costs
    no prediction.

CREATE_THEN_PAY
    `submit` uploads the photos to the object store and attaches their URLs.
    `process` generates the reading on demand from the stored URLs, gated on
    a succeeded payment unless the gate is switched off.
"""

from enum import Enum


class SubmissionPolicy(str, Enum):
    PAY_THEN_CREATE = "pay_then_create"
    CREATE_THEN_PAY = "create_then_pay"

    @classmethod
    def parse(cls, value: str) -> "SubmissionPolicy":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(p.value for p in cls)
            raise ValueError(f"unknown submission policy {value!r} (expected one of: {allowed})") from exc
