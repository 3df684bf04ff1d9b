"""Payment service adapter (Stripe).

Owns the authoritative price lookup and translates Stripe objects and errors
into the small surface the orchestrator needs.
"""

from abc import ABC, abstractmethod
from typing import Any

import stripe
from pydantic import BaseModel

from cupfortune.common.errors import ConfigurationError, PaymentServiceError, ValidationError
from cupfortune.common.logging import logger
from cupfortune.common.state_machine import PaymentStatus


class PaymentIntentResult(BaseModel):
    external_id: str
    client_secret: str


# Stripe PaymentIntent.status -> local payment status. Anything not listed
# (requires_payment_method, requires_action, processing, ...) is still pending.
INTENT_STATUS_MAP = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "canceled": PaymentStatus.FAILED,
}

WEBHOOK_EVENT_STATUS = {
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.FAILED,
    "charge.refunded": PaymentStatus.REFUNDED,
}


class PaymentService(ABC):
    @abstractmethod
    def get_price(self) -> int:
        """Authoritative price of one reading, in minor currency units."""
        raise NotImplementedError

    @abstractmethod
    def create_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntentResult:
        raise NotImplementedError

    @abstractmethod
    def get_intent_status(self, external_id: str) -> PaymentStatus:
        raise NotImplementedError

    @abstractmethod
    def get_session_status(self, session_id: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        raise NotImplementedError


def webhook_update(event: dict[str, Any]) -> tuple[str, PaymentStatus] | None:
    """Return `(payment_intent_id, new_status)` for webhook events we act on."""

    status = WEBHOOK_EVENT_STATUS.get(event.get("type", ""))
    if status is None:
        return None
    obj = event.get("data", {}).get("object", {}) or {}
    if event["type"] == "charge.refunded":
        intent_id = obj.get("payment_intent")
    else:
        intent_id = obj.get("id")
    if not intent_id:
        return None
    return intent_id, status


class StripePaymentService(PaymentService):
    def __init__(
        self,
        secret_key: str,
        price_id: str = "",
        default_price_cents: int = 500,
        webhook_secret: str = "",
    ) -> None:
        self.secret_key = secret_key
        self.price_id = price_id
        self.default_price_cents = default_price_cents
        self.webhook_secret = webhook_secret
        stripe.max_network_retries = 0

    def get_price(self):
        if not self.price_id:
            return self.default_price_cents
        try:
            price = stripe.Price.retrieve(self.price_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            logger.error("price_lookup_failed price_id=%s error=%s", self.price_id, exc)
            raise PaymentServiceError("Failed to get price", details=str(exc)) from exc
        return int(price.unit_amount or 0)

    def create_intent(self, amount, currency, metadata):
        if not amount or amount <= 0:
            raise ConfigurationError("Payment amount must be greater than 0", details=f"amount={amount}")
        logger.info("creating_payment_intent amount=%s currency=%s", amount, currency)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("payment_intent_create_failed error=%s", exc)
            raise PaymentServiceError("Failed to create payment intent", details=str(exc)) from exc
        if not intent.client_secret:
            raise PaymentServiceError("Payment intent missing client secret", details=intent.id)
        return PaymentIntentResult(external_id=intent.id, client_secret=intent.client_secret)

    def get_intent_status(self, external_id):
        try:
            intent = stripe.PaymentIntent.retrieve(external_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            raise PaymentServiceError("Failed to retrieve payment intent", details=str(exc)) from exc
        return INTENT_STATUS_MAP.get(intent.status, PaymentStatus.PENDING)

    def get_session_status(self, session_id):
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            raise PaymentServiceError("Failed to retrieve session status", details=str(exc)) from exc
        return session.status

    def parse_webhook(self, payload, signature):
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured")
        if not signature:
            raise ValidationError("Missing Stripe signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise ValidationError("Invalid webhook payload", details=str(exc)) from exc
        except stripe.SignatureVerificationError as exc:
            raise ValidationError("Invalid webhook signature", details=str(exc)) from exc
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)
