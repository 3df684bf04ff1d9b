"""Fortune lifecycle orchestration.

Moves fortunes through PENDING -> PROCESSING -> COMPLETED/FAILED across
independent request handlers. The only shared state is the record store; the
PENDING -> PROCESSING step is a conditional write, so of two concurrent
callers exactly one reaches the prediction service and the other reports the
status it finds.

Ownership: a fortune or payment may be used by its owner, or by anyone when
it is owned by the anonymous sentinel (guest checkout). Anyone holding the id
of an anonymous fortune can therefore read and process it; payment, not
identity, gates that flow. Unknown ids are reported before ownership.
"""

import asyncio

from cupfortune.common.errors import (
    AuthenticationRequired,
    AuthorizationError,
    ConfigurationError,
    FortuneError,
    NotFoundError,
    PaymentServiceError,
    PredictionError,
    RecordStoreError,
    StorageError,
    ValidationError,
)
from cupfortune.common.logging import fortune_id_ctx, logger, owner_id_ctx
from cupfortune.common.metrics import (
    emails_sent_total,
    fortune_requests_total,
    fortune_transition_conflicts_total,
    fortune_transitions_total,
    payment_intents_total,
    payment_status_updates_total,
    prediction_failures_total,
    prediction_latency_seconds,
)
from cupfortune.common.state_machine import FortuneStatus, PaymentStatus
from cupfortune.common.tracing import tracer
from cupfortune.services.identity.service import IdentityProvider, Principal
from cupfortune.services.notification.service import NotificationService
from cupfortune.services.orchestrator.policy import SubmissionPolicy
from cupfortune.services.orchestrator.schemas import (
    EmailResponse,
    FortuneListResponse,
    FortuneSubmitRequest,
    FortuneSummary,
    PaymentIntentResponse,
    PaymentStatusResponse,
    PendingFortuneResponse,
    PriceResponse,
    ProcessPaidRequest,
    ProcessResponse,
    SessionStatusResponse,
    StatusResponse,
    SubmitResponse,
    WebhookResponse,
)
from cupfortune.services.payment_adapter.service import PaymentService, webhook_update
from cupfortune.services.prediction.service import PredictionService
from cupfortune.services.records.models import ANONYMOUS_OWNER, Fortune, Payment
from cupfortune.services.records.store import RecordStore
from cupfortune.services.staging.service import StagedUploadStore
from cupfortune.services.storage.service import ObjectStore, is_encoded_image


class FortuneOrchestrator:
    """Owns fortune state progression and the payment gate in front of it."""

    def __init__(
        self,
        records: RecordStore,
        object_store: ObjectStore,
        staging: StagedUploadStore,
        predictor: PredictionService,
        payments: PaymentService,
        notifier: NotificationService,
        identity: IdentityProvider,
        policy: SubmissionPolicy = SubmissionPolicy.PAY_THEN_CREATE,
        require_payment: bool = True,
        allow_anonymous: bool = True,
        max_images: int = 4,
        currency: str = "usd",
        prediction_timeout_seconds: float = 90.0,
        payment_timeout_seconds: float = 15.0,
        service_name: str = "fortune-api",
    ) -> None:
        self.records = records
        self.object_store = object_store
        self.staging = staging
        self.predictor = predictor
        self.payments = payments
        self.notifier = notifier
        self.identity = identity
        self.policy = policy
        self.require_payment = require_payment
        self.allow_anonymous = allow_anonymous
        self.max_images = max_images
        self.currency = currency.lower()
        self.prediction_timeout_seconds = prediction_timeout_seconds
        self.payment_timeout_seconds = payment_timeout_seconds
        self.service_name = service_name

    # -- callers and ownership -------------------------------------------------

    def _caller_id(self, principal: Principal | None) -> str:
        if principal is not None:
            return principal.user_id
        if self.allow_anonymous:
            return ANONYMOUS_OWNER
        raise AuthenticationRequired()

    def _require_principal(self, principal: Principal | None) -> Principal:
        if principal is None:
            raise AuthenticationRequired()
        return principal

    def _check_owner(self, owner_id: str, caller_id: str) -> None:
        if owner_id != caller_id and owner_id != ANONYMOUS_OWNER:
            logger.warning("ownership_rejected owner_id=%s caller_id=%s", owner_id, caller_id)
            raise AuthorizationError()

    def _load_owned_fortune(self, principal: Principal | None, fortune_id: str | None) -> Fortune:
        if not fortune_id:
            raise ValidationError("Fortune ID is required")
        caller_id = self._caller_id(principal)
        fortune_id_ctx.set(fortune_id)
        owner_id_ctx.set(caller_id)
        fortune = self.records.get_fortune(fortune_id)
        if fortune is None:
            raise NotFoundError("Fortune not found")
        self._check_owner(fortune.owner_id, caller_id)
        return fortune

    def _require_policy(self, policy: SubmissionPolicy, operation: str) -> None:
        if self.policy != policy:
            raise ValidationError(
                f"{operation} is not available",
                details=f"submission policy is {self.policy.value}",
            )

    # -- collaborator calls ----------------------------------------------------

    async def _call(self, fn, *args, timeout: float, error_cls, message: str):
        """Run a blocking collaborator call off the event loop with a bounded timeout."""

        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout)
        except asyncio.TimeoutError as exc:
            logger.error("collaborator_timeout call=%s timeout_s=%s", getattr(fn, "__name__", fn), timeout)
            raise error_cls(message, details=f"timed out after {timeout}s") from exc

    def _validate_images(self, images: list[str] | None) -> list[str]:
        images = [image for image in (images or []) if image and image.strip()]
        if not images:
            raise ValidationError("At least one image is required")
        if len(images) > self.max_images:
            raise ValidationError(f"At most {self.max_images} images are allowed")
        return images

    def _validate_submission(self, req: FortuneSubmitRequest) -> list[str]:
        images = self._validate_images(req.images)
        if not req.name.strip():
            raise ValidationError("Name is required")
        if not req.age.strip():
            raise ValidationError("Age is required")
        if not req.intent.strip():
            raise ValidationError("Intent is required")
        return images

    # -- state transitions -----------------------------------------------------

    def _transition(self, fortune: Fortune, new_status: FortuneStatus, reason: str, prediction: str | None = None) -> bool:
        from_status = fortune.status
        logger.info(
            "transition_attempted fortune_id=%s from=%s to=%s reason=%s",
            fortune.id,
            from_status,
            new_status.value,
            reason,
        )
        applied = self.records.transition_fortune(fortune, new_status, reason=reason, prediction=prediction)
        if applied:
            fortune_transitions_total.labels(
                service=self.service_name, from_state=from_status, to_state=new_status.value
            ).inc()
            logger.info("transition_succeeded fortune_id=%s from=%s to=%s", fortune.id, from_status, new_status.value)
        else:
            fortune_transition_conflicts_total.labels(
                service=self.service_name, from_state=from_status, to_state=new_status.value
            ).inc()
            logger.info("transition_rejected fortune_id=%s from=%s to=%s", fortune.id, from_status, new_status.value)
        return applied

    def _settled_result(self, fortune: Fortune) -> ProcessResponse | None:
        """Result for a fortune that must not be processed again, else None."""

        if fortune.prediction and fortune.status == FortuneStatus.COMPLETED.value:
            return ProcessResponse(
                message="Fortune prediction already exists",
                fortune_id=fortune.id,
                status=fortune.status,
                prediction=fortune.prediction,
            )
        if fortune.status == FortuneStatus.PENDING.value and not fortune.prediction:
            return None
        return ProcessResponse(
            message=f"Fortune is {fortune.status}",
            fortune_id=fortune.id,
            status=fortune.status,
        )

    def _mark_failed(self, fortune: Fortune, reason: str) -> None:
        prediction_failures_total.labels(service=self.service_name, reason=reason).inc()
        try:
            self._transition(fortune, FortuneStatus.FAILED, reason=f"prediction_failed:{reason}")
        except RecordStoreError as exc:
            logger.error("transition_failed fortune_id=%s to=failed error=%s", fortune.id, exc.details)

    async def _run_prediction(self, fortune: Fortune, images: list[str]) -> ProcessResponse:
        if not self._transition(fortune, FortuneStatus.PROCESSING, reason="processing_started"):
            current = self.records.get_fortune(fortune.id) or fortune
            return self._settled_result(current) or ProcessResponse(
                message=f"Fortune is {current.status}", fortune_id=current.id, status=current.status
            )

        try:
            with tracer.start_as_current_span("prediction.predict"), prediction_latency_seconds.labels(
                service=self.service_name
            ).time():
                prediction = await self._call(
                    self.predictor.predict,
                    images,
                    fortune.subject_name,
                    fortune.subject_age,
                    fortune.intent,
                    fortune.about,
                    timeout=self.prediction_timeout_seconds,
                    error_cls=PredictionError,
                    message="Failed to process fortune",
                )
            prediction = (prediction or "").strip()
            if not prediction:
                raise PredictionError("Failed to process fortune", details="empty prediction")
            if not self._transition(
                fortune, FortuneStatus.COMPLETED, reason="prediction_succeeded", prediction=prediction
            ):
                raise RecordStoreError("Failed to process fortune", details="fortune changed while processing")
        except FortuneError as exc:
            self._mark_failed(fortune, type(exc).__name__)
            raise
        except Exception as exc:
            self._mark_failed(fortune, type(exc).__name__)
            raise PredictionError("Failed to process fortune", details=str(exc)) from exc

        return ProcessResponse(
            message="Fortune processed successfully",
            fortune_id=fortune.id,
            status=fortune.status,
            prediction=prediction,
        )

    # -- submission ------------------------------------------------------------

    async def submit(self, principal: Principal | None, req: FortuneSubmitRequest) -> SubmitResponse:
        """Create-then-pay submission: upload photos now and attach their URLs."""

        self._require_policy(SubmissionPolicy.CREATE_THEN_PAY, "submit")
        owner_id = self._caller_id(principal)
        owner_id_ctx.set(owner_id)
        images = self._validate_submission(req)

        uploaded: list[str] = []
        urls: list[str] = []
        try:
            for image in images:
                url = await asyncio.to_thread(self.object_store.store_encoded, owner_id, image)
                if is_encoded_image(image):
                    uploaded.append(url)
                urls.append(url)
            fortune = self.records.create_fortune(owner_id, urls, req.name, req.age, req.intent, req.about)
        except FortuneError:
            self._discard_uploads(uploaded)
            raise

        fortune_id_ctx.set(fortune.id)
        fortune_requests_total.labels(service=self.service_name, policy=self.policy.value).inc()
        logger.info("fortune_submitted fortune_id=%s images=%s", fortune.id, len(urls))
        return SubmitResponse(message="Fortune submission received", fortune_id=fortune.id, status=fortune.status)

    def _discard_uploads(self, urls: list[str]) -> None:
        for url in urls:
            try:
                self.object_store.delete(url)
            except StorageError as exc:
                logger.warning("orphan_image_cleanup_failed url=%s error=%s", url, exc.details)

    async def create_pending(self, principal: Principal | None, req: FortuneSubmitRequest) -> PendingFortuneResponse:
        """Pay-then-create submission: record the fortune, stage the photos until payment."""

        self._require_policy(SubmissionPolicy.PAY_THEN_CREATE, "create-pending")
        owner_id = self._caller_id(principal)
        owner_id_ctx.set(owner_id)
        images = self._validate_submission(req)

        fortune = self.records.create_fortune(owner_id, [], req.name, req.age, req.intent, req.about)
        fortune_id_ctx.set(fortune.id)
        staged_until = await asyncio.to_thread(self.staging.stage, fortune.id, images)
        fortune_requests_total.labels(service=self.service_name, policy=self.policy.value).inc()
        logger.info("fortune_pending fortune_id=%s staged_images=%s", fortune.id, len(images))
        return PendingFortuneResponse(
            message="Fortune request created successfully",
            fortune_id=fortune.id,
            status=fortune.status,
            staged_until=staged_until,
        )

    # -- processing ------------------------------------------------------------

    async def begin_processing(self, principal: Principal | None, fortune_id: str | None) -> ProcessResponse:
        """Idempotent create-then-pay processing from the stored image URLs."""

        self._require_policy(SubmissionPolicy.CREATE_THEN_PAY, "process")
        fortune = self._load_owned_fortune(principal, fortune_id)
        settled = self._settled_result(fortune)
        if settled is not None:
            return settled
        if self.require_payment:
            self._require_succeeded_payment(fortune)
        if not fortune.images:
            raise ValidationError("Fortune has no images to read")
        return await self._run_prediction(fortune, list(fortune.images))

    def _require_succeeded_payment(self, fortune: Fortune) -> None:
        paid = self.records.get_succeeded_payment(fortune.id)
        if paid is not None:
            if fortune.payment_id != paid.id:
                self.records.stamp_fortune_payment(fortune.id, paid.id)
            return
        payment = self.records.get_payment(fortune.payment_id) if fortune.payment_id else None
        if payment is None:
            raise ValidationError("Payment required", details="no payment recorded for this fortune")
        raise ValidationError("Payment not completed", details=f"payment status is {payment.status}")

    async def process_paid(self, principal: Principal | None, req: ProcessPaidRequest) -> ProcessResponse:
        """Pay-then-create processing, run once the payment intent has succeeded."""

        self._require_policy(SubmissionPolicy.PAY_THEN_CREATE, "process-paid")
        fortune = self._load_owned_fortune(principal, req.fortune_id)
        settled = self._settled_result(fortune)
        if settled is not None:
            return settled

        await self._verify_paid(fortune, req.payment_intent_id)

        images = req.images
        if not images:
            images = await asyncio.to_thread(self.staging.fetch, fortune.id)
            if not images:
                raise ValidationError("Images are required", details="no images supplied and none staged")
        images = self._validate_images(images)

        try:
            return await self._run_prediction(fortune, images)
        finally:
            if fortune.status in (FortuneStatus.COMPLETED.value, FortuneStatus.FAILED.value):
                await asyncio.to_thread(self.staging.discard, fortune.id)

    async def _verify_paid(self, fortune: Fortune, payment_intent_id: str | None) -> Payment:
        if not payment_intent_id:
            raise ValidationError("Payment intent ID is required")
        payment = self.records.get_payment_by_intent(payment_intent_id)
        if payment is None or payment.fortune_id != fortune.id:
            raise ValidationError("Payment does not match this fortune")

        if payment.status != PaymentStatus.SUCCEEDED.value:
            status = await self._call(
                self.payments.get_intent_status,
                payment.external_intent_id,
                timeout=self.payment_timeout_seconds,
                error_cls=PaymentServiceError,
                message="Failed to verify payment",
            )
            payment = self._apply_payment_status(payment, status, source="process_paid")
            if payment.status != PaymentStatus.SUCCEEDED.value:
                raise ValidationError("Payment not completed", details=f"payment status is {payment.status}")

        if fortune.payment_id != payment.id:
            self.records.stamp_fortune_payment(fortune.id, payment.id)
            fortune.payment_id = payment.id
        return payment

    # -- reads -----------------------------------------------------------------

    def get_status(self, principal: Principal | None, fortune_id: str | None) -> StatusResponse:
        """Pure read for polling clients; prediction only once COMPLETED."""

        fortune = self._load_owned_fortune(principal, fortune_id)
        if fortune.status == FortuneStatus.COMPLETED.value and fortune.prediction:
            return StatusResponse(status=fortune.status, prediction=fortune.prediction)
        return StatusResponse(status=fortune.status)

    def list_fortunes(self, principal: Principal | None) -> FortuneListResponse:
        principal = self._require_principal(principal)
        fortunes = self.records.list_fortunes_by_owner(principal.user_id)
        return FortuneListResponse(
            fortunes=[
                FortuneSummary(
                    id=f.id,
                    status=f.status,
                    images=list(f.images or []),
                    name=f.subject_name,
                    age=f.subject_age,
                    intent=f.intent,
                    about=f.about,
                    prediction=f.prediction,
                    payment_id=f.payment_id,
                    created_at=f.created_at,
                )
                for f in fortunes
            ]
        )

    # -- payments --------------------------------------------------------------

    async def _resolve_price(self) -> int:
        amount = await self._call(
            self.payments.get_price,
            timeout=self.payment_timeout_seconds,
            error_cls=PaymentServiceError,
            message="Failed to get price",
        )
        if amount is None or amount <= 0:
            logger.error("invalid_price amount=%s", amount)
            raise ConfigurationError("Invalid price configuration", details=f"resolved price is {amount}")
        return amount

    async def get_price(self) -> PriceResponse:
        return PriceResponse(amount=await self._resolve_price(), currency=self.currency)

    async def create_payment_intent(self, principal: Principal | None, fortune_id: str | None) -> PaymentIntentResponse:
        """Price server-side, create the intent, then record the payment.

        Nothing is written when pricing or intent creation fails.
        """

        fortune = self._load_owned_fortune(principal, fortune_id)
        if fortune.status != FortuneStatus.PENDING.value:
            raise ValidationError("Fortune is not awaiting payment", details=f"status is {fortune.status}")
        if self.records.get_succeeded_payment(fortune.id) is not None:
            raise ValidationError("Fortune is already paid")

        amount = await self._resolve_price()
        intent = await self._call(
            self.payments.create_intent,
            amount,
            self.currency,
            {"fortune_id": fortune.id, "owner_id": fortune.owner_id},
            timeout=self.payment_timeout_seconds,
            error_cls=PaymentServiceError,
            message="Failed to create payment intent",
        )
        payment = self.records.create_payment(
            fortune.owner_id, fortune.id, amount, self.currency, intent.external_id
        )
        payment_intents_total.labels(service=self.service_name, currency=self.currency).inc()
        logger.info(
            "payment_intent_created fortune_id=%s payment_id=%s amount=%s currency=%s",
            fortune.id,
            payment.id,
            amount,
            self.currency,
        )
        return PaymentIntentResponse(
            client_secret=intent.client_secret,
            payment_id=payment.id,
            amount=amount,
            currency=self.currency,
        )

    def _apply_payment_status(self, payment: Payment, status: PaymentStatus, source: str) -> Payment:
        status = PaymentStatus(status)
        if payment.status == status.value:
            return payment
        try:
            updated = self.records.update_payment_status(payment.id, status)
        except ValueError as exc:
            # Out-of-order confirmations (e.g. a late "failed" after a refund) keep the stored status.
            logger.warning("payment_update_ignored payment_id=%s source=%s reason=%s", payment.id, source, exc)
            return payment
        payment_status_updates_total.labels(service=self.service_name, status=status.value, source=source).inc()
        logger.info("payment_status_updated payment_id=%s status=%s source=%s", payment.id, status.value, source)
        return updated

    async def confirm_payment(self, principal: Principal | None, payment_id: str | None) -> PaymentStatusResponse:
        """Re-read the intent from the payment service and store its outcome."""

        if not payment_id:
            raise ValidationError("Payment ID is required")
        caller_id = self._caller_id(principal)
        payment = self.records.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        self._check_owner(payment.owner_id, caller_id)
        status = await self._call(
            self.payments.get_intent_status,
            payment.external_intent_id,
            timeout=self.payment_timeout_seconds,
            error_cls=PaymentServiceError,
            message="Failed to verify payment",
        )
        payment = self._apply_payment_status(payment, status, source="confirm")
        return PaymentStatusResponse(payment_id=payment.id, status=payment.status)

    async def get_session_status(self, principal: Principal | None, session_id: str) -> SessionStatusResponse:
        self._require_principal(principal)
        if not session_id:
            raise ValidationError("Session ID is required")
        status = await self._call(
            self.payments.get_session_status,
            session_id,
            timeout=self.payment_timeout_seconds,
            error_cls=PaymentServiceError,
            message="Failed to retrieve session status",
        )
        return SessionStatusResponse(status=status)

    def handle_payment_webhook(self, payload: bytes, signature: str | None) -> WebhookResponse:
        event = self.payments.parse_webhook(payload, signature)
        update = webhook_update(event)
        if update is None:
            return WebhookResponse(handled=False)
        intent_id, status = update
        payment = self.records.get_payment_by_intent(intent_id)
        if payment is None:
            logger.warning("webhook_unknown_intent intent_id=%s event_type=%s", intent_id, event.get("type"))
            return WebhookResponse(handled=False)
        self._apply_payment_status(payment, status, source="webhook")
        return WebhookResponse(handled=True)

    def reconcile_payments(self, limit: int = 500) -> int:
        """Stamp payment ids onto fortunes whose stamp write never landed."""

        return len(self.records.reconcile_payment_stamps(limit=limit))

    # -- notification ----------------------------------------------------------

    async def send_reading(self, principal: Principal | None, fortune_id: str | None) -> EmailResponse:
        """Email a completed reading to the caller's verified address."""

        principal = self._require_principal(principal)
        fortune = self._load_owned_fortune(principal, fortune_id)
        if fortune.status != FortuneStatus.COMPLETED.value or not fortune.prediction:
            raise ValidationError("Fortune prediction not available yet", details=f"status is {fortune.status}")

        email = await asyncio.to_thread(self.identity.verified_email, principal)
        if not email:
            raise ValidationError("User email not found")
        delivery_id = await asyncio.to_thread(self.notifier.send_reading, email, fortune)
        emails_sent_total.labels(service=self.service_name).inc()
        logger.info("reading_emailed fortune_id=%s delivery_id=%s", fortune.id, delivery_id)
        return EmailResponse(message="Fortune email sent successfully", email_id=delivery_id)
