"""Process entrypoint: wires the production collaborators into the API.

Run with `uvicorn cupfortune.services.api.main:app`.
"""

from cupfortune.common.config import settings
from cupfortune.common.db import build_engine, make_session_factory
from cupfortune.common.logging import configure_logging
from cupfortune.common.startup import log_startup_config
from cupfortune.common.tracing import instrument_app, setup_tracing
from cupfortune.services.api.app import create_app
from cupfortune.services.identity.service import JwtIdentityProvider
from cupfortune.services.notification.service import ResendNotificationService
from cupfortune.services.orchestrator.policy import SubmissionPolicy
from cupfortune.services.orchestrator.service import FortuneOrchestrator
from cupfortune.services.payment_adapter.service import StripePaymentService
from cupfortune.services.prediction.service import OpenAIPredictionService
from cupfortune.services.records.store import SqlRecordStore
from cupfortune.services.staging.service import RedisStagedUploadStore
from cupfortune.services.storage.service import SupabaseObjectStore

configure_logging()
setup_tracing(settings.service_name, settings.otel_exporter_otlp_endpoint)
log_startup_config(
    settings,
    [
        "service_name",
        "postgres_dsn",
        "redis_url",
        "submission_policy",
        "require_payment_for_processing",
        "allow_anonymous_submissions",
        "openai_model",
        "openai_api_key",
        "stripe_price_id",
        "stripe_secret_key",
        "payment_currency",
        "supabase_url",
        "supabase_storage_bucket",
        "auth_jwks_url",
    ],
)

engine = build_engine(settings.postgres_dsn)
SessionLocal = make_session_factory(engine)

identity = JwtIdentityProvider(
    jwt_secret=settings.auth_jwt_secret,
    issuer=settings.auth_jwt_issuer,
    jwks_url=settings.auth_jwks_url,
    api_url=settings.identity_api_url,
    api_key=settings.identity_api_key,
)

orchestrator = FortuneOrchestrator(
    records=SqlRecordStore(SessionLocal, stamp_attempts=settings.payment_stamp_attempts),
    object_store=SupabaseObjectStore(
        settings.supabase_url, settings.supabase_service_key, settings.supabase_storage_bucket
    ),
    staging=RedisStagedUploadStore(settings.redis_url, settings.staged_upload_ttl_seconds),
    predictor=OpenAIPredictionService(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_tokens=settings.prediction_max_tokens,
        temperature=settings.prediction_temperature,
        timeout_seconds=settings.prediction_timeout_seconds,
        language=settings.prediction_language,
    ),
    payments=StripePaymentService(
        secret_key=settings.stripe_secret_key,
        price_id=settings.stripe_price_id,
        default_price_cents=settings.default_price_cents,
        webhook_secret=settings.stripe_webhook_secret,
    ),
    notifier=ResendNotificationService(
        SessionLocal,
        api_key=settings.resend_api_key,
        from_address=settings.email_from_address,
        api_url=settings.resend_api_url,
        app_url=settings.app_url,
    ),
    identity=identity,
    policy=SubmissionPolicy.parse(settings.submission_policy),
    require_payment=settings.require_payment_for_processing,
    allow_anonymous=settings.allow_anonymous_submissions,
    max_images=settings.max_images_per_fortune,
    currency=settings.payment_currency,
    prediction_timeout_seconds=settings.prediction_timeout_seconds,
    payment_timeout_seconds=settings.payment_timeout_seconds,
    service_name=settings.service_name,
)

app = create_app(orchestrator, identity, service_name=settings.service_name)
instrument_app(app)
