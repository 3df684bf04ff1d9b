"""Central environment-driven settings for the fortune service.

The API process loads this once at startup. Collaborator endpoints, credentials
and lifecycle policy are controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "fortune-api"
    log_level: str = "INFO"
    postgres_dsn: str
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    # Lifecycle policy
    submission_policy: str = "pay_then_create"
    require_payment_for_processing: bool = True
    allow_anonymous_submissions: bool = True
    max_images_per_fortune: int = 4
    staged_upload_ttl_seconds: int = 3600

    # Prediction (OpenAI)
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1"
    prediction_language: str = "Persian"
    prediction_max_tokens: int = 1000
    prediction_temperature: float = 0.7
    prediction_timeout_seconds: float = 90.0

    # Payments (Stripe)
    stripe_secret_key: str = ""
    stripe_price_id: str = ""
    stripe_webhook_secret: str = ""
    default_price_cents: int = 500
    payment_currency: str = "usd"
    payment_timeout_seconds: float = 15.0
    payment_stamp_attempts: int = 3

    # Email (Resend)
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    email_from_address: str = "fortune@coffeecupfortune.com"
    app_url: str = "http://localhost:3000"

    # Object storage (Supabase)
    supabase_url: str = ""
    supabase_service_key: str = ""
    supabase_storage_bucket: str = "fortune-images"

    # Identity provider
    auth_jwt_secret: str = ""
    auth_jwt_issuer: str = ""
    auth_jwks_url: str = ""
    identity_api_url: str = "https://api.clerk.com/v1"
    identity_api_key: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
