"""API request/response schemas for fortune and payment endpoints.

Field names are snake_case in Python and camelCase on the wire.
Required-field checks live in the orchestrator so that missing fields come
back as `{error}` 400 responses rather than framework validation errors.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FortuneSubmitRequest(CamelModel):
    """Payload for both `submit` and `create-pending`.

    `images` are base64 strings or `data:` URLs to upload, or references
    (hosted URLs, file names) stored as given.
    """

    images: list[str] = Field(default_factory=list)
    name: str = ""
    age: str = ""
    intent: str = ""
    about: str = ""

    @field_validator("age", mode="before")
    @classmethod
    def _age_as_text(cls, value):
        return "" if value is None else str(value)


class FortuneIdRequest(CamelModel):
    fortune_id: str | None = None


class ProcessPaidRequest(CamelModel):
    fortune_id: str | None = None
    payment_intent_id: str | None = None
    # Omitted when the photos were staged at create-pending time.
    images: list[str] | None = None


class PaymentConfirmRequest(CamelModel):
    payment_id: str | None = None


class SubmitResponse(CamelModel):
    message: str
    fortune_id: str
    status: str


class PendingFortuneResponse(SubmitResponse):
    staged_until: datetime


class ProcessResponse(CamelModel):
    message: str
    fortune_id: str
    status: str
    prediction: str | None = None


class StatusResponse(CamelModel):
    status: str
    prediction: str | None = None


class FortuneSummary(CamelModel):
    id: str
    status: str
    images: list[str]
    name: str
    age: str
    intent: str
    about: str
    prediction: str
    payment_id: str | None = None
    created_at: datetime | None = None


class FortuneListResponse(CamelModel):
    fortunes: list[FortuneSummary]


class PaymentIntentResponse(CamelModel):
    client_secret: str
    payment_id: str
    amount: int
    currency: str


class PriceResponse(CamelModel):
    amount: int
    currency: str


class SessionStatusResponse(CamelModel):
    status: str | None


class PaymentStatusResponse(CamelModel):
    payment_id: str
    status: str


class WebhookResponse(CamelModel):
    received: bool = True
    handled: bool = False


class EmailResponse(CamelModel):
    message: str
    email_id: str
