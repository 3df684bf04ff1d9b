"""Error taxonomy shared by the orchestrator, its collaborators and the API.

HTTP status is the only error signal sent to clients, so each class carries
the status it maps to. Collaborator adapters translate library exceptions into
the `UpstreamServiceError` family at their boundary.
"""


class FortuneError(Exception):
    """Base class for every error the API turns into an `{error, details}` body."""

    http_status = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FortuneError):
    http_status = 400


class AuthenticationRequired(FortuneError):
    http_status = 401

    def __init__(self, message: str = "Unauthorized", details: str | None = None) -> None:
        super().__init__(message, details)


class AuthorizationError(FortuneError):
    # 401 rather than 403: clients cannot tell "not yours" from "not signed in".
    http_status = 401

    def __init__(self, message: str = "Unauthorized", details: str | None = None) -> None:
        super().__init__(message, details)


class NotFoundError(FortuneError):
    http_status = 404


class ConfigurationError(FortuneError):
    http_status = 500


class UpstreamServiceError(FortuneError):
    http_status = 500


class RecordStoreError(UpstreamServiceError):
    pass


class StorageError(UpstreamServiceError):
    pass


class PredictionError(UpstreamServiceError):
    pass


class PaymentServiceError(UpstreamServiceError):
    pass


class NotificationError(UpstreamServiceError):
    pass


class IdentityError(UpstreamServiceError):
    pass
