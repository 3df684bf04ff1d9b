"""Structured JSON logging with request and fortune context fields.

Every record carries the service name plus the trace, fortune and owner ids
bound for the current request. When no trace id was supplied by the caller the
active OpenTelemetry span's id is used, so log lines and spans line up.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from cupfortune.common.config import settings
from cupfortune.common.tracing import current_trace_id


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
fortune_id_ctx: ContextVar[str] = ContextVar("fortune_id", default="")
owner_id_ctx: ContextVar[str] = ContextVar("owner_id", default="")

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "stripe")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get() or current_trace_id()
        record.fortune_id = fortune_id_ctx.get()
        record.owner_id = owner_id_ctx.get()
        return True


def bind_request_context(trace_id: str | None = None) -> None:
    """Start a fresh logging context for one request.

    Without a caller-supplied correlation id the active span's trace id is logged.
    """

    trace_id_ctx.set(trace_id or "")
    fortune_id_ctx.set("")
    owner_id_ctx.set("")


def configure_logging(level: str | None = None) -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(fortune_id)s %(owner_id)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    # Client libraries log every request at INFO.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("cupfortune")
