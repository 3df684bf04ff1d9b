"""Startup-time config summary with secrets redacted."""

from pydantic_settings import BaseSettings

from cupfortune.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def redacted_settings(config: BaseSettings, fields: list[str]) -> dict[str, object]:
    """Return the selected settings fields with secret-like values masked."""

    summary: dict[str, object] = {}
    for name in fields:
        value = getattr(config, name)
        if value in ("", None):
            summary[name] = "<unset>"
        elif any(marker in name for marker in SECRET_MARKERS):
            summary[name] = "<redacted>"
        else:
            summary[name] = value
    return summary


def log_startup_config(config: BaseSettings, fields: list[str]) -> dict[str, object]:
    """Log the resolved runtime configuration once at process start."""

    summary = redacted_settings(config, fields)
    logger.info("startup_config=%s", summary)
    return summary
