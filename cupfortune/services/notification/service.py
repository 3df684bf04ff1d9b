"""Notification service: emails a completed reading through the Resend API."""

import html
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import httpx
from sqlalchemy.exc import SQLAlchemyError

from cupfortune.common.errors import NotificationError
from cupfortune.common.logging import logger
from cupfortune.services.notification.models import NotificationLog
from cupfortune.services.records.models import Fortune


SUBJECT = "Your Coffee Cup Fortune Reading"


def render_reading_html(fortune: Fortune, app_url: str) -> str:
    """Fixed HTML body for the reading email."""

    paragraphs = "".join(
        f"<p>{html.escape(part)}</p>" for part in fortune.prediction.split("\n") if part.strip()
    )
    images = "".join(
        f'<img src="{html.escape(url)}" alt="Your coffee cup" style="width:100%;max-height:300px;'
        f'object-fit:cover;border-radius:8px;margin:20px 0">'
        for url in fortune.images
        if url.startswith(("http://", "https://"))
    )
    year = datetime.now(timezone.utc).year
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Your Coffee Cup Fortune</title></head>"
        "<body style=\"font-family:Arial,sans-serif;line-height:1.6;color:#333;max-width:600px;margin:0 auto;padding:20px\">"
        "<h1 style=\"text-align:center\">Your Coffee Cup Fortune</h1>"
        "<p>Thank you for using Coffee Cup Fortune! Here is your personalized reading "
        "based on the patterns in your coffee cup:</p>"
        f"{images}"
        "<div style=\"background:#f9f9f9;border-left:4px solid #6366f1;padding:15px;margin:20px 0\">"
        f"{paragraphs}</div>"
        f"<p><a href=\"{html.escape(app_url)}/fortune\">Get Another Reading</a></p>"
        f"<p style=\"font-size:12px;color:#666;text-align:center\">&copy; {year} Coffee Cup Fortune.</p>"
        "</body></html>"
    )


class NotificationService(ABC):
    @abstractmethod
    def send_reading(self, email: str, fortune: Fortune) -> str:
        """Send the reading and return the provider's delivery id."""
        raise NotImplementedError


class ResendNotificationService(NotificationService):
    """Sends through Resend and writes one `notification_logs` row per delivery."""

    def __init__(
        self,
        session_factory,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com/emails",
        app_url: str = "http://localhost:3000",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.session_factory = session_factory
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.app_url = app_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def send_reading(self, email, fortune):
        payload = {
            "from": self.from_address,
            "to": [email],
            "subject": SUBJECT,
            "html": render_reading_html(fortune, self.app_url),
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("email_send_error fortune_id=%s error=%s", fortune.id, exc)
            raise NotificationError("Failed to send fortune email", details=str(exc)) from exc
        if resp.status_code >= 400:
            logger.error("email_rejected fortune_id=%s status=%s", fortune.id, resp.status_code)
            raise NotificationError("Failed to send fortune email", details=resp.text[:200])

        delivery_id = resp.json().get("id", "")
        self._log_delivery(fortune.id, delivery_id)
        logger.info("email_sent fortune_id=%s delivery_id=%s", fortune.id, delivery_id)
        return delivery_id

    def _log_delivery(self, fortune_id: str, delivery_id: str) -> None:
        try:
            with self.session_factory() as db:
                db.add(NotificationLog(fortune_id=fortune_id, channel="email", delivery_id=delivery_id))
                db.commit()
        except SQLAlchemyError as exc:
            # The email already left; a missing log row must not turn that into an error.
            logger.warning("notification_log_failed fortune_id=%s error=%s", fortune_id, exc)
