import logging
import smtplib
from email.message import EmailMessage

from core.celery import celery_app
from core.config import settings

logger = logging.getLogger(__name__)


def build_message(to_email: str, subject: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")
    return msg


@celery_app.task(bind=True, max_retries=3)
def send_email_task(self, to_email: str, subject: str, html: str):
    """
    Send an HTML email from a Celery worker.
    Retries up to 3 times on SMTP failure.
    """
    if settings.TESTING or not settings.SMTP_PASSWORD:
        logger.info("Email to %s skipped (no SMTP credentials): %s", to_email, subject)
        return {"status": "skipped", "to": to_email}

    try:
        msg = build_message(to_email, subject, html)
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)

        return {"status": "sent", "to": to_email, "subject": subject}

    except Exception as exc:
        logger.warning("Failed to send email to %s: %s", to_email, exc)
        # Retry with exponential backoff
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        raise self.retry(exc=exc, countdown=countdown)
