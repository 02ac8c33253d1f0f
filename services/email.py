import logging
import os
import smtplib
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings
from tasks.email_tasks import build_message, send_email_task

logger = logging.getLogger(__name__)


# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def send_email(to_email: str, subject: str, html: str) -> None:
    """
    Queue an HTML email on Celery, sending directly if the broker is down.
    Fire-and-forget: delivery failures are logged, never raised.
    """
    try:
        send_email_task.delay(to_email, subject, html)
        logger.debug("Email task queued for %s", to_email)
        return
    except Exception as e:
        logger.warning("Celery not available, falling back to direct email sending: %s", e)

    _send_email_direct(to_email, subject, html)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(store_name=settings.STORE_NAME, **context)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    """Render a template and send email via existing send_email path."""
    html = render_template(template_path, context)
    send_email(to_email, subject, html)


def _send_email_direct(to_email: str, subject: str, html: str) -> None:
    """Direct email sending fallback"""
    if settings.TESTING or not settings.SMTP_PASSWORD:
        logger.info("Email to %s not sent (no SMTP credentials): %s", to_email, subject)
        return

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(build_message(to_email, subject, html))
        logger.info("Email sent to %s", to_email)
    except Exception:
        logger.exception("Email sending to %s failed", to_email)
