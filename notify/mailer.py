"""
notify/mailer.py -- Fire-and-forget outbound email.

Bodies are rendered from the Jinja2 text templates in notify/templates/ and
sent over SMTP (smtplib) using the SMTP_* settings. Delivery is best effort:
send() never raises. It returns False and logs a warning when SMTP is not
configured, there are no recipients, or the server refuses the message.
Callers decide whether that matters (change-request creation reports an
emailWarning; password reset deliberately ignores it).

Layer rule: notify/ imports only stdlib, third-party libraries and core/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from core.config import Settings

logger = logging.getLogger("piscicola.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class Mailer:
    """SMTP sender with template rendering.

    Usage:
        mailer = Mailer(get_settings())
        mailer.send(["ops@farm.pe"], "Asunto", "password_reset.txt", name="Ana", code="123456", ttl_minutes=30)
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            autoescape=False,  # plain-text bodies
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    @property
    def enabled(self) -> bool:
        return self.settings.smtp_enabled

    def render(self, template: str, **context) -> str:
        return self.env.get_template(template).render(**context)

    def send(self, to: list[str] | str, subject: str, template: str, **context) -> bool:
        """Render `template` and deliver it to `to`. Returns True on success."""
        recipients = [to] if isinstance(to, str) else [r for r in to if r]
        if not recipients:
            logger.warning("Email '%s' not sent: no recipients", subject)
            return False
        if not self.enabled:
            logger.warning("Email '%s' to %s not sent: SMTP_HOST is not configured", subject, ", ".join(recipients))
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from
        msg["To"] = ", ".join(recipients)
        msg.set_content(self.render(template, **context))

        s = self.settings
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as smtp:
                if s.smtp_starttls:
                    smtp.starttls()
                if s.smtp_user:
                    smtp.login(s.smtp_user, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Email '%s' to %s failed: %s", subject, ", ".join(recipients), exc)
            return False
        logger.info("Email '%s' sent to %d recipient(s)", subject, len(recipients))
        return True
