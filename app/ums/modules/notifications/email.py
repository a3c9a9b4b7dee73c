from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(self, to: str, subject: str, text: str, html: str | None = None) -> bool:
        ...


@dataclass(frozen=True)
class SMTPEmailSender:
    """
    Best-effort SMTP delivery.

    Returns False (and logs why) instead of raising: a missing SMTP config,
    auth failure or connection error must never fail the caller.
    """

    server: str
    port: int = 587
    use_tls: bool = True
    username: str = ""
    password: str = ""
    email_from: str = ""
    timeout_seconds: int = 10

    @property
    def configured(self) -> bool:
        return bool(self.server and self.email_from)

    def _build_message(self, to: str, subject: str, text: str, html: str | None) -> MIMEMultipart | MIMEText:
        if html:
            msg: MIMEMultipart | MIMEText = MIMEMultipart("alternative")
            msg.attach(MIMEText(text, "plain"))
            msg.attach(MIMEText(html, "html"))
        else:
            msg = MIMEText(text, "plain")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = to
        return msg

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> bool:
        if not self.server:
            logger.warning("SMTP server not configured (SMTP_SERVER missing); email to %s not sent", to)
            return False
        if not self.email_from:
            logger.warning("Email from address not configured (EMAIL_FROM missing); email to %s not sent", to)
            return False

        msg = self._build_message(to, subject, text, html)
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout_seconds) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed sending to %s: %s", to, e)
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP error sending to %s: %s", to, e)
            return False

        logger.info("Sent email to %s with subject: %s", to, subject)
        return True


def sender_from_config(config: dict) -> SMTPEmailSender:
    return SMTPEmailSender(
        server=(config.get("SMTP_SERVER") or "").strip(),
        port=int(config.get("SMTP_PORT") or 587),
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        username=(config.get("SMTP_USERNAME") or "").strip(),
        password=config.get("SMTP_PASSWORD") or "",
        email_from=(config.get("EMAIL_FROM") or "").strip(),
        timeout_seconds=int(config.get("SMTP_TIMEOUT") or 10),
    )
