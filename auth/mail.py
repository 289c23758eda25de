"""
auth/mail.py -- Outbound mail collaborator for OTP delivery.

The lifecycle service only knows the MailSender protocol:
    await sender.send(to_email, subject, template_name, variables)

SmtpMailSender is the production implementation:
  - Renders auth/templates/email/<template_name>.html (and .txt when present)
    with Jinja2. Autoescape is on for the HTML part.
  - Delivers over SMTP with STARTTLS (smtp_use_tls=true) or implicit TLS.
  - With no SMTP host configured it logs the message instead (dev mode), so a
    local signup flow works without a mail server.
  - smtplib is blocking; send() hands the whole exchange to a worker thread.

Errors are raised to the caller. The lifecycle service is the one that
decides delivery is fire-and-forget and logs failures.

Recipient addresses are redacted in every log line.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Mapping, Optional, Protocol

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from core.config import Settings

logger = logging.getLogger("authcore.auth.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class MailSender(Protocol):
    async def send(self, to_email: str, subject: str, template_name: str, variables: Mapping) -> None: ...


class SmtpMailSender:
    def __init__(self, settings: Settings, template_dir: Path = _TEMPLATE_DIR) -> None:
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout_seconds
        self.from_email = settings.mail_from or settings.smtp_user
        self.from_name = settings.mail_from_name
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def render(self, template_name: str, variables: Mapping) -> tuple[str, Optional[str]]:
        """Return (html_body, text_body). The text part is optional."""
        html_body = self._env.get_template(f"{template_name}.html").render(**variables)
        try:
            text_body = self._env.get_template(f"{template_name}.txt").render(**variables)
        except TemplateNotFound:
            text_body = None
        return html_body, text_body

    async def send(self, to_email: str, subject: str, template_name: str, variables: Mapping) -> None:
        html_body, text_body = self.render(template_name, variables)
        await asyncio.to_thread(self._deliver, to_email, subject, html_body, text_body)

    def _deliver(self, to_email: str, subject: str, html_body: str, text_body: Optional[str]) -> None:
        if not self.is_configured:
            logger.info(
                "Mail (dev mode, not sent) to=%s subject=%r body=%r",
                redact_email(to_email),
                subject,
                (text_body or html_body)[:200],
            )
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        logger.info("Mail sent to=%s subject=%r", redact_email(to_email), subject)
