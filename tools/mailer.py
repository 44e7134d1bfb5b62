import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment
from loguru import logger
from starlette.concurrency import run_in_threadpool

from config import Settings
from tools.errors import NotificationError

_jinja = Environment(autoescape=True)

LEAD_SUMMARY_TEMPLATE = _jinja.from_string(
    """
    <div style="font-family:Arial,sans-serif;">
      <h2 style="color:#c62828;margin-bottom:8px;">{{ title }}</h2>
      <table style="border-collapse:collapse;width:100%;max-width:640px;">
        <tbody>
        {%- for label, value in rows %}
          <tr>
            <td style="padding:6px 12px;text-transform:capitalize;">{{ label }}</td>
            <td style="padding:6px 12px;font-weight:600;">{{ value }}</td>
          </tr>
        {%- endfor %}
        </tbody>
      </table>
    </div>
    """
)


class Mailer:
    """Thin SMTP sender, built once from settings and reused for every email."""

    def __init__(self, host: str, port: int, user: str, password: str, secure: bool = False):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure

    def _send_sync(self, msg: MIMEMultipart) -> None:
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port)
        else:
            server = smtplib.SMTP(self.host, self.port)
        with server:
            if not self.secure:
                # 587 requires TLS; other ports upgrade when the server offers it
                server.ehlo()
                if self.port == 587 or server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, sender: str, to: str, subject: str, html: str) -> None:
        """
        Send an HTML email.

        Raises:
            NotificationError: SMTP connection, authentication or delivery failed
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))

        try:
            await run_in_threadpool(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            if isinstance(e, smtplib.SMTPAuthenticationError):
                logger.error("SMTP authentication failed, check SMTP_USER and SMTP_PASS")
            raise NotificationError(f"Failed to send email to {to}: {e}") from e


def build_mailer(settings: Settings) -> Optional[Mailer]:
    """Build the mailer, or None when SMTP credentials are incomplete."""
    if not (settings.smtp_host and settings.smtp_port and settings.smtp_user and settings.smtp_password):
        logger.warning("Email credentials are not fully configured, skipping mail delivery")
        return None

    if not settings.smtp_port.isdigit():
        logger.warning(f"Invalid SMTP_PORT {settings.smtp_port!r}, skipping mail delivery")
        return None

    return Mailer(
        host=settings.smtp_host,
        port=int(settings.smtp_port),
        user=settings.smtp_user,
        password=settings.smtp_password,
        secure=settings.smtp_secure,
    )


def humanize_key(key: str) -> str:
    """Split a camelCase key into capitalized words: leadSquaredStatus -> Lead Squared Status."""
    words = re.sub(r"([A-Z])", r" \1", key).split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def summary_rows(fields: Dict[str, Any]) -> List[Tuple[str, str]]:
    return [(humanize_key(key), str(value) if value else "NA") for key, value in fields.items()]


class LeadNotifier:
    """Sends the operational lead summary email. Never raises."""

    def __init__(self, mailer: Optional[Mailer], sender: str, recipient: str):
        self.mailer = mailer
        self.sender = sender
        self.recipient = recipient

    def render(self, title: str, fields: Dict[str, Any]) -> str:
        return LEAD_SUMMARY_TEMPLATE.render(title=title, rows=summary_rows(fields))

    async def notify(
        self,
        title: str,
        subject: str,
        fields: Dict[str, Any],
        subject_keys: Sequence[str] = (),
    ) -> bool:
        """
        Email a summary of one submission to the notification mailbox.

        Args:
            title: Heading shown above the summary table
            subject: Subject prefix, completed with the lead's name
            fields: Ordered summary fields, including the CRM status row
            subject_keys: Field names tried in order to name the subject

        Returns:
            True if the email was sent, False if skipped or failed
        """
        if not self.mailer or not self.recipient:
            logger.debug("Mailer not configured, notification skipped")
            return False

        try:
            name = next((fields[k] for k in subject_keys if fields.get(k)), "Lead")
            await self.mailer.send(
                sender=self.sender,
                to=self.recipient,
                subject=f"{subject} - {name}",
                html=self.render(title, fields),
            )
            logger.info(f"Notification email sent to {self.recipient}")
            return True
        except Exception as e:
            logger.error(f"Failed to send notification email (non-blocking): {e}")
            return False


def build_notifier(settings: Settings) -> LeadNotifier:
    return LeadNotifier(build_mailer(settings), settings.email_from, settings.notification_email)
