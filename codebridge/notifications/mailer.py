"""
Outbound email over SMTP
Nothing is sent until SMTP_HOST is configured; users opt out through
settings.email_notifications
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.config import settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10


class EmailSender:
    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "noreply@codebridge.dev",
        from_name: str = "CodeBridge"
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None):
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))
        return msg

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None):
        """Blocking SMTP delivery; run it off the event loop"""
        msg = self.build_message(to_email, subject, text_body, html_body)
        with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)


sender = EmailSender(
    host=settings.SMTP_HOST,
    port=settings.SMTP_PORT,
    username=settings.SMTP_USERNAME,
    password=settings.SMTP_PASSWORD,
    from_email=settings.EMAIL_FROM,
    from_name=settings.EMAIL_FROM_NAME
)


def render_body(message: str, action_url: Optional[str] = None) -> str:
    lines = [message]
    if action_url:
        lines += ["", f"Open CodeBridge: {settings.CLIENT_URL}{action_url}"]
    lines += ["", "You can turn off these emails in your account settings."]
    return "\n".join(lines)


async def send_email(to_email: str, subject: str, text_body: str) -> bool:
    """Deliver one email; failures are logged and reported as False"""
    if not sender.enabled or not to_email:
        return False
    try:
        await asyncio.to_thread(sender.send, to_email, subject, text_body)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email to %s", to_email)
        return False
    logger.info("Email sent to %s: %s", to_email, subject)
    return True


async def email_users(
    db: AsyncIOMotorDatabase,
    user_ids: Iterable[str],
    subject: str,
    message: str,
    action_url: Optional[str] = None
) -> int:
    """Email every listed user who has not opted out; returns how many were sent"""
    if not sender.enabled:
        return 0
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return 0

    recipients = await db.users.find(
        {"user_id": {"$in": ids}, "settings.email_notifications": {"$ne": False}},
        {"_id": 0, "email": 1}
    ).to_list(length=None)

    body = render_body(message, action_url)
    sent = 0
    for recipient in recipients:
        if await send_email(recipient.get("email"), subject, body):
            sent += 1
    return sent
