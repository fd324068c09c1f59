"""Email notifier for verification and password reset messages."""

import asyncio
import html
from typing import Any, Callable, Optional

import aiosmtplib
import structlog

from authflow.config import Settings

logger = structlog.get_logger(__name__)

# Background send tasks, kept referenced until they finish
_pending_sends: set[asyncio.Task] = set()


def _verify_email_body(data: dict) -> str:
    name = html.escape(data.get("name", ""))
    link = html.escape(data["verificationLink"])
    expires_in = html.escape(data.get("expiresIn", "24 hours"))
    return (
        f"<h2>Welcome to Dreamer AI, {name}!</h2>\n"
        f"<p>Please click the link below to verify your email address:</p>\n"
        f"<p><a href=\"{link}\">Verify Email</a></p>\n"
        f"<p>Or copy and paste this link: {link}</p>\n"
        f"<p>This link will expire in {expires_in}.</p>\n"
        f"<p>Best regards,<br>The Dreamer AI Team</p>\n"
    )


def _reset_password_body(data: dict) -> str:
    name = html.escape(data.get("name", ""))
    link = html.escape(data["resetLink"])
    expires_in = html.escape(data.get("expiresIn", "1 hour"))
    return (
        f"<h2>Hello {name},</h2>\n"
        f"<p>We received a request to reset your password. "
        f"Click the link below to create a new password:</p>\n"
        f"<p><a href=\"{link}\">Reset Password</a></p>\n"
        f"<p>Or copy and paste this link: {link}</p>\n"
        f"<p>This link will expire in {expires_in}.</p>\n"
        f"<p>If you didn't request this, please ignore this email.</p>\n"
        f"<p>Best regards,<br>The Dreamer AI Team</p>\n"
    )


TEMPLATES: dict[str, Callable[[dict], str]] = {
    "verify-email": _verify_email_body,
    "reset-password": _reset_password_body,
}


def render_template(template: str, data: dict) -> str:
    """Render an HTML body for ``template``.

    Raises:
        KeyError: If the template is unknown or required data is missing
    """
    return TEMPLATES[template](data)


class EmailService:
    """Accepts templated send requests and delivers them in the background.

    ``send`` never raises and never waits for delivery; failures are
    logged. With ``email_enabled`` off, messages are logged instead of
    sent.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(
        self,
        to: str,
        subject: str,
        template: str,
        data: Optional[dict[str, Any]] = None,
    ) -> asyncio.Task:
        """Schedule delivery of a templated email.

        Returns:
            The background task (callers normally ignore it)
        """
        task = asyncio.create_task(self.deliver(to, subject, template, data or {}))
        _pending_sends.add(task)
        task.add_done_callback(_pending_sends.discard)
        return task

    async def deliver(self, to: str, subject: str, template: str, data: dict) -> bool:
        """Render and deliver one email.

        Returns True on success, False on failure.
        """
        try:
            body = render_template(template, data)
        except KeyError as e:
            logger.error("email_render_failed", template=template, missing=str(e))
            return False

        if not self.settings.email_enabled:
            logger.info("email_delivery_disabled", to=to, subject=subject, template=template)
            return True

        message = (
            f"From: {self.settings.email_from}\r\n"
            f"To: {to}\r\n"
            f"Subject: {subject}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"\r\n"
            f"{body}"
        )

        try:
            await aiosmtplib.send(
                message,
                sender=self.settings.email_from,
                recipients=[to],
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_username or None,
                password=self.settings.smtp_password or None,
                use_tls=self.settings.smtp_use_tls,
            )
        except Exception as e:
            logger.error("email_send_failed", to=to, template=template, error=str(e))
            return False

        logger.info("email_sent", to=to, template=template)
        return True


async def await_pending_sends(timeout: float = 5.0) -> None:
    """Wait for in-flight background sends, e.g. at shutdown.

    Args:
        timeout: Maximum seconds to wait
    """
    if not _pending_sends:
        return

    logger.info("draining_pending_sends", count=len(_pending_sends))
    try:
        await asyncio.wait_for(
            asyncio.gather(*_pending_sends, return_exceptions=True),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "pending_sends_timeout",
            remaining=len(_pending_sends),
            timeout=timeout,
        )
