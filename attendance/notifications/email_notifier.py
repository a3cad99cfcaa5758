"""Email notifications for capture results."""

import asyncio
import html
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Optional

import structlog

from ..config import AutomationConfig, get_config
from ..errors import NotificationFailed
from ..capture.runner import CaptureOutcome
from ..store.principal_store import Principal

logger = structlog.get_logger(__name__)


SUCCESS_SUBJECT = "✅ Attendance Automated Successfully | Daily Screenshot"
FAILURE_SUBJECT = "⚠️ Attendance Automation Failed"


class EmailNotifier:
    """Sends the daily result email to a principal."""

    def __init__(self, config: Optional[AutomationConfig] = None):
        """Initialize the notifier.

        Args:
            config: Service configuration; SMTP credentials come from
                ``config.smtp`` (``EMAIL_USER`` / ``EMAIL_PASS`` in the environment)
        """
        self.config = config or get_config()
        self.smtp = self.config.smtp

        if not self._is_configured():
            logger.warning("EMAIL_USER or EMAIL_PASS not set, email notifications disabled")

    async def send(self, principal: Principal, outcome: CaptureOutcome) -> bool:
        """Notify a principal about a capture outcome.

        Args:
            principal: Recipient of the message
            outcome: Result of the capture run

        Returns:
            True if an email was delivered
        """
        if not outcome.success and not self.config.notify_on_failure:
            logger.info("Capture failed, not notifying", login_id=principal.login_id,
                        reason=outcome.reason.value if outcome.reason else None)
            return False

        if not self._is_configured():
            logger.warning("Email not configured, skipping notification", login_id=principal.login_id)
            return False

        try:
            message = self.build_message(principal, outcome)
            await asyncio.to_thread(self._deliver, message)
        except NotificationFailed as e:
            logger.error("Failed to send email notification", login_id=principal.login_id, error=str(e))
            return False
        except Exception as e:
            logger.error("Unexpected error sending email notification",
                         login_id=principal.login_id, error=str(e))
            return False

        logger.info("Email sent", login_id=principal.login_id, to=principal.notify_address,
                    attachment=outcome.artifact_path)
        return True

    def build_message(self, principal: Principal, outcome: CaptureOutcome) -> EmailMessage:
        """Compose the email for an outcome."""
        message = EmailMessage()
        message["From"] = formataddr((self.smtp.from_name, self.smtp.username or ""))
        message["To"] = principal.notify_address

        if outcome.success:
            message["Subject"] = SUCCESS_SUBJECT
            message.set_content(self._format_success_text(principal))
            message.add_alternative(self._format_success_html(principal), subtype="html")
            self._attach_artifact(message, outcome.artifact_path)
        else:
            message["Subject"] = FAILURE_SUBJECT
            message.set_content(self._format_failure_text(principal, outcome))

        return message

    def _attach_artifact(self, message: EmailMessage, artifact_path: Optional[str]):
        if not artifact_path:
            raise NotificationFailed("Successful outcome has no screenshot to attach")
        path = Path(artifact_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise NotificationFailed(f"Could not read screenshot {path}: {e}") from e
        message.add_attachment(data, maintype="image", subtype="png", filename=path.name)

    def _next_run_label(self) -> str:
        return f"Tomorrow at {self.config.run_time} ({self.config.timezone})"

    def _format_success_text(self, principal: Principal) -> str:
        name = principal.display_name or principal.login_id
        return "\n".join([
            f"Hi {name},",
            "",
            "✅ Your attendance has been successfully automated!",
            "📸 Screenshot captured and attached",
            f"⏰ Next automation: {self._next_run_label()}",
            "",
            "Best regards,",
            "Attendance Automation Team",
        ])

    def _format_success_html(self, principal: Principal) -> str:
        name = html.escape(principal.display_name or principal.login_id)
        next_run = html.escape(self._next_run_label())
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
            '<div style="background: white; padding: 30px; border-radius: 10px;">'
            '<h2 style="color: #333; text-align: center;">Attendance Automated!</h2>'
            f'<p style="color: #333; font-size: 16px;">Hi <strong>{name}</strong>,</p>'
            '<div style="background: #f0f8ff; padding: 20px; border-radius: 8px; border-left: 4px solid #667eea;">'
            '<p style="color: #333; margin: 0; font-size: 16px;">'
            '✅ Your attendance screenshot has been captured successfully!<br>'
            '📸 Screenshot is attached to this email<br>'
            f'⏰ Next automation: {next_run}</p></div>'
            '<p style="color: #666; font-size: 12px; text-align: center;">Powered by Attendance Automation System</p>'
            '</div></div>'
        )

    def _format_failure_text(self, principal: Principal, outcome: CaptureOutcome) -> str:
        name = principal.display_name or principal.login_id
        reason = outcome.reason.value.replace("_", " ") if outcome.reason else "unknown error"
        return "\n".join([
            f"Hi {name},",
            "",
            f"⚠️ Today's attendance automation did not complete ({reason}).",
            f"⏰ Next attempt: {self._next_run_label()}",
            "",
            "Attendance Automation Team",
        ])

    def _deliver(self, message: EmailMessage):
        context = ssl.create_default_context()
        try:
            with smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=self.smtp.timeout) as server:
                server.starttls(context=context)
                server.login(self.smtp.username, self.smtp.password)
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as e:
            raise NotificationFailed(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailed(f"SMTP delivery failed: {e}") from e

    def _is_configured(self) -> bool:
        """Check if SMTP credentials are available."""
        return bool(self.smtp.username and self.smtp.password)
