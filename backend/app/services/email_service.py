"""Email notification service using Resend API."""
import logging
from html import escape

import resend
from app.config import settings
from app.models.user import User

logger = logging.getLogger(__name__)

# Configure Resend API
resend.api_key = settings.RESEND_API_KEY

PAID_COLOR = "#10b981"
ACTION_COLOR = "#f59e0b"


def render_payout_email(user: User, title: str, message: str, success: bool) -> str:
    """HTML body for a payout notice: greeting, message and a link to the earnings page."""
    color = PAID_COLOR if success else ACTION_COLOR
    earnings_url = f"{settings.FRONTEND_URL}/dashboard/earnings"
    return (
        f'<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: {color};">{escape(title)}</h2>'
        f"<p>Hi {escape(user.name)},</p>"
        f"<p>{escape(message)}</p>"
        f'<p><a href="{earnings_url}" style="color: {color}; font-weight: 600;">View your earnings</a></p>'
        f"</div>"
    )


class EmailService:
    """Service for sending email notifications via Resend."""

    @staticmethod
    def send_notification_email(user: User, title: str, message: str, success: bool = True) -> bool:
        """
        Send a notification as an email.

        Args:
            user: Recipient
            title: Subject line and heading
            message: Plain-text body
            success: Green heading when paid, amber when the promoter must act

        Returns:
            True if email sent successfully, False otherwise
        """
        try:
            if not settings.RESEND_API_KEY:
                logger.warning("RESEND_API_KEY not configured, skipping email")
                return False

            html_content = render_payout_email(user, title, message, success)

            resend.Emails.send({
                "from": settings.EMAIL_FROM,
                "to": user.email,
                "subject": title,
                "html": html_content
            })

            logger.info(f"Notification email '{title}' sent to {user.email}")
            return True

        except Exception as e:
            logger.error(f"Failed to send notification email to {user.email}: {e}")
            return False
