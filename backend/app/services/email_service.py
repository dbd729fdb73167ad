"""Email service - transactional subscription emails sent through Resend"""
import logging
from html import escape
from typing import Optional
import resend
from app.core.config import settings

logger = logging.getLogger(__name__)

# Shown when Stripe did not report when the subscription ends
PERIOD_END_FALLBACK = "the current period end"


def validate_email_config() -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.RESEND_API_KEY:
        return False, "RESEND_API_KEY is not set in environment variables"

    if not settings.FRONTEND_URL:
        return False, "FRONTEND_URL is not set in environment variables"

    return True, ""


def _send_email(to: str, subject: str, html: str) -> bool:
    """
    Internal helper function to send email via Resend API.

    Args:
        to: Recipient email address
        subject: Email subject
        html: HTML email content

    Returns:
        bool: True on success, False on failure
    """
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not set; skipping email")
        return False

    try:
        resend.api_key = settings.RESEND_API_KEY

        response = resend.Emails.send(
            {
                "from": settings.RESEND_FROM_EMAIL,
                "to": to,
                "subject": subject,
                "html": html,
            }
        )

        # Resend returns a dict with 'id' on success (an object on some versions)
        email_id = None
        if isinstance(response, dict):
            email_id = response.get('id')
        elif hasattr(response, 'id'):
            email_id = response.id

        if email_id:
            logger.info(f"Email sent successfully to {to} (id: {email_id})")
            return True
        else:
            logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
            return False

    except Exception as exc:
        logger.error(f"Failed to send email to {to}: {exc}", exc_info=True)
        return False


def _greeting(first_name: str) -> str:
    return f"<p>Hi {escape(first_name)},</p>" if first_name else "<p>Hi there,</p>"


def _signature() -> str:
    return f"<p>- The {escape(settings.COMPANY_NAME)} Team</p>"


def _link(path: str, label: str) -> str:
    return f'<p><a href="{settings.FRONTEND_URL}{path}" target="_blank" rel="noopener noreferrer">{label}</a></p>'


def send_trial_ending_email(first_name: str, email: str, trial_end: Optional[str]) -> bool:
    """
    Remind the customer that the free trial ends soon.

    Args:
        first_name: Greeting name ('' when unknown)
        email: Recipient email address
        trial_end: Localized trial end, e.g. 'August 9, 2025 at 9:00 AM'

    Returns:
        bool: True on success, False on failure
    """
    ends = f"on <strong>{escape(trial_end)}</strong>" if trial_end else "soon"
    html = f"""
    {_greeting(first_name)}
    <p>Your free trial will end {ends}.</p>
    {_link("/billing/portal", "Manage Billing")}
    {_signature()}
    """

    return _send_email(email, "Your trial ends tomorrow", html)


def send_cancellation_scheduled_email(first_name: str, email: str, ends_at: Optional[str]) -> bool:
    """Tell the customer their subscription is set to end at the period end"""
    html = f"""
    {_greeting(first_name)}
    <p>Your subscription is set to end on <strong>{escape(ends_at or PERIOD_END_FALLBACK)}</strong>.</p>
    <p>You'll keep access until then. You can resume anytime.</p>
    {_link("/billing/portal", "Manage Billing")}
    {_signature()}
    """

    return _send_email(email, "Your subscription will end soon", html)


def send_cancellation_confirmed_email(first_name: str, email: str, ended_at: Optional[str]) -> bool:
    """Confirm that the subscription has ended"""
    html = f"""
    {_greeting(first_name)}
    <p>Your subscription ended on <strong>{escape(ended_at or PERIOD_END_FALLBACK)}</strong>.</p>
    <p>You can reactivate whenever you like.</p>
    {_link("/pricing", "Reactivate")}
    {_signature()}
    """

    return _send_email(email, "Your subscription has ended", html)
