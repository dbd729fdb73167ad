"""Notifier dispatch - turns subscription transitions into customer emails"""
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.core.config import settings
from app.core.metrics import notifications_counter
from app.models.user import User
from app.services import email_service
from app.services.transition_service import Transition, TransitionKind
from app.utils.formatting import extract_first_name, format_in_timezone

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    """Everything needed to notify a customer, detached from the DB session"""
    model_config = ConfigDict(frozen=True)

    kind: TransitionKind
    recipient_name: str
    email: str
    timezone: Optional[str] = None
    occurred_at: Optional[datetime] = None

    @property
    def localized_time(self) -> Optional[str]:
        return format_in_timezone(self.occurred_at, self.timezone, settings.DEFAULT_TIMEZONE)


class EmailNotifier:
    """Notification sender backed by the Resend email functions.

    Each method takes (recipient name, email, localized timestamp) and returns
    True when the email was accepted.
    """

    def trial_ending(self, recipient_name: str, email: str, when: Optional[str]) -> bool:
        return email_service.send_trial_ending_email(recipient_name, email, when)

    def cancellation_scheduled(self, recipient_name: str, email: str, when: Optional[str]) -> bool:
        return email_service.send_cancellation_scheduled_email(recipient_name, email, when)

    def cancellation_confirmed(self, recipient_name: str, email: str, when: Optional[str]) -> bool:
        return email_service.send_cancellation_confirmed_email(recipient_name, email, when)


def get_notifier() -> EmailNotifier:
    """Dependency: notifier used by the webhook route"""
    return EmailNotifier()


def build_notification(user: User, transition: Transition) -> Optional[Notification]:
    """Notification for a transition, or None for kinds that are only logged"""
    if not transition.notifies:
        logger.info(f"Transition {transition.kind.value} for user {user.id} has no notification")
        return None
    return Notification(
        kind=transition.kind,
        recipient_name=extract_first_name(user.full_name),
        email=user.email,
        timezone=user.timezone,
        occurred_at=transition.occurred_at,
    )


def deliver_notification(notifier, notification: Notification) -> bool:
    """Send one notification. Best-effort: failures are logged and counted, never raised."""
    kind = notification.kind.value
    send = getattr(notifier, kind, None)
    if send is None:
        logger.warning(f"Notifier has no handler for {kind}; dropping notification to {notification.email}")
        notifications_counter.labels(kind=kind, status="skipped").inc()
        return False

    try:
        sent = bool(send(notification.recipient_name, notification.email, notification.localized_time))
    except Exception as e:
        logger.error(f"Failed to deliver {kind} notification to {notification.email}: {e}", exc_info=True)
        notifications_counter.labels(kind=kind, status="error").inc()
        return False

    notifications_counter.labels(kind=kind, status="sent" if sent else "failed").inc()
    if sent:
        logger.info(f"Delivered {kind} notification to {notification.email}")
    else:
        logger.warning(f"{kind} notification to {notification.email} was not accepted")
    return sent
