"""Transition detection between subscription snapshots"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from app.schemas.billing import BillingEventType, SubscriptionSnapshot
from app.services.hydration_service import SubscriptionChanges
from app.services.stripe_service import get_stripe_value, from_epoch


class TransitionKind(str, Enum):
    TRIAL_ENDING = "trial_ending"
    CANCELLATION_SCHEDULED = "cancellation_scheduled"
    CANCELLATION_CONFIRMED = "cancellation_confirmed"
    PAYMENT_FAILED = "payment_failed"
    REACTIVATED = "reactivated"


# Kinds that result in an email to the customer
NOTIFYING_KINDS = frozenset({
    TransitionKind.TRIAL_ENDING,
    TransitionKind.CANCELLATION_SCHEDULED,
    TransitionKind.CANCELLATION_CONFIRMED,
})


class Transition(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TransitionKind
    occurred_at: Optional[datetime] = None

    @property
    def notifies(self) -> bool:
        return self.kind in NOTIFYING_KINDS


def detect_transition(
    event_type: BillingEventType,
    previous: Optional[SubscriptionSnapshot],
    current: SubscriptionSnapshot,
    changes: Optional[SubscriptionChanges] = None,
    now: Optional[datetime] = None,
) -> Optional[Transition]:
    """Classify the semantic change produced by one event, if any.

    Precedence: deletion, cancel flag flip, invoice failure, reactivation.
    ``occurred_at`` is the instant shown to the customer.
    """
    now = now or datetime.now(timezone.utc)

    if event_type == BillingEventType.SUBSCRIPTION_DELETED:
        return Transition(
            kind=TransitionKind.CANCELLATION_CONFIRMED,
            occurred_at=current.canceled_at or current.scheduled_cancel_at or now,
        )

    if changes and changes.flipped_cancel_on:
        return Transition(
            kind=TransitionKind.CANCELLATION_SCHEDULED,
            occurred_at=current.scheduled_cancel_at or current.current_period_end,
        )

    if event_type == BillingEventType.INVOICE_PAYMENT_FAILED:
        return Transition(kind=TransitionKind.PAYMENT_FAILED, occurred_at=current.next_payment_attempt_at)

    if previous is not None and current.is_entitled:
        regained = not previous.is_entitled
        uncanceled = previous.cancel_at_period_end and not current.cancel_at_period_end
        if regained or uncanceled:
            return Transition(kind=TransitionKind.REACTIVATED, occurred_at=now)

    return None


def trial_ending_transition(subscription: Any) -> Transition:
    """Trial-ending transition read straight from a trial_will_end payload"""
    return Transition(
        kind=TransitionKind.TRIAL_ENDING,
        occurred_at=from_epoch(get_stripe_value(subscription, "trial_end")),
    )
