"""Hydration resolver - decides when an embedded subscription must be re-fetched from Stripe"""
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from app.core.metrics import subscription_hydrations_counter
from app.schemas.billing import SubscriptionStatus, SubscriptionUnresolvable
from app.services.stripe_service import StripeBillingProvider, get_stripe_value

logger = logging.getLogger(__name__)


class SubscriptionChanges(BaseModel):
    """Transition flags read from an event's previous_attributes"""
    model_config = ConfigDict(frozen=True)

    just_exited_trial: bool = False
    flipped_cancel_on: bool = False


def detect_changes(subscription: Any, previous_attributes: Optional[Dict[str, Any]]) -> SubscriptionChanges:
    previous_attributes = previous_attributes or {}
    status = get_stripe_value(subscription, "status")

    just_exited_trial = (
        previous_attributes.get("status") == SubscriptionStatus.TRIALING.value
        and status == SubscriptionStatus.ACTIVE.value
    )
    # Only a false -> true flip counts; a missing key means the flag did not change
    flipped_cancel_on = (
        "cancel_at_period_end" in previous_attributes
        and previous_attributes["cancel_at_period_end"] is False
        and get_stripe_value(subscription, "cancel_at_period_end") is True
    )
    return SubscriptionChanges(just_exited_trial=just_exited_trial, flipped_cancel_on=flipped_cancel_on)


def has_period_bounds(subscription: Any) -> bool:
    """True when the period start and end are present at subscription or first item level"""
    if get_stripe_value(subscription, "current_period_start") and get_stripe_value(subscription, "current_period_end"):
        return True
    items = get_stripe_value(get_stripe_value(subscription, "items"), "data") or []
    if not items:
        return False
    return bool(
        get_stripe_value(items[0], "current_period_start")
        and get_stripe_value(items[0], "current_period_end")
    )


def has_price_identifiers(subscription: Any) -> bool:
    """True when the first item carries a price, or a legacy plan is present"""
    items = get_stripe_value(get_stripe_value(subscription, "items"), "data") or []
    if items and get_stripe_value(items[0], "price"):
        return True
    return get_stripe_value(subscription, "plan") is not None


def needs_hydration(subscription: Any, changes: Optional[SubscriptionChanges] = None) -> bool:
    """Whether the embedded subscription must be replaced by a fresh copy.

    Re-fetch when:
        - only an id is available, or the object carries no price identifiers
        - the object has no period bounds anywhere, unless it is trialing and
          trial_end supplies the period end
        - the event is a trial exit or a cancel-at-period-end flip, where embedded
          data has been seen to be stale
    """
    if subscription is None or isinstance(subscription, str):
        return True
    if not has_price_identifiers(subscription):
        return True
    if changes and (changes.just_exited_trial or changes.flipped_cancel_on):
        return True
    if not has_period_bounds(subscription):
        trial_covers_period = (
            get_stripe_value(subscription, "status") == SubscriptionStatus.TRIALING.value
            and get_stripe_value(subscription, "trial_end")
        )
        return not trial_covers_period
    return False


def resolve_subscription(
    provider: StripeBillingProvider,
    reference: Any,
    event_type: str,
    changes: Optional[SubscriptionChanges] = None,
    expand: Optional[List[str]] = None,
) -> Union[Any, SubscriptionUnresolvable]:
    """Return a subscription object good enough to project.

    ``reference`` is either an embedded subscription object or a subscription id.
    At most one provider call is made; Stripe errors propagate to the dispatcher,
    which records them on the ledger row and relies on Stripe's own retries.
    """
    if reference is None or reference == "":
        return SubscriptionUnresolvable(detail=f"{event_type} carries no subscription reference")

    if not needs_hydration(reference, changes):
        return reference

    subscription_id = reference if isinstance(reference, str) else get_stripe_value(reference, "id")
    if not subscription_id:
        return SubscriptionUnresolvable(detail=f"{event_type} subscription object has no id")

    logger.info(f"Hydrating subscription {subscription_id} for {event_type}")
    subscription_hydrations_counter.labels(event_type=event_type).inc()
    subscription = provider.retrieve_subscription(subscription_id, expand=expand)
    if subscription is None:
        return SubscriptionUnresolvable(detail=f"subscription {subscription_id} not returned by Stripe")
    return subscription
