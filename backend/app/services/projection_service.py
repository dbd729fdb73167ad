"""Subscription projection - maps Stripe subscription objects onto the local snapshot"""
import logging
from typing import Any, Dict, Optional, Tuple
from sqlalchemy.orm import Session

from app.models.user import User
from app.schemas.billing import SubscriptionSnapshot, SubscriptionStatus
from app.services.stripe_service import get_stripe_value, object_id, from_epoch

logger = logging.getLogger(__name__)

# Not present on Stripe subscription objects; only invoice handlers write them
DIAGNOSTIC_FIELDS = ("last_invoice_id", "last_payment_error", "next_payment_attempt_at")


def _first_item(subscription: Any) -> Any:
    items = get_stripe_value(get_stripe_value(subscription, "items"), "data") or []
    return items[0] if items else None


def project_subscription(prior: Optional[SubscriptionSnapshot], subscription: Any) -> SubscriptionSnapshot:
    """Build the new snapshot from the prior one and a (possibly partial) Stripe subscription.

    Pure: the result depends only on the two arguments.

    Field resolution:
        - price/product: first line item's price, else the legacy ``plan``
        - period bounds: subscription level, else the first line item
          (itemized billing only reports them per item)
        - while trialing, ``trial_end`` replaces the period end
        - diagnostic fields are carried over from ``prior``
    """
    item = _first_item(subscription)
    price = get_stripe_value(item, "price")
    plan = get_stripe_value(subscription, "plan")

    price_id = object_id(price) or object_id(plan)
    product_id = object_id(get_stripe_value(price, "product")) or object_id(get_stripe_value(plan, "product"))

    raw_period_start = get_stripe_value(subscription, "current_period_start") or get_stripe_value(item, "current_period_start")
    raw_period_end = get_stripe_value(subscription, "current_period_end") or get_stripe_value(item, "current_period_end")

    status = SubscriptionStatus(get_stripe_value(subscription, "status"))
    trial_end = get_stripe_value(subscription, "trial_end")
    if status == SubscriptionStatus.TRIALING and trial_end:
        raw_period_end = trial_end

    diagnostics = {field: getattr(prior, field) for field in DIAGNOSTIC_FIELDS} if prior else {}

    return SubscriptionSnapshot(
        provider_subscription_id=get_stripe_value(subscription, "id"),
        status=status,
        price_id=price_id,
        product_id=product_id,
        current_period_start=from_epoch(raw_period_start),
        current_period_end=from_epoch(raw_period_end),
        trial_start=from_epoch(get_stripe_value(subscription, "trial_start")),
        trial_end=from_epoch(trial_end),
        cancel_at_period_end=bool(get_stripe_value(subscription, "cancel_at_period_end", False)),
        scheduled_cancel_at=from_epoch(get_stripe_value(subscription, "cancel_at")),
        canceled_at=from_epoch(get_stripe_value(subscription, "canceled_at")),
        **diagnostics,
    )


def backfill_customer_id(user: User, subscription: Any) -> bool:
    """Link the Stripe customer to the user the first time one is seen; never overwrite"""
    if user.stripe_customer_id:
        return False
    customer_id = object_id(get_stripe_value(subscription, "customer"))
    if not customer_id:
        return False
    user.stripe_customer_id = customer_id
    logger.info(f"Linked Stripe customer {customer_id} to user {user.id}")
    return True


def apply_subscription_to_user(
    db: Session,
    user: User,
    subscription: Any,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[SubscriptionSnapshot], SubscriptionSnapshot]:
    """Read-merge-write the user's snapshot and commit.

    The user row is re-read right before merging so diagnostic fields written
    by a concurrent invoice event are not clobbered. ``diagnostics`` are the
    explicit invoice overrides applied on top of the projection.

    Returns (previous_snapshot, new_snapshot).
    """
    fresh = (
        db.query(User)
        .filter(User.id == user.id)
        .populate_existing()
        .with_for_update()
        .one()
    )
    previous = fresh.subscription_snapshot
    snapshot = project_subscription(previous, subscription)
    if diagnostics:
        snapshot = snapshot.model_copy(update=diagnostics)

    fresh.subscription_snapshot = snapshot
    backfill_customer_id(fresh, subscription)
    db.commit()

    logger.info(
        f"Subscription {snapshot.provider_subscription_id} projected for user {fresh.id}: "
        f"status={snapshot.status.value}, cancel_at_period_end={snapshot.cancel_at_period_end}"
    )
    return previous, snapshot
