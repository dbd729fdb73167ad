"""Subscription service - entitlement query and billing portal"""
import logging
from typing import Optional
from sqlalchemy.orm import Session

from app.models.user import User
from app.schemas.billing import BillingStatusResponse, SubscriptionSnapshot
from app.services.projection_service import apply_subscription_to_user
from app.services.stripe_service import StripeBillingProvider, get_stripe_value, object_id
from app.services.user_service import get_user_by_id

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_EXPAND = ["subscription", "subscription.items.data.price"]
PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})
WAITING_FOR_PAYMENT_NOTE = "Waiting for payment confirmation"


class CheckoutSessionForbidden(ValueError):
    """Checkout session belongs to a different customer"""


class UserGone(LookupError):
    """Authenticated session refers to a user that no longer exists"""


def _status_response(snapshot: Optional[SubscriptionSnapshot], default_status: str, note: Optional[str] = None) -> BillingStatusResponse:
    if snapshot is None:
        return BillingStatusResponse(unlocked=False, status=default_status, note=note)
    return BillingStatusResponse(
        unlocked=snapshot.is_entitled,
        status=snapshot.status.value,
        period_end=snapshot.effective_period_end,
        note=note,
    )


def session_belongs_to_user(session, user: User) -> bool:
    """Ownership check for a checkout session.

    A linked user must match the session's customer. A user without a
    customer yet (first checkout racing the webhook) is matched through the
    client_reference_id or metadata.user_id we set when creating the session.
    """
    session_customer_id = object_id(get_stripe_value(session, "customer"))
    if user.stripe_customer_id:
        return session_customer_id == user.stripe_customer_id

    expected = str(user.id)
    reference = get_stripe_value(session, "client_reference_id")
    if reference is not None and str(reference) == expected:
        return True
    metadata_user_id = get_stripe_value(get_stripe_value(session, "metadata"), "user_id")
    return metadata_user_id is not None and str(metadata_user_id) == expected


def get_billing_status(
    user_id: int,
    db: Session,
    provider: StripeBillingProvider,
    session_id: Optional[str] = None,
) -> BillingStatusResponse:
    """Entitlement for the user, reconciling against a checkout session on demand

    Args:
        user_id: Authenticated user ID
        db: Database session
        provider: Stripe client
        session_id: Checkout session just completed by the user, if any

    Returns:
        BillingStatusResponse

    Raises:
        UserGone: user no longer exists
        CheckoutSessionForbidden: session belongs to someone else
        stripe.StripeError: session retrieve failed
    """
    user = get_user_by_id(user_id, db)
    if not user:
        raise UserGone(f"User {user_id} not found")

    snapshot = user.subscription_snapshot
    if snapshot and snapshot.is_entitled:
        return _status_response(snapshot, snapshot.status.value)

    if not session_id:
        return _status_response(snapshot, "unknown")

    session = provider.retrieve_checkout_session(session_id, expand=CHECKOUT_SESSION_EXPAND)
    if not session_belongs_to_user(session, user):
        logger.warning(f"User {user_id} requested checkout session {session_id} owned by another customer")
        raise CheckoutSessionForbidden("Checkout session does not belong to current user")

    subscription = get_stripe_value(session, "subscription")
    paid = get_stripe_value(session, "payment_status") in PAID_PAYMENT_STATUSES
    if paid and subscription is not None and not isinstance(subscription, str):
        # Webhook may not have arrived yet; project now so the user is unlocked immediately
        _, current = apply_subscription_to_user(db, user, subscription)
        logger.info(f"Reconciled checkout session {session_id} for user {user_id}: {current.status.value}")
        return _status_response(current, current.status.value)

    # Async payment methods confirm later through the webhook
    return _status_response(snapshot, "processing", note=WAITING_FOR_PAYMENT_NOTE)


def get_billing_portal_url(user_id: int, db: Session, provider: StripeBillingProvider, return_url: str) -> Optional[str]:
    """Stripe billing portal URL, or None when the user has no Stripe customer yet"""
    user = get_user_by_id(user_id, db)
    if not user:
        raise UserGone(f"User {user_id} not found")
    if not user.stripe_customer_id:
        return None
    return provider.create_portal_session(user.stripe_customer_id, return_url)
