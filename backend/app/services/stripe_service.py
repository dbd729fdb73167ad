"""Stripe service - billing provider client and Stripe payload helpers"""
import json
import logging
import stripe
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from app.core.config import settings

logger = logging.getLogger(__name__)


# ============================================================================
# PROVIDER CLIENT
# ============================================================================

class StripeBillingProvider:
    """Explicitly constructed Stripe client.

    Every call passes its own api_key, so nothing here touches the module-global
    ``stripe.api_key`` and tests can swap the whole object for a double.
    """

    def __init__(self, api_key: str, webhook_secret: str, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the signature over the raw body and decode the event.

        Raises:
            ValueError: secret not configured, header missing or body is not JSON
            stripe.SignatureVerificationError: signature does not match
        """
        if not self.webhook_secret:
            logger.error("Webhook secret not configured")
            raise ValueError("Webhook secret not configured")
        if not sig_header:
            raise ValueError("Missing stripe-signature header")

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret, self.tolerance)

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid payload: {e}")
        if not isinstance(event, dict):
            raise ValueError("Invalid payload: expected a JSON object")
        return event

    def retrieve_subscription(self, subscription_id: str, expand: Optional[List[str]] = None) -> Any:
        """Single round trip, no retry; Stripe errors propagate to the caller"""
        params = {"expand": expand} if expand else {}
        return stripe.Subscription.retrieve(subscription_id, api_key=self.api_key, **params)

    def retrieve_checkout_session(self, session_id: str, expand: Optional[List[str]] = None) -> Any:
        params = {"expand": expand} if expand else {}
        return stripe.checkout.Session.retrieve(session_id, api_key=self.api_key, **params)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            api_key=self.api_key,
        )
        return get_stripe_value(session, "url")


def get_billing_provider() -> StripeBillingProvider:
    """Dependency: provider client built from settings"""
    return StripeBillingProvider(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )


# ============================================================================
# STRIPE OBJECT ACCESS HELPERS
# ============================================================================

def get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None or isinstance(obj, str):
        return default
    # Dict access first: plain dicts and StripeObjects both support it, and
    # attribute lookup would resolve keys like "items" to dict methods
    if isinstance(obj, dict):
        value = obj.get(key)
        return default if value is None else value
    value = getattr(obj, key, None)
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    """Id of a Stripe reference that is either an id string or an expanded object"""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return get_stripe_value(value, "id")


def from_epoch(value: Any) -> Optional[datetime]:
    """Epoch seconds to an aware UTC datetime; absent or zero stays None"""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def extract_customer_id(obj: Any) -> Optional[str]:
    """Customer id carried by an event object.

    ``customer`` is the documented field. The ``customer_id`` and expanded
    ``subscription.customer`` shapes are kept as fallbacks but have not been
    re-checked against the current API version.
    """
    customer = object_id(get_stripe_value(obj, "customer"))
    if customer:
        return customer
    customer = object_id(get_stripe_value(obj, "customer_id"))
    if customer:
        return customer
    subscription = get_stripe_value(obj, "subscription")
    if subscription is not None and not isinstance(subscription, str):
        return object_id(get_stripe_value(subscription, "customer"))
    return None


def extract_subscription_id(obj: Any) -> Optional[str]:
    """Subscription id referenced by an event object (session, invoice or the subscription itself)"""
    if get_stripe_value(obj, "object") == "subscription":
        return get_stripe_value(obj, "id")
    subscription_id = object_id(get_stripe_value(obj, "subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions moved the invoice's subscription under parent.subscription_details
    details = get_stripe_value(get_stripe_value(obj, "parent"), "subscription_details")
    return object_id(get_stripe_value(details, "subscription"))
