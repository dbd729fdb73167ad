"""Prometheus metrics for the application"""
import logging
from collections import Counter as Tally

from prometheus_client import Counter, Gauge, REGISTRY

from app.schemas.billing import SubscriptionStatus

logger = logging.getLogger(__name__)


def _register(metric_cls, name: str, documentation: str, labelnames):
    # Re-importing the module (tests, reloads) must not register twice
    try:
        return metric_cls(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Webhook metrics
webhook_events_counter = _register(
    Counter,
    'billing_webhook_events_total',
    'Total number of billing webhook deliveries by outcome',
    ['event_type', 'outcome']
)

# Hydration metrics
subscription_hydrations_counter = _register(
    Counter,
    'billing_subscription_hydrations_total',
    'Total number of subscriptions re-fetched from the billing provider',
    ['event_type']
)

# Notification metrics
notifications_counter = _register(
    Counter,
    'billing_notifications_total',
    'Total number of subscription notifications attempted',
    ['kind', 'status']
)

# Subscription metrics
subscriptions_by_status_gauge = _register(
    Gauge,
    'billing_subscriptions_by_status',
    'Number of users per stored subscription status',
    ['status']
)


def update_subscription_status_gauge(db):
    """Recount stored snapshots per status"""
    from app.models.user import User

    try:
        rows = db.query(User.subscription).filter(User.subscription.isnot(None)).all()
        counts = Tally((row[0] or {}).get("status") for row in rows)
        for status in SubscriptionStatus:
            subscriptions_by_status_gauge.labels(status=status.value).set(counts.get(status.value, 0))
    except Exception as e:
        logger.error(f"Error updating subscription status gauge: {e}", exc_info=True)
