"""Stripe webhook dispatcher and per-event-type handlers"""
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from app.core.logging import billing_logger
from app.core.metrics import webhook_events_counter
from app.models.user import User
from app.schemas.billing import (
    BillingEventType,
    EventEnvelope,
    SubscriptionUnresolvable,
    UserNotFound,
)
from app.services.billing_event_service import (
    annotate_event,
    mark_event_failed,
    mark_event_processed,
    record_event,
)
from app.services.hydration_service import SubscriptionChanges, detect_changes, resolve_subscription
from app.services.notification_service import Notification, build_notification, deliver_notification
from app.services.projection_service import apply_subscription_to_user
from app.services.stripe_service import (
    StripeBillingProvider,
    extract_customer_id,
    extract_subscription_id,
    from_epoch,
    get_stripe_value,
    object_id,
)
from app.services.transition_service import detect_transition, trial_ending_transition
from app.services.user_service import locate_user

logger = logging.getLogger(__name__)

CHECKOUT_EXPAND = ["items.data.price"]
INVOICE_SUCCEEDED_EXPAND = ["items.data.price.product"]
INVOICE_FAILED_EXPAND = ["items.data.price"]

DEFAULT_PAYMENT_ERROR = "Payment failed. Please update your card."
ASYNC_PAYMENT_FAILED_NOTE = "Async payment failed"


class HandlerResult(BaseModel):
    """What a handler hands back to the dispatcher.

    ``unresolved`` marks an event that could not be applied (no user, no
    subscription); it is recorded as a handler error without raising.
    """
    model_config = ConfigDict(frozen=True)

    notifications: List[Notification] = []
    unresolved: Optional[Union[UserNotFound, SubscriptionUnresolvable]] = None
    note: Optional[str] = None


Handler = Callable[[EventEnvelope, Session, StripeBillingProvider], HandlerResult]


# ============================================================================
# HANDLER HELPERS
# ============================================================================

def _checkout_email(session: Any) -> Optional[str]:
    return (
        get_stripe_value(get_stripe_value(session, "customer_details"), "email")
        or get_stripe_value(session, "customer_email")
    )


def _subscription_reference(obj: Any) -> Any:
    """Embedded subscription object when expanded, otherwise its id"""
    reference = get_stripe_value(obj, "subscription")
    if reference is not None and not isinstance(reference, str):
        return reference
    return extract_subscription_id(obj)


def _persist(
    db: Session,
    user: User,
    subscription: Any,
    event_type: BillingEventType,
    changes: Optional[SubscriptionChanges] = None,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> HandlerResult:
    """Project, persist, then classify the transition the event produced"""
    previous, current = apply_subscription_to_user(db, user, subscription, diagnostics)
    transition = detect_transition(event_type, previous, current, changes)
    if transition is None:
        return HandlerResult()

    billing_logger.info(f"User {user.id} transition: {transition.kind.value} ({event_type.value})")
    notification = build_notification(user, transition)
    return HandlerResult(notifications=[notification] if notification else [])


# ============================================================================
# EVENT HANDLERS
# ============================================================================

def handle_checkout_completed(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """checkout.session.completed and checkout.session.async_payment_succeeded"""
    session = envelope.object
    mode = get_stripe_value(session, "mode")
    if mode != "subscription":
        logger.info(f"Ignoring checkout session {get_stripe_value(session, 'id')} with mode={mode}")
        return HandlerResult()

    subscription = resolve_subscription(
        provider, _subscription_reference(session), envelope.type, expand=CHECKOUT_EXPAND
    )
    if isinstance(subscription, SubscriptionUnresolvable):
        return HandlerResult(unresolved=subscription)

    customer_id = extract_customer_id(session) or extract_customer_id(subscription)
    user = locate_user(db, customer_id=customer_id, email=_checkout_email(session))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    return _persist(db, user, subscription, BillingEventType(envelope.type))


def handle_async_payment_failed(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """Payment never completed: annotate the ledger row, leave the snapshot alone"""
    session = envelope.object
    user = locate_user(db, customer_id=extract_customer_id(session), email=_checkout_email(session))
    if isinstance(user, User):
        return HandlerResult(note=f"{ASYNC_PAYMENT_FAILED_NOTE} for user {user.id}")
    return HandlerResult(note=ASYNC_PAYMENT_FAILED_NOTE)


def handle_subscription_changed(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """customer.subscription.created and customer.subscription.updated"""
    embedded = envelope.object
    changes = detect_changes(embedded, envelope.previous_attributes)

    subscription = resolve_subscription(provider, embedded, envelope.type, changes)
    if isinstance(subscription, SubscriptionUnresolvable):
        return HandlerResult(unresolved=subscription)

    user = locate_user(db, customer_id=extract_customer_id(subscription) or extract_customer_id(embedded))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    return _persist(db, user, subscription, BillingEventType(envelope.type), changes)


def handle_subscription_deleted(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """Deleted payloads are complete; project them as-is"""
    subscription = envelope.object
    if not get_stripe_value(subscription, "id"):
        return HandlerResult(unresolved=SubscriptionUnresolvable(detail=f"{envelope.type} object has no id"))

    user = locate_user(db, customer_id=extract_customer_id(subscription))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    return _persist(db, user, subscription, BillingEventType.SUBSCRIPTION_DELETED)


def handle_trial_will_end(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """No projection; notify straight from the payload's trial_end"""
    subscription = envelope.object
    user = locate_user(db, customer_id=extract_customer_id(subscription))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    notification = build_notification(user, trial_ending_transition(subscription))
    return HandlerResult(notifications=[notification] if notification else [])


def handle_invoice_payment_succeeded(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    invoice = envelope.object
    reference = _subscription_reference(invoice)
    if not reference:
        logger.info(f"Invoice {get_stripe_value(invoice, 'id')} has no subscription; nothing to project")
        return HandlerResult()

    subscription = resolve_subscription(provider, reference, envelope.type, expand=INVOICE_SUCCEEDED_EXPAND)
    if isinstance(subscription, SubscriptionUnresolvable):
        return HandlerResult(unresolved=subscription)

    user = locate_user(db, customer_id=extract_customer_id(invoice) or extract_customer_id(subscription))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    diagnostics = {"last_invoice_id": get_stripe_value(invoice, "id")}
    return _persist(db, user, subscription, BillingEventType.INVOICE_PAYMENT_SUCCEEDED, diagnostics=diagnostics)


def payment_error_message(invoice: Any) -> str:
    """Customer-facing failure reason, newest Stripe field first"""
    return (
        get_stripe_value(get_stripe_value(invoice, "last_finalization_error"), "message")
        or get_stripe_value(get_stripe_value(invoice, "last_payment_error"), "message")
        or DEFAULT_PAYMENT_ERROR
    )


def handle_invoice_payment_failed(envelope: EventEnvelope, db: Session, provider: StripeBillingProvider) -> HandlerResult:
    """Always re-fetch the subscription, then record the failure diagnostics"""
    invoice = envelope.object
    subscription_id = extract_subscription_id(invoice)
    if not subscription_id:
        logger.info(f"Invoice {get_stripe_value(invoice, 'id')} has no subscription; nothing to project")
        return HandlerResult()

    # Passing the id forces a fresh retrieve
    subscription = resolve_subscription(provider, subscription_id, envelope.type, expand=INVOICE_FAILED_EXPAND)
    if isinstance(subscription, SubscriptionUnresolvable):
        return HandlerResult(unresolved=subscription)

    user = locate_user(db, customer_id=object_id(get_stripe_value(subscription, "customer")) or extract_customer_id(invoice))
    if isinstance(user, UserNotFound):
        return HandlerResult(unresolved=user)

    diagnostics = {
        "last_invoice_id": get_stripe_value(invoice, "id"),
        "last_payment_error": payment_error_message(invoice),
        "next_payment_attempt_at": from_epoch(get_stripe_value(invoice, "next_payment_attempt")),
    }
    return _persist(db, user, subscription, BillingEventType.INVOICE_PAYMENT_FAILED, diagnostics=diagnostics)


EVENT_HANDLERS: Dict[BillingEventType, Handler] = {
    BillingEventType.CHECKOUT_COMPLETED: handle_checkout_completed,
    BillingEventType.CHECKOUT_ASYNC_PAYMENT_SUCCEEDED: handle_checkout_completed,
    BillingEventType.CHECKOUT_ASYNC_PAYMENT_FAILED: handle_async_payment_failed,
    BillingEventType.SUBSCRIPTION_CREATED: handle_subscription_changed,
    BillingEventType.SUBSCRIPTION_UPDATED: handle_subscription_changed,
    BillingEventType.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    BillingEventType.SUBSCRIPTION_TRIAL_WILL_END: handle_trial_will_end,
    BillingEventType.INVOICE_PAYMENT_SUCCEEDED: handle_invoice_payment_succeeded,
    BillingEventType.INVOICE_PAYMENT_FAILED: handle_invoice_payment_failed,
}

_unhandled = set(BillingEventType) - set(EVENT_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No webhook handler registered for: {sorted(t.value for t in _unhandled)}")


# ============================================================================
# DISPATCHER
# ============================================================================

def _run_now(func: Callable, *args, **kwargs) -> None:
    func(*args, **kwargs)


class WebhookDispatcher:
    """Verifies, records and routes one Stripe webhook delivery.

    Acknowledges every verified delivery (including handler failures, which are
    recorded on the ledger row) so Stripe retries are driven by transport errors
    only. ``schedule`` runs notification delivery; the route passes
    ``BackgroundTasks.add_task`` so emails go out after the response.
    """

    def __init__(
        self,
        db: Session,
        provider: StripeBillingProvider,
        notifier,
        schedule: Optional[Callable[..., None]] = None,
    ):
        self.db = db
        self.provider = provider
        self.notifier = notifier
        self.schedule = schedule or _run_now

    def process(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Handle a raw delivery.

        Raises:
            ValueError: missing secret/header or malformed payload
            stripe.SignatureVerificationError: signature does not match
        """
        event = self.provider.construct_event(payload, sig_header)
        try:
            envelope = EventEnvelope.model_validate(event)
        except ValidationError as e:
            raise ValueError(f"Invalid payload: {e.error_count()} validation error(s) in event envelope")

        _, created = record_event(envelope, self.db, payload=event)
        if not created:
            billing_logger.info(f"Webhook event {envelope.id} already recorded; acknowledging duplicate")
            return self._ack(envelope, "duplicate")

        event_type = BillingEventType.from_string(envelope.type)
        if event_type is None:
            logger.info(f"Ignoring unhandled webhook event type {envelope.type} ({envelope.id})")
            mark_event_processed(envelope.id, self.db)
            return self._ack(envelope, "ignored")

        try:
            result = EVENT_HANDLERS[event_type](envelope, self.db, self.provider)
        except Exception as e:
            # Recorded and acknowledged; Stripe does not retry handler failures
            self.db.rollback()
            error_message = str(e) or type(e).__name__
            billing_logger.error(f"Error processing webhook {envelope.id} ({envelope.type}): {error_message}", exc_info=True)
            mark_event_failed(envelope.id, error_message, self.db)
            return self._ack(envelope, "error_logged", error=error_message)

        if result.unresolved is not None:
            reason = result.unresolved.reason
            billing_logger.warning(f"Webhook {envelope.id} ({envelope.type}) not applied: {reason}")
            mark_event_failed(envelope.id, reason, self.db)
            return self._ack(envelope, "error_logged", error=reason)

        if result.note:
            annotate_event(envelope.id, result.note, self.db)
        mark_event_processed(envelope.id, self.db)
        billing_logger.info(f"Successfully processed webhook event {envelope.id} of type {envelope.type}")

        for notification in result.notifications:
            self.schedule(deliver_notification, self.notifier, notification)
        return self._ack(envelope, "processed")

    def _ack(self, envelope: EventEnvelope, status: str, error: Optional[str] = None) -> Dict[str, Any]:
        known = BillingEventType.from_string(envelope.type)
        webhook_events_counter.labels(event_type=known.value if known else "unknown", outcome=status).inc()
        ack = {"received": True, "status": status}
        if error:
            ack["error"] = error
        return ack
