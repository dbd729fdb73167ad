"""Billing event ledger - idempotency and processing outcomes for webhook deliveries"""
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing_event import BillingEvent
from app.schemas.billing import EventEnvelope
from app.services.stripe_service import extract_customer_id, extract_subscription_id

logger = logging.getLogger(__name__)


def get_billing_event(event_id: str, db: Session) -> Optional[BillingEvent]:
    return db.query(BillingEvent).filter(BillingEvent.event_id == event_id).first()


def record_event(envelope: EventEnvelope, db: Session, payload: Optional[dict] = None) -> Tuple[BillingEvent, bool]:
    """Insert the ledger row for a delivery unless one already exists.

    ``payload`` is the raw decoded event; the envelope dump is stored when absent.

    Returns (event, created). Concurrent first deliveries race on the unique
    event_id constraint: exactly one insert commits, the loser rolls back and
    reads the winner's row, so the stored payload is always the first one.
    """
    existing = get_billing_event(envelope.id, db)
    if existing:
        return existing, False

    billing_event = BillingEvent(
        event_id=envelope.id,
        event_type=envelope.type,
        customer_id=extract_customer_id(envelope.object),
        subscription_id=extract_subscription_id(envelope.object),
        payload=payload if payload is not None else envelope.model_dump(mode="json"),
    )
    db.add(billing_event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_billing_event(envelope.id, db)
        if existing is None:
            raise
        logger.info(f"Billing event {envelope.id} inserted concurrently by another delivery")
        return existing, False

    db.refresh(billing_event)
    return billing_event, True


def mark_event_processed(event_id: str, db: Session) -> None:
    billing_event = get_billing_event(event_id, db)
    if billing_event:
        billing_event.processed_at = datetime.now(timezone.utc)
        billing_event.handler_error = None
        db.commit()


def mark_event_failed(event_id: str, error_message: str, db: Session) -> None:
    """Record a handler failure; processed_at stays empty"""
    billing_event = get_billing_event(event_id, db)
    if billing_event:
        billing_event.handler_error = error_message
        db.commit()


def annotate_event(event_id: str, note: str, db: Session) -> None:
    billing_event = get_billing_event(event_id, db)
    if billing_event:
        billing_event.note = note
        db.commit()
