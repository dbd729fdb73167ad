"""BillingEvent model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class BillingEvent(Base):
    """Stripe webhook event ledger for idempotency and diagnostics

    The payload is written once by the first delivery; only processed_at,
    handler_error and note change afterwards.
    """
    __tablename__ = "billing_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    customer_id = Column(String(255), nullable=True, index=True)
    subscription_id = Column(String(255), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    handler_error = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
