"""User model"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime, timezone
from typing import Optional
from app.models.base import Base
from app.schemas.billing import SubscriptionSnapshot


class User(Base):
    """User accounts with their embedded Stripe subscription snapshot"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False, default="")
    timezone = Column(String(64), nullable=False, default="UTC")  # IANA name used for outbound dates
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    stripe_customer_id = Column(String(255), nullable=True, index=True)  # Set once, never overwritten
    subscription = Column(JSON, nullable=True)  # Serialized SubscriptionSnapshot, replaced wholesale

    @property
    def subscription_snapshot(self) -> Optional[SubscriptionSnapshot]:
        if not self.subscription:
            return None
        return SubscriptionSnapshot.model_validate(self.subscription)

    @subscription_snapshot.setter
    def subscription_snapshot(self, snapshot: Optional[SubscriptionSnapshot]) -> None:
        self.subscription = snapshot.model_dump(mode="json") if snapshot else None

    @property
    def is_pro(self) -> bool:
        snapshot = self.subscription_snapshot
        return bool(snapshot and snapshot.is_entitled)
