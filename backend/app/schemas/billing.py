"""Pydantic schemas for billing: subscription snapshot, webhook envelope, lookup outcomes"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Subscription statuses mirrored from Stripe"""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class BillingEventType(str, Enum):
    """Stripe event kinds the webhook dispatcher handles"""
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    SUBSCRIPTION_TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional['BillingEventType']:
        """Convert a raw event type to the enum, None for types we don't handle"""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class SubscriptionSnapshot(BaseModel):
    """Locally cached subscription state, embedded in the owning user record.

    Immutable: every change produces a new snapshot that replaces the old one.
    """
    model_config = ConfigDict(frozen=True)

    provider_subscription_id: str
    status: SubscriptionStatus
    price_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    scheduled_cancel_at: Optional[datetime] = None
    last_invoice_id: Optional[str] = None
    last_payment_error: Optional[str] = None
    next_payment_attempt_at: Optional[datetime] = None

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES

    @property
    def effective_period_end(self) -> Optional[datetime]:
        """Trial end while trialing, otherwise the billing period end"""
        if self.status == SubscriptionStatus.TRIALING and self.trial_end:
            return self.trial_end
        return self.current_period_end


class EventData(BaseModel):
    object: Dict[str, Any]
    previous_attributes: Optional[Dict[str, Any]] = None


class EventEnvelope(BaseModel):
    """Typed view of a verified Stripe event"""
    id: str = Field(min_length=1)
    type: str
    created: Optional[int] = None
    livemode: Optional[bool] = None
    data: EventData

    @property
    def object(self) -> Dict[str, Any]:
        return self.data.object

    @property
    def previous_attributes(self) -> Dict[str, Any]:
        return self.data.previous_attributes or {}


class UserNotFound(BaseModel):
    """Lookup outcome: no local user matches the provider identifiers"""
    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def reason(self) -> str:
        return f"No user found for customer={self.customer_id} email={self.email}"


class SubscriptionUnresolvable(BaseModel):
    """Lookup outcome: the event does not lead to a usable subscription object"""
    model_config = ConfigDict(frozen=True)

    detail: str

    @property
    def reason(self) -> str:
        return f"Subscription unresolvable: {self.detail}"


class WebhookAck(BaseModel):
    received: bool
    status: str
    error: Optional[str] = None


class BillingStatusResponse(BaseModel):
    unlocked: bool
    status: str
    period_end: Optional[datetime] = None
    note: Optional[str] = None
