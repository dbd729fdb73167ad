"""Stripe payload builders and test doubles shared across the test suite"""
import copy
import json

import stripe

# 2025-08-09 00:00:00 UTC and thirty days later
PERIOD_START = 1754697600
PERIOD_END = PERIOD_START + 30 * 24 * 60 * 60

VALID_SIGNATURE = "t=1,v1=valid"


# ============================================================================
# STRIPE PAYLOAD BUILDERS
# ============================================================================

def make_subscription(**overrides) -> dict:
    """Complete Stripe subscription object as delivered in webhook payloads"""
    subscription = {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": "active",
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "trial_start": None,
        "trial_end": None,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "canceled_at": None,
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_123",
                    "price": {"id": "price_monthly", "product": "prod_remindr"},
                }
            ],
        },
    }
    subscription.update(overrides)
    return subscription


def make_event(event_type: str, obj: dict, previous_attributes: dict = None, event_id: str = "evt_1") -> dict:
    data = {"object": obj}
    if previous_attributes is not None:
        data["previous_attributes"] = previous_attributes
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": PERIOD_START,
        "livemode": False,
        "data": data,
    }


# ============================================================================
# TEST DOUBLES
# ============================================================================

class FakeBillingProvider:
    """In-memory stand-in for StripeBillingProvider"""

    def __init__(self):
        self.subscriptions = {}
        self.checkout_sessions = {}
        self.retrieve_calls = []
        self.session_calls = []
        self.portal_calls = []
        self.retrieve_error = None

    def construct_event(self, payload, sig_header):
        if not sig_header:
            raise ValueError("Missing stripe-signature header")
        if sig_header != VALID_SIGNATURE:
            raise stripe.SignatureVerificationError("No signatures found matching the expected signature", sig_header)
        event = json.loads(payload)
        if not isinstance(event, dict):
            raise ValueError("Invalid payload: expected a JSON object")
        return event

    def retrieve_subscription(self, subscription_id, expand=None):
        self.retrieve_calls.append((subscription_id, expand))
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return copy.deepcopy(self.subscriptions[subscription_id])

    def retrieve_checkout_session(self, session_id, expand=None):
        self.session_calls.append((session_id, expand))
        return copy.deepcopy(self.checkout_sessions[session_id])

    def create_portal_session(self, customer_id, return_url):
        self.portal_calls.append((customer_id, return_url))
        return f"https://billing.stripe.test/session/{customer_id}"


class RecordingNotifier:
    """Notifier that records every call instead of sending email"""

    def __init__(self):
        self.sent = []

    def _record(self, kind, recipient_name, email, when):
        self.sent.append({"kind": kind, "name": recipient_name, "email": email, "when": when})
        return True

    def trial_ending(self, recipient_name, email, when):
        return self._record("trial_ending", recipient_name, email, when)

    def cancellation_scheduled(self, recipient_name, email, when):
        return self._record("cancellation_scheduled", recipient_name, email, when)

    def cancellation_confirmed(self, recipient_name, email, when):
        return self._record("cancellation_confirmed", recipient_name, email, when)



def make_invoice(**overrides) -> dict:
    invoice = {
        "id": "in_123",
        "object": "invoice",
        "customer": "cus_123",
        "subscription": "sub_123",
        "status": "open",
        "next_payment_attempt": None,
        "last_finalization_error": None,
    }
    invoice.update(overrides)
    return invoice


def make_checkout_session(**overrides) -> dict:
    session = {
        "id": "cs_123",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": "cus_123",
        "subscription": "sub_123",
        "payment_status": "paid",
        "client_reference_id": None,
        "metadata": {},
        "customer_details": {"email": "delivered@resend.dev"},
        "customer_email": None,
    }
    session.update(overrides)
    return session
