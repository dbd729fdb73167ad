"""Hydration resolver tests"""
import pytest
import stripe

from app.schemas.billing import SubscriptionUnresolvable
from app.services.hydration_service import (
    SubscriptionChanges,
    detect_changes,
    has_period_bounds,
    needs_hydration,
    resolve_subscription,
)
from billing_factories import PERIOD_END, PERIOD_START, make_subscription


@pytest.mark.high
class TestDetectChanges:

    def test_trial_exit(self):
        changes = detect_changes(make_subscription(status="active"), {"status": "trialing"})
        assert changes.just_exited_trial is True
        assert changes.flipped_cancel_on is False

    def test_cancel_flag_flip(self):
        changes = detect_changes(make_subscription(cancel_at_period_end=True), {"cancel_at_period_end": False})
        assert changes.flipped_cancel_on is True

    def test_cancel_flag_cleared_is_not_a_flip(self):
        changes = detect_changes(make_subscription(cancel_at_period_end=False), {"cancel_at_period_end": True})
        assert changes.flipped_cancel_on is False

    def test_no_previous_attributes(self):
        assert detect_changes(make_subscription(cancel_at_period_end=True), None) == SubscriptionChanges()


@pytest.mark.high
class TestNeedsHydration:

    def test_complete_object_is_used_as_is(self):
        assert needs_hydration(make_subscription()) is False

    def test_id_reference(self):
        assert needs_hydration("sub_123") is True

    def test_missing_price_identifiers(self):
        subscription = make_subscription()
        del subscription["items"]
        assert needs_hydration(subscription) is True

    def test_transition_flags_force_refetch(self):
        assert needs_hydration(make_subscription(), SubscriptionChanges(just_exited_trial=True)) is True
        assert needs_hydration(make_subscription(), SubscriptionChanges(flipped_cancel_on=True)) is True

    def test_active_without_period_bounds(self):
        subscription = make_subscription(current_period_start=None, current_period_end=None)
        assert has_period_bounds(subscription) is False
        assert needs_hydration(subscription) is True

    def test_item_level_period_bounds_are_enough(self):
        subscription = make_subscription(current_period_start=None, current_period_end=None)
        subscription["items"]["data"][0].update(current_period_start=PERIOD_START, current_period_end=PERIOD_END)
        assert needs_hydration(subscription) is False

    def test_item_without_price(self):
        assert needs_hydration(make_subscription(items={"data": [{"id": "si_123"}]})) is True

    def test_legacy_plan_counts_as_price(self):
        subscription = make_subscription(items={"data": [{"id": "si_123"}]}, plan={"id": "price_monthly"})
        assert needs_hydration(subscription) is False

    @pytest.mark.parametrize("status", ["past_due", "incomplete", "canceled", "trialing"])
    def test_any_status_without_period_bounds(self, status):
        subscription = make_subscription(status=status, current_period_start=None, current_period_end=None)
        assert needs_hydration(subscription) is True

    def test_trial_end_stands_in_for_period_bounds(self):
        subscription = make_subscription(
            status="trialing", trial_end=PERIOD_END, current_period_start=None, current_period_end=None,
        )
        assert needs_hydration(subscription) is False


@pytest.mark.high
class TestResolveSubscription:

    def test_embedded_object_skips_provider(self, provider):
        embedded = make_subscription()

        assert resolve_subscription(provider, embedded, "customer.subscription.updated") is embedded
        assert provider.retrieve_calls == []

    def test_refetches_by_id_with_expand(self, provider):
        provider.subscriptions["sub_123"] = make_subscription()

        result = resolve_subscription(provider, "sub_123", "checkout.session.completed", expand=["items.data.price"])

        assert result["id"] == "sub_123"
        assert provider.retrieve_calls == [("sub_123", ["items.data.price"])]

    def test_single_call_for_stale_object(self, provider):
        provider.subscriptions["sub_123"] = make_subscription(cancel_at_period_end=True)

        result = resolve_subscription(
            provider, make_subscription(), "customer.subscription.updated",
            SubscriptionChanges(flipped_cancel_on=True),
        )

        assert result["cancel_at_period_end"] is True
        assert len(provider.retrieve_calls) == 1

    def test_missing_reference_is_unresolvable(self, provider):
        result = resolve_subscription(provider, None, "invoice.payment_failed")

        assert isinstance(result, SubscriptionUnresolvable)
        assert "invoice.payment_failed" in result.reason
        assert provider.retrieve_calls == []

    def test_provider_errors_propagate(self, provider):
        provider.retrieve_error = stripe.APIConnectionError("Stripe unreachable")

        with pytest.raises(stripe.APIConnectionError):
            resolve_subscription(provider, "sub_123", "invoice.payment_failed")
        assert len(provider.retrieve_calls) == 1
