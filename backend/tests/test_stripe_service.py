"""Stripe provider client and payload helper tests"""
import pytest
from datetime import datetime, timezone
from unittest.mock import Mock, patch

from app.services.stripe_service import (
    StripeBillingProvider,
    extract_customer_id,
    extract_subscription_id,
    from_epoch,
    get_stripe_value,
    object_id,
)


@pytest.mark.high
class TestStripeHelpers:

    def test_dict_keys_win_over_methods(self):
        """'items' must resolve to the key, not dict.items"""
        assert get_stripe_value({"items": {"data": []}}, "items") == {"data": []}

    def test_attribute_access(self):
        assert get_stripe_value(Mock(status="active"), "status") == "active"

    def test_defaults(self):
        assert get_stripe_value(None, "id", "fallback") == "fallback"
        assert get_stripe_value("sub_123", "id") is None
        assert get_stripe_value({"id": None}, "id", "fallback") == "fallback"

    def test_object_id(self):
        assert object_id("cus_1") == "cus_1"
        assert object_id({"id": "cus_2", "object": "customer"}) == "cus_2"
        assert object_id("") is None
        assert object_id(None) is None

    def test_from_epoch(self):
        assert from_epoch(1754697600) == datetime(2025, 8, 9, tzinfo=timezone.utc)
        assert from_epoch(0) is None
        assert from_epoch(None) is None

    @pytest.mark.parametrize("obj,expected", [
        ({"customer": "cus_direct"}, "cus_direct"),
        ({"customer": {"id": "cus_expanded"}}, "cus_expanded"),
        ({"customer_id": "cus_alt"}, "cus_alt"),
        ({"subscription": {"id": "sub_1", "customer": "cus_nested"}}, "cus_nested"),
        ({"subscription": "sub_1"}, None),
        ({}, None),
    ])
    def test_extract_customer_id(self, obj, expected):
        assert extract_customer_id(obj) == expected

    @pytest.mark.parametrize("obj,expected", [
        ({"object": "subscription", "id": "sub_self"}, "sub_self"),
        ({"object": "invoice", "subscription": "sub_ref"}, "sub_ref"),
        ({"object": "checkout.session", "subscription": {"id": "sub_obj"}}, "sub_obj"),
        ({"object": "invoice", "parent": {"subscription_details": {"subscription": "sub_parent"}}}, "sub_parent"),
        ({"object": "invoice"}, None),
    ])
    def test_extract_subscription_id(self, obj, expected):
        assert extract_subscription_id(obj) == expected


@pytest.mark.high
class TestStripeBillingProvider:

    @patch('app.services.stripe_service.stripe')
    def test_retrieve_subscription_passes_api_key(self, mock_stripe):
        mock_stripe.Subscription.retrieve.return_value = {"id": "sub_123"}
        provider = StripeBillingProvider(api_key="sk_test_abc", webhook_secret="whsec_x")

        result = provider.retrieve_subscription("sub_123", expand=["items.data.price"])

        assert result == {"id": "sub_123"}
        mock_stripe.Subscription.retrieve.assert_called_once_with(
            "sub_123", api_key="sk_test_abc", expand=["items.data.price"],
        )

    @patch('app.services.stripe_service.stripe')
    def test_retrieve_checkout_session_without_expand(self, mock_stripe):
        provider = StripeBillingProvider(api_key="sk_test_abc", webhook_secret="whsec_x")

        provider.retrieve_checkout_session("cs_123")

        mock_stripe.checkout.Session.retrieve.assert_called_once_with("cs_123", api_key="sk_test_abc")

    @patch('app.services.stripe_service.stripe')
    def test_create_portal_session(self, mock_stripe):
        mock_stripe.billing_portal.Session.create.return_value = {"url": "https://billing.stripe.com/p/session_1"}
        provider = StripeBillingProvider(api_key="sk_test_abc", webhook_secret="whsec_x")

        url = provider.create_portal_session("cus_123", "https://app.remindr.test/account")

        assert url == "https://billing.stripe.com/p/session_1"
        mock_stripe.billing_portal.Session.create.assert_called_once_with(
            customer="cus_123", return_url="https://app.remindr.test/account", api_key="sk_test_abc",
        )

    def test_missing_header(self):
        provider = StripeBillingProvider(api_key="sk_test_abc", webhook_secret="whsec_x")
        with pytest.raises(ValueError, match="Missing stripe-signature header"):
            provider.construct_event(b"{}", None)
