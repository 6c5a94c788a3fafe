from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from services import stripe_service

pytestmark = [pytest.mark.unit]


class _StripeLike:
    """Mimics StripeObject.to_dict() for wrapper tests."""

    def __init__(self, data: dict):
        self._data = data

    def __getitem__(self, key):
        return self._data[key]

    def to_dict(self) -> dict:
        return dict(self._data)


def test_to_plain_handles_stripe_objects_and_dicts():
    assert stripe_service.to_plain(_StripeLike({"id": "cus_1"})) == {"id": "cus_1"}
    assert stripe_service.to_plain({"id": "cus_2"}) == {"id": "cus_2"}
    assert stripe_service.to_plain(None) == {}


def test_webhook_secret_switches_in_production(monkeypatch):
    monkeypatch.setattr(stripe_service, "STRIPE_WEBHOOK_SECRET", "whsec_dev")
    monkeypatch.setattr(stripe_service, "STRIPE_WEBHOOK_SECRET_PROD", "whsec_prod")

    monkeypatch.setenv("APP_ENV", "development")
    assert stripe_service.webhook_secret() == "whsec_dev"

    monkeypatch.setenv("APP_ENV", "production")
    assert stripe_service.webhook_secret() == "whsec_prod"


def test_construct_webhook_event_uses_current_secret(monkeypatch):
    construct = MagicMock(return_value=_StripeLike({"id": "evt_1", "type": "invoice.payment_succeeded"}))
    monkeypatch.setattr(stripe_service.stripe.Webhook, "construct_event", construct)
    monkeypatch.setattr(stripe_service, "webhook_secret", lambda: "whsec_x")

    event = stripe_service.construct_webhook_event(b"{}", "t=1,v1=sig")

    assert event["id"] == "evt_1"
    construct.assert_called_once_with(b"{}", "t=1,v1=sig", "whsec_x")


def test_list_active_subscriptions(monkeypatch):
    listing = MagicMock(return_value={"data": [_StripeLike({"id": "sub_1"}), _StripeLike({"id": "sub_2"})]})
    monkeypatch.setattr(stripe_service.stripe.Subscription, "list", listing)

    subs = stripe_service.list_active_subscriptions("cus_1")

    assert [s["id"] for s in subs] == ["sub_1", "sub_2"]
    listing.assert_called_once_with(customer="cus_1", status="active")


async def test_create_checkout_session(monkeypatch):
    create = MagicMock(return_value=SimpleNamespace(url="https://checkout.stripe.com/c/pay/cs_1"))
    monkeypatch.setattr(stripe_service.stripe.checkout.Session, "create", create)

    url = await stripe_service.create_checkout_session(
        price_id="price_monthly_daily",
        success_url="http://localhost:3000?stripe=success",
        cancel_url="http://localhost:3000?stripe=cancel",
        customer_id="cus_1",
        metadata={"userId": "user_1"},
    )

    assert url == "https://checkout.stripe.com/c/pay/cs_1"
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_1"
    assert kwargs["line_items"] == [{"price": "price_monthly_daily", "quantity": 1}]
    assert kwargs["allow_promotion_codes"] is True
    assert kwargs["metadata"] == {"userId": "user_1"}


async def test_create_portal_session(monkeypatch):
    create = MagicMock(return_value=SimpleNamespace(url="https://billing.stripe.com/p/session/1"))
    monkeypatch.setattr(stripe_service.stripe.billing_portal.Session, "create", create)

    url = await stripe_service.create_portal_session(customer_id="cus_1", return_url="http://localhost:3000")

    assert url == "https://billing.stripe.com/p/session/1"
    create.assert_called_once_with(customer="cus_1", return_url="http://localhost:3000")


def test_subscription_price_id():
    assert stripe_service.subscription_price_id({"items": {"data": [{"price": {"id": "price_a"}}]}}) == "price_a"
    assert stripe_service.subscription_price_id({"items": {"data": []}}) is None
    assert stripe_service.subscription_price_id({}) is None


def test_subscription_period_top_level():
    start, end = stripe_service.subscription_period({"current_period_start": 0, "current_period_end": 86400})
    assert start == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert end == datetime(1970, 1, 2, tzinfo=timezone.utc)


def test_invoice_subscription_id_variants():
    assert stripe_service.invoice_subscription_id({"subscription": "sub_1"}) == "sub_1"
    assert stripe_service.invoice_subscription_id({"subscription": {"id": "sub_2"}}) == "sub_2"
    nested = {"parent": {"subscription_details": {"subscription": "sub_3"}}}
    assert stripe_service.invoice_subscription_id(nested) == "sub_3"
    assert stripe_service.invoice_subscription_id({}) is None
