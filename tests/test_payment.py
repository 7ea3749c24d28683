import hashlib
import hmac
import json
import time

import pytest
import stripe

from market_checkout.errors import (
    PaymentProviderUnavailable,
    SessionNotFound,
    WebhookSignatureError,
)
from market_checkout.models import LineItem, PaymentStatus
from market_checkout.payment import (
    MockPaymentProvider,
    StripePaymentProvider,
    _event_from_dict,
    _session_from_stripe,
    _translate_stripe_error,
    create_payment_provider,
)

from tests.conftest import WEBHOOK_SECRET


STRIPE_SESSION = {
    "id": "cs_test_123",
    "object": "checkout.session",
    "payment_status": "paid",
    "amount_total": 9499,
    "currency": "usd",
    "customer_details": {"email": "ada@example.com", "name": "Ada Buyer", "phone": None},
    "metadata": {"listing_id": "lst_1", "shipping_cost": "899"},
    "collected_information": {
        "shipping_details": {
            "name": "Ada Buyer",
            "address": {
                "line1": "1 Market St",
                "line2": None,
                "city": "San Francisco",
                "state": "CA",
                "postal_code": "94105",
                "country": "US",
            },
        }
    },
    "url": None,
}


class _FakeStripeObject:

    def __init__(self, data):
        self._data = data

    def to_dict(self):
        return self._data


def _stripe_signature(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_factory_without_key_uses_mock(monkeypatch):
    monkeypatch.delenv("STRIPE_API_KEY", raising=False)
    assert isinstance(create_payment_provider(), MockPaymentProvider)
    assert isinstance(create_payment_provider("sk_test_123"), StripePaymentProvider)


def test_stripe_provider_requires_key(monkeypatch):
    monkeypatch.delenv("STRIPE_API_KEY", raising=False)
    with pytest.raises(ValueError):
        StripePaymentProvider()


async def test_mock_session_lifecycle():
    provider = MockPaymentProvider()
    session = await provider.create_checkout_session(
        line_items=[LineItem(name="Jacket", amount=8500), LineItem(name="Platform fee", amount=100)],
        metadata={"listing_id": "lst_1"},
        success_url="https://market.test/ok",
        cancel_url="https://market.test/cancel",
    )

    assert session.amount_total == 8600
    assert session.payment_status == PaymentStatus.UNPAID

    provider.mark_paid(session.id)
    retrieved = await provider.retrieve_session(session.id)
    retrieved.metadata["listing_id"] = "tampered"

    assert (await provider.retrieve_session(session.id)).metadata["listing_id"] == "lst_1"
    assert retrieved.payment_status == PaymentStatus.PAID


async def test_mock_unknown_session():
    with pytest.raises(SessionNotFound):
        await MockPaymentProvider().retrieve_session("cs_missing")


def test_mock_webhook_signature():
    provider = MockPaymentProvider(webhook_secret=WEBHOOK_SECRET)
    payload = json.dumps({
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1"}},
    }).encode("utf-8")

    event = provider.parse_webhook_event(payload, provider.sign(payload))

    assert event.session_id == "cs_1"
    with pytest.raises(WebhookSignatureError):
        provider.parse_webhook_event(payload, None)
    with pytest.raises(WebhookSignatureError):
        provider.parse_webhook_event(payload + b" ", provider.sign(payload))


def test_session_from_stripe_reads_collected_shipping():
    session = _session_from_stripe(STRIPE_SESSION)

    assert session.payment_status == PaymentStatus.PAID
    assert session.amount_total == 9499
    assert session.customer_email == "ada@example.com"
    assert session.shipping_address.country == "US"
    assert session.shipping_address.street2 is None
    assert session.shipping_address.email == "ada@example.com"
    assert session.metadata["shipping_cost"] == "899"


def test_session_from_stripe_without_shipping():
    data = dict(STRIPE_SESSION, collected_information=None, payment_status="unpaid")

    session = _session_from_stripe(data)

    assert session.shipping_address is None
    assert session.payment_status == PaymentStatus.UNPAID


def test_event_without_type_is_rejected():
    with pytest.raises(WebhookSignatureError):
        _event_from_dict({"id": "evt_1", "data": {"object": {"id": "cs_1"}}})


def test_translate_stripe_errors():
    assert isinstance(
        _translate_stripe_error(stripe.APIConnectionError("connection reset")),
        PaymentProviderUnavailable,
    )
    assert isinstance(
        _translate_stripe_error(stripe.RateLimitError("slow down")),
        PaymentProviderUnavailable,
    )
    assert isinstance(
        _translate_stripe_error(
            stripe.InvalidRequestError("No such checkout.session", param="id", http_status=404)
        ),
        SessionNotFound,
    )
    auth = stripe.AuthenticationError("bad key")
    assert _translate_stripe_error(auth) is auth


async def test_stripe_retrieve_session(monkeypatch):
    calls = []

    async def fake_retrieve(session_id, **params):
        calls.append((session_id, params))
        return _FakeStripeObject(STRIPE_SESSION)

    monkeypatch.setattr(stripe.checkout.Session, "retrieve_async", fake_retrieve)
    provider = StripePaymentProvider(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)

    session = await provider.retrieve_session("cs_test_123")

    assert session.id == "cs_test_123"
    assert calls == [("cs_test_123", {"api_key": "sk_test_123"})]


async def test_stripe_retrieve_when_unreachable(monkeypatch):
    async def fake_retrieve(session_id, **params):
        raise stripe.APIConnectionError("Network error")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve_async", fake_retrieve)
    provider = StripePaymentProvider(api_key="sk_test_123")

    with pytest.raises(PaymentProviderUnavailable):
        await provider.retrieve_session("cs_test_123")


async def test_stripe_create_session_params(monkeypatch):
    captured = {}

    async def fake_create(**params):
        captured.update(params)
        return _FakeStripeObject(dict(STRIPE_SESSION, payment_status="unpaid", url="https://pay.test/cs"))

    monkeypatch.setattr(stripe.checkout.Session, "create_async", fake_create)
    provider = StripePaymentProvider(api_key="sk_test_123")

    session = await provider.create_checkout_session(
        line_items=[LineItem(name="Jacket", amount=8500)],
        metadata={"listing_id": "lst_1"},
        success_url="https://market.test/ok",
        cancel_url="https://market.test/cancel",
        customer_email="ada@example.com",
    )

    assert session.url == "https://pay.test/cs"
    assert captured["mode"] == "payment"
    assert captured["customer_email"] == "ada@example.com"
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 8500
    assert "US" in captured["shipping_address_collection"]["allowed_countries"]


def test_stripe_webhook_verification():
    provider = StripePaymentProvider(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)
    payload = json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_123", "object": "checkout.session"}},
    }).encode("utf-8")

    event = provider.parse_webhook_event(payload, _stripe_signature(payload, WEBHOOK_SECRET))

    assert event.type == "checkout.session.completed"
    assert event.session_id == "cs_test_123"
    with pytest.raises(WebhookSignatureError):
        provider.parse_webhook_event(payload, _stripe_signature(payload, "whsec_other"))


def test_stripe_webhook_without_secret(monkeypatch):
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    provider = StripePaymentProvider(api_key="sk_test_123")

    with pytest.raises(WebhookSignatureError):
        provider.parse_webhook_event(b"{}", "t=1,v1=abc")
