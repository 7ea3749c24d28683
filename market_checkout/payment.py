"""
Payment Provider Abstraction.

Provides a base class `PaymentProvider` and two implementations:
- `MockPaymentProvider`: in-memory mock for development/tests
- `StripePaymentProvider`: Stripe Checkout (just set the API key)

The factory `create_payment_provider()` auto-selects based on env config.

The fulfillment coordinator only ever trusts `retrieve_session()`: the
provider's own record of payment status, amount and shipping address.
"""

from __future__ import annotations

import abc
import hashlib
import hmac
import json
import os
import uuid
from typing import Any, Optional

import stripe

from market_checkout.errors import (
    PaymentProviderUnavailable,
    SessionNotFound,
    WebhookSignatureError,
)
from market_checkout.models import (
    LineItem,
    PaymentSession,
    PaymentStatus,
    ShippingAddress,
    WebhookEvent,
)


SHIPPING_COUNTRIES = [
    c.strip()
    for c in os.getenv("STRIPE_SHIPPING_COUNTRIES", "US,CA,GB,AU,DE,FR,JP").split(",")
    if c.strip()
]


class PaymentProvider(abc.ABC):
    """Abstract base for hosted checkout providers."""

    @abc.abstractmethod
    async def create_checkout_session(
        self,
        *,
        line_items: list[LineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        currency: str = "usd",
    ) -> PaymentSession:
        """Open a hosted checkout session and return it (with redirect url)."""
        ...

    @abc.abstractmethod
    async def retrieve_session(self, session_id: str) -> PaymentSession:
        """Fetch the provider's verified record of a checkout session."""
        ...

    @abc.abstractmethod
    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify a webhook delivery and reduce it to the fields we act on."""
        ...


class MockPaymentProvider(PaymentProvider):
    """
    In-memory mock for development. Sessions stay unpaid until
    `mark_paid()` is called, mimicking the buyer finishing the hosted page.
    """

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret or ""
        self._sessions: dict[str, PaymentSession] = {}

    async def create_checkout_session(
        self,
        *,
        line_items: list[LineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        currency: str = "usd",
    ) -> PaymentSession:
        session_id = f"cs_mock_{uuid.uuid4().hex[:16]}"
        session = PaymentSession(
            id=session_id,
            payment_status=PaymentStatus.UNPAID,
            amount_total=sum(li.amount * li.quantity for li in line_items),
            currency=currency,
            customer_email=customer_email,
            metadata=dict(metadata),
            url=f"https://checkout.mock.local/pay/{session_id}",
        )
        self._sessions[session_id] = session
        return session

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"No checkout session {session_id}", param="session_id")
        return session.model_copy(deep=True)

    def mark_paid(
        self,
        session_id: str,
        amount_total: Optional[int] = None,
        shipping_address: Optional[ShippingAddress] = None,
    ) -> PaymentSession:
        """Simulate a captured payment, optionally overriding the charged amount."""
        session = self._sessions[session_id]
        session.payment_status = PaymentStatus.PAID
        if amount_total is not None:
            session.amount_total = amount_total
        if shipping_address is not None:
            session.shipping_address = shipping_address
        return session

    def add_session(self, session: PaymentSession) -> None:
        """Register a session created elsewhere (e.g. fixtures)."""
        self._sessions[session.id] = session

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        if self.webhook_secret:
            if not signature:
                raise WebhookSignatureError("Missing webhook signature", param="$.headers.Stripe-Signature")
            if not hmac.compare_digest(signature, self.sign(payload)):
                raise WebhookSignatureError("Invalid webhook signature", param="$.headers.Stripe-Signature")
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Webhook payload is not valid JSON") from exc
        return _event_from_dict(data)


class StripePaymentProvider(PaymentProvider):
    """
    Stripe Checkout integration.

    Requires STRIPE_API_KEY; webhook deliveries are verified against
    STRIPE_WEBHOOK_SECRET.
    """

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or os.getenv("STRIPE_API_KEY", "")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET", "")
        if not self.api_key:
            raise ValueError(
                "STRIPE_API_KEY is required for StripePaymentProvider. "
                "Use MockPaymentProvider for development."
            )

    async def create_checkout_session(
        self,
        *,
        line_items: list[LineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        currency: str = "usd",
    ) -> PaymentSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [_stripe_line_item(li, currency) for li in line_items],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "shipping_address_collection": {"allowed_countries": SHIPPING_COUNTRIES},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await stripe.checkout.Session.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            raise _translate_stripe_error(exc) from exc
        return _session_from_stripe(session.to_dict())

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        try:
            session = await stripe.checkout.Session.retrieve_async(session_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise _translate_stripe_error(exc) from exc
        return _session_from_stripe(session.to_dict())

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureError("Invalid webhook payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("Invalid webhook signature", param="$.headers.Stripe-Signature") from exc
        return _event_from_dict(event.to_dict())


def _stripe_line_item(item: LineItem, currency: str) -> dict[str, Any]:
    product_data: dict[str, Any] = {"name": item.name}
    if item.description:
        product_data["description"] = item.description
    return {
        "price_data": {
            "currency": currency,
            "product_data": product_data,
            "unit_amount": item.amount,
        },
        "quantity": item.quantity,
    }


def _translate_stripe_error(exc: stripe.StripeError) -> Exception:
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        return PaymentProviderUnavailable(f"Stripe unavailable: {exc.user_message or exc}")
    if isinstance(exc, stripe.InvalidRequestError) and exc.http_status == 404:
        return SessionNotFound(str(exc.user_message or exc), param="session_id")
    return exc


def _session_from_stripe(data: dict[str, Any]) -> PaymentSession:
    shipping = data.get("shipping_details") or (
        (data.get("collected_information") or {}).get("shipping_details")
    )
    customer_details = data.get("customer_details") or {}
    email = data.get("customer_email") or customer_details.get("email")

    address = None
    if shipping and shipping.get("address"):
        raw = shipping["address"]
        address = ShippingAddress(
            name=shipping.get("name") or customer_details.get("name") or "",
            street1=raw.get("line1") or "",
            street2=raw.get("line2"),
            city=raw.get("city") or "",
            state=raw.get("state") or "",
            zip=raw.get("postal_code") or "",
            country=raw.get("country") or "",
            email=email,
            phone=customer_details.get("phone"),
        )

    return PaymentSession(
        id=data["id"],
        payment_status=PaymentStatus(data.get("payment_status") or "unpaid"),
        amount_total=data.get("amount_total"),
        currency=data.get("currency") or "usd",
        customer_email=email,
        shipping_address=address,
        metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
        url=data.get("url"),
    )


def _event_from_dict(data: dict[str, Any]) -> WebhookEvent:
    obj = (data.get("data") or {}).get("object") or {}
    if not data.get("type"):
        raise WebhookSignatureError("Webhook payload has no event type")
    return WebhookEvent(
        id=str(data.get("id") or ""),
        type=data["type"],
        session_id=obj.get("id"),
    )


def create_payment_provider(
    stripe_api_key: Optional[str] = None,
) -> PaymentProvider:
    """
    Factory: returns StripePaymentProvider if an API key is available,
    otherwise falls back to MockPaymentProvider.
    """
    key = stripe_api_key or os.getenv("STRIPE_API_KEY", "")
    if key:
        return StripePaymentProvider(api_key=key)
    return MockPaymentProvider(webhook_secret=os.getenv("MOCK_WEBHOOK_SECRET", ""))
