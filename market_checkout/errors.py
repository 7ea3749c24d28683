"""
Checkout error taxonomy.

Every error carries a machine-readable ``kind`` and the HTTP status the router
answers with. ``FulfillmentError`` subclasses are verification failures or
state conflicts: they are reported, never retried. ``ProviderUnavailable``
subclasses are infrastructure failures and are safe for the caller to retry.
"""

from __future__ import annotations

from typing import Optional

from market_checkout.models import ErrorDetail, ErrorResponse


class CheckoutError(Exception):
    """Base class for errors surfaced through the checkout API."""

    status_code = 400
    kind = "checkout_error"

    def __init__(self, message: str, param: Optional[str] = None):
        self.message = message
        self.param = param
        super().__init__(message)

    @property
    def body(self) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorDetail(kind=self.kind, message=self.message, param=self.param)
        )


# ── Fulfillment ──────────────────────────────────────────────────────────

class FulfillmentError(CheckoutError):
    """A payment session could not be turned into a Sale."""


class PaymentNotCompleted(FulfillmentError):
    status_code = 402
    kind = "payment_not_completed"


class MalformedSession(FulfillmentError):
    kind = "malformed_session"


class SessionNotFound(FulfillmentError):
    status_code = 404
    kind = "session_not_found"


class ListingNotFound(FulfillmentError):
    status_code = 404
    kind = "listing_not_found"


class AlreadySold(FulfillmentError):
    status_code = 409
    kind = "already_sold"


class ShippingCostMismatch(FulfillmentError):
    status_code = 409
    kind = "shipping_cost_mismatch"


class AmountMismatch(FulfillmentError):
    status_code = 409
    kind = "amount_mismatch"


# ── Checkout / post-sale ─────────────────────────────────────────────────

class CannotBuyOwnListing(CheckoutError):
    kind = "cannot_buy_own_listing"


class ListingLocked(CheckoutError):
    status_code = 409
    kind = "listing_locked"


class SaleNotFound(CheckoutError):
    status_code = 404
    kind = "sale_not_found"


class NotSaleSeller(CheckoutError):
    status_code = 403
    kind = "not_sale_seller"


class WebhookSignatureError(CheckoutError):
    kind = "invalid_signature"


# ── Downstream infrastructure ────────────────────────────────────────────

class ProviderUnavailable(CheckoutError):
    """Timeout, connection failure or 5xx from an external provider."""

    status_code = 503
    kind = "provider_unavailable"


class PaymentProviderUnavailable(ProviderUnavailable):
    kind = "payment_provider_unavailable"


class ShippingProviderUnavailable(ProviderUnavailable):
    kind = "shipping_provider_unavailable"


class ShippingLabelError(CheckoutError):
    status_code = 502
    kind = "shipping_label_failed"
