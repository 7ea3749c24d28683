"""
Marketplace checkout Pydantic models.

Covers listings and sales (owned by the listing store), the provider-side
view of a checkout session, shipping rates and labels, and the HTTP request
and response bodies. All monetary amounts are in the smallest currency unit
(e.g. cents for USD).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ShippingPolicy(str, Enum):
    BUYER_PAYS = "buyer-pays"
    SELLER_PAYS = "seller-pays"
    INTERNATIONAL_FLAT_RATE = "international-flat-rate"


class PackageSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    NO_PAYMENT_REQUIRED = "no_payment_required"


class SaleRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


# ---------------------------------------------------------------------------
# Listings & Sales
# ---------------------------------------------------------------------------

class NewListing(BaseModel):
    seller_id: str
    title: str
    description: str = ""
    price: int = Field(ge=0)
    shipping_policy: ShippingPolicy = ShippingPolicy.BUYER_PAYS
    package_size: PackageSize = PackageSize.MEDIUM
    international_shipping_price: Optional[int] = Field(default=None, ge=0)


class Listing(NewListing):
    id: str
    sold: bool = False
    created_at: Optional[datetime] = None


class NewSale(BaseModel):
    buyer_id: str
    buyer_email: Optional[str] = None
    seller_id: str
    listing_id: str
    amount: int
    fee: int
    shipping_cost: int = 0
    payment_session_id: str
    is_international: bool = False


class Sale(NewSale):
    id: str
    shipped: bool = False
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Shipping
# ---------------------------------------------------------------------------

class ShippingAddress(BaseModel):
    name: str
    street1: str
    street2: Optional[str] = None
    city: str
    state: str = ""
    zip: str
    country: str
    email: Optional[str] = None
    phone: Optional[str] = None


class ShippingRate(BaseModel):
    rate_id: str
    carrier: str
    service: str
    estimated_days: int = 5
    amount: int
    currency: str = "USD"


class ShippingLabel(BaseModel):
    label_url: str
    tracking_number: str
    tracking_url: str = ""


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    name: str
    description: Optional[str] = None
    amount: int
    quantity: int = Field(default=1, ge=1)


class CheckoutQuote(BaseModel):
    listing_id: str
    item_amount: int
    fee: int
    shipping_cost: int
    total: int
    international: bool = False
    line_items: list[LineItem] = []


class PaymentSession(BaseModel):
    """Checkout session as recorded by the payment provider (read-only here)."""
    id: str
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    amount_total: Optional[int] = None
    currency: str = "usd"
    customer_email: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    session_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Request / Response bodies
# ---------------------------------------------------------------------------

class StartCheckoutRequest(BaseModel):
    listing_id: str
    international: bool = False
    buyer_email: Optional[str] = None


class StartCheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None
    quote: CheckoutQuote


class CompleteCheckoutRequest(BaseModel):
    """Sent by the client after the redirect back; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    listing_id: Optional[str] = Field(default=None, alias="listingId")


class MarkShippedRequest(BaseModel):
    tracking_number: str = Field(min_length=1)


class PurchaseLabelRequest(BaseModel):
    address: ShippingAddress


class ShippingEstimate(BaseModel):
    package_size: PackageSize
    amount: int
    currency: str = "usd"


# ---------------------------------------------------------------------------
# Error
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    kind: str
    message: str
    param: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
