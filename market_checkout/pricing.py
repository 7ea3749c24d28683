"""
Checkout pricing policy.

The same functions price a listing when the checkout session is created and
re-price it from the current listing state when the payment is fulfilled, so
the two sides can only disagree if the listing changed in between.
"""

from __future__ import annotations

from market_checkout.models import (
    CheckoutQuote,
    LineItem,
    Listing,
    PackageSize,
    ShippingPolicy,
)


PLATFORM_FEE = 100  # $1.00 flat, added to every sale

# Dimensions in inches, weight in pounds, estimated cost in cents.
PACKAGE_SIZES: dict[PackageSize, dict] = {
    PackageSize.SMALL: {
        "label": "Small", "length": 10, "width": 8, "height": 4, "max_weight": 1, "cost": 599,
    },
    PackageSize.MEDIUM: {
        "label": "Medium", "length": 14, "width": 12, "height": 6, "max_weight": 3, "cost": 899,
    },
    PackageSize.LARGE: {
        "label": "Large", "length": 18, "width": 14, "height": 8, "max_weight": 5, "cost": 1299,
    },
}


def estimated_shipping_cost(package_size: PackageSize | str) -> int:
    return PACKAGE_SIZES[PackageSize(package_size)]["cost"]


def shipping_cost_for(listing: Listing, international: bool = False) -> int:
    """What the buyer pays for shipping under the listing's current policy."""
    if listing.shipping_policy == ShippingPolicy.SELLER_PAYS:
        return 0
    if (
        listing.shipping_policy == ShippingPolicy.INTERNATIONAL_FLAT_RATE
        and international
        and listing.international_shipping_price is not None
    ):
        return listing.international_shipping_price
    return estimated_shipping_cost(listing.package_size)


def expected_total(listing: Listing, shipping_cost: int) -> int:
    return listing.price + PLATFORM_FEE + shipping_cost


def quote_listing(listing: Listing, international: bool = False) -> CheckoutQuote:
    shipping = shipping_cost_for(listing, international)
    line_items = [
        LineItem(name=listing.title, description=listing.description or None, amount=listing.price),
        LineItem(name="Platform fee", amount=PLATFORM_FEE),
    ]
    if shipping:
        label = "International shipping" if international else "Shipping"
        line_items.append(LineItem(name=label, amount=shipping))

    return CheckoutQuote(
        listing_id=listing.id,
        item_amount=listing.price,
        fee=PLATFORM_FEE,
        shipping_cost=shipping,
        total=expected_total(listing, shipping),
        international=international,
        line_items=line_items,
    )
