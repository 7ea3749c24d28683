from market_checkout.models import Listing, PackageSize, ShippingPolicy
from market_checkout.pricing import (
    PLATFORM_FEE,
    estimated_shipping_cost,
    quote_listing,
    shipping_cost_for,
)


def _listing(**overrides) -> Listing:
    data = dict(
        id="lst_1",
        seller_id="seller_1",
        title="Pilot jacket",
        price=8500,
        shipping_policy=ShippingPolicy.BUYER_PAYS,
        package_size=PackageSize.MEDIUM,
    )
    data.update(overrides)
    return Listing(**data)


def test_estimates_by_package_size():
    assert estimated_shipping_cost(PackageSize.SMALL) == 599
    assert estimated_shipping_cost("medium") == 899
    assert estimated_shipping_cost(PackageSize.LARGE) == 1299


def test_seller_pays_shipping_is_free_for_buyer():
    assert shipping_cost_for(_listing(shipping_policy=ShippingPolicy.SELLER_PAYS)) == 0


def test_international_flat_rate_only_applies_to_international_buyers():
    listing = _listing(
        shipping_policy=ShippingPolicy.INTERNATIONAL_FLAT_RATE,
        international_shipping_price=2500,
    )
    assert shipping_cost_for(listing, international=True) == 2500
    assert shipping_cost_for(listing, international=False) == 899


def test_international_flat_rate_without_price_uses_estimate():
    listing = _listing(shipping_policy=ShippingPolicy.INTERNATIONAL_FLAT_RATE)
    assert shipping_cost_for(listing, international=True) == 899


def test_quote_for_buyer_pays_medium_listing():
    quote = quote_listing(_listing())

    assert quote.item_amount == 8500
    assert quote.fee == PLATFORM_FEE == 100
    assert quote.shipping_cost == 899
    assert quote.total == 9499
    assert sum(li.amount * li.quantity for li in quote.line_items) == quote.total


def test_quote_omits_shipping_line_when_free():
    quote = quote_listing(_listing(shipping_policy=ShippingPolicy.SELLER_PAYS))

    assert quote.total == 8600
    assert [li.name for li in quote.line_items] == ["Pilot jacket", "Platform fee"]
