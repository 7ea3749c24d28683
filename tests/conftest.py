import pytest

from market_checkout.checkout import CheckoutService
from market_checkout.fulfillment import FulfillmentCoordinator
from market_checkout.models import (
    NewListing,
    PackageSize,
    ShippingAddress,
    ShippingPolicy,
)
from market_checkout.payment import MockPaymentProvider
from market_checkout.shipping import MockShippingProvider
from market_checkout.store import InMemoryListingStore


SELLER_ID = "seller_1"
BUYER_ID = "buyer_1"
WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def store():
    return InMemoryListingStore()


@pytest.fixture
def payments():
    return MockPaymentProvider(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def shipping():
    return MockShippingProvider()


@pytest.fixture
def coordinator(store, payments, shipping):
    return FulfillmentCoordinator(store, payments, shipping)


@pytest.fixture
def checkout(store, payments):
    return CheckoutService(store, payments, base_url="https://market.test")


@pytest.fixture
async def listing(store):
    return await store.create_listing(
        NewListing(
            seller_id=SELLER_ID,
            title="LGB BONO",
            description="Military-inspired jacket with distressed detailing.",
            price=8500,
            shipping_policy=ShippingPolicy.BUYER_PAYS,
            package_size=PackageSize.MEDIUM,
        )
    )


@pytest.fixture
def us_address():
    return ShippingAddress(
        name="Ada Buyer",
        street1="1 Market St",
        city="San Francisco",
        state="CA",
        zip="94105",
        country="US",
    )


@pytest.fixture
def uk_address():
    return ShippingAddress(
        name="Ada Buyer",
        street1="10 Downing St",
        city="London",
        zip="SW1A 2AA",
        country="GB",
    )
