"""
Market Checkout: checkout and exactly-once fulfillment for a secondhand marketplace.

Buyers pay through a hosted checkout page; the payment provider's webhook and
the buyer's redirect-back confirmation both ask the fulfillment coordinator
to turn the paid session into a Sale. The coordinator verifies the payment
with the provider, re-prices the listing, commits the Sale and the sold flag
atomically, and then tries to buy a shipping label.

Example usage:
    from market_checkout import (
        CheckoutService,
        FulfillmentCoordinator,
        InMemoryListingStore,
        create_checkout_router,
        create_payment_provider,
        create_shipping_provider,
    )

    store = InMemoryListingStore()
    payments = create_payment_provider()
    coordinator = FulfillmentCoordinator(store, payments, create_shipping_provider())
    app.include_router(create_checkout_router(coordinator, CheckoutService(store, payments)))
"""

__version__ = "0.1.0"

# Export main models
from market_checkout.models import (
    CheckoutQuote,
    LineItem,
    Listing,
    NewListing,
    NewSale,
    PackageSize,
    PaymentSession,
    PaymentStatus,
    Sale,
    ShippingAddress,
    ShippingLabel,
    ShippingPolicy,
    ShippingRate,
)

# Export errors
from market_checkout.errors import (
    AlreadySold,
    AmountMismatch,
    CheckoutError,
    FulfillmentError,
    ListingNotFound,
    MalformedSession,
    PaymentNotCompleted,
    PaymentProviderUnavailable,
    ProviderUnavailable,
    SessionNotFound,
    ShippingCostMismatch,
)

# Export providers and store
from market_checkout.payment import (
    MockPaymentProvider,
    PaymentProvider,
    StripePaymentProvider,
    create_payment_provider,
)
from market_checkout.shipping import (
    MockShippingProvider,
    ShippingProvider,
    ShippoShippingProvider,
    create_shipping_provider,
)
from market_checkout.store import (
    DuplicateSaleError,
    InMemoryListingStore,
    ListingStore,
    ListingUnavailableError,
)

# Export checkout components
from market_checkout.checkout import CheckoutService
from market_checkout.fulfillment import FulfillmentCoordinator
from market_checkout.router import create_checkout_router

__all__ = [
    "__version__",
    # Core Models
    "CheckoutQuote",
    "LineItem",
    "Listing",
    "NewListing",
    "NewSale",
    "PackageSize",
    "PaymentSession",
    "PaymentStatus",
    "Sale",
    "ShippingAddress",
    "ShippingLabel",
    "ShippingPolicy",
    "ShippingRate",
    # Errors
    "AlreadySold",
    "AmountMismatch",
    "CheckoutError",
    "FulfillmentError",
    "ListingNotFound",
    "MalformedSession",
    "PaymentNotCompleted",
    "PaymentProviderUnavailable",
    "ProviderUnavailable",
    "SessionNotFound",
    "ShippingCostMismatch",
    # Providers & Store
    "MockPaymentProvider",
    "PaymentProvider",
    "StripePaymentProvider",
    "create_payment_provider",
    "MockShippingProvider",
    "ShippingProvider",
    "ShippoShippingProvider",
    "create_shipping_provider",
    "DuplicateSaleError",
    "InMemoryListingStore",
    "ListingStore",
    "ListingUnavailableError",
    # Checkout Components
    "CheckoutService",
    "FulfillmentCoordinator",
    "create_checkout_router",
]
