"""Checkout session creation: price a listing and open a hosted payment page."""

from __future__ import annotations

import logging
import os
from typing import Optional

from market_checkout.errors import AlreadySold, CannotBuyOwnListing, ListingNotFound
from market_checkout.fulfillment import GUEST_BUYER_ID
from market_checkout.models import CheckoutQuote, Listing, PaymentSession
from market_checkout.payment import PaymentProvider
from market_checkout.pricing import quote_listing
from market_checkout.store import ListingStore


PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

logger = logging.getLogger(__name__)


def session_metadata(listing: Listing, quote: CheckoutQuote, buyer_id: str) -> dict[str, str]:
    """Metadata written onto the provider session; re-verified at fulfillment."""
    return {
        "listing_id": listing.id,
        "seller_id": listing.seller_id,
        "buyer_id": buyer_id,
        "platform_fee": str(quote.fee),
        "shipping_cost": str(quote.shipping_cost),
        "package_size": listing.package_size.value,
        "international": "true" if quote.international else "false",
    }


class CheckoutService:

    def __init__(
        self,
        store: ListingStore,
        payments: PaymentProvider,
        base_url: str = PUBLIC_BASE_URL,
    ):
        self.store = store
        self.payments = payments
        self.base_url = base_url.rstrip("/")

    async def quote(self, listing_id: str, international: bool = False) -> CheckoutQuote:
        listing = await self._purchasable_listing(listing_id)
        return quote_listing(listing, international)

    async def start_checkout(
        self,
        listing_id: str,
        buyer_id: Optional[str] = None,
        international: bool = False,
        buyer_email: Optional[str] = None,
    ) -> tuple[PaymentSession, CheckoutQuote]:
        listing = await self._purchasable_listing(listing_id)
        if buyer_id and buyer_id == listing.seller_id:
            raise CannotBuyOwnListing("Cannot buy your own listing", param="listing_id")

        quote = quote_listing(listing, international)
        session = await self.payments.create_checkout_session(
            line_items=quote.line_items,
            metadata=session_metadata(listing, quote, buyer_id or GUEST_BUYER_ID),
            success_url=(
                f"{self.base_url}/checkout/success"
                f"?session_id={{CHECKOUT_SESSION_ID}}&listing_id={listing.id}"
            ),
            cancel_url=f"{self.base_url}/listings/{listing.id}",
            customer_email=buyer_email,
        )
        logger.info("Opened checkout session %s for listing %s (total %s)", session.id, listing.id, quote.total)
        return session, quote

    async def _purchasable_listing(self, listing_id: str) -> Listing:
        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFound(f"Listing {listing_id} not found", param="listing_id")
        if listing.sold:
            raise AlreadySold(f"Listing {listing_id} already sold", param="listing_id")
        return listing
