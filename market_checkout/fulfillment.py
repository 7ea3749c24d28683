"""
Fulfillment Coordinator.

Turns a payment session the provider reports as paid into a committed Sale,
exactly once. Both the webhook and the client's post-redirect confirmation
call `fulfill()` with the same session id, in any order and possibly at the
same time; every caller gets the same Sale back.

The check for an existing Sale is only a fast path. Correctness comes from
the store: the sale insert and the sold flag flip are one atomic write with
a unique payment session id, and a caller that loses that race re-reads the
winner's Sale instead of failing.
"""

from __future__ import annotations

import logging
from typing import Optional

from market_checkout.errors import (
    AlreadySold,
    AmountMismatch,
    ListingNotFound,
    MalformedSession,
    NotSaleSeller,
    PaymentNotCompleted,
    SaleNotFound,
    ShippingCostMismatch,
)
from market_checkout.models import (
    NewSale,
    PackageSize,
    PaymentSession,
    PaymentStatus,
    Sale,
    ShippingAddress,
)
from market_checkout.payment import PaymentProvider
from market_checkout.pricing import PLATFORM_FEE, expected_total, shipping_cost_for
from market_checkout.shipping import ShippingProvider
from market_checkout.store import DuplicateSaleError, ListingStore, ListingUnavailableError


GUEST_BUYER_ID = "guest"

logger = logging.getLogger(__name__)


class FulfillmentCoordinator:

    def __init__(
        self,
        store: ListingStore,
        payments: PaymentProvider,
        shipping: ShippingProvider,
        preferred_carrier: str = "usps",
    ):
        self.store = store
        self.payments = payments
        self.shipping = shipping
        self.preferred_carrier = preferred_carrier

    async def fulfill(self, session_id: str) -> Sale:
        """
        Commit the Sale for a paid checkout session, or return the one
        already committed for it.

        Raises a FulfillmentError subclass on verification failure and
        PaymentProviderUnavailable if the provider could not be reached.
        Nothing is written unless every check passes.
        """
        existing = await self.store.find_sale_by_session(session_id)
        if existing:
            logger.info("Session %s already fulfilled as sale %s", session_id, existing.id)
            return existing

        # Only the provider's own record is trusted, never a caller payload.
        session = await self.payments.retrieve_session(session_id)
        if session.payment_status != PaymentStatus.PAID:
            raise PaymentNotCompleted(
                f"Payment for session {session_id} is {session.payment_status.value}"
            )

        listing_id = session.metadata.get("listing_id")
        if not listing_id:
            raise MalformedSession(f"Session {session_id} has no listing_id", param="metadata.listing_id")

        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFound(f"Listing {listing_id} not found", param="metadata.listing_id")
        if listing.sold:
            return await self._existing_sale_or_conflict(session_id, listing_id)

        # Re-price from the listing as it is now, not as it was at checkout.
        international = self._is_international(session)
        shipping_cost = shipping_cost_for(listing, international)
        declared_shipping = _metadata_int(session, "shipping_cost")
        if declared_shipping != shipping_cost:
            raise ShippingCostMismatch(
                f"Shipping cost mismatch: expected {shipping_cost}, session declared {declared_shipping}"
            )

        expected = expected_total(listing, shipping_cost)
        if session.amount_total != expected:
            raise AmountMismatch(f"Amount mismatch: expected {expected}, got {session.amount_total}")

        new_sale = NewSale(
            buyer_id=session.metadata.get("buyer_id") or GUEST_BUYER_ID,
            buyer_email=session.customer_email,
            seller_id=listing.seller_id,
            listing_id=listing.id,
            amount=listing.price,
            fee=PLATFORM_FEE,
            shipping_cost=shipping_cost,
            payment_session_id=session_id,
            is_international=international,
        )
        try:
            sale = await self.store.create_sale_and_mark_sold(new_sale)
        except (DuplicateSaleError, ListingUnavailableError) as exc:
            logger.info("Commit for session %s lost a race: %s", session_id, exc)
            return await self._existing_sale_or_conflict(session_id, listing_id)

        logger.info(
            "Fulfilled session %s: sale %s for listing %s (total %s)",
            session_id, sale.id, listing.id, expected,
        )

        if session.shipping_address is not None:
            sale = await self._attach_label(sale, session.shipping_address, listing.package_size)
        return sale

    async def _existing_sale_or_conflict(self, session_id: str, listing_id: str) -> Sale:
        sale = await self.store.find_sale_by_session(session_id)
        if sale:
            return sale
        raise AlreadySold(f"Listing {listing_id} already sold", param="metadata.listing_id")

    def _is_international(self, session: PaymentSession) -> bool:
        address = session.shipping_address
        if address is not None and address.country:
            return address.country.upper() != self.shipping.origin_country.upper()
        return session.metadata.get("international", "").lower() == "true"

    async def _attach_label(
        self,
        sale: Sale,
        address: ShippingAddress,
        package_size: PackageSize,
    ) -> Sale:
        """Best effort: the Sale is already final, a label failure must not undo it."""
        try:
            label = await self.shipping.purchase_label(address, package_size, self.preferred_carrier)
            updated = await self.store.update_sale_label(sale.id, label)
        except Exception:
            logger.exception("Label purchase failed for sale %s; retry out of band", sale.id)
            return sale
        return updated or sale

    async def retry_label(
        self,
        sale_id: str,
        address: ShippingAddress,
        seller_id: Optional[str] = None,
    ) -> Sale:
        """Issue a label for an already committed sale. Errors propagate."""
        sale = await self._get_sale_for(sale_id, seller_id)
        listing = await self.store.get_listing(sale.listing_id)
        if listing is None:
            raise ListingNotFound(f"Listing {sale.listing_id} not found")
        label = await self.shipping.purchase_label(address, listing.package_size, self.preferred_carrier)
        updated = await self.store.update_sale_label(sale.id, label)
        logger.info("Label %s issued for sale %s", label.tracking_number, sale.id)
        return updated or sale

    async def mark_shipped(self, sale_id: str, seller_id: str, tracking_number: str) -> Sale:
        sale = await self._get_sale_for(sale_id, seller_id)
        updated = await self.store.mark_sale_shipped(sale.id, tracking_number)
        if updated is None:
            raise SaleNotFound(f"Sale {sale_id} not found")
        return updated

    async def _get_sale_for(self, sale_id: str, seller_id: Optional[str]) -> Sale:
        sale = await self.store.get_sale(sale_id)
        if sale is None:
            raise SaleNotFound(f"Sale {sale_id} not found", param="sale_id")
        if seller_id is not None and sale.seller_id != seller_id:
            raise NotSaleSeller("Only the seller can manage shipping for this sale")
        return sale


def _metadata_int(session: PaymentSession, key: str) -> int:
    raw = session.metadata.get(key)
    if raw is None:
        raise MalformedSession(f"Session {session.id} has no {key}", param=f"metadata.{key}")
    try:
        return int(raw)
    except ValueError:
        raise MalformedSession(
            f"Session {session.id} has non-numeric {key}: {raw!r}", param=f"metadata.{key}"
        ) from None
