"""
Listing Store Abstraction.

The store is the authority on listing price, shipping policy and sold state,
and owns Sales once they are committed. `create_sale_and_mark_sold()` is the
linearization point of fulfillment: it must insert the Sale and flip the
listing's sold flag atomically, and must enforce uniqueness of the payment
session id.

`InMemoryListingStore` is the development/test implementation; the service
ships a SQLAlchemy-backed one.
"""

from __future__ import annotations

import abc
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Optional

from market_checkout.errors import ListingLocked, ListingNotFound
from market_checkout.models import (
    Listing,
    NewListing,
    NewSale,
    PackageSize,
    Sale,
    ShippingLabel,
    ShippingPolicy,
)


class StoreError(Exception):
    """Base class for listing store conflicts."""


class DuplicateSaleError(StoreError):
    """A Sale already exists for this payment session (or this listing)."""

    def __init__(self, payment_session_id: str):
        self.payment_session_id = payment_session_id
        super().__init__(f"Sale already recorded for session {payment_session_id}")


class ListingUnavailableError(StoreError):
    """The listing is missing or was already marked sold."""

    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} is missing or already sold")


def new_listing_id() -> str:
    return f"lst_{uuid.uuid4().hex[:12]}"


def new_sale_id() -> str:
    return f"sale_{uuid.uuid4().hex[:12]}"


class ListingStore(abc.ABC):

    @abc.abstractmethod
    async def create_listing(self, listing: NewListing) -> Listing:
        ...

    @abc.abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        ...

    @abc.abstractmethod
    async def update_listing(
        self,
        listing_id: str,
        *,
        price: Optional[int] = None,
        shipping_policy: Optional[ShippingPolicy] = None,
        package_size: Optional[PackageSize] = None,
        international_shipping_price: Optional[int] = None,
    ) -> Listing:
        """Seller edit. Raises ListingNotFound, or ListingLocked once sold."""
        ...

    @abc.abstractmethod
    async def create_sale_and_mark_sold(self, sale: NewSale) -> Sale:
        """
        Atomically insert the Sale and set the listing's sold flag.

        Raises DuplicateSaleError if a Sale already exists for the payment
        session (or for the listing), ListingUnavailableError if the listing
        is missing or already sold. Nothing is written in either case.
        """
        ...

    @abc.abstractmethod
    async def find_sale_by_session(self, payment_session_id: str) -> Optional[Sale]:
        ...

    @abc.abstractmethod
    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        ...

    @abc.abstractmethod
    async def update_sale_label(self, sale_id: str, label: ShippingLabel) -> Optional[Sale]:
        ...

    @abc.abstractmethod
    async def mark_sale_shipped(self, sale_id: str, tracking_number: str) -> Optional[Sale]:
        ...

    @abc.abstractmethod
    async def list_sales_for_buyer(self, buyer_id: str) -> list[Sale]:
        ...

    @abc.abstractmethod
    async def list_sales_for_seller(self, seller_id: str) -> list[Sale]:
        ...


class InMemoryListingStore(ListingStore):
    """
    Dict-backed store. A single lock serializes sale commits so the
    check-and-write on the sold flag and session id is atomic.
    """

    def __init__(self):
        self._listings: dict[str, Listing] = {}
        self._sales: dict[str, Sale] = {}
        self._sales_by_session: dict[str, str] = {}
        self._commit_lock = asyncio.Lock()
        self.commit_count = 0

    async def create_listing(self, listing: NewListing) -> Listing:
        row = Listing(
            id=new_listing_id(),
            created_at=datetime.now(timezone.utc),
            **listing.model_dump(),
        )
        self._listings[row.id] = row
        return row.model_copy()

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        listing = self._listings.get(listing_id)
        return listing.model_copy() if listing else None

    async def update_listing(
        self,
        listing_id: str,
        *,
        price: Optional[int] = None,
        shipping_policy: Optional[ShippingPolicy] = None,
        package_size: Optional[PackageSize] = None,
        international_shipping_price: Optional[int] = None,
    ) -> Listing:
        async with self._commit_lock:
            listing = self._listings.get(listing_id)
            if listing is None:
                raise ListingNotFound(f"Listing {listing_id} not found", param="listing_id")
            if listing.sold:
                raise ListingLocked(f"Listing {listing_id} is sold and can no longer be edited")
            changes = {
                "price": price,
                "shipping_policy": shipping_policy,
                "package_size": package_size,
                "international_shipping_price": international_shipping_price,
            }
            updated = listing.model_copy(
                update={k: v for k, v in changes.items() if v is not None}
            )
            self._listings[listing_id] = updated
            return updated.model_copy()

    async def create_sale_and_mark_sold(self, sale: NewSale) -> Sale:
        async with self._commit_lock:
            if sale.payment_session_id in self._sales_by_session:
                raise DuplicateSaleError(sale.payment_session_id)
            listing = self._listings.get(sale.listing_id)
            if listing is None or listing.sold:
                raise ListingUnavailableError(sale.listing_id)

            row = Sale(
                id=new_sale_id(),
                created_at=datetime.now(timezone.utc),
                **sale.model_dump(),
            )
            self._sales[row.id] = row
            self._sales_by_session[sale.payment_session_id] = row.id
            self._listings[listing.id] = listing.model_copy(update={"sold": True})
            self.commit_count += 1
            return row.model_copy()

    async def find_sale_by_session(self, payment_session_id: str) -> Optional[Sale]:
        sale_id = self._sales_by_session.get(payment_session_id)
        return self._sales[sale_id].model_copy() if sale_id else None

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        sale = self._sales.get(sale_id)
        return sale.model_copy() if sale else None

    async def update_sale_label(self, sale_id: str, label: ShippingLabel) -> Optional[Sale]:
        return self._update_sale(
            sale_id,
            label_url=label.label_url,
            tracking_number=label.tracking_number,
            tracking_url=label.tracking_url,
        )

    async def mark_sale_shipped(self, sale_id: str, tracking_number: str) -> Optional[Sale]:
        return self._update_sale(sale_id, tracking_number=tracking_number, shipped=True)

    def _update_sale(self, sale_id: str, **changes) -> Optional[Sale]:
        sale = self._sales.get(sale_id)
        if sale is None:
            return None
        updated = sale.model_copy(update=changes)
        self._sales[sale_id] = updated
        return updated.model_copy()

    async def list_sales_for_buyer(self, buyer_id: str) -> list[Sale]:
        return self._sorted(s for s in self._sales.values() if s.buyer_id == buyer_id)

    async def list_sales_for_seller(self, seller_id: str) -> list[Sale]:
        return self._sorted(s for s in self._sales.values() if s.seller_id == seller_id)

    @staticmethod
    def _sorted(sales) -> list[Sale]:
        return [s.model_copy() for s in sorted(sales, key=lambda s: s.created_at, reverse=True)]
