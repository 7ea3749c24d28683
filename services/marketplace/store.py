"""
SQLAlchemy-backed Listing Store.

The sale commit relies on two database guarantees rather than on reads done
beforehand: the conditional ``UPDATE ... WHERE sold = false`` only matches an
unsold listing, and the UNIQUE indexes on ``sales.payment_session_id`` and
``sales.listing_id`` reject a second sale. Both writes share one transaction.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from market_checkout.store import (
    DuplicateSaleError,
    ListingStore,
    ListingUnavailableError,
    new_listing_id,
    new_sale_id,
)
from services.marketplace.database import ListingRow, SaleRow


def _listing_from_row(row: ListingRow) -> Listing:
    return Listing(
        id=row.id,
        seller_id=row.seller_id,
        title=row.title,
        description=row.description or "",
        price=row.price,
        shipping_policy=ShippingPolicy(row.shipping_policy),
        package_size=PackageSize(row.package_size),
        international_shipping_price=row.international_shipping_price,
        sold=bool(row.sold),
        created_at=row.created_at,
    )


def _sale_from_row(row: SaleRow) -> Sale:
    return Sale(
        id=row.id,
        buyer_id=row.buyer_id,
        buyer_email=row.buyer_email,
        seller_id=row.seller_id,
        listing_id=row.listing_id,
        amount=row.amount,
        fee=row.fee,
        shipping_cost=row.shipping_cost or 0,
        payment_session_id=row.payment_session_id,
        shipped=bool(row.shipped),
        tracking_number=row.tracking_number,
        tracking_url=row.tracking_url,
        label_url=row.label_url,
        is_international=bool(row.is_international),
        created_at=row.created_at,
    )


class SqlListingStore(ListingStore):

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def create_listing(self, listing: NewListing) -> Listing:
        async with self._sessionmaker() as db:
            row = ListingRow(id=new_listing_id(), sold=False, **listing.model_dump(mode="json"))
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return _listing_from_row(row)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        async with self._sessionmaker() as db:
            row = await db.get(ListingRow, listing_id)
            return _listing_from_row(row) if row else None

    async def update_listing(
        self,
        listing_id: str,
        *,
        price: Optional[int] = None,
        shipping_policy: Optional[ShippingPolicy] = None,
        package_size: Optional[PackageSize] = None,
        international_shipping_price: Optional[int] = None,
    ) -> Listing:
        async with self._sessionmaker() as db:
            async with db.begin():
                row = await db.get(ListingRow, listing_id, with_for_update=True)
                if row is None:
                    raise ListingNotFound(f"Listing {listing_id} not found", param="listing_id")
                if row.sold:
                    raise ListingLocked(f"Listing {listing_id} is sold and can no longer be edited")
                if price is not None:
                    row.price = price
                if shipping_policy is not None:
                    row.shipping_policy = ShippingPolicy(shipping_policy).value
                if package_size is not None:
                    row.package_size = PackageSize(package_size).value
                if international_shipping_price is not None:
                    row.international_shipping_price = international_shipping_price
                listing = _listing_from_row(row)
            return listing

    async def create_sale_and_mark_sold(self, sale: NewSale) -> Sale:
        async with self._sessionmaker() as db:
            try:
                async with db.begin():
                    result = await db.execute(
                        update(ListingRow)
                        .where(ListingRow.id == sale.listing_id, ListingRow.sold.is_(False))
                        .values(sold=True)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ListingUnavailableError(sale.listing_id)

                    row = SaleRow(id=new_sale_id(), **sale.model_dump())
                    db.add(row)
                    await db.flush()
                    await db.refresh(row)
                    created = _sale_from_row(row)
            except IntegrityError as exc:
                raise DuplicateSaleError(sale.payment_session_id) from exc
            return created

    async def find_sale_by_session(self, payment_session_id: str) -> Optional[Sale]:
        async with self._sessionmaker() as db:
            row = (
                await db.execute(
                    select(SaleRow).where(SaleRow.payment_session_id == payment_session_id)
                )
            ).scalar_one_or_none()
            return _sale_from_row(row) if row else None

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        async with self._sessionmaker() as db:
            row = await db.get(SaleRow, sale_id)
            return _sale_from_row(row) if row else None

    async def update_sale_label(self, sale_id: str, label: ShippingLabel) -> Optional[Sale]:
        return await self._update_sale(
            sale_id,
            label_url=label.label_url,
            tracking_number=label.tracking_number,
            tracking_url=label.tracking_url,
        )

    async def mark_sale_shipped(self, sale_id: str, tracking_number: str) -> Optional[Sale]:
        return await self._update_sale(sale_id, tracking_number=tracking_number, shipped=True)

    async def _update_sale(self, sale_id: str, **changes) -> Optional[Sale]:
        async with self._sessionmaker() as db:
            row = await db.get(SaleRow, sale_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return _sale_from_row(row)

    async def list_sales_for_buyer(self, buyer_id: str) -> list[Sale]:
        return await self._list_sales(SaleRow.buyer_id == buyer_id)

    async def list_sales_for_seller(self, seller_id: str) -> list[Sale]:
        return await self._list_sales(SaleRow.seller_id == seller_id)

    async def _list_sales(self, condition) -> list[Sale]:
        async with self._sessionmaker() as db:
            rows = (
                await db.execute(
                    select(SaleRow).where(condition).order_by(SaleRow.created_at.desc())
                )
            ).scalars().all()
            return [_sale_from_row(row) for row in rows]
