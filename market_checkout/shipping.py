"""
Shipping Rate/Label Provider Abstraction.

- `MockShippingProvider`: deterministic rates and fake labels, no network
- `ShippoShippingProvider`: Shippo REST API over httpx

The factory `create_shipping_provider()` picks Shippo when SHIPPO_API_KEY is
set. Cost estimates never touch the network; only rate shopping and label
purchase do.
"""

from __future__ import annotations

import abc
import logging
import os
import time
import uuid
from typing import Any, Optional

import httpx

from market_checkout.errors import ShippingLabelError, ShippingProviderUnavailable
from market_checkout.models import PackageSize, ShippingAddress, ShippingLabel, ShippingRate
from market_checkout.pricing import PACKAGE_SIZES, estimated_shipping_cost


SHIPPO_API_URL = os.getenv("SHIPPO_API_URL", "https://api.goshippo.com")
SHIPPING_TIMEOUT_SECONDS = float(os.getenv("SHIPPING_TIMEOUT_SECONDS", "15"))
MAX_RATES = 5

SHIP_FROM_ADDRESS = ShippingAddress(
    name=os.getenv("SHIP_FROM_NAME", "Archive Commodities"),
    street1=os.getenv("SHIP_FROM_STREET1", "123 Archive Street"),
    city=os.getenv("SHIP_FROM_CITY", "Los Angeles"),
    state=os.getenv("SHIP_FROM_STATE", "CA"),
    zip=os.getenv("SHIP_FROM_ZIP", "90001"),
    country=os.getenv("SHIP_FROM_COUNTRY", "US"),
    phone=os.getenv("SHIP_FROM_PHONE", "+1 555 341 9393"),
    email=os.getenv("SHIP_FROM_EMAIL", "shipping@archive-commodities.com"),
)

logger = logging.getLogger(__name__)


class ShippingProvider(abc.ABC):
    """Abstract base for shipping rate and label providers."""

    origin_country = SHIP_FROM_ADDRESS.country

    def estimate_cost(self, package_size: PackageSize | str) -> int:
        """Flat pre-purchase estimate for a package size (cents)."""
        return estimated_shipping_cost(package_size)

    @abc.abstractmethod
    async def get_rates(
        self,
        to_address: ShippingAddress,
        package_size: PackageSize | str,
    ) -> list[ShippingRate]:
        """Cheapest-first rates for shipping one parcel to `to_address`."""
        ...

    @abc.abstractmethod
    async def purchase_rate(self, rate_id: str) -> ShippingLabel:
        """Buy the label for a previously quoted rate."""
        ...

    async def purchase_label(
        self,
        to_address: ShippingAddress,
        package_size: PackageSize | str,
        preferred_carrier: str = "usps",
    ) -> ShippingLabel:
        rates = await self.get_rates(to_address, package_size)
        selected = next(
            (r for r in rates if r.carrier.lower() == preferred_carrier.lower()),
            rates[0] if rates else None,
        )
        if selected is None:
            raise ShippingLabelError("No shipping rates available")
        return await self.purchase_rate(selected.rate_id)


def mock_rates(package_size: PackageSize | str) -> list[ShippingRate]:
    base = estimated_shipping_cost(package_size)
    return [
        ShippingRate(rate_id="mock_usps_ground", carrier="USPS", service="Ground Advantage",
                     estimated_days=5, amount=base),
        ShippingRate(rate_id="mock_ups_ground", carrier="UPS", service="Ground",
                     estimated_days=5, amount=base + 100),
        ShippingRate(rate_id="mock_usps_priority", carrier="USPS", service="Priority Mail",
                     estimated_days=3, amount=base + 300),
    ]


def mock_label() -> ShippingLabel:
    tracking_number = f"MOCK{int(time.time() * 1000)}{uuid.uuid4().hex[:6].upper()}"
    return ShippingLabel(
        label_url=f"https://example.com/labels/{tracking_number}.pdf",
        tracking_number=tracking_number,
        tracking_url=f"https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}",
    )


class MockShippingProvider(ShippingProvider):
    """No-network provider used when Shippo is not configured."""

    def __init__(self):
        self.labels: list[ShippingLabel] = []

    async def get_rates(
        self,
        to_address: ShippingAddress,
        package_size: PackageSize | str,
    ) -> list[ShippingRate]:
        return mock_rates(package_size)

    async def purchase_rate(self, rate_id: str) -> ShippingLabel:
        label = mock_label()
        self.labels.append(label)
        return label


class ShippoShippingProvider(ShippingProvider):
    """
    Shippo integration via its REST API.

    Rate lookup failures degrade to mock rates so checkout can still show an
    estimate; label purchase failures are raised to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = SHIPPO_API_URL,
        timeout: float = SHIPPING_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or os.getenv("SHIPPO_API_KEY", "")
        if not self.api_key:
            raise ValueError(
                "SHIPPO_API_KEY is required for ShippoShippingProvider. "
                "Use MockShippingProvider for development."
            )
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"ShippoToken {self.api_key}"},
            transport=self._transport,
        )

    async def get_rates(
        self,
        to_address: ShippingAddress,
        package_size: PackageSize | str,
    ) -> list[ShippingRate]:
        pkg = PACKAGE_SIZES[PackageSize(package_size)]
        payload = {
            "address_from": _shippo_address(SHIP_FROM_ADDRESS),
            "address_to": _shippo_address(to_address),
            "parcels": [
                {
                    "length": str(pkg["length"]),
                    "width": str(pkg["width"]),
                    "height": str(pkg["height"]),
                    "distance_unit": "in",
                    "weight": str(pkg["max_weight"]),
                    "mass_unit": "lb",
                }
            ],
            "async": False,
        }
        try:
            async with self._client() as client:
                resp = await client.post("/shipments/", json=payload)
                resp.raise_for_status()
                shipment = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Shippo rate lookup failed, using mock rates: %s", exc)
            return mock_rates(package_size)

        rates = [
            ShippingRate(
                rate_id=r.get("object_id") or "",
                carrier=r.get("provider") or "",
                service=(r.get("servicelevel") or {}).get("name") or "",
                estimated_days=r.get("estimated_days") or 5,
                amount=round(float(r["amount"]) * 100),
                currency=r.get("currency") or "USD",
            )
            for r in shipment.get("rates") or []
            if r.get("amount") and r.get("provider") and (r.get("servicelevel") or {}).get("name")
        ]
        rates.sort(key=lambda r: r.amount)
        return rates[:MAX_RATES]

    async def purchase_rate(self, rate_id: str) -> ShippingLabel:
        payload = {"rate": rate_id, "label_file_type": "PDF", "async": False}
        try:
            async with self._client() as client:
                resp = await client.post("/transactions/", json=payload)
                resp.raise_for_status()
                transaction = resp.json()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ShippingProviderUnavailable(f"Shippo unavailable: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code >= 500:
                raise ShippingProviderUnavailable(f"Shippo error {exc.response.status_code}") from exc
            raise ShippingLabelError(f"Shippo rejected label purchase: {exc.response.text}") from exc

        if transaction.get("status") != "SUCCESS":
            messages = [
                m.get("text", str(m)) if isinstance(m, dict) else str(m)
                for m in transaction.get("messages") or []
            ]
            raise ShippingLabelError(", ".join(messages) or "Failed to purchase label")

        return ShippingLabel(
            label_url=transaction.get("label_url") or "",
            tracking_number=transaction.get("tracking_number") or "",
            tracking_url=transaction.get("tracking_url_provider") or "",
        )


def _shippo_address(address: ShippingAddress) -> dict[str, Any]:
    data = {
        "name": address.name,
        "street1": address.street1,
        "city": address.city,
        "state": address.state,
        "zip": address.zip,
        "country": address.country,
    }
    for key in ("street2", "email", "phone"):
        value = getattr(address, key)
        if value:
            data[key] = value
    return data


def create_shipping_provider(shippo_api_key: Optional[str] = None) -> ShippingProvider:
    """
    Factory: returns ShippoShippingProvider if an API key is available,
    otherwise falls back to MockShippingProvider.
    """
    key = shippo_api_key or os.getenv("SHIPPO_API_KEY", "")
    if key:
        return ShippoShippingProvider(api_key=key)
    return MockShippingProvider()
