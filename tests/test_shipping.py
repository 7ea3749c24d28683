import asyncio
import json

import httpx
import pytest

from market_checkout.errors import ShippingLabelError, ShippingProviderUnavailable
from market_checkout.models import PackageSize
from market_checkout.shipping import (
    MockShippingProvider,
    ShippoShippingProvider,
    create_shipping_provider,
    mock_rates,
)


def _shippo(handler) -> ShippoShippingProvider:
    return ShippoShippingProvider(
        api_key="shippo_test_key",
        base_url="https://shippo.test",
        transport=httpx.MockTransport(handler),
    )


def _rate(object_id, provider, service, amount, days=3):
    return {
        "object_id": object_id,
        "provider": provider,
        "servicelevel": {"name": service},
        "amount": amount,
        "currency": "USD",
        "estimated_days": days,
    }


def test_factory_without_key_uses_mock(monkeypatch):
    monkeypatch.delenv("SHIPPO_API_KEY", raising=False)
    assert isinstance(create_shipping_provider(), MockShippingProvider)
    assert isinstance(create_shipping_provider("shippo_test_key"), ShippoShippingProvider)


def test_estimate_cost_does_not_need_network():
    provider = MockShippingProvider()
    assert provider.estimate_cost(PackageSize.SMALL) == 599
    assert provider.origin_country == "US"


def test_mock_rates_are_priced_from_estimate():
    rates = mock_rates(PackageSize.LARGE)
    assert [r.amount for r in rates] == [1299, 1399, 1599]


async def test_purchase_label_prefers_carrier(us_address):
    provider = MockShippingProvider()

    label = await provider.purchase_label(us_address, PackageSize.MEDIUM, preferred_carrier="ups")

    assert label.tracking_number.startswith("MOCK")
    assert provider.labels == [label]


async def test_shippo_rates_sorted_and_capped(us_address):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        rates = [_rate(f"r{i}", "USPS", "Ground", f"{20 - i}.00") for i in range(7)]
        rates.append({"object_id": "broken", "provider": "UPS", "amount": None})
        return httpx.Response(200, json={"rates": rates})

    rates = await _shippo(handler).get_rates(us_address, PackageSize.SMALL)

    assert [r.amount for r in rates] == [1400, 1500, 1600, 1700, 1800]
    body = json.loads(requests[0].content)
    assert requests[0].url.path == "/shipments/"
    assert requests[0].headers["Authorization"] == "ShippoToken shippo_test_key"
    assert body["address_to"]["country"] == "US"
    assert body["parcels"][0]["weight"] == "1"


async def test_shippo_rate_failure_falls_back_to_mock(us_address):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "down"})

    rates = await _shippo(handler).get_rates(us_address, PackageSize.MEDIUM)

    assert rates == mock_rates(PackageSize.MEDIUM)


async def test_shippo_label_purchase(us_address):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/shipments/":
            return httpx.Response(200, json={"rates": [
                _rate("rate_ups", "UPS", "Ground", "9.10"),
                _rate("rate_usps", "USPS", "Ground Advantage", "9.40"),
            ]})
        assert json.loads(request.content)["rate"] == "rate_usps"
        return httpx.Response(200, json={
            "status": "SUCCESS",
            "label_url": "https://shippo.test/label.pdf",
            "tracking_number": "9400100000000000000000",
            "tracking_url_provider": "https://tools.usps.com/track/9400100000000000000000",
        })

    label = await _shippo(handler).purchase_label(us_address, PackageSize.MEDIUM)

    assert label.tracking_number == "9400100000000000000000"
    assert label.label_url == "https://shippo.test/label.pdf"


async def test_shippo_label_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "status": "ERROR",
            "messages": [{"text": "Address not deliverable"}],
        })

    with pytest.raises(ShippingLabelError, match="Address not deliverable"):
        await _shippo(handler).purchase_rate("rate_1")


async def test_shippo_label_rejected_request():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"rate": ["invalid"]})

    with pytest.raises(ShippingLabelError):
        await _shippo(handler).purchase_rate("rate_1")


async def test_shippo_outage_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(ShippingProviderUnavailable):
        await _shippo(handler).purchase_rate("rate_1")


async def test_shippo_timeout_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ShippingProviderUnavailable):
        await _shippo(handler).purchase_rate("rate_1")


async def test_mock_labels_bought_together_are_distinct(us_address):
    provider = MockShippingProvider()

    first, second = await asyncio.gather(
        provider.purchase_rate("mock_usps_ground"),
        provider.purchase_rate("mock_usps_ground"),
    )

    assert first.tracking_number != second.tracking_number
    assert first.label_url != second.label_url
