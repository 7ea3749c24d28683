"""
Marketplace Service: FastAPI app for checkout and fulfillment.

Listings and sales live in PostgreSQL; payments go through Stripe Checkout
(mock when STRIPE_API_KEY is unset) and labels through Shippo (mock when
SHIPPO_API_KEY is unset).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from market_checkout.checkout import CheckoutService
from market_checkout.fulfillment import FulfillmentCoordinator
from market_checkout.payment import create_payment_provider
from market_checkout.router import create_checkout_router
from market_checkout.shipping import create_shipping_provider
from services.marketplace.database import async_session, init_db
from services.marketplace.store import SqlListingStore


logger = logging.getLogger(__name__)

store = SqlListingStore(async_session)
payments = create_payment_provider()
shipping = create_shipping_provider()
coordinator = FulfillmentCoordinator(store, payments, shipping)
checkout = CheckoutService(store, payments)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info(
        "Marketplace service started (payments=%s, shipping=%s)",
        type(payments).__name__, type(shipping).__name__,
    )
    yield


app = FastAPI(
    title="Marketplace Service: Checkout & Fulfillment",
    description="Hosted checkout, exactly-once fulfillment and shipping labels",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(create_checkout_router(coordinator, checkout, prefix="/api"))


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "marketplace",
        "payments": type(payments).__name__,
        "shipping": type(shipping).__name__,
    }
