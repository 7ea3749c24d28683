"""
Checkout Router Factory.

`create_checkout_router()` wires the checkout service and the fulfillment
coordinator into a FastAPI APIRouter:

    coordinator = FulfillmentCoordinator(store, payments, shipping)
    checkout = CheckoutService(store, payments)
    app.include_router(create_checkout_router(coordinator, checkout))

Caller identity comes from the `X-User-Id` header, set by the auth layer in
front of this service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from market_checkout.checkout import CheckoutService
from market_checkout.errors import (
    CheckoutError,
    FulfillmentError,
    ProviderUnavailable,
    WebhookSignatureError,
)
from market_checkout.fulfillment import FulfillmentCoordinator
from market_checkout.models import (
    CheckoutQuote,
    CompleteCheckoutRequest,
    MarkShippedRequest,
    PackageSize,
    PurchaseLabelRequest,
    Sale,
    SaleRole,
    ShippingEstimate,
    StartCheckoutRequest,
    StartCheckoutResponse,
)


CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"

logger = logging.getLogger(__name__)


def _error_response(error: CheckoutError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.body.model_dump())


def _require_user(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def create_checkout_router(
    coordinator: FulfillmentCoordinator,
    checkout: CheckoutService,
    prefix: str = "",
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["Checkout"])
    store = coordinator.store

    @router.post("/checkout", status_code=201, response_model=StartCheckoutResponse)
    async def start_checkout(
        body: StartCheckoutRequest,
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ):
        try:
            session, quote = await checkout.start_checkout(
                body.listing_id,
                buyer_id=x_user_id,
                international=body.international,
                buyer_email=body.buyer_email,
            )
        except CheckoutError as e:
            return _error_response(e)
        return StartCheckoutResponse(session_id=session.id, url=session.url, quote=quote)

    @router.post("/checkout/complete", response_model=Sale)
    async def complete_checkout(body: CompleteCheckoutRequest):
        """Client-side confirmation after the redirect back from the payment page."""
        try:
            sale = await coordinator.fulfill(body.session_id)
        except CheckoutError as e:
            return _error_response(e)

        if body.listing_id and sale.listing_id != body.listing_id:
            # The committed sale is authoritative; the client hint is not.
            logger.warning(
                "listing_id mismatch on checkout/complete: session %s sold %s, client sent %s",
                body.session_id, sale.listing_id, body.listing_id,
            )
        return sale

    @router.post("/webhooks/payments")
    async def payment_webhook(
        request: Request,
        stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    ):
        raw_body = await request.body()
        try:
            event = coordinator.payments.parse_webhook_event(raw_body, stripe_signature)
        except WebhookSignatureError as e:
            logger.warning("Rejected webhook delivery: %s", e)
            return _error_response(e)

        if event.type != CHECKOUT_COMPLETED_EVENT or not event.session_id:
            return {"received": True, "handled": False}

        try:
            sale = await coordinator.fulfill(event.session_id)
        except ProviderUnavailable as e:
            # Nothing was committed; let the provider redeliver.
            logger.warning("Webhook: provider unavailable for %s: %s", event.session_id, e)
            return _error_response(e)
        except FulfillmentError as e:
            logger.warning("Webhook: fulfillment skipped for %s: %s (%s)", event.session_id, e, e.kind)
            return {"received": True, "handled": True, "fulfilled": False, "error": e.kind}
        except Exception:
            # The client confirmation path can still fulfill this session.
            logger.exception("Webhook: fulfillment error for %s", event.session_id)
            return {"received": True, "handled": True, "fulfilled": False, "error": "internal_error"}

        logger.info("Webhook: fulfilled checkout session %s as sale %s", event.session_id, sale.id)
        return {"received": True, "handled": True, "fulfilled": True, "sale_id": sale.id}

    @router.get("/listings/{listing_id}/quote", response_model=CheckoutQuote)
    async def listing_quote(listing_id: str, international: bool = Query(False)):
        try:
            return await checkout.quote(listing_id, international)
        except CheckoutError as e:
            return _error_response(e)

    @router.get("/shipping/estimate", response_model=ShippingEstimate)
    async def shipping_estimate(package_size: PackageSize = Query(PackageSize.MEDIUM)):
        return ShippingEstimate(
            package_size=package_size,
            amount=coordinator.shipping.estimate_cost(package_size),
        )

    @router.get("/sales", response_model=list[Sale])
    async def list_sales(
        role: SaleRole = Query(SaleRole.BUYER),
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ):
        user_id = _require_user(x_user_id)
        if role == SaleRole.SELLER:
            return await store.list_sales_for_seller(user_id)
        return await store.list_sales_for_buyer(user_id)

    @router.post("/sales/{sale_id}/ship", response_model=Sale)
    async def mark_shipped(
        sale_id: str,
        body: MarkShippedRequest,
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ):
        user_id = _require_user(x_user_id)
        try:
            return await coordinator.mark_shipped(sale_id, user_id, body.tracking_number)
        except CheckoutError as e:
            return _error_response(e)

    @router.post("/sales/{sale_id}/label", response_model=Sale)
    async def purchase_label(
        sale_id: str,
        body: PurchaseLabelRequest,
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ):
        user_id = _require_user(x_user_id)
        try:
            return await coordinator.retry_label(sale_id, body.address, seller_id=user_id)
        except CheckoutError as e:
            return _error_response(e)

    return router
