import logging
from typing import Annotated

import redis
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import catalog, crud, schema
from .auth import AuthenticatedUser, get_current_user
from .checkout import CheckoutOrchestrator
from .config import get_settings
from .database import get_db
from .exceptions import (
    CheckoutValidationError,
    DuplicatePayment,
    PaymentGatewayError,
    ProductNotFound,
)
from .payment_gateway import StripePaymentGateway, get_payment_gateway
from .redis_client import get_redis_client
from .session_state import SessionState

logger = logging.getLogger(__name__)


def get_session_state(
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> SessionState:
    return SessionState(redis_client, current_user.id, get_settings().SESSION_TTL_SECONDS)


def get_checkout_orchestrator(
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[StripePaymentGateway, Depends(get_payment_gateway)],
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, gateway, currency=get_settings().PAYMENT_CURRENCY)


def _bad_request(e: CheckoutValidationError) -> HTTPException:
    detail = {"message": str(e), "missing_fields": e.missing_fields} if e.missing_fields else str(e)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


catalog_router = APIRouter(prefix="/products", tags=["Product Catalog"])


@catalog_router.get("", response_model=schema.ProductList)
def list_products() -> schema.ProductList:
    return schema.ProductList(products=catalog.list_products())


cart_router = APIRouter(prefix="/cart", tags=["Shopping Cart"])


@cart_router.get("", response_model=schema.Cart)
def get_cart(session: Annotated[SessionState, Depends(get_session_state)]) -> schema.Cart:
    return session.get_cart()


@cart_router.post("/items", response_model=schema.Cart, status_code=status.HTTP_201_CREATED)
def add_to_cart(
    item_create: schema.CartItemCreate,
    session: Annotated[SessionState, Depends(get_session_state)],
) -> schema.Cart:
    try:
        line = catalog.price_line(item_create)
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CheckoutValidationError as e:
        raise _bad_request(e) from e
    return session.add_line(line)


@cart_router.patch("/items", response_model=schema.Cart)
def update_cart_item(
    item_update: schema.CartItemUpdate,
    session: Annotated[SessionState, Depends(get_session_state)],
) -> schema.Cart:
    try:
        return session.update_quantity(item_update, item_update.quantity)
    except CheckoutValidationError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@cart_router.delete("/items", response_model=schema.Cart)
def remove_cart_item(
    session: Annotated[SessionState, Depends(get_session_state)],
    product_ref: str,
    size: str = "",
    color: str = "",
) -> schema.Cart:
    key = schema.CartLineKey(product_ref=product_ref, size=size, color=color)
    return session.remove_line(key)


@cart_router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(session: Annotated[SessionState, Depends(get_session_state)]) -> None:
    session.clear_cart()


wishlist_router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


@wishlist_router.get("", response_model=schema.Wishlist)
def get_wishlist(session: Annotated[SessionState, Depends(get_session_state)]) -> schema.Wishlist:
    return schema.Wishlist(product_refs=session.get_wishlist())


@wishlist_router.post("/{product_ref}", response_model=schema.Wishlist)
def toggle_wishlist(
    product_ref: str,
    session: Annotated[SessionState, Depends(get_session_state)],
) -> schema.Wishlist:
    try:
        catalog.get_product(product_ref)
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return schema.Wishlist(product_refs=session.toggle_wishlist(product_ref))


checkout_router = APIRouter(tags=["Checkout"])

"""
    Checkout sequence
    POST /payment-authorizations -> client handle for the processor's payment form
    POST /checkout/draft -> stage cart + shipping address in the session
    (shopper confirms payment with the processor and is redirected back)
    POST /checkout/reconcile -> verify status with the processor, record the order once
"""


@checkout_router.post(
    "/payment-authorizations",
    response_model=schema.AuthorizationHandle,
    status_code=status.HTTP_201_CREATED,
)
def create_payment_authorization(
    body: schema.PaymentAuthorizationCreate,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_checkout_orchestrator)],
) -> schema.AuthorizationHandle:
    try:
        return orchestrator.begin_authorization(body.total, current_user)
    except CheckoutValidationError as e:
        raise _bad_request(e) from e
    except PaymentGatewayError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


@checkout_router.post("/checkout/draft", response_model=schema.OrderDraft, status_code=status.HTTP_201_CREATED)
def stage_order_draft(
    body: schema.StageDraftRequest,
    session: Annotated[SessionState, Depends(get_session_state)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_checkout_orchestrator)],
) -> schema.OrderDraft:
    try:
        return orchestrator.stage_order_draft(session, body.shipping_address)
    except CheckoutValidationError as e:
        raise _bad_request(e) from e


@checkout_router.get("/checkout/draft", response_model=schema.OrderDraft)
def get_order_draft(session: Annotated[SessionState, Depends(get_session_state)]) -> schema.OrderDraft:
    draft = session.load_draft()
    if draft is None:
        raise HTTPException(status_code=404, detail="No order draft is staged.")
    return draft


@checkout_router.post("/checkout/reconcile", response_model=schema.ReconciliationResult)
def reconcile_checkout(
    body: schema.ReconcileRequest,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    session: Annotated[SessionState, Depends(get_session_state)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_checkout_orchestrator)],
) -> schema.ReconciliationResult:
    return orchestrator.reconcile(body.client_handle, current_user, session)


order_router = APIRouter(prefix="/orders", tags=["Order Management"])


@order_router.post("", response_model=schema.OrderCreated, status_code=status.HTTP_201_CREATED)
def create_order(
    order_create: schema.OrderCreate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
) -> schema.OrderCreated:
    # Payment status is not re-verified here; /checkout/reconcile does that.
    try:
        db_order = crud.create_order(
            db,
            owner_id=current_user.id,
            lines=order_create.lines,
            total_amount=order_create.total_amount,
            currency=order_create.currency or get_settings().PAYMENT_CURRENCY,
            shipping_address=order_create.shipping_address,
            payment_authorization_id=order_create.authorization_id,
        )
    except DuplicatePayment as e:
        raise HTTPException(status_code=400, detail="This payment has already been recorded.") from e
    return schema.OrderCreated(order_id=db_order.id)


@order_router.get("", response_model=list[schema.Order])
def retrieve_my_orders(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
) -> list[schema.Order]:
    return crud.get_orders_by_owner(db, owner_id=current_user.id)


@order_router.get("/{order_id}", response_model=schema.Order)
def retrieve_order(
    order_id: int,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
) -> schema.Order:
    db_order = crud.get_order(db, order_id=order_id)
    if db_order is None or db_order.owner_id != current_user.id:
        raise HTTPException(status_code=404, detail="Order not found")
    return db_order


monitoring_router = APIRouter(tags=["Monitoring"])


@monitoring_router.get("/health/ping", status_code=status.HTTP_200_OK)
def health_check(db: Annotated[Session, Depends(get_db)]) -> dict:
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.exception("Health check failed: Database connection error")
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "database": "disconnected"},
        ) from e
    else:
        return {"status": "ok", "database": "connected"}
