import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session, joinedload, selectinload

from storefront.auth import InvalidTokenError, decode_token, verify_token
from storefront.config import (
    ORDER_LOOKUP_DELAY_SECONDS,
    ORDER_LOOKUP_MAX_ATTEMPTS,
    WEBHOOK_SIGNATURE_HEADER,
    get_webhook_secret,
)
from storefront.database import get_db
from storefront.models import DeliveryMethod, Order
from storefront.notifications import NotificationDispatcher
from storefront.reconciler import OrderReconciler
from storefront.retry import NotFoundAfterRetries, RetryPolicy
from storefront.schemas import DeliveryMethodDto, OrderDto
from storefront.webhook import VerificationError, verify

logger = logging.getLogger(__name__)

router = APIRouter()


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=ORDER_LOOKUP_MAX_ATTEMPTS, delay=ORDER_LOOKUP_DELAY_SECONDS)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    # Starlette caches the body, so it stays readable after this
    payload = await request.body()

    try:
        event = verify(payload, request.headers.get(WEBHOOK_SIGNATURE_HEADER), get_webhook_secret())
    except VerificationError as exc:
        logger.error("Webhook verification failed: %s", exc)
        raise HTTPException(status_code=500, detail="Webhook error")

    intent = event.payment_intent()
    if intent is None:
        logger.info("Ignoring %s event without a payment intent", event.type)
        return {"ok": True}
    if intent.status != "succeeded":
        logger.info("Ignoring payment intent %s with status %s", intent.id, intent.status)
        return {"ok": True}

    try:
        result = await OrderReconciler(db, retry_policy, dispatcher).reconcile(intent)
    except Exception:
        logger.exception("Failed to reconcile payment intent %s", intent.id)
        raise HTTPException(status_code=500, detail="An unexpected error occurred")

    # Non-2xx makes the provider redeliver later
    if isinstance(result, NotFoundAfterRetries):
        raise HTTPException(status_code=500, detail="An unexpected error occurred")

    return {"ok": True}


@router.get("/payments/delivery-methods", response_model=List[DeliveryMethodDto])
def list_delivery_methods(db: Session = Depends(get_db)):
    return db.query(DeliveryMethod).order_by(DeliveryMethod.price).all()


def _orders_for(db: Session, email: str):
    return (
        db.query(Order)
        .options(selectinload(Order.order_items), joinedload(Order.delivery_method))
        .filter_by(buyer_email=email)
    )


@router.get("/orders", response_model=List[OrderDto])
def list_orders(email: str = Depends(verify_token), db: Session = Depends(get_db)):
    orders = _orders_for(db, email).order_by(Order.order_date.desc()).all()
    return [OrderDto.from_order(order) for order in orders]


@router.get("/orders/{order_id}", response_model=OrderDto)
def get_order(order_id: int, email: str = Depends(verify_token), db: Session = Depends(get_db)):
    order = _orders_for(db, email).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderDto.from_order(order)


@router.websocket("/hub/notifications")
async def notification_hub(websocket: WebSocket, access_token: Optional[str] = None):
    try:
        email = decode_token(access_token)
    except InvalidTokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = websocket.app.state.hub
    connection_id = await hub.connect(websocket, email)
    try:
        # Clients only listen; drain anything they send until they leave
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)
