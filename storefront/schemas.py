from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from storefront.models import Order, OrderStatus


class PaymentIntent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    status: str
    amount: int                      # minor units (cents)
    currency: Optional[str] = None


class EventData(BaseModel):
    model_config = ConfigDict(frozen=True)

    object: Dict[str, Any]


class PaymentEvent(BaseModel):
    """A provider event as delivered to the webhook, after verification."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = None
    type: str
    data: EventData

    def payment_intent(self) -> Optional[PaymentIntent]:
        if self.data.object.get("object") != "payment_intent":
            return None
        return PaymentIntent.model_validate(self.data.object)


class DeliveryMethodDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    short_name: str
    delivery_time: str
    description: str
    price: Decimal


class OrderItemDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    product_name: str
    picture_url: Optional[str] = None
    price: Decimal
    quantity: int


class OrderDto(BaseModel):
    id: int
    order_date: datetime
    buyer_email: str
    payment_intent_id: str
    delivery_method: Optional[str] = None
    shipping_price: Decimal
    order_items: List[OrderItemDto]
    subtotal: Decimal
    total: Decimal
    status: OrderStatus

    @classmethod
    def from_order(cls, order: Order) -> "OrderDto":
        return cls(
            id=order.id,
            order_date=order.order_date,
            buyer_email=order.buyer_email,
            payment_intent_id=order.payment_intent_id,
            delivery_method=order.delivery_method.short_name if order.delivery_method else None,
            shipping_price=order.shipping_price,
            order_items=[OrderItemDto.model_validate(item) for item in order.order_items],
            subtotal=order.subtotal,
            total=order.get_total(),
            status=order.status,
        )
