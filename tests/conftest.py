import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

# Must be set before storefront.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from jose import jwt  # noqa: E402

from storefront.models import DeliveryMethod, Order, OrderItem, OrderStatus  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "jwt_test_secret"
BUYER_EMAIL = "buyer@test.com"


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(intent_id: str, amount: int, status: str = "succeeded", event_type: str = None) -> bytes:
    return json.dumps({
        "id": "evt_test",
        "object": "event",
        "type": event_type or f"payment_intent.{status}",
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": "usd",
            }
        },
    }).encode("utf-8")


@pytest.fixture
def sign():
    return stripe_signature


@pytest.fixture
def make_event():
    return intent_event


@pytest.fixture
def make_token():
    def _make_token(email: str = BUYER_EMAIL, secret: str = JWT_SECRET) -> str:
        return jwt.encode({"email": email}, secret, algorithm="HS256")
    return _make_token


@pytest.fixture
def seed_order():
    """Persist a checkout-created order. Defaults total 44.99 + 5.00 shipping."""

    def _seed_order(db, payment_intent_id, items=((Decimal("44.99"), 1),),
                    shipping=Decimal("5.00"), email=BUYER_EMAIL, status=OrderStatus.PENDING):
        method = DeliveryMethod(
            short_name="UPS1", delivery_time="1-2 Days", description="Fastest delivery", price=shipping
        )
        order = Order(
            buyer_email=email,
            payment_intent_id=payment_intent_id,
            delivery_method=method,
            status=status,
            order_items=[
                OrderItem(product_id=i + 1, product_name=f"Product {i + 1}", price=price, quantity=quantity)
                for i, (price, quantity) in enumerate(items)
            ],
        )
        db.add(order)
        db.commit()
        return order.id

    return _seed_order
