import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from starlette.websockets import WebSocketDisconnect

from storefront.main import app as fastapi_app
from storefront.database import Base, get_db
from storefront.models import Order, OrderStatus
from storefront.notifications import ORDER_COMPLETE_EVENT
from storefront.retry import RetryPolicy
from storefront.routes import get_retry_policy

from conftest import BUYER_EMAIL, JWT_SECRET, WEBHOOK_SECRET

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_integration.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    # Setup: Create the tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def checkout_on_retry():
    """Intent ids whose order the checkout flow commits during the first retry wait."""
    return []


@pytest.fixture
def client(monkeypatch, checkout_on_retry, seed_order):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)

    async def slow_checkout(delay):
        while checkout_on_retry:
            db = TestingSessionLocal()
            seed_order(db, checkout_on_retry.pop())
            db.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_retry_policy] = lambda: RetryPolicy(
        max_attempts=3, delay=1.0, sleep=slow_checkout)

    with TestClient(fastapi_app) as c:
        yield c

    # Cleanup dependencies
    fastapi_app.dependency_overrides.clear()


def test_full_payment_lifecycle_integration(client, sign, make_event, make_token, seed_order):
    """
    1. Checkout has created a pending order
    2. Buyer is connected to the push channel
    3. Webhook success (Stripe -> API -> DB -> push)
    4. Duplicate delivery of the same event
    5. Buyer reloads the order
    """
    db = TestingSessionLocal()
    order_id = seed_order(db, "pi_integration_test_123")
    db.close()

    token = make_token()
    with client.websocket_connect(f"/hub/notifications?access_token={token}") as ws:
        assert fastapi_app.state.connections.lookup(BUYER_EMAIL) is not None

        payload = make_event("pi_integration_test_123", 4999)
        response = client.post(
            "/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload)}
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        message = ws.receive_json()
        assert message["event"] == ORDER_COMPLETE_EVENT
        assert message["data"]["id"] == order_id
        assert message["data"]["status"] == "PaymentReceived"
        assert message["data"]["buyer_email"] == BUYER_EMAIL

    # --- DUPLICATE DELIVERY ---
    response = client.post(
        "/webhook",
        content=payload,
        headers={"Stripe-Signature": sign(payload)}
    )
    assert response.status_code == 200

    db = TestingSessionLocal()
    order = db.get(Order, order_id)
    assert order.status == OrderStatus.PAYMENT_RECEIVED
    db.close()

    # --- BUYER RELOADS ---
    response = client.get(f"/orders/{order_id}", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["status"] == "PaymentReceived"


def test_webhook_before_checkout_commit(client, sign, make_event, checkout_on_retry):
    """Webhook overtakes the checkout transaction; the retry window absorbs it."""
    checkout_on_retry.append("pi_race")

    payload = make_event("pi_race", 4999)
    response = client.post("/webhook", content=payload, headers={"Stripe-Signature": sign(payload)})

    assert response.status_code == 200
    db = TestingSessionLocal()
    order = db.query(Order).filter_by(payment_intent_id="pi_race").first()
    assert order.status == OrderStatus.PAYMENT_RECEIVED
    db.close()


def test_mismatch_is_pushed_to_buyer(client, sign, make_event, make_token, seed_order):
    db = TestingSessionLocal()
    seed_order(db, "pi_short")
    db.close()

    with client.websocket_connect(f"/hub/notifications?access_token={make_token()}") as ws:
        payload = make_event("pi_short", 4000)
        response = client.post("/webhook", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert response.status_code == 200

        assert ws.receive_json()["data"]["status"] == "PaymentMismatch"


def test_other_buyers_do_not_receive_notification(client, sign, make_event, make_token, seed_order, mocker):
    db = TestingSessionLocal()
    seed_order(db, "pi_not_yours", email="someone@else.com")
    db.close()

    send = mocker.spy(fastapi_app.state.hub, "send_to_connection")
    with client.websocket_connect(f"/hub/notifications?access_token={make_token()}"):
        payload = make_event("pi_not_yours", 4999)
        response = client.post("/webhook", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert response.status_code == 200

    send.assert_not_called()


def test_push_channel_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/hub/notifications?access_token=garbage"):
            pass


def test_push_channel_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/hub/notifications"):
            pass
