"""
Tests for API endpoints
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import sessionmaker

from stripe_helpers import TEST_BASIC_PRICE, sign_payload, stripe_event, subscription_object

TEST_UID = "test_user_123"


@pytest.fixture
def app(db_engine):
    """FastAPI app wired to the per-test in-memory database"""
    from botdesk.main import app
    from botdesk.core.database import get_db

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def authed_client(app, client):
    """Client whose requests authenticate as TEST_UID"""
    from botdesk.core.middleware import get_current_user

    app.dependency_overrides[get_current_user] = lambda: {
        "uid": TEST_UID,
        "email": "test@example.com",
        "name": "Test User",
        "token": {"uid": TEST_UID},
    }
    return client


@pytest.fixture
def admin_client(authed_client):
    with patch("botdesk.core.middleware.settings.admin_user_ids", [TEST_UID]):
        yield authed_client


class TestHealthEndpoint:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAuthentication:

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/v1/bots"),
        ("get", "/api/v1/credentials"),
        ("get", "/api/v1/billing/current"),
        ("post", "/api/v1/billing/portal-session"),
    ])
    def test_requires_bearer_token(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401

    def test_invalid_token(self, client, mock_firebase_admin):
        mock_firebase_admin.verify_id_token.side_effect = ValueError("bad token")

        response = client.get("/api/v1/bots", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_first_request_creates_user(self, authed_client):
        response = authed_client.get("/api/v1/billing/current")

        assert response.status_code == 200
        assert response.json()["status"] == "inactive"
        assert response.json()["plan"] == "Free"

    def test_admin_routes_forbidden_for_users(self, authed_client):
        assert authed_client.get("/api/v1/billing/analytics").status_code == 403
        assert authed_client.get("/api/v1/billing/recent").status_code == 403

    def test_admin_routes(self, admin_client):
        admin_client.get("/api/v1/billing/current")

        response = admin_client.get("/api/v1/billing/analytics")
        assert response.status_code == 200
        assert response.json()["totalUsers"] == 1

        response = admin_client.get("/api/v1/billing/recent?page=1&limit=10")
        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestWebhookEndpoint:

    def test_invalid_signature_returns_400(self, client):
        payload = stripe_event("customer.subscription.updated", subscription_object("cus_1", "active"))

        response = client.post(
            "/api/v1/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, secret="whsec_wrong")},
        )

        assert response.status_code == 400

    def test_missing_signature_returns_400(self, client):
        response = client.post("/api/v1/billing/webhook", content=b"{}")
        assert response.status_code == 400

    def test_unmapped_customer_acknowledged(self, client):
        payload = stripe_event("customer.subscription.updated", subscription_object("cus_nobody", "active"))

        response = client.post(
            "/api/v1/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_handler_runs_off_the_event_loop(self, client):
        import asyncio
        from botdesk.services.webhook_reconciler import WebhookReconciler

        original = WebhookReconciler.handle
        on_loop = []

        def spy(self, db, payload, signature):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)
            return original(self, db, payload, signature)

        payload = stripe_event("customer.subscription.updated", subscription_object("cus_nobody", "active"))
        with patch.object(WebhookReconciler, "handle", spy):
            response = client.post(
                "/api/v1/billing/webhook",
                content=payload,
                headers={"stripe-signature": sign_payload(payload)},
            )

        assert response.status_code == 200
        assert on_loop == [False]

    def test_malformed_event_data_is_acknowledged(self, client):
        payload = stripe_event("customer.subscription.updated", "not-an-object")

        response = client.post(
            "/api/v1/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload)},
        )

        assert response.status_code == 200

    def test_subscription_unlocks_bot_creation(self, authed_client):
        """Checkout binds the customer, the webhook activates the plan, the bot gets created"""
        with patch("stripe.Customer.create", return_value=MagicMock(id="cus_api")), \
             patch("stripe.checkout.Session.create", return_value=MagicMock(id="cs_1", url="https://checkout/cs_1")):
            response = authed_client.post("/api/v1/billing/checkout-session", json={"priceId": TEST_BASIC_PRICE})
        assert response.status_code == 201
        assert response.json() == {"url": "https://checkout/cs_1"}

        response = authed_client.post("/api/v1/credentials", json={
            "exchange": "binance", "apiKey": "key-1234567890", "apiSecret": "secret-1234567890",
        })
        assert response.status_code == 201
        credential_id = response.json()["credential"]["id"]

        bot_body = {
            "name": "ma-bot",
            "apiKeyRef": credential_id,
            "strategy": {"type": "moving_average",
                         "parameters": {"symbol": "BTCUSDT", "shortPeriod": 5, "longPeriod": 20, "quantity": 1}},
        }
        assert authed_client.post("/api/v1/bots", json=bot_body).status_code == 403

        payload = stripe_event("customer.subscription.created",
                               subscription_object("cus_api", "active", TEST_BASIC_PRICE))
        response = authed_client.post(
            "/api/v1/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload)},
        )
        assert response.status_code == 200

        response = authed_client.post("/api/v1/bots", json=bot_body)
        assert response.status_code == 201
        assert response.json()["bot"]["status"] == "stopped"

        quota = authed_client.get("/api/v1/billing/quota-status").json()
        assert quota["bots"] == {"used": 1, "limit": 2, "remaining": 1}


class TestBillingEndpoints:

    def test_plans_are_public(self, client):
        response = client.get("/api/v1/billing/plans")
        assert response.status_code == 200
        assert {p["plan"] for p in response.json()["plans"]} == {"Basic", "Premium"}

    def test_portal_without_customer(self, authed_client):
        response = authed_client.post("/api/v1/billing/portal-session")
        assert response.status_code == 400

    def test_checkout_requires_price(self, authed_client):
        response = authed_client.post("/api/v1/billing/checkout-session", json={})
        assert response.status_code == 422


class TestBotEndpoints:

    def test_missing_bot(self, authed_client):
        response = authed_client.get("/api/v1/bots/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"detail": "Bot not found"}

    def test_invalid_toggle_action(self, authed_client):
        response = authed_client.post("/api/v1/bots/any/toggle", json={"action": "pause"})
        assert response.status_code == 422

    def test_unexpected_errors_hide_details(self, app):
        from fastapi.testclient import TestClient
        from botdesk.core.middleware import get_current_user

        app.dependency_overrides[get_current_user] = lambda: {"uid": TEST_UID, "email": None, "name": None}
        client = TestClient(app, raise_server_exceptions=False)

        with patch("botdesk.api.v1.routes.bots.BotService.list_bots", side_effect=RuntimeError("db exploded")):
            response = client.get("/api/v1/bots")

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert "db exploded" not in response.text
        assert app.debug is False
