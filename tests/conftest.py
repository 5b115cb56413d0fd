"""Pytest fixtures for storefront tests."""

import hashlib
import hmac
import json
import smtplib
import time

import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi.testclient import TestClient

from config import Settings
from database import create_document, ensure_indexes
from main import create_app
from notifications import Mailer
from payments import PaymentBridge
from schemas import PLACEHOLDER_IMAGE

WEBHOOK_SECRET = "whsec_test_secret"


class RecordingMailer(Mailer):
    """Mailer that keeps messages instead of talking to SMTP."""

    def __init__(self, settings, fail=False):
        super().__init__(settings)
        self.sent = []
        self.fail = fail

    def deliver(self, message):
        if self.fail == "encoding":
            raise UnicodeEncodeError("ascii", "pässword", 1, 2, "ordinal not in range(128)")
        if self.fail:
            raise smtplib.SMTPException("smtp unavailable")
        self.sent.append(message)


class FakeStripeBridge(PaymentBridge):
    """Payment bridge whose intent creation never leaves the process."""

    def __init__(self, db, settings, mailer=None):
        super().__init__(db, settings, mailer)
        self.intents = []

    def _create_payment_intent(self, amount, currency, metadata):
        intent = {
            "id": f"pi_test_{len(self.intents) + 1}",
            "client_secret": f"pi_test_{len(self.intents) + 1}_secret",
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
        }
        self.intents.append(intent)
        return intent


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def succeeded_event(order_id, intent_id="pi_test_1", receipt_email=None, amount=22000) -> bytes:
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "status": "succeeded",
        "amount": amount,
        "receipt_email": receipt_email,
        "metadata": {"orderId": order_id} if order_id else {},
    }
    event = {"id": "evt_test", "type": "payment_intent.succeeded", "data": {"object": intent}}
    return json.dumps(event).encode()


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-jwt-secret",
        stripe_publishable_key="pk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        email_host="smtp.test",
        email_user="shop@test.com",
        page_size=4,
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer(settings):
    return RecordingMailer(settings)


@pytest.fixture
def payments(db, settings, mailer):
    return FakeStripeBridge(db, settings, mailer)


@pytest.fixture
def client(settings, db, mailer, payments):
    app = create_app(settings, db=db, mailer=mailer, payments=payments)
    return TestClient(app)


@pytest.fixture
def register(client):
    """Register a user through the API and return the response data."""

    def _register(username="alice", email=None, password="secret123"):
        email = email or f"{username}@test.com"
        response = client.post(
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register


@pytest.fixture
def user(register):
    return register("alice")


@pytest.fixture
def other_user(register):
    return register("bob")


@pytest.fixture
def admin(register, db):
    data = register("admin")
    db["user"].update_one({"email": data["email"]}, {"$set": {"is_admin": True}})
    return data


@pytest.fixture
def make_product(db, user):
    """Insert a product directly into the catalog and return its id."""

    def _make(name="Widget", price=100.0, stock=10, owner=None, category="Gadgets"):
        return create_document(db, "product", {
            "user": ObjectId((owner or user)["id"]),
            "name": name,
            "image": PLACEHOLDER_IMAGE,
            "price": price,
            "description": f"{name} description",
            "category": category,
            "stock": stock,
            "reviews": [],
            "rating": 0,
            "num_reviews": 0,
        })

    return _make


@pytest.fixture
def shipping():
    return {"address": "1 Main St", "city": "Springfield", "postalCode": "12345", "country": "US"}


@pytest.fixture
def place_order(client, shipping):
    def _place(token, lines, payment_method="Stripe"):
        return client.post(
            "/orders",
            json={"orderItems": lines, "shippingAddress": shipping, "paymentMethod": payment_method},
            headers=auth(token),
        )

    return _place
