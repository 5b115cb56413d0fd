"""Tests for payment intents and the Stripe webhook."""

import json

import pytest
from bson.objectid import ObjectId

from conftest import auth, sign_payload, succeeded_event
from payments import to_minor_units


def post_webhook(client, payload, signature):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post("/payment/webhook", content=payload, headers=headers)


@pytest.fixture
def order_id(user, make_product, place_order):
    pid = make_product(price=100.0, stock=10)
    return place_order(user["token"], [{"product": pid, "quantity": 2}]).json()["data"]["id"]


def test_config_exposes_publishable_key(client):
    response = client.get("/payment/config")
    assert response.status_code == 200
    assert response.json()["data"] == {"publishable_key": "pk_test_123"}


@pytest.mark.parametrize("amount, cents", [(220.0, 22000), (65.0, 6500), (10.06, 1006), (0.285, 29)])
def test_to_minor_units(amount, cents):
    assert to_minor_units(amount) == cents


class TestCreateIntent:
    def test_amount_comes_from_order(self, client, payments, user, order_id):
        response = client.post(
            "/payment/create-payment-intent",
            json={"orderId": order_id, "amount": 1},
            headers=auth(user["token"]),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {"client_secret": "pi_test_1_secret", "amount": 220.0}
        assert payments.intents[0]["amount"] == 22000
        assert payments.intents[0]["currency"] == "usd"
        assert payments.intents[0]["metadata"] == {"orderId": order_id}

    def test_currency_is_passed_through(self, client, payments, user, order_id):
        client.post(
            "/payment/create-payment-intent",
            json={"orderId": order_id, "currency": "EUR"},
            headers=auth(user["token"]),
        )
        assert payments.intents[0]["currency"] == "eur"

    def test_non_owner_is_forbidden(self, client, payments, other_user, order_id):
        response = client.post(
            "/payment/create-payment-intent", json={"orderId": order_id}, headers=auth(other_user["token"])
        )
        assert response.status_code == 403
        assert payments.intents == []

    def test_admin_cannot_pay_for_someone_else(self, client, admin, order_id):
        response = client.post(
            "/payment/create-payment-intent", json={"orderId": order_id}, headers=auth(admin["token"])
        )
        assert response.status_code == 403

    def test_unknown_order(self, client, user):
        response = client.post(
            "/payment/create-payment-intent", json={"orderId": str(ObjectId())}, headers=auth(user["token"])
        )
        assert response.status_code == 404

    def test_order_id_required(self, client, user):
        response = client.post("/payment/create-payment-intent", json={}, headers=auth(user["token"]))
        assert response.status_code == 400

    def test_requires_auth(self, client, order_id):
        response = client.post("/payment/create-payment-intent", json={"orderId": order_id})
        assert response.status_code == 401

    def test_paid_order_rejected(self, client, db, user, order_id):
        db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"is_paid": True}})
        response = client.post(
            "/payment/create-payment-intent", json={"orderId": order_id}, headers=auth(user["token"])
        )
        assert response.status_code == 409


class TestWebhook:
    def test_valid_event_marks_order_paid(self, client, db, mailer, order_id):
        mailer.sent.clear()
        payload = succeeded_event(order_id, intent_id="pi_abc")
        response = post_webhook(client, payload, sign_payload(payload))
        assert response.status_code == 200

        order = db["order"].find_one({"_id": ObjectId(order_id)})
        assert order["is_paid"] is True
        assert order["paid_at"] is not None
        assert order["payment_result"]["id"] == "pi_abc"
        assert order["payment_result"]["status"] == "succeeded"
        assert order["payment_result"]["email_address"] == "alice@test.com"
        assert [m["Subject"] for m in mailer.sent] == ["Payment Confirmed"]

    def test_receipt_email_preferred(self, client, db, order_id):
        payload = succeeded_event(order_id, receipt_email="payer@bank.com")
        post_webhook(client, payload, sign_payload(payload))
        order = db["order"].find_one({"_id": ObjectId(order_id)})
        assert order["payment_result"]["email_address"] == "payer@bank.com"

    def test_redelivery_is_harmless(self, client, db, mailer, order_id):
        mailer.sent.clear()
        payload = succeeded_event(order_id)
        first = post_webhook(client, payload, sign_payload(payload))
        paid_at = db["order"].find_one({"_id": ObjectId(order_id)})["paid_at"]

        second = post_webhook(client, payload, sign_payload(payload))
        assert first.status_code == second.status_code == 200
        order = db["order"].find_one({"_id": ObjectId(order_id)})
        assert order["is_paid"] is True
        assert order["paid_at"] == paid_at
        assert len(mailer.sent) == 1

    def test_invalid_signature(self, client, db, order_id):
        payload = succeeded_event(order_id)
        response = post_webhook(client, payload, sign_payload(payload, secret="whsec_wrong"))
        assert response.status_code == 400
        assert response.json()["status"] is False
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is False

    def test_tampered_body(self, client, db, order_id):
        signature = sign_payload(succeeded_event(str(ObjectId())))
        response = post_webhook(client, succeeded_event(order_id), signature)
        assert response.status_code == 400
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is False

    def test_missing_signature(self, client, order_id):
        response = post_webhook(client, succeeded_event(order_id), None)
        assert response.status_code == 400

    def test_unknown_order_is_acknowledged(self, client):
        payload = succeeded_event(str(ObjectId()))
        assert post_webhook(client, payload, sign_payload(payload)).status_code == 200

    def test_missing_metadata_is_acknowledged(self, client, db, order_id):
        payload = succeeded_event(None)
        assert post_webhook(client, payload, sign_payload(payload)).status_code == 200
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is False

    def test_other_event_types_ignored(self, client, db, order_id):
        event = json.loads(succeeded_event(order_id))
        event["type"] = "payment_intent.payment_failed"
        payload = json.dumps(event).encode()
        assert post_webhook(client, payload, sign_payload(payload)).status_code == 200
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is False

    def test_email_failure_still_acknowledged(self, client, db, mailer, order_id):
        mailer.fail = True
        payload = succeeded_event(order_id)
        assert post_webhook(client, payload, sign_payload(payload)).status_code == 200
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is True

    def test_unexpected_email_error_still_acknowledged(self, client, db, mailer, order_id):
        mailer.fail = "encoding"
        payload = succeeded_event(order_id)
        response = post_webhook(client, payload, sign_payload(payload))
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert db["order"].find_one({"_id": ObjectId(order_id)})["is_paid"] is True
