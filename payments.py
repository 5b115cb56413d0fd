"""
Stripe payment settlement

An order goes Created -> AwaitingPayment (intent created) -> Paid (webhook).
The charge amount always comes from the stored order total; the order id
travels to Stripe as metadata and comes back on the webhook.
"""
import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import stripe
from pymongo.database import Database
from pymongo.errors import PyMongoError

import orders
from config import Settings
from database import now
from errors import Conflict, Forbidden, NotFound, UpstreamError, WebhookSignatureError
from notifications import Mailer, payment_confirmation
from schemas import PaymentResult

logger = logging.getLogger(__name__)

SUCCEEDED = "payment_intent.succeeded"


def to_minor_units(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentBridge:
    def __init__(self, db: Database, settings: Settings, mailer: Optional[Mailer] = None):
        self.db = db
        self.settings = settings
        self.mailer = mailer

    def config(self) -> dict:
        return {"publishable_key": self.settings.stripe_publishable_key}

    # ----------------------- Intents -----------------------
    def create_intent(self, order_id: str, currency: str, actor: dict) -> dict:
        order = orders.find_order(self.db, order_id)
        if str(order["user"]) != str(actor["id"]):
            raise Forbidden("Not authorized to pay for this order")
        if order.get("is_paid"):
            raise Conflict("Order is already paid")

        amount = to_minor_units(order["total_price"])
        intent = self._create_payment_intent(
            amount=amount,
            currency=(currency or "usd").lower(),
            metadata={"orderId": str(order["_id"])},
        )
        logger.info("Payment intent %s created for order %s (%s %s)", intent["id"], order["_id"], amount, currency)
        return {"client_secret": intent["client_secret"], "amount": order["total_price"]}

    def _create_payment_intent(self, amount: int, currency: str, metadata: dict):
        try:
            return stripe.PaymentIntent.create(
                api_key=self.settings.stripe_secret_key,
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating intent: %s", e)
            raise UpstreamError(f"Payment provider error: {e.user_message or e}")

    # ----------------------- Webhook -----------------------
    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> None:
        """Verify and apply a provider callback. Only signature failures raise."""
        event = self.verify_event(payload, signature)
        if event.get("type") != SUCCEEDED:
            logger.info("Ignoring webhook event %s", event.get("type"))
            return
        intent = (event.get("data") or {}).get("object") or {}
        order_id = (intent.get("metadata") or {}).get("orderId")
        if not order_id:
            logger.warning("Payment %s carries no order id", intent.get("id"))
            return
        try:
            self.settle(order_id, intent)
        except PyMongoError:
            logger.exception("Error updating order %s from webhook", order_id)

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not signature:
            raise WebhookSignatureError("missing signature header")
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(text, signature, self.settings.stripe_webhook_secret)
            return json.loads(text)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature rejected: %s", e)
            raise WebhookSignatureError(str(e))
        except ValueError as e:
            logger.warning("Webhook payload unreadable: %s", e)
            raise WebhookSignatureError("invalid payload")

    def settle(self, order_id: str, intent: dict) -> None:
        try:
            order = orders.find_order(self.db, order_id)
        except NotFound:
            logger.error("Order %s not found for payment %s", order_id, intent.get("id"))
            return

        owner = self.db["user"].find_one({"_id": order["user"]}, {"email": 1, "username": 1}) or {}
        paid_at = now()
        result = PaymentResult(
            id=str(intent.get("id", "")),
            status=str(intent.get("status", "succeeded")),
            update_time=paid_at.isoformat(),
            email_address=intent.get("receipt_email") or owner.get("email"),
        )
        res = self.db["order"].update_one(
            {"_id": order["_id"], "is_paid": False},
            {"$set": {
                "is_paid": True,
                "paid_at": paid_at,
                "payment_result": result.model_dump(),
                "updated_at": paid_at,
            }},
        )
        if res.matched_count == 0:
            logger.info("Order %s already settled, ignoring redelivery", order_id)
            return
        logger.info("Order %s marked as paid", order_id)

        if self.mailer is not None and owner.get("email"):
            amount = intent.get("amount") or to_minor_units(order["total_price"])
            self.mailer.send(owner["email"], **payment_confirmation(order, owner.get("username", ""), amount))
