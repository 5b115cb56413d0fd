"""
Notification gateway

Outbound email is best-effort: send() reports failure in its result and
never raises, so callers may ignore the outcome.
"""
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    ok: bool
    error: Optional[str] = None


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, recipient: str, subject: str, text: str, html: Optional[str] = None) -> NotificationResult:
        if not self.settings.email_host:
            logger.info("Email delivery disabled, skipping %r to %s", subject, recipient)
            return NotificationResult(ok=False, error="email delivery not configured")
        try:
            self.deliver(self._build(recipient, subject, text, html))
        except Exception as e:
            logger.exception("Email %r to %s failed", subject, recipient)
            return NotificationResult(ok=False, error=str(e))
        logger.info("Email %r sent to %s", subject, recipient)
        return NotificationResult(ok=True)

    def deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.settings.email_host, self.settings.email_port, timeout=10) as smtp:
            smtp.starttls()
            if self.settings.email_user:
                smtp.login(self.settings.email_user, self.settings.email_password)
            smtp.send_message(message)

    def _build(self, recipient: str, subject: str, text: str, html: Optional[str]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f"{self.settings.from_name} <{self.settings.email_user}>"
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")
        return message


def order_confirmation(order: dict, username: str) -> dict:
    order_id = str(order["_id"])
    return {
        "subject": "Order Received",
        "text": f"Thanks for your order {order_id}. Total: ${order['total_price']:.2f}",
        "html": (
            "<h3>Order Received</h3>"
            f"<p>Hi {username},</p>"
            f"<p>We received your order <strong>{order_id}</strong>.</p>"
            f"<p>Total: ${order['total_price']:.2f}</p>"
        ),
    }


def payment_confirmation(order: dict, username: str, amount_minor: int) -> dict:
    order_id = str(order["_id"])
    return {
        "subject": "Payment Confirmed",
        "text": f"We received your payment for Order {order_id}. We are processing it now.",
        "html": (
            "<h3>Payment Confirmed</h3>"
            f"<p>Hi {username},</p>"
            f"<p>We received your payment for order <strong>{order_id}</strong>.</p>"
            f"<p>Total Paid: ${amount_minor / 100:.2f}</p>"
        ),
    }
