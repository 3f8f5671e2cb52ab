"""
Razorpay gateway wrapper
The SDK is blocking, so calls run in a worker thread
"""

import asyncio
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.admin.settings import get_integration_settings
from codebridge.core.config import settings
from codebridge.core.database import get_db
from codebridge.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

# Every supported currency has 100 minor units (kobo, cents, pence)
MINOR_UNITS = 100


def to_minor_units(amount: float) -> int:
    return int(round(amount * MINOR_UNITS))


def sign(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def client(self):
        if not self.configured:
            raise PaymentGatewayError("Payment gateway is not configured")
        if self._client is None:
            import razorpay
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    async def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[dict] = None) -> dict:
        """Create an order for `amount` minor units"""
        client = self.client
        try:
            return await asyncio.to_thread(client.order.create, data={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1
            })
        except Exception as e:
            logger.error("Razorpay order creation failed: %s", e)
            raise PaymentGatewayError("Failed to initialize payment")

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout signature: HMAC-SHA256 of 'order_id|payment_id' with the key secret"""
        if not (self.key_secret and signature):
            return False
        expected = sign(self.key_secret, f"{order_id}|{payment_id}")
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Webhook signature: HMAC-SHA256 of the raw body with the webhook secret"""
        if not (self.webhook_secret and signature):
            return False
        expected = sign(self.webhook_secret, body.decode())
        return hmac.compare_digest(expected, signature)

    async def refund(self, payment_id: str, amount: Optional[int] = None) -> dict:
        client = self.client
        data = {"amount": amount} if amount else {}
        try:
            return await asyncio.to_thread(client.payment.refund, payment_id, data)
        except Exception as e:
            logger.error("Razorpay refund failed for %s: %s", payment_id, e)
            raise PaymentGatewayError("Refund failed at the payment gateway")


payment_gateway = RazorpayGateway()


async def get_payment_gateway(db: AsyncIOMotorDatabase = Depends(get_db)) -> RazorpayGateway:
    """FastAPI dependency for the payment gateway; admin-saved keys override the environment"""
    overrides = (await get_integration_settings(db)).get("payments", {})
    if not overrides.get("key_id"):
        return payment_gateway
    return RazorpayGateway(
        key_id=overrides.get("key_id"),
        key_secret=overrides.get("key_secret"),
        webhook_secret=overrides.get("webhook_secret")
    )
