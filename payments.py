"""
Razorpay integration.

Orders are created through the REST API with basic auth. Without keys the
client hands back a mock order so checkout still works locally.
"""
import os
import hmac
import hashlib
import logging
from typing import Optional

import requests
from bson import ObjectId

from errors import PaymentGatewayError

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"
MOCK_KEY_ID = "rzp_test_mock"


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class RazorpayClient:
    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 mock_mode: Optional[bool] = None, timeout: int = 10):
        self.key_id = key_id
        self.key_secret = key_secret
        self.mock_mode = (not (key_id and key_secret)) if mock_mode is None else mock_mode
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "RazorpayClient":
        key_id = os.getenv("RAZORPAY_KEY_ID")
        key_secret = os.getenv("RAZORPAY_KEY_SECRET")
        return cls(key_id, key_secret, mock_mode=_env_flag("PAYMENT_MOCK_MODE", not (key_id and key_secret)))

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def public_key(self) -> str:
        return self.key_id or MOCK_KEY_ID

    def create_order(self, amount: float, receipt: str, notes: Optional[dict] = None,
                     currency: str = "INR") -> dict:
        if amount <= 0:
            raise PaymentGatewayError("Invalid amount")
        amount_paise = to_paise(amount)

        if not self.configured:
            mock_id = f"order_{ObjectId()}"
            logger.info("Razorpay keys not set, using mock order %s", mock_id)
            return {"id": mock_id, "amount": amount_paise, "currency": currency, "receipt": receipt}

        payload = {"amount": amount_paise, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            resp = requests.post(
                RAZORPAY_ORDERS_URL,
                auth=(self.key_id, self.key_secret),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Razorpay order creation failed: %s", e)
            raise PaymentGatewayError(str(e))
        if resp.status_code >= 300:
            logger.error("Razorpay order creation rejected (%s): %s", resp.status_code, resp.text)
            raise PaymentGatewayError(resp.text, status_code=resp.status_code)
        data = resp.json()
        return {
            "id": data.get("id"),
            "amount": data.get("amount", amount_paise),
            "currency": data.get("currency", currency),
            "receipt": data.get("receipt", receipt),
        }

    def signature_for(self, razorpay_order_id: str, razorpay_payment_id: str) -> str:
        return hmac.new(
            (self.key_secret or "").encode(),
            f"{razorpay_order_id}|{razorpay_payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()

    def verify_signature(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            if self.mock_mode:
                logger.warning("Accepting unverified payment %s in mock mode", razorpay_payment_id)
            return self.mock_mode
        generated = self.signature_for(razorpay_order_id, razorpay_payment_id)
        return hmac.compare_digest(generated, signature or "")
