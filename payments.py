"""
Paystack integration.

Card payments are collected by Paystack's hosted widget in the browser. The
server only prepares the widget parameters and verifies a transaction
reference against Paystack's REST API before an order is accepted.
"""
import logging
import os
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "NGN")


class PaymentVerificationError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(PaymentVerificationError):
    code = "invalid-argument"
    status_code = 400


class FailedPrecondition(PaymentVerificationError):
    code = "failed-precondition"
    status_code = 412


class InternalError(PaymentVerificationError):
    code = "internal"
    status_code = 500


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def widget_config(email: str, amount: float, reference: str, metadata: Optional[dict] = None,
                  currency: str = PAYMENT_CURRENCY) -> Dict[str, Any]:
    return {
        "email": email,
        "amount": to_minor_units(amount),
        "currency": currency,
        "reference": reference,
        "metadata": metadata or {},
    }


class PaystackClient:
    def __init__(self, secret_key: Optional[str] = PAYSTACK_SECRET_KEY, base_url: str = PAYSTACK_BASE_URL,
                 session: Optional[requests.Session] = None, timeout: float = 15):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def verify(self, reference: Optional[str]) -> Dict[str, Any]:
        if not reference:
            raise InvalidArgument("Reference is required")
        try:
            resp = self.session.get(
                f"{self.base_url}/transaction/verify/{reference}",
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()["data"]
            return {
                "success": True,
                "status": data.get("status"),
                "amount": data.get("amount"),
                "currency": data.get("currency"),
                "reference": data.get("reference"),
                "customer": data.get("customer"),
                "paid_at": data.get("paid_at"),
                "channel": data.get("channel"),
            }
        except requests.HTTPError as e:
            logger.error("Payment verification error for %s: %s", reference, e)
            try:
                message = e.response.json().get("message")
            except ValueError:
                message = e.response.text
            raise FailedPrecondition(f"Paystack API error: {message}")
        except Exception:
            logger.exception("Payment verification error for %s", reference)
            raise InternalError("Payment verification failed")
