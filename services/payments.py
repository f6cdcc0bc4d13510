from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Protocol

import httpx

from config import PAYMENT_CURRENCY, RAZORPAY_API_BASE, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from .errors import GatewayError

logger = logging.getLogger(__name__)


def to_paise(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_paise(paise: Any) -> float:
    return float(Decimal(int(paise or 0)) / 100)


def razorpay_signature(order_id: str, payment_id: str, secret: str) -> str:
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class PaymentGateway(Protocol):
    key_id: str

    async def create_order(
        self, amount: float, currency: str, receipt: str, notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    async def get_payment_details(self, payment_id: str) -> Dict[str, Any]: ...

    async def refund(
        self, payment_id: str, amount: Optional[float] = None, notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]: ...


class RazorpayGateway:
    """Razorpay REST adapter. Amounts in and out of this class are rupees,
    except the raw `amount` of an order which stays in paise for checkout."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        key_id: str = RAZORPAY_KEY_ID,
        key_secret: str = RAZORPAY_KEY_SECRET,
        base_url: str = RAZORPAY_API_BASE,
    ):
        self.http = http
        self.key_id = key_id
        self._key_secret = key_secret
        self.base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self._key_secret)

    def _require_config(self) -> None:
        if not self.configured:
            raise GatewayError("Payment service not configured")

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._require_config()
        url = f"{self.base_url}{path}"
        try:
            r = await self.http.request(method, url, json=payload, auth=(self.key_id, self._key_secret))
        except httpx.HTTPError as e:
            logger.error("Razorpay %s %s failed: %s", method, path, e)
            raise GatewayError("Payment gateway unavailable", error=str(e)) from e

        if not (200 <= r.status_code < 300):
            description = _error_description(r)
            logger.error("Razorpay %s %s returned %s: %s", method, path, r.status_code, description)
            raise GatewayError(
                f"Payment gateway error: {description}",
                error={"status_code": r.status_code, "description": description},
            )
        return r.json()

    async def create_order(
        self, amount: float, currency: str = PAYMENT_CURRENCY, receipt: str = "", notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if amount is None or float(amount) <= 0:
            raise GatewayError("Order amount must be positive")
        payload = {
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt[:40],
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        order = await self._request("POST", "/orders", payload)
        logger.info("Razorpay order created: %s (%s paise)", order.get("id"), payload["amount"])
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        self._require_config()
        if not (order_id and payment_id and signature):
            return False
        expected = razorpay_signature(order_id, payment_id, self._key_secret)
        return hmac.compare_digest(expected, signature)

    async def get_payment_details(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def refund(
        self, payment_id: str, amount: Optional[float] = None, notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if amount is not None:
            payload["amount"] = to_paise(amount)
        if notes:
            payload["notes"] = {k: str(v) for k, v in notes.items()}
        refund = await self._request("POST", f"/payments/{payment_id}/refund", payload)
        logger.info("Razorpay refund %s for payment %s", refund.get("id"), payment_id)
        return refund


def _error_description(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return (r.text or "")[:300] or f"HTTP {r.status_code}"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("description"):
        return str(err["description"])
    return f"HTTP {r.status_code}"
