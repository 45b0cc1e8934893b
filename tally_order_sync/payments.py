"""
Online payment after an order is created.

Flow: create a gateway order for the order total, hand it to the checkout
(the payment SDK in the form layer), verify the callback through the payment
server, then post a Receipt voucher to Tally. Nothing here can undo the
sales order: every failure degrades to "collect payment later" or "create
the receipt manually".
"""
from __future__ import annotations
import asyncio
import hashlib
import hmac
from collections import OrderedDict
from datetime import datetime
from typing import Literal, Optional, Protocol
import requests
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type
from loguru import logger
from pydantic import BaseModel, ValidationError

from .client import TallyClient
from .codec import build_receipt_xml
from .codec.values import IST
from .config import TallyOrderConfig
from .errors import PaymentGatewayError
from .models import Order, ReceiptLink
from .outcomes import (
    NoPaymentRequested,
    PaymentCancelled,
    PaymentFailed,
    PaymentSucceeded,
    ReconciliationOutcome,
)
from .submitter import send_voucher


class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str = "INR"
    receipt: str = ""


class CheckoutResult(BaseModel):
    """What the payment SDK reports back from the checkout sheet."""

    status: Literal["success", "failed", "cancelled"]
    razorpay_order_id: str = ""
    razorpay_payment_id: str = ""
    razorpay_signature: str = ""
    error: str = ""


class PaymentCheckout(Protocol):
    """Handle to the payment SDK; opens checkout and waits for the user."""

    async def collect(self, gateway_order: GatewayOrder, order: Order) -> CheckoutResult:
        ...


class PaymentGatewayClient:
    """
    REST client for the payment server.

    Endpoints:
    - POST /create-order {invoiceId, amount}
    - POST /verify-payment {razorpay_order_id, razorpay_payment_id, razorpay_signature, invoiceId}
    """

    def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @classmethod
    def from_config(cls, config: TallyOrderConfig) -> "PaymentGatewayClient":
        return cls(config.payment_api_url)

    def _post(self, path: str, payload: dict) -> dict:
        try:
            r = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Payment server request {path} failed: {e}")
            raise
        try:
            body = r.json()
        except ValueError as e:
            raise PaymentGatewayError(f"{path} returned non-JSON (HTTP {r.status_code})") from e
        if not isinstance(body, dict):
            raise PaymentGatewayError(f"{path} returned an unexpected body (HTTP {r.status_code})")
        if not r.ok or not body.get("ok"):
            raise PaymentGatewayError(body.get("error") or f"{path} failed with HTTP {r.status_code}")
        return body

    def create_order(self, invoice_id: str, amount: float) -> GatewayOrder:
        """Create a gateway order. `amount` is in rupees; the server converts to paise."""
        try:
            body = self._post("/create-order", {"invoiceId": invoice_id, "amount": amount})
        except requests.RequestException as e:
            raise PaymentGatewayError(f"Payment server unreachable: {e}") from e
        try:
            return GatewayOrder.model_validate(body["order"])
        except (KeyError, ValidationError) as e:
            raise PaymentGatewayError(f"Payment server returned no usable order: {e}") from e

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(requests.ConnectionError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"Retrying payment verification (attempt {retry_state.attempt_number})..."
        ),
    )
    def _verify(self, payload: dict) -> dict:
        return self._post("/verify-payment", payload)

    def verify_payment(self, result: CheckoutResult, invoice_id: str) -> dict:
        """
        Verify a checkout callback. Safe to repeat: the server answers
        "already processed" for a payment id it has seen.
        """
        payload = {
            "razorpay_order_id": result.razorpay_order_id,
            "razorpay_payment_id": result.razorpay_payment_id,
            "razorpay_signature": result.razorpay_signature,
            "invoiceId": invoice_id,
        }
        try:
            return self._verify(payload)
        except requests.RequestException as e:
            raise PaymentGatewayError(f"Payment server unreachable: {e}") from e

    def close(self):
        self.session.close()


class PaymentSignatureVerifier:
    """
    Server-side verification of checkout callbacks.

    The signature is the hex HMAC-SHA256 of "order_id|payment_id" under the
    gateway key secret.

    `processed` remembers the most recent `max_processed` payment ids for this
    process only; the oldest are forgotten first. Durable dedup belongs to the
    payment server's own records.
    """

    def __init__(self, key_secret: str, max_processed: int = 10000):
        self.key_secret = key_secret.encode("utf-8")
        self.max_processed = max_processed
        self.processed: OrderedDict[str, dict] = OrderedDict()

    @classmethod
    def from_config(cls, config: TallyOrderConfig) -> "PaymentSignatureVerifier":
        if not config.payment_key_secret:
            raise ValueError("RAZORPAY_KEY_SECRET is required to verify payments")
        return cls(config.payment_key_secret)

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self.key_secret, message, hashlib.sha256).hexdigest()

    def verify(self, order_id: str, payment_id: str, signature: str, invoice_id: str = "") -> dict:
        """Return the verify-payment response body for one callback."""
        if not (order_id and payment_id and signature):
            return {"ok": False, "error": "missing required fields"}

        if not hmac.compare_digest(self.expected_signature(order_id, payment_id), signature):
            logger.warning(f"Invalid payment signature for order {order_id} payment {payment_id}")
            return {"ok": False, "error": "Invalid signature"}

        if payment_id in self.processed:
            return {"ok": True, "message": "already processed"}

        self.processed[payment_id] = {
            "invoiceId": invoice_id,
            "gateway_payment_id": payment_id,
            "gateway_order_id": order_id,
            "status": "paid",
            "paidAt": datetime.now(IST).isoformat(),
        }
        while len(self.processed) > self.max_processed:
            self.processed.popitem(last=False)
        return {"ok": True}


class PaymentReconciler:
    """Collects payment for a freshly created order and records the receipt."""

    def __init__(
        self,
        client: TallyClient,
        gateway: Optional[PaymentGatewayClient] = None,
        bank_ledger: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.client = client
        self.gateway = gateway or PaymentGatewayClient.from_config(client.config)
        self.bank_ledger = bank_ledger or client.config.receipt_bank_ledger
        self.enabled = client.config.online_payment_enabled if enabled is None else enabled

    async def after_order_created(
        self,
        order: Order,
        checkout: Optional[PaymentCheckout],
        user_name: str = "",
        auth_token: Optional[str] = None,
    ) -> ReconciliationOutcome:
        if not self.enabled or checkout is None:
            return NoPaymentRequested()

        try:
            gateway_order = await asyncio.to_thread(self.gateway.create_order, order.order_number, order.total)
        except PaymentGatewayError as e:
            logger.warning(f"Could not start payment for order {order.order_number}: {e}")
            return PaymentFailed(reason=str(e))

        try:
            result = await checkout.collect(gateway_order, order)
        except Exception as e:
            logger.opt(exception=e).error(f"Checkout failed for order {order.order_number}: {e}")
            return PaymentFailed(reason=f"Checkout failed: {e}")
        if result.status == "cancelled":
            logger.info(f"Payment cancelled for order {order.order_number}")
            return PaymentCancelled()
        if result.status == "failed":
            logger.warning(f"Payment failed for order {order.order_number}: {result.error}")
            return PaymentFailed(reason=result.error or "Payment failed")

        try:
            await asyncio.to_thread(self.gateway.verify_payment, result, order.order_number)
        except PaymentGatewayError as e:
            logger.warning(
                f"Payment {result.razorpay_payment_id} for order {order.order_number} failed verification: {e}"
            )
            return PaymentFailed(reason=f"Payment verification failed: {e}")

        link = ReceiptLink(
            order_number=order.order_number,
            gateway_order_id=result.razorpay_order_id,
            payment_id=result.razorpay_payment_id,
            amount=order.total,
            paid_at=datetime.now(IST),
            user_name=user_name,
        )
        xml = build_receipt_xml(order.company.name, order.customer.name, self.bank_ledger, link)
        logger.info(f"Posting receipt for order {order.order_number} payment {link.payment_id}")
        receipt = await send_voucher(self.client, xml, auth_token=auth_token)
        if not receipt.ok:
            logger.warning(f"Receipt for order {order.order_number} not created: {receipt.message}")

        return PaymentSucceeded(
            payment_id=link.payment_id,
            gateway_order_id=link.gateway_order_id,
            receipt=receipt,
        )
