import asyncio
import hashlib
import hmac
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import requests

from tally_order_sync.errors import PaymentGatewayError, TallyConnectionError
from tally_order_sync.outcomes import (
    NoPaymentRequested,
    PaymentCancelled,
    PaymentFailed,
    PaymentSucceeded,
)
from tally_order_sync.payments import (
    CheckoutResult,
    GatewayOrder,
    PaymentGatewayClient,
    PaymentReconciler,
    PaymentSignatureVerifier,
)

FIX = Path(__file__).parent / "fixtures"
SECRET = "rzp_test_secret"


def read(p):
    return (FIX / p).read_text(encoding="utf-8")


def sign(order_id, payment_id, secret=SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def json_response(body, status=200):
    r = Mock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.json.return_value = body
    return r


class TestSignatureVerifier:
    def test_valid_signature(self):
        verifier = PaymentSignatureVerifier(SECRET)
        assert verifier.verify("order_1", "pay_1", sign("order_1", "pay_1"), "SO-1") == {"ok": True}
        assert verifier.processed["pay_1"]["gateway_order_id"] == "order_1"

    def test_repeat_is_already_processed(self):
        verifier = PaymentSignatureVerifier(SECRET)
        signature = sign("order_1", "pay_1")
        verifier.verify("order_1", "pay_1", signature)
        assert verifier.verify("order_1", "pay_1", signature) == {"ok": True, "message": "already processed"}
        assert len(verifier.processed) == 1

    def test_mismatch(self):
        verifier = PaymentSignatureVerifier(SECRET)
        result = verifier.verify("order_1", "pay_1", sign("order_1", "pay_1", secret="other"))
        assert result == {"ok": False, "error": "Invalid signature"}
        assert verifier.processed == {}

    def test_missing_fields(self):
        assert PaymentSignatureVerifier(SECRET).verify("order_1", "", "sig")["ok"] is False

    def test_processed_keeps_most_recent(self):
        verifier = PaymentSignatureVerifier(SECRET, max_processed=2)
        for n in range(3):
            verifier.verify("order_1", f"pay_{n}", sign("order_1", f"pay_{n}"))
        assert list(verifier.processed) == ["pay_1", "pay_2"]

    def test_from_config(self, config):
        config = replace(config, payment_key_secret=SECRET)
        verifier = PaymentSignatureVerifier.from_config(config)
        assert verifier.verify("order_1", "pay_1", sign("order_1", "pay_1")) == {"ok": True}

    def test_from_config_requires_secret(self, config):
        with pytest.raises(ValueError, match="RAZORPAY_KEY_SECRET"):
            PaymentSignatureVerifier.from_config(replace(config, payment_key_secret=""))


class TestGatewayClient:
    def test_create_order(self):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.return_value = json_response(
            {"ok": True, "order": {"id": "order_N5x", "amount": 34500, "currency": "INR", "receipt": "inv_SO-1"}}
        )
        gateway = PaymentGatewayClient("http://pay.local/", session=session)
        order = gateway.create_order("SO-1", 345.0)
        assert order.id == "order_N5x"
        assert order.amount == 34500
        assert session.post.call_args[0][0] == "http://pay.local/create-order"
        assert session.post.call_args[1]["json"] == {"invoiceId": "SO-1", "amount": 345.0}

    @pytest.mark.parametrize("body", [{"ok": True}, {"ok": True, "order": {"amount": 100}}, {"ok": True, "order": "order_N5x"}])
    def test_create_order_without_usable_order(self, body):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.return_value = json_response(body)
        gateway = PaymentGatewayClient("http://pay.local", session=session)
        with pytest.raises(PaymentGatewayError, match="no usable order"):
            gateway.create_order("SO-1", 10)

    def test_non_object_body(self):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.return_value = json_response(["ok"])
        gateway = PaymentGatewayClient("http://pay.local", session=session)
        with pytest.raises(PaymentGatewayError, match="unexpected body"):
            gateway.create_order("SO-1", 10)

    def test_from_config(self, config):
        gateway = PaymentGatewayClient.from_config(replace(config, payment_api_url="http://pay.internal:4000/"))
        assert gateway.base_url == "http://pay.internal:4000"

    def test_verify_rejected(self):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.return_value = json_response({"ok": False, "error": "Invalid signature"}, status=400)
        gateway = PaymentGatewayClient("http://pay.local", session=session)
        result = CheckoutResult(status="success", razorpay_order_id="o", razorpay_payment_id="p", razorpay_signature="s")
        with pytest.raises(PaymentGatewayError, match="Invalid signature"):
            gateway.verify_payment(result, "SO-1")

    def test_unreachable(self):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.side_effect = requests.ConnectionError("refused")
        gateway = PaymentGatewayClient("http://pay.local", session=session)
        with pytest.raises(PaymentGatewayError):
            gateway.create_order("SO-1", 10)
        assert session.post.call_count == 1


@pytest.fixture
def gateway():
    g = Mock(spec=PaymentGatewayClient)
    g.create_order.return_value = GatewayOrder(id="order_N5x", amount=34500)
    g.verify_payment.return_value = {"ok": True}
    return g


def checkout(status="success", **fields):
    c = Mock()
    c.collect = AsyncMock(return_value=CheckoutResult(status=status, **fields))
    return c


PAID = dict(razorpay_order_id="order_N5x", razorpay_payment_id="pay_Q9z", razorpay_signature="sig")


class TestReconciler:
    def test_disabled(self, client, gateway, order):
        reconciler = PaymentReconciler(client, gateway, enabled=False)
        outcome = asyncio.run(reconciler.after_order_created(order, checkout()))
        assert isinstance(outcome, NoPaymentRequested)
        gateway.create_order.assert_not_called()

    def test_success_posts_receipt(self, client, gateway, order):
        client.post_xml.return_value = read("import_created.xml")
        reconciler = PaymentReconciler(client, gateway)
        outcome = asyncio.run(reconciler.after_order_created(order, checkout(**PAID), user_name="asha"))

        assert isinstance(outcome, PaymentSucceeded)
        assert outcome.receipt_created
        assert outcome.payment_id == "pay_Q9z"
        gateway.create_order.assert_called_once_with("SO-251016084812", 345.0)
        xml = client.post_xml.call_args[0][0]
        assert "<VOUCHERTYPENAME>Receipt</VOUCHERTYPENAME>" in xml
        assert "<LEDGERNAME>HDFC Bank</LEDGERNAME>" in xml
        assert "Payment ID: pay_Q9z | Order ID: order_N5x" in xml
        assert "SO-251016084812/asha | Razorpay: pay_Q9z" in xml

    def test_signature_mismatch_means_no_receipt(self, client, gateway, order):
        gateway.verify_payment.side_effect = PaymentGatewayError("Invalid signature")
        reconciler = PaymentReconciler(client, gateway)
        outcome = asyncio.run(reconciler.after_order_created(order, checkout(**PAID)))
        assert isinstance(outcome, PaymentFailed)
        assert "Invalid signature" in outcome.reason
        assert "collect payment later" in outcome.message
        client.post_xml.assert_not_awaited()

    def test_receipt_failure_is_reported(self, client, gateway, order):
        client.post_xml.side_effect = TallyConnectionError("refused")
        reconciler = PaymentReconciler(client, gateway)
        outcome = asyncio.run(reconciler.after_order_created(order, checkout(**PAID)))
        assert isinstance(outcome, PaymentSucceeded)
        assert not outcome.receipt_created
        assert "Please create receipt manually in Tally." in outcome.message

    def test_cancelled(self, client, gateway, order):
        outcome = asyncio.run(PaymentReconciler(client, gateway).after_order_created(order, checkout("cancelled")))
        assert isinstance(outcome, PaymentCancelled)
        gateway.verify_payment.assert_not_called()

    def test_failed(self, client, gateway, order):
        outcome = asyncio.run(
            PaymentReconciler(client, gateway).after_order_created(order, checkout("failed", error="Card declined"))
        )
        assert isinstance(outcome, PaymentFailed)
        assert outcome.reason == "Card declined"

    def test_gateway_order_failure(self, client, gateway, order):
        gateway.create_order.side_effect = PaymentGatewayError("Payment server unreachable")
        outcome = asyncio.run(PaymentReconciler(client, gateway).after_order_created(order, checkout()))
        assert isinstance(outcome, PaymentFailed)
        assert "Payment server unreachable" in outcome.reason

    def test_order_response_without_order(self, client, order):
        session = Mock(spec=requests.Session)
        session.headers = {}
        session.post.return_value = json_response({"ok": True})
        reconciler = PaymentReconciler(client, PaymentGatewayClient("http://pay.local", session=session))
        outcome = asyncio.run(reconciler.after_order_created(order, checkout()))
        assert isinstance(outcome, PaymentFailed)
        assert "no usable order" in outcome.reason
        client.post_xml.assert_not_awaited()

    def test_checkout_error(self, client, gateway, order):
        broken = Mock()
        broken.collect = AsyncMock(side_effect=RuntimeError("SDK not initialised"))
        outcome = asyncio.run(PaymentReconciler(client, gateway).after_order_created(order, broken))
        assert isinstance(outcome, PaymentFailed)
        assert outcome.reason == "Checkout failed: SDK not initialised"
        gateway.verify_payment.assert_not_called()
        client.post_xml.assert_not_awaited()

    def test_gateway_from_config(self, client):
        reconciler = PaymentReconciler(client)
        assert reconciler.gateway.base_url == client.config.payment_api_url.rstrip("/")
