"""Tests for the Razorpay client."""

import hashlib
import hmac

import pytest
import requests

import payments
from errors import PaymentGatewayError
from payments import MOCK_KEY_ID, RAZORPAY_ORDERS_URL, RazorpayClient, to_paise

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test_secret"


def test_to_paise_rounds_to_whole_paise():
    assert to_paise(1080) == 108000
    assert to_paise(19.99) == 1999


class TestCreateOrder:
    def test_posts_amount_in_paise_with_basic_auth(self, gateway, gateway_calls):
        order = gateway.create_order(1080, receipt="RJ20261019ABCD", notes={"order_id": "abc"})

        assert order == {"id": "order_TEST1", "amount": 108000, "currency": "INR", "receipt": "RJ20261019ABCD"}
        call = gateway_calls[0]
        assert call["url"] == RAZORPAY_ORDERS_URL
        assert call["auth"] == (TEST_KEY_ID, TEST_KEY_SECRET)
        assert call["json"]["amount"] == 108000
        assert call["json"]["notes"] == {"order_id": "abc"}

    def test_rejected_request_raises(self, failing_gateway):
        with pytest.raises(PaymentGatewayError) as exc_info:
            failing_gateway.create_order(500, receipt="RJ1")
        assert exc_info.value.status_code == 500

    def test_network_error_raises(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(payments.requests, "post", fake_post)
        with pytest.raises(PaymentGatewayError):
            RazorpayClient(TEST_KEY_ID, TEST_KEY_SECRET).create_order(500, receipt="RJ1")

    def test_non_positive_amount_rejected(self, gateway, gateway_calls):
        with pytest.raises(PaymentGatewayError):
            gateway.create_order(0, receipt="RJ1")
        assert gateway_calls == []

    def test_mock_order_without_keys(self, gateway_calls):
        client = RazorpayClient()
        order = client.create_order(250.5, receipt="RJ2")

        assert order["id"].startswith("order_")
        assert order["amount"] == 25050
        assert client.public_key == MOCK_KEY_ID
        assert gateway_calls == []


class TestVerifySignature:
    def test_valid_signature(self):
        client = RazorpayClient(TEST_KEY_ID, TEST_KEY_SECRET)
        signature = hmac.new(TEST_KEY_SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()

        assert client.verify_signature("order_1", "pay_1", signature)

    def test_tampered_signature(self):
        client = RazorpayClient(TEST_KEY_ID, TEST_KEY_SECRET)
        signature = client.signature_for("order_1", "pay_1")

        assert not client.verify_signature("order_1", "pay_2", signature)
        assert not client.verify_signature("order_1", "pay_1", "")

    def test_mock_mode_accepts_without_secret(self):
        assert RazorpayClient().verify_signature("order_1", "pay_1", "anything")

    def test_no_secret_and_mock_off_rejects(self):
        assert not RazorpayClient(mock_mode=False).verify_signature("order_1", "pay_1", "anything")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_live_x")
        monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
        monkeypatch.delenv("PAYMENT_MOCK_MODE", raising=False)

        client = RazorpayClient.from_env()

        assert client.configured
        assert client.mock_mode is False
