# payments/tests/test_pesapal_client.py

import io
import json
from datetime import timedelta
from decimal import Decimal
from unittest import mock
from urllib.error import HTTPError, URLError

from django.core.cache import cache
from django.test import SimpleTestCase
from django.utils import timezone

from commerce.exceptions import GatewayError, GatewayRejected
from payments.services.pesapal import (
    TOKEN_CACHE_KEY,
    BillingContact,
    PaymentIntent,
    PesapalClient,
    split_name,
)


def json_response(body):
    resp = mock.MagicMock()
    resp.__enter__.return_value.read.return_value = json.dumps(body).encode("utf-8")
    return resp


def http_error(code, body=b""):
    return HTTPError("https://pesapal.test/x", code, "error", {}, io.BytesIO(body))


def make_client(**overrides):
    opts = {
        "base_url": "https://pesapal.test",
        "consumer_key": "key",
        "consumer_secret": "secret",
        "timeout": 5,
        "max_retries": 2,
        "backoff_seconds": 0.5,
        "sleep": mock.Mock(),
    }
    opts.update(overrides)
    return PesapalClient(**opts)


INTENT = PaymentIntent(
    merchant_reference="ORD-ABCDEF12-1700000000",
    amount=Decimal("1500.00"),
    currency="KES",
    description="Payment for Order #ORD-ABCDEF12-1700000000",
    callback_url="https://api.example/api/payments/pesapal/confirm/",
    billing=BillingContact.from_full_name(full_name="Jane Doe", email="jane@example.com"),
    notification_id="ipn-1",
)


class SplitNameTests(SimpleTestCase):
    def test_first_space_split(self):
        self.assertEqual(split_name("Jane Wanjiru Doe"), ("Jane", "Wanjiru Doe"))

    def test_single_word_has_empty_last_name(self):
        self.assertEqual(split_name("Madonna"), ("Madonna", ""))

    def test_blank(self):
        self.assertEqual(split_name(None), ("", ""))


class PesapalClientTests(SimpleTestCase):
    """
    GUARANTEES:
    - Transient failures are retried with exponential backoff, then raised
    - 4xx / explicit error bodies are raised as GatewayRejected without retry
    - The access token is cached and reused
    """

    def setUp(self):
        cache.clear()
        cache.set(TOKEN_CACHE_KEY, "cached-token", 600)

    def tearDown(self):
        cache.clear()

    def test_intent_payload(self):
        payload = INTENT.to_payload()

        self.assertEqual(payload["id"], "ORD-ABCDEF12-1700000000")
        self.assertEqual(payload["amount"], 1500.0)
        self.assertEqual(payload["notification_id"], "ipn-1")
        self.assertEqual(payload["billing_address"]["first_name"], "Jane")
        self.assertEqual(payload["billing_address"]["last_name"], "Doe")

    @mock.patch("payments.services.pesapal.urlopen")
    def test_submit_order_request(self, urlopen):
        urlopen.return_value = json_response(
            {
                "order_tracking_id": "TRK-1",
                "merchant_reference": "ORD-ABCDEF12-1700000000",
                "redirect_url": "https://pay.pesapal.test/iframe",
                "status": "200",
            }
        )

        result = make_client().submit_order_request(INTENT)

        self.assertEqual(result.tracking_id, "TRK-1")
        self.assertEqual(result.redirect_url, "https://pay.pesapal.test/iframe")

        req = urlopen.call_args.args[0]
        self.assertEqual(req.get_header("Authorization"), "Bearer cached-token")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 5.0)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_transient_errors_are_retried_with_backoff(self, urlopen):
        urlopen.side_effect = [
            URLError("connection refused"),
            http_error(503, b'{"message": "maintenance"}'),
            json_response({"order_tracking_id": "TRK-2", "redirect_url": ""}),
        ]
        sleep = mock.Mock()

        result = make_client(sleep=sleep).submit_order_request(INTENT)

        self.assertEqual(result.tracking_id, "TRK-2")
        self.assertEqual(urlopen.call_count, 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.5, 1.0])

    @mock.patch("payments.services.pesapal.urlopen")
    def test_gives_up_after_max_retries(self, urlopen):
        urlopen.side_effect = TimeoutError("timed out")

        with self.assertRaises(GatewayError):
            make_client(max_retries=1).submit_order_request(INTENT)

        self.assertEqual(urlopen.call_count, 2)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_client_error_is_rejected_without_retry(self, urlopen):
        urlopen.side_effect = http_error(400, b'{"error": {"message": "Invalid currency"}}')

        with self.assertRaises(GatewayRejected) as ctx:
            make_client().submit_order_request(INTENT)

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(urlopen.call_count, 1)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_unauthorized_drops_cached_token(self, urlopen):
        urlopen.side_effect = http_error(401, b"{}")

        with self.assertRaises(GatewayRejected):
            make_client().get_transaction_status("TRK-1")

        self.assertIsNone(cache.get(TOKEN_CACHE_KEY))

    @mock.patch("payments.services.pesapal.urlopen")
    def test_error_body_with_200_is_rejected(self, urlopen):
        urlopen.return_value = json_response(
            {"error": {"error_type": "api_error", "message": "Invalid id"}, "status": "500"}
        )

        with self.assertRaises(GatewayRejected):
            make_client().submit_order_request(INTENT)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_non_json_body_is_transient(self, urlopen):
        resp = mock.MagicMock()
        resp.__enter__.return_value.read.return_value = b"<html>bad gateway</html>"
        urlopen.return_value = resp

        with self.assertRaises(GatewayError):
            make_client(max_retries=0).submit_order_request(INTENT)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_transaction_status(self, urlopen):
        urlopen.return_value = json_response(
            {
                "payment_status_code": 1,
                "payment_status_description": "Completed",
                "confirmation_code": "QWERTY",
                "amount": 1500,
                "currency": "KES",
                "merchant_reference": "ORD-ABCDEF12-1700000000",
                "status": "200",
            }
        )

        status = make_client().get_transaction_status("TRK-1")

        self.assertEqual(status.status_code, 1)
        self.assertEqual(status.amount, Decimal("1500.00"))
        self.assertIn("orderTrackingId=TRK-1", urlopen.call_args.args[0].full_url)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_completed_status_body_with_null_error_object(self, urlopen):
        urlopen.return_value = json_response(
            {
                "payment_method": "Visa",
                "amount": 1500.0,
                "created_date": "2026-10-17T10:15:02.88",
                "confirmation_code": "6513008693186320103009",
                "payment_status_description": "Completed",
                "description": "Transaction completed",
                "message": "Request processed successfully",
                "payment_account": "476173**0010",
                "call_back_url": "https://api.example/api/payments/pesapal/confirm/",
                "status_code": 1,
                "merchant_reference": "ORD-ABCDEF12-1700000000",
                "payment_status_code": "",
                "currency": "KES",
                "error": {
                    "error_type": None,
                    "code": None,
                    "message": None,
                    "call_back_url": None,
                },
                "status": "200",
            }
        )

        status = make_client().get_transaction_status("TRK-1")

        self.assertEqual(status.status_code, 1)
        self.assertEqual(status.description, "Completed")
        self.assertEqual(status.confirmation_code, "6513008693186320103009")
        self.assertEqual(status.merchant_reference, "ORD-ABCDEF12-1700000000")

    @mock.patch("payments.services.pesapal.urlopen")
    def test_populated_error_object_is_rejected(self, urlopen):
        urlopen.return_value = json_response(
            {
                "error": {
                    "error_type": "api_error",
                    "code": "invalid_order_tracking_id",
                    "message": "Invalid order tracking id",
                },
                "status": "500",
            }
        )

        with self.assertRaises(GatewayRejected) as ctx:
            make_client().get_transaction_status("TRK-BAD")

        self.assertIn("Invalid order tracking id", str(ctx.exception))
        self.assertEqual(urlopen.call_count, 1)

    @mock.patch("payments.services.pesapal.urlopen")
    def test_token_is_requested_once_and_cached(self, urlopen):
        cache.clear()
        expiry = (timezone.now() + timedelta(hours=1)).isoformat()
        urlopen.side_effect = [
            json_response({"token": "fresh-token", "expiryDate": expiry, "status": "200"}),
            json_response({"payment_status_code": 0}),
            json_response({"payment_status_code": 0}),
        ]
        client = make_client()

        client.get_transaction_status("TRK-1")
        client.get_transaction_status("TRK-1")

        self.assertEqual(urlopen.call_count, 3)
        self.assertEqual(cache.get(TOKEN_CACHE_KEY), "fresh-token")
        last_req = urlopen.call_args.args[0]
        self.assertEqual(last_req.get_header("Authorization"), "Bearer fresh-token")

    def test_missing_credentials_is_gateway_error(self):
        cache.clear()

        with self.assertRaises(GatewayError):
            make_client(consumer_key="", consumer_secret="", max_retries=0).get_access_token()

    @mock.patch("payments.services.pesapal.urlopen")
    def test_register_ipn(self, urlopen):
        urlopen.return_value = json_response(
            {"url": "https://api.example/ipn", "ipn_id": "ipn-42", "status": "200"}
        )

        result = make_client().register_ipn("https://api.example/ipn")

        self.assertEqual(result["notification_id"], "ipn-42")
