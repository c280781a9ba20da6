# payments/tests/test_commands.py

from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase

from commerce.exceptions import GatewayRejected


class RegisterIpnCommandTests(SimpleTestCase):
    @mock.patch("payments.management.commands.register_pesapal_ipn.get_client")
    def test_prints_notification_id(self, get_client):
        get_client.return_value.register_ipn.return_value = {
            "notification_id": "ipn-42",
            "url": "https://api.example/api/payments/pesapal/callback/",
        }
        out = StringIO()

        call_command(
            "register_pesapal_ipn",
            "https://api.example/api/payments/pesapal/callback/",
            stdout=out,
        )

        self.assertIn("PESAPAL_NOTIFICATION_ID=ipn-42", out.getvalue())
        get_client.return_value.register_ipn.assert_called_once_with(
            "https://api.example/api/payments/pesapal/callback/", notification_type="GET"
        )

    def test_relative_url_rejected(self):
        with self.assertRaises(CommandError):
            call_command("register_pesapal_ipn", "/callback/")

    @mock.patch("payments.management.commands.register_pesapal_ipn.get_client")
    def test_gateway_rejection_is_command_error(self, get_client):
        get_client.return_value.register_ipn.side_effect = GatewayRejected("bad credentials")

        with self.assertRaises(CommandError):
            call_command("register_pesapal_ipn", "https://api.example/ipn")
