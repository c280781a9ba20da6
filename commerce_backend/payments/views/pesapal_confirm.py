# payments/views/pesapal_confirm.py

"""
PESAPAL RETURN URL

The customer's browser lands here after the hosted payment page. We poll
Pesapal for the final status, reconcile it, and redirect to the frontend:

- order         -> {FRONTEND_BASE_URL}/orders/<id>?payment=<flag>
- subscription  -> {FRONTEND_BASE_URL}/subscriptions/<id>?payment=<flag>
- missing or unknown tracking id -> {FRONTEND_BASE_URL}/checkout?payment=failed

flag: success | failed | cancelled | pending. When Pesapal cannot be reached
the flag is "pending"; the IPN settles the record later.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from django.conf import settings
from django.shortcuts import redirect
from rest_framework.permissions import AllowAny
from rest_framework.views import APIView

from commerce.exceptions import GatewayError, GatewayRejected, InvalidTransition, NotFoundError
from payments.services.reconciler import (
    TARGET_ORDER,
    ReconcileOutcome,
    confirm_payment,
    resolve_payment_target,
)

logger = logging.getLogger(__name__)

FLAG_BY_STATUS = {
    "paid": "success",
    "failed": "failed",
    "cancelled": "cancelled",
}


def _safe_frontend_base() -> str:
    base = (getattr(settings, "FRONTEND_BASE_URL", "") or "").strip()
    if not base:
        base = "http://localhost:5173"

    parsed = urlparse(base)
    if not parsed.scheme or not parsed.netloc:
        logger.warning("Invalid FRONTEND_BASE_URL detected")
        return "http://localhost:5173"

    return base.rstrip("/")


def _record_url(target: str, record_id, flag: str) -> str:
    section = "orders" if target == TARGET_ORDER else "subscriptions"
    return f"{_safe_frontend_base()}/{section}/{record_id}?payment={flag}"


def _failed_checkout_url() -> str:
    return f"{_safe_frontend_base()}/checkout?payment=failed"


class PesapalConfirmView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, *args, **kwargs):
        tracking_id = str(request.query_params.get("OrderTrackingId") or "").strip()
        merchant_reference = request.query_params.get("OrderMerchantReference")

        if not tracking_id:
            logger.warning("Confirmation without tracking id")
            return redirect(_failed_checkout_url())

        try:
            target, record = resolve_payment_target(tracking_id)
        except NotFoundError:
            logger.warning(
                "Confirmation for unknown tracking id",
                extra={"tracking_id": tracking_id, "merchant_reference": merchant_reference},
            )
            return redirect(_failed_checkout_url())

        try:
            outcome: ReconcileOutcome = confirm_payment(tracking_id)
        except (GatewayError, GatewayRejected) as exc:
            logger.warning(
                "Confirmation poll failed; leaving record for IPN",
                extra={"tracking_id": tracking_id, "error": str(exc)},
            )
            return redirect(_record_url(target, record.id, "pending"))
        except InvalidTransition:
            record.refresh_from_db()
            flag = FLAG_BY_STATUS.get(record.status, "pending")
            return redirect(_record_url(target, record.id, flag))

        logger.info(
            "Payment confirmation redirect",
            extra={"tracking_id": tracking_id, "target": outcome.target, "flag": outcome.payment_flag},
        )
        return redirect(_record_url(outcome.target, outcome.record_id, outcome.payment_flag))
