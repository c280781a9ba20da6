# payments/views/pesapal_callback.py

"""
PESAPAL IPN (WEBHOOK)

Pesapal calls this endpoint (GET or POST, depending on how the IPN URL was
registered) whenever a transaction changes state.

- missing OrderTrackingId  -> 400
- unknown tracking id      -> 404, nothing is written
- gateway unreachable      -> 502 (Pesapal retries the notification)
- conflicting terminal     -> 409, logged on billing.alerts by the ledger
- otherwise                -> 200 with the acknowledgement body Pesapal expects

Duplicate notifications are safe: the ledgers ignore a status that is
already applied.
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from commerce.exceptions import BillingError
from commerce.http import billing_error_response
from payments.services.reconciler import reconcile_callback

logger = logging.getLogger(__name__)


class WebhookThrottle(AnonRateThrottle):
    scope = "webhook"


def _callback_payload(request) -> dict:
    payload = {key: request.query_params.get(key) for key in request.query_params}
    data = request.data
    if hasattr(data, "items"):
        payload.update({key: value for key, value in data.items()})
    return payload


class PesapalCallbackView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [WebhookThrottle]

    def get(self, request, *args, **kwargs):
        return self._handle(request)

    def post(self, request, *args, **kwargs):
        return self._handle(request)

    def _handle(self, request):
        payload = _callback_payload(request)
        logger.info(
            "Pesapal notification received",
            extra={
                "tracking_id": payload.get("OrderTrackingId"),
                "notification_type": payload.get("OrderNotificationType"),
            },
        )

        try:
            outcome = reconcile_callback(payload)
        except BillingError as exc:
            logger.warning(
                "Pesapal notification not applied",
                extra={"payload": payload, "error": str(exc), "error_type": exc.__class__.__name__},
            )
            return billing_error_response(exc)

        return Response(
            {
                "orderNotificationType": payload.get("OrderNotificationType") or "IPNCHANGE",
                "orderTrackingId": outcome.tracking_id,
                "orderMerchantReference": outcome.merchant_reference or outcome.reference,
                "status": 200,
                "payment_status": outcome.current_status,
                "reported_status": outcome.reported_status,
            },
            status=status.HTTP_200_OK,
        )
