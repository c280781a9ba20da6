# commerce/http.py

"""
Translate billing errors into HTTP responses.

Services raise; views call billing_error_response() and return the result.
"""

from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response

from commerce.exceptions import (
    BillingError,
    DuplicateActiveSubscription,
    GatewayError,
    GatewayRejected,
    InvalidTransition,
    NotFoundError,
    PaymentStartFailed,
    StorageUnavailable,
    ValidationError,
)

STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateActiveSubscription, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (PaymentStartFailed, status.HTTP_502_BAD_GATEWAY),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (GatewayRejected, status.HTTP_502_BAD_GATEWAY),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_status_for(exc: BillingError) -> int:
    for error_cls, code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def billing_error_response(exc: BillingError, **extra) -> Response:
    body = {"detail": str(exc) or exc.__class__.__name__, "code": exc.__class__.__name__}
    body.update(extra)
    return Response(body, status=http_status_for(exc))
