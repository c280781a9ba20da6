# commerce/exceptions.py

"""
BILLING DOMAIN ERRORS

Centralized error taxonomy for the order/subscription/payment engine.

HTTP mapping (applied by views, never by services):
- ValidationError              -> 400
- NotFoundError                -> 404
- DuplicateActiveSubscription  -> 409
- InvalidTransition            -> 409
- GatewayError / GatewayRejected / PaymentStartFailed -> 502
- StorageUnavailable           -> 503
"""


class BillingError(Exception):
    """Base exception for all billing engine failures."""


class ValidationError(BillingError):
    """Bad caller input. Never retried automatically."""


class NotFoundError(BillingError):
    """Referenced record is absent."""


class OrderNotFound(NotFoundError):
    pass


class SubscriptionNotFound(NotFoundError):
    pass


class DuplicateActiveSubscription(BillingError):
    """User already holds an active subscription for the product."""


class InvalidTier(ValidationError):
    """Tier is not defined in the product's tier table."""


class InvalidTransition(BillingError):
    """Requested status change is not allowed from the current status."""


class AlreadyCancelled(InvalidTransition):
    pass


class GatewayError(BillingError):
    """Transient gateway failure (network, timeout, 5xx). Eligible for retry."""


class GatewayRejected(BillingError):
    """Gateway explicitly declined the request. Not retried."""

    def __init__(self, message: str, *, status_code: int | None = None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class StorageUnavailable(BillingError):
    """Database unavailable. Fatal for the current operation."""


class PaymentStartFailed(BillingError):
    """A payment could not be started; the owning record stays pending."""
