"""
ORDER LIFECYCLE DOMAIN RULES

This module defines the ONLY allowed status transitions for Order.

DESIGN PRINCIPLES:
- No database writes
- No side effects
- Single source of truth
"""

from commerce.exceptions import InvalidTransition
from orders.models import Order

# ============================================================
# STATE DEFINITIONS
# ============================================================

TERMINAL_STATES = {
    Order.STATUS_PAID,
    Order.STATUS_FAILED,
    Order.STATUS_CANCELLED,
}

ALLOWED_TRANSITIONS = {
    Order.STATUS_PENDING: {
        Order.STATUS_PAID,
        Order.STATUS_FAILED,
        Order.STATUS_CANCELLED,
    },
}


# ============================================================
# DOMAIN RULES
# ============================================================


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def can_transition(*, from_status: str, to_status: str) -> bool:
    if from_status in TERMINAL_STATES:
        return False

    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def is_stale(*, current_status: str, reported_status: str) -> bool:
    """A pending report never overrides a recorded terminal status."""
    return reported_status == Order.STATUS_PENDING and current_status in TERMINAL_STATES


def validate_transition(*, order: Order, target_status: str):
    if not can_transition(from_status=order.status, to_status=target_status):
        raise InvalidTransition(
            f"Order {order.order_reference} cannot transition from "
            f"'{order.status}' to '{target_status}'"
        )
