# commerce/references.py

"""
REFERENCE GENERATOR

Human-shareable identifiers for orders and subscriptions:

    <PREFIX>-<8 random upper-alphanumeric>-<unix time>

Uniqueness:
- Random + time composition makes collisions astronomically unlikely.
- Every candidate is still checked against existing records; on a hit we
  generate again (expected to loop once).
- If the existence check cannot reach the database, StorageUnavailable is
  raised and the caller must not create a record.
"""

from __future__ import annotations

import logging
import string
import time
from typing import Callable

from django.db import DatabaseError
from django.utils.crypto import get_random_string

from commerce.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
RANDOM_LENGTH = 8

ORDER_PREFIX = "ORD"
SUBSCRIPTION_PREFIX = "SUB"
RENEWAL_PREFIX = "RENEWAL"


def compose_reference(prefix: str) -> str:
    random_part = get_random_string(RANDOM_LENGTH, allowed_chars=REFERENCE_ALPHABET)
    return f"{prefix}-{random_part}-{int(time.time())}"


def generate_reference(prefix: str, *, exists: Callable[[str], bool]) -> str:
    prefix = str(prefix or "").strip().upper()
    if not prefix:
        raise ValueError("prefix is required")

    while True:
        candidate = compose_reference(prefix)
        try:
            taken = exists(candidate)
        except DatabaseError as exc:
            logger.error(
                "Reference existence check failed",
                extra={"prefix": prefix, "candidate": candidate},
            )
            raise StorageUnavailable(f"Cannot verify reference uniqueness: {exc}") from exc

        if not taken:
            return candidate

        logger.warning("Reference collision, regenerating", extra={"candidate": candidate})


def generate_order_reference() -> str:
    from orders.models import Order

    return generate_reference(
        ORDER_PREFIX,
        exists=lambda ref: Order.all_objects.filter(order_reference=ref).exists(),
    )


def generate_subscription_reference() -> str:
    from subscriptions.models import Subscription

    return generate_reference(
        SUBSCRIPTION_PREFIX,
        exists=lambda ref: Subscription.objects.filter(subscription_reference=ref).exists(),
    )


def renewal_reference(subscription_reference: str) -> str:
    return f"{RENEWAL_PREFIX}-{subscription_reference}"
