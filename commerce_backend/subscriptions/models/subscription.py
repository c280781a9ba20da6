# subscriptions/models/subscription.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from commerce.money import CURRENCY_CHOICES, CURRENCY_KES
from products.models import TIER_CHOICES


class Subscription(models.Model):
    """
    One billing-cycle record for a (user, product, tier).

    Key rules:
    - At most one ACTIVE subscription per (user, product); checked by the
      subscription ledger before creation.
    - A tier change cancels this row and creates a new one, so the price
      snapshot of each period is preserved.
    - cancelled_at and cancellation_reason are always set together.
    - renewal_billing_date marks the billing date covered by an in-flight
      renewal payment; it is cleared when that payment settles.
    - renewal_submitted_at is set when a renewal payment is requested and
      cleared once that payment settles; an abandoned renewal keeps it so a
      late "paid" report can still be honoured.
    - payment_reference is the first payment (checkout or direct purchase);
      renewal_payment_reference is the latest renewal payment.
    """

    STATUS_ACTIVE = "active"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    subscription_reference = models.CharField(
        max_length=64,
        unique=True,
        help_text="System-generated reference (SUB-XXXXXXXX-<unix>)",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )

    tier = models.CharField(max_length=16, choices=TIER_CHOICES)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE)

    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default=CURRENCY_KES)

    started_at = models.DateTimeField()
    next_billing_date = models.DateTimeField()

    renewal_reminded_at = models.DateTimeField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    payment_reference = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    renewal_payment_reference = models.CharField(
        max_length=128, null=True, blank=True, db_index=True
    )
    renewal_billing_date = models.DateTimeField(null=True, blank=True)
    renewal_submitted_at = models.DateTimeField(null=True, blank=True)
    renewal_payment_url = models.CharField(max_length=500, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "next_billing_date"], name="subs_status_nbd_idx"),
            models.Index(fields=["user", "product", "status"], name="subs_user_product_idx"),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    @property
    def is_free(self) -> bool:
        return Decimal(self.price or 0) == Decimal("0.00")

    @property
    def renewal_in_flight(self) -> bool:
        return (
            self.renewal_billing_date is not None
            and self.renewal_billing_date == self.next_billing_date
        )

    def __str__(self):
        return f"{self.subscription_reference} | {self.tier} | {self.status}"
