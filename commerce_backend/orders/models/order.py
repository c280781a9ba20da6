# orders/models/order.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from commerce.money import CURRENCY_CHOICES, CURRENCY_KES


class OrderQuerySet(models.QuerySet):
    def alive(self):
        return self.filter(deleted_at__isnull=True)


class LiveOrderManager(models.Manager.from_queryset(OrderQuerySet)):
    def get_queryset(self):
        return super().get_queryset().alive()


class Order(models.Model):
    """
    Customer order.

    Key rules:
    - Created PENDING with a contact snapshot (not a live user reference).
    - Leaves PENDING exactly once (paid / failed / cancelled); terminal after.
    - Status, paid_at and payment_reference are written only through
      orders.services.order_ledger.
    - deleted_at is an operator soft-delete marker; the default manager hides
      those rows, all_objects does not.
    """

    STATUS_PENDING = "pending"
    STATUS_PAID = "paid"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PAID, "Paid"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order_reference = models.CharField(
        max_length=64,
        unique=True,
        blank=True,
        help_text="System-generated public order reference (ORD-XXXXXXXX-<unix>)",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )

    # Contact snapshot
    full_name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=40, blank=True, default="")
    company = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default=CURRENCY_KES)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)

    payment_reference = models.CharField(
        max_length=128,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway tracking id (set once submission succeeds)",
    )

    paid_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = LiveOrderManager()
    all_objects = models.Manager()

    class Meta:
        ordering = ["-created_at"]
        base_manager_name = "all_objects"
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["user", "created_at"], name="orders_user_created_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self.order_reference:
            from commerce.references import generate_order_reference

            self.order_reference = generate_order_reference()
        super().save(*args, **kwargs)

    @property
    def is_pending(self) -> bool:
        return self.status == self.STATUS_PENDING

    def __str__(self):
        return f"{self.order_reference} | {self.total_amount} {self.currency} | {self.status}"
