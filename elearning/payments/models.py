"""
E-Learning Payment & Coupon Models

This module defines the durable records of the reconciliation core.

Models:
- Payment: One attempt to pay for a course or a bundle, with its lifecycle state
- Coupon: A discount code, optionally scoped to one course
- CouponUsage: One row per successful redemption (audit + per-user limits)

Payment lifecycle:
    pending → verifying | completed | failed
    verifying → completed | failed
    failed → completed | failed   (admin recovery only)

Payments are never deleted; failed and stale attempts stay as audit trail.

Author: Academy Development Team
Version: 1.0.0
"""

from decimal import Decimal
from typing import Dict, FrozenSet

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from ..courses.models import Bundle, Course


class Payment(models.Model):
    """
    One attempt to pay for a Course or a Bundle (never both).

    Attributes:
        user: Paying user
        course / bundle: Purchase target (exactly one is set)
        amount: Authoritative amount computed server-side
        currency: ISO currency code
        method: promptpay, stripe or bank_transfer
        status: Lifecycle state (see module docstring)
        external_reference: Slip transaction ref or gateway payment intent id
        checkout_session_id: Stripe Checkout Session id for gateway payments
        coupon / discount_amount: Coupon applied when the amount was computed
        failure_reason: Machine-readable reason of the last rejection
        retry_count / last_retry_at: Admin recovery bookkeeping
    """

    class Method(models.TextChoices):
        PROMPTPAY = "promptpay", _("PromptPay")
        STRIPE = "stripe", _("Stripe")
        BANK_TRANSFER = "bank_transfer", _("Bank Transfer")

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        VERIFYING = "verifying", _("Verifying")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")

    # Allowed target states per current state
    TRANSITIONS: Dict[str, FrozenSet[str]] = {
        Status.PENDING: frozenset({Status.VERIFYING, Status.COMPLETED, Status.FAILED}),
        Status.VERIFYING: frozenset({Status.COMPLETED, Status.FAILED}),
        Status.FAILED: frozenset({Status.COMPLETED, Status.FAILED}),
        Status.COMPLETED: frozenset(),
    }

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="payments",
        verbose_name=_("User"),
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
        verbose_name=_("Course"),
    )
    bundle = models.ForeignKey(
        Bundle,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
        verbose_name=_("Bundle"),
    )

    amount = models.DecimalField(max_digits=10, decimal_places=2, verbose_name=_("Amount"))
    currency = models.CharField(max_length=10, default="THB", verbose_name=_("Currency"))
    method = models.CharField(max_length=20, choices=Method.choices, verbose_name=_("Method"))
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )

    external_reference = models.CharField(max_length=255, blank=True, default="")
    checkout_session_id = models.CharField(max_length=255, null=True, blank=True, unique=True)

    coupon = models.ForeignKey(
        "Coupon",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
        verbose_name=_("Coupon"),
    )
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))

    failure_reason = models.CharField(max_length=64, blank=True, default="")
    retry_count = models.PositiveIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["-created_at"]
        db_table = "elearning_payment"
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(course__isnull=False, bundle__isnull=True)
                    | Q(course__isnull=True, bundle__isnull=False)
                ),
                name="ck_payment_single_target",
            ),
            models.UniqueConstraint(
                fields=["user", "course"],
                condition=Q(status="pending", method="promptpay", course__isnull=False),
                name="uq_payment_pending_promptpay_course",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment #{self.pk} ({self.method}, {self.status})"

    @property
    def is_bundle_payment(self) -> bool:
        return self.bundle_id is not None

    @property
    def item_type(self) -> str:
        return "bundle" if self.is_bundle_payment else "course"

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        return new in cls.TRANSITIONS.get(current, frozenset())


class Coupon(models.Model):
    """
    A discount code.

    Attributes:
        code: Unique, stored upper-case
        discount_type: percentage or fixed
        discount_value: Percent (0-100) or fixed amount
        max_discount: Cap for percentage discounts
        min_purchase: Minimum effective price the coupon applies to
        usage_limit / usage_count: Global cap and monotonic redemption counter
        per_user_limit: Redemptions allowed per user
        course: Restricts the coupon to one course (None = any course)
        is_active / starts_at / expires_at: Availability window

    usage_count is only ever increased through a conditional UPDATE, see
    PaymentStore.increment_coupon_usage.
    """

    class DiscountType(models.TextChoices):
        PERCENTAGE = "percentage", _("Percentage")
        FIXED = "fixed", _("Fixed Amount")

    code = models.CharField(max_length=50, unique=True, verbose_name=_("Code"))
    description = models.TextField(blank=True, default="")
    discount_type = models.CharField(max_length=20, choices=DiscountType.choices)
    discount_value = models.DecimalField(max_digits=10, decimal_places=2)
    max_discount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    min_purchase = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    per_user_limit = models.PositiveIntegerField(null=True, blank=True)
    course = models.ForeignKey(
        Course,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="coupons",
        verbose_name=_("Course"),
    )
    is_active = models.BooleanField(default=True)
    starts_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Coupon")
        verbose_name_plural = _("Coupons")
        ordering = ["-created_at"]
        db_table = "elearning_coupon"
        constraints = [
            models.CheckConstraint(
                condition=Q(usage_limit__isnull=True) | Q(usage_count__lte=F("usage_limit")),
                name="ck_coupon_usage_within_limit",
            ),
        ]

    def __str__(self) -> str:
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)


class CouponUsage(models.Model):
    """
    One successful coupon redemption.

    Written in the same transaction as the usage_count increment. At most one
    row exists per payment, so re-running settlement never double-records.
    """

    coupon = models.ForeignKey(Coupon, on_delete=models.CASCADE, related_name="usages")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="coupon_usages",
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="coupon_usages",
    )
    payment = models.ForeignKey(
        Payment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="coupon_usages",
    )
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Coupon Usage")
        verbose_name_plural = _("Coupon Usages")
        ordering = ["-created_at"]
        db_table = "elearning_coupon_usage"
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=Q(payment__isnull=False),
                name="uq_coupon_usage_per_payment",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.coupon_id} used by {self.user_id}"
