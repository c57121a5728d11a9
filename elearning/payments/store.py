"""
Payment Record Store

Repository over the Django ORM for every write the payment core performs.
The verifier, the settlement engine and the recovery service receive a
PaymentStore instance (``default_store`` when none is passed), so tests can
hand them a different one.

Concurrency primitives:
- transition(): conditional UPDATE ... WHERE status IN (...); the affected
  row count tells the caller whether it won
- increment_coupon_usage(): conditional UPDATE guarded by the usage limit
- insert_enrollment(): duplicate-safe insert backed by the unique
  (user, course) constraint

No method holds a lock beyond the surrounding transaction.

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from ..courses.models import Enrollment
from .models import Coupon, CouponUsage, Payment

logger = logging.getLogger(__name__)


class PaymentStore:
    """Transaction manager and data access for payments, coupons and enrollments."""

    def atomic(self):
        return transaction.atomic()

    def on_commit(self, func: Callable[[], None]) -> None:
        transaction.on_commit(func, robust=True)

    # ---------- payments ----------

    def get_payment(self, payment_id) -> Optional[Payment]:
        return Payment.objects.select_related("coupon", "course", "bundle", "user").filter(pk=payment_id).first()

    def get_by_checkout_session(self, session_id: str) -> Optional[Payment]:
        if not session_id:
            return None
        return Payment.objects.filter(checkout_session_id=session_id).first()

    def create_payment(self, *, user, amount: Decimal, method: str, course=None, bundle=None, **fields) -> Payment:
        return Payment.objects.create(
            user=user, course=course, bundle=bundle, amount=amount, method=method, **fields
        )

    def create_or_reuse_pending(
        self,
        *,
        user,
        amount: Decimal,
        currency: str,
        course=None,
        bundle=None,
        coupon=None,
        discount_amount: Decimal = Decimal("0"),
        method: str = Payment.Method.PROMPTPAY,
    ) -> Payment:
        """
        Return the user's pending payment for this target, refreshed with the
        new amount, or create one.

        A concurrent insert that trips the partial unique constraint falls
        back to updating the row the other request created.
        """
        fields = {
            "amount": amount,
            "currency": currency,
            "coupon": coupon,
            "discount_amount": discount_amount,
        }
        lookup = {
            "user": user,
            "course": course,
            "bundle": bundle,
            "method": method,
            "status": Payment.Status.PENDING,
        }

        with transaction.atomic():
            existing = Payment.objects.select_for_update().filter(**lookup).order_by("-created_at").first()
            if existing is None:
                try:
                    with transaction.atomic():
                        payment = Payment.objects.create(**lookup, **fields)
                    logger.info("Created pending payment %s for user %s", payment.pk, user.pk)
                    return payment
                except IntegrityError:
                    existing = Payment.objects.select_for_update().filter(**lookup).first()
                    if existing is None:
                        raise

            for name, value in fields.items():
                setattr(existing, name, value)
            existing.save(update_fields=[*fields.keys(), "updated_at"])
            logger.info("Reusing pending payment %s for user %s", existing.pk, user.pk)
            return existing

    def transition(self, payment_id, from_statuses: Iterable[str], to_status: str, **fields) -> bool:
        """
        Move a payment to ``to_status`` only if it is currently in one of
        ``from_statuses``.

        Returns:
            True when exactly this call changed the row
        """
        from_statuses = list(from_statuses)
        invalid = [s for s in from_statuses if not Payment.can_transition(s, to_status)]
        if invalid:
            raise ValueError(f"Illegal transition {invalid} -> {to_status}")

        updated = Payment.objects.filter(pk=payment_id, status__in=from_statuses).update(
            status=to_status, updated_at=timezone.now(), **fields
        )
        if updated:
            logger.info("Payment %s -> %s", payment_id, to_status)
        return updated == 1

    def mark_verifying(self, payment_id) -> bool:
        return self.transition(payment_id, [Payment.Status.PENDING], Payment.Status.VERIFYING)

    def mark_failed(
        self,
        payment_id,
        reason: str,
        from_statuses: Iterable[str] = (Payment.Status.PENDING, Payment.Status.VERIFYING),
        **fields,
    ) -> bool:
        return self.transition(payment_id, from_statuses, Payment.Status.FAILED, failure_reason=reason, **fields)

    def fail_many(self, payment_ids: Iterable, reason: str, from_status: str = Payment.Status.VERIFYING) -> int:
        """Fail every listed payment still in ``from_status``; returns the number changed."""
        return Payment.objects.filter(pk__in=list(payment_ids), status=from_status).update(
            status=Payment.Status.FAILED, failure_reason=reason, updated_at=timezone.now()
        )

    def fail_pending_before(self, cutoff, reason: str) -> int:
        return Payment.objects.filter(status=Payment.Status.PENDING, created_at__lt=cutoff).update(
            status=Payment.Status.FAILED, failure_reason=reason, updated_at=timezone.now()
        )

    def retry_fields(self) -> dict:
        """Update fields recording one more admin retry."""
        return {"retry_count": F("retry_count") + 1, "last_retry_at": timezone.now()}

    # ---------- enrollments ----------

    def insert_enrollment(self, user_id, course_id, *, source: str = "", reference: str = "") -> bool:
        """
        Enroll a user, ignoring an existing enrollment.

        Returns:
            True if a new row was created
        """
        try:
            with transaction.atomic():
                _, created = Enrollment.objects.get_or_create(
                    user_id=user_id,
                    course_id=course_id,
                    defaults={"source": source, "reference": str(reference or "")},
                )
        except IntegrityError:
            # Only a lost insert race is harmless: the other writer's row must exist
            if not Enrollment.objects.filter(user_id=user_id, course_id=course_id).exists():
                raise
            created = False
        if created:
            logger.info("Enrolled user %s in course %s (%s)", user_id, course_id, source)
        return created

    def is_enrolled(self, user_id, course_id) -> bool:
        return Enrollment.is_enrolled(user_id, course_id)

    def missing_course_ids(self, user_id, course_ids):
        return Enrollment.missing_course_ids(user_id, course_ids)

    # ---------- coupons ----------

    def increment_coupon_usage(self, coupon_id) -> bool:
        """
        Take one redemption from the coupon, if any are left.

        Returns:
            False when the usage limit is already reached
        """
        updated = (
            Coupon.objects.filter(pk=coupon_id)
            .filter(Q(usage_limit__isnull=True) | Q(usage_count__lt=F("usage_limit")))
            .update(usage_count=F("usage_count") + 1)
        )
        return updated == 1

    def record_coupon_usage(self, *, coupon_id, user_id, course_id, payment_id, discount_amount: Decimal) -> CouponUsage:
        return CouponUsage.objects.create(
            coupon_id=coupon_id,
            user_id=user_id,
            course_id=course_id,
            payment_id=payment_id,
            discount_amount=discount_amount,
        )

    def count_user_coupon_usages(self, coupon_id, user_id) -> int:
        return CouponUsage.objects.filter(coupon_id=coupon_id, user_id=user_id).count()


default_store = PaymentStore()
