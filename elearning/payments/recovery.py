"""
Payment Reconciliation & Recovery

Re-drives payments that did not settle on the first attempt.

Admin path (ReconciliationService.retry):
    - only promptpay payments in ``verifying`` or ``failed`` qualify
    - at most PAYMENT_MAX_RETRIES admin retries per payment
    - ``approve`` settles through the SettlementEngine without re-verifying
      the slip; bundle approvals enroll every course not yet owned
    - ``reject`` marks the payment ``failed``
    Both actions increment retry_count and stamp last_retry_at.

Checkout page path (reconcile_from_checkout_page):
    Delegates to CheckoutSessionReconciler; idempotent and safe to run
    alongside the Stripe webhook.

Housekeeping:
    - list_stuck(): promptpay payments by status for the admin console
    - bulk_mark_failed(): fail a batch of ``verifying`` payments
    - expire_stale_pending(): fail ``pending`` payments older than a cutoff
      (payments are never deleted)

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from .models import Payment
from .settlement import SettlementEngine
from .store import PaymentStore, default_store
from .verification.gateway import CheckoutSessionReconciler

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
RETRYABLE_STATUSES = (Payment.Status.VERIFYING, Payment.Status.FAILED)
LISTABLE_STATUSES = (Payment.Status.VERIFYING, Payment.Status.FAILED, Payment.Status.PENDING)
LIST_LIMIT = 200
DEFAULT_LIST_DAYS = 30


@dataclass
class RetryOutcome:
    payment_id: int
    status: str
    is_bundle: bool = False
    enrolled_course_ids: List[int] = field(default_factory=list)

    def to_response(self) -> Dict:
        body = {"success": True, "status": self.status}
        if self.is_bundle and self.status == Payment.Status.COMPLETED:
            body["enrolled"] = self.enrolled_course_ids
        return body


class ReconciliationService:
    """
    Admin and fallback recovery for unsettled payments.

    Args:
        store: PaymentStore for reads and writes
        engine: SettlementEngine used by approvals
        reconciler: CheckoutSessionReconciler used by the checkout page fallback
    """

    def __init__(self, store: Optional[PaymentStore] = None, engine: Optional[SettlementEngine] = None,
                 reconciler: Optional[CheckoutSessionReconciler] = None):
        self.store = store or default_store
        self.engine = engine or SettlementEngine(store=self.store)
        self.reconciler = reconciler or CheckoutSessionReconciler(store=self.store, engine=self.engine)

    @property
    def max_retries(self) -> int:
        return settings.PAYMENT_MAX_RETRIES

    def retry(self, payment_id, action: str = APPROVE, *, admin_user=None, reason: str = "") -> RetryOutcome:
        """
        Approve or reject a stuck promptpay payment.

        Raises:
            NotFoundError: Unknown payment
            InvalidStateError: Wrong status, wrong method, retry cap reached,
                or the payment changed concurrently
            BusinessRuleError: Unknown action
            CouponLimitExceededError: Approval lost the last coupon redemption
        """
        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(_("Payment not found."), code="payment_not_found")

        if payment.status not in RETRYABLE_STATUSES:
            raise InvalidStateError(
                str(_("Cannot retry a payment with status: %(status)s")) % {"status": payment.status}
            )
        if (payment.retry_count or 0) >= self.max_retries:
            raise InvalidStateError(
                str(_("Maximum retries (%(max)s) reached.")) % {"max": self.max_retries},
                code="max_retries_reached",
            )
        if payment.method != Payment.Method.PROMPTPAY:
            raise InvalidStateError(_("Only PromptPay payments can be retried."), code="method_not_retryable")

        admin_id = getattr(admin_user, "pk", None)

        if action == APPROVE:
            result = self.engine.settle(
                payment,
                from_statuses=RETRYABLE_STATUSES,
                source="admin",
                extra_fields=self.store.retry_fields(),
            )
            logger.info(
                "Admin %s approved payment %s (settled=%s, enrolled=%s)",
                admin_id, payment.pk, result.settled, result.enrolled_course_ids,
            )
            return RetryOutcome(payment.pk, Payment.Status.COMPLETED, payment.is_bundle_payment, result.enrolled_course_ids)

        if action == REJECT:
            changed = self.store.mark_failed(
                payment.pk,
                reason or "admin_rejected",
                from_statuses=RETRYABLE_STATUSES,
                **self.store.retry_fields(),
            )
            if not changed:
                raise InvalidStateError()
            logger.info("Admin %s rejected payment %s (%s)", admin_id, payment.pk, reason or "no reason")
            return RetryOutcome(payment.pk, Payment.Status.FAILED, payment.is_bundle_payment)

        raise BusinessRuleError(_("Unknown action."), code="unknown_action")

    def list_stuck(self, status: str = Payment.Status.VERIFYING, days=DEFAULT_LIST_DAYS):
        """
        Promptpay payments in ``status`` created within the last ``days`` days.

        Returns:
            (payments, summary, days) with ``days`` clamped to 1..RECONCILIATION_MAX_DAYS
        """
        if status not in LISTABLE_STATUSES:
            raise BusinessRuleError(_("Invalid status filter."), code="invalid_filter")
        try:
            days = int(days)
        except (TypeError, ValueError):
            days = DEFAULT_LIST_DAYS
        days = min(settings.RECONCILIATION_MAX_DAYS, max(1, days))
        since = timezone.now() - timedelta(days=days)

        scope = Payment.objects.filter(method=Payment.Method.PROMPTPAY, created_at__gte=since)
        payments = list(
            scope.filter(status=status)
            .select_related("user", "course", "bundle")
            .order_by("-created_at")[:LIST_LIMIT]
        )
        summary = scope.aggregate(
            verifying=Count("pk", filter=Q(status=Payment.Status.VERIFYING)),
            failed=Count("pk", filter=Q(status=Payment.Status.FAILED)),
            pending=Count("pk", filter=Q(status=Payment.Status.PENDING)),
        )
        return payments, summary, days

    def bulk_mark_failed(self, payment_ids: Iterable, *, admin_user=None) -> int:
        payment_ids = list(payment_ids or [])
        if not payment_ids:
            raise BusinessRuleError(_("Missing payment ids."), code="payment_ids_required")
        limit = settings.RECONCILIATION_BATCH_LIMIT
        if len(payment_ids) > limit:
            raise BusinessRuleError(
                str(_("Maximum %(max)s payments per batch.")) % {"max": limit}, code="batch_too_large"
            )
        changed = self.store.fail_many(payment_ids, "admin_bulk")
        logger.info("Admin %s marked %s of %s payments failed", getattr(admin_user, "pk", None), changed, len(payment_ids))
        return changed

    def expire_stale_pending(self, hours: Optional[int] = None) -> int:
        hours = hours if hours is not None else settings.STALE_PENDING_PAYMENT_HOURS
        cutoff = timezone.now() - timedelta(hours=hours)
        expired = self.store.fail_pending_before(cutoff, "stale_pending")
        logger.info("Expired %s pending payments older than %sh", expired, hours)
        return expired

    def reconcile_from_checkout_page(self, user, session_id: str, *, course_id=None, bundle=None) -> bool:
        return self.reconciler.reconcile_checkout_page(user, session_id, course_id=course_id, bundle=bundle)
