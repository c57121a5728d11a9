"""
Settlement Engine

Turns a payment that has been proven paid into local state, exactly once.

Inside one transaction:
    1. Conditionally move the payment to ``completed`` (only from the allowed
       source statuses). Losing that update means someone else settled it.
    2. Enroll the buyer: one course, or every course of a bundle. Existing
       enrollments are skipped, not treated as errors.
    3. If a coupon was applied, take one redemption with a conditional UPDATE.
       Zero affected rows aborts the whole transaction with
       CouponLimitExceededError. The CouponUsage row is written only after a
       successful increment.

After commit, the side-effect dispatcher is scheduled (analytics, e-mail,
in-app notification). A rollback never sends anything.

Callers:
    - SlipVerifier (verified slip)
    - CheckoutSessionReconciler (Stripe webhook and checkout fallback page)
    - ReconciliationService.retry (admin approval)

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from django.db import DatabaseError
from django.utils import timezone

from .exceptions import CouponLimitExceededError, InvalidStateError, PaymentError, SettlementError
from .models import Payment
from .side_effects import SideEffectDispatcher
from .store import PaymentStore, default_store

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = (Payment.Status.PENDING, Payment.Status.VERIFYING)


@dataclass
class SettlementResult:
    """
    Attributes:
        payment_id: Settled payment
        settled: True when this call performed the completion
        enrolled_course_ids: Courses newly enrolled by this call
        course_ids: All courses the payment grants
    """

    payment_id: int
    settled: bool
    enrolled_course_ids: List[int] = field(default_factory=list)
    course_ids: List[int] = field(default_factory=list)

    @property
    def already_settled(self) -> bool:
        return not self.settled


class SettlementEngine:
    """
    Exactly-once settlement of verified payments.

    Args:
        store: PaymentStore used for every read and write
        side_effects: Dispatcher scheduled after commit
    """

    def __init__(self, store: Optional[PaymentStore] = None, side_effects: Optional[SideEffectDispatcher] = None):
        self.store = store or default_store
        self.side_effects = side_effects or SideEffectDispatcher()

    def course_ids_for(self, payment: Payment) -> List[int]:
        if payment.bundle_id is not None:
            return payment.bundle.get_course_ids()
        return [payment.course_id]

    def settle(
        self,
        payment: Payment,
        *,
        external_reference: Optional[str] = None,
        from_statuses: Iterable[str] = SETTLEABLE_STATUSES,
        source: str = "payment",
        extra_fields: Optional[Dict] = None,
    ) -> SettlementResult:
        """
        Settle a payment.

        Args:
            payment: Payment proven paid
            external_reference: Slip transaction ref or gateway id to store
            from_statuses: Statuses the payment may be settled from
            source: Label stored on created enrollments
            extra_fields: Additional fields written with the status change

        Returns:
            SettlementResult. Settling an already completed payment returns
            ``settled=False`` and only makes sure the enrollments exist.

        Raises:
            CouponLimitExceededError: The coupon ran out; nothing was written
            InvalidStateError: The payment is neither settleable nor completed
            SettlementError: Unexpected database failure; nothing was written
        """
        course_ids = self.course_ids_for(payment)
        fields = {"completed_at": timezone.now(), "failure_reason": ""}
        if external_reference:
            fields["external_reference"] = external_reference
        fields.update(extra_fields or {})

        try:
            with self.store.atomic():
                won = self.store.transition(payment.pk, from_statuses, Payment.Status.COMPLETED, **fields)

                if not won:
                    current = self.store.get_payment(payment.pk)
                    if current is None or current.status != Payment.Status.COMPLETED:
                        raise InvalidStateError(
                            details={"status": current.status if current is not None else None}
                        )
                    enrolled = self._enroll(payment, course_ids, source)
                    logger.info(
                        "Payment %s already settled; ensured enrollments %s", payment.pk, enrolled
                    )
                    return SettlementResult(payment.pk, False, enrolled, course_ids)

                enrolled = self._enroll(payment, course_ids, source)

                if payment.coupon_id is not None:
                    if not self.store.increment_coupon_usage(payment.coupon_id):
                        logger.warning(
                            "Coupon %s exhausted while settling payment %s", payment.coupon_id, payment.pk
                        )
                        raise CouponLimitExceededError()
                    self.store.record_coupon_usage(
                        coupon_id=payment.coupon_id,
                        user_id=payment.user_id,
                        course_id=payment.course_id,
                        payment_id=payment.pk,
                        discount_amount=payment.discount_amount,
                    )

                self.store.on_commit(
                    lambda: self.side_effects.payment_settled(payment.pk, enrolled)
                )
        except PaymentError:
            raise
        except DatabaseError as exc:
            logger.exception("Settlement of payment %s failed", payment.pk)
            raise SettlementError() from exc

        logger.info(
            "Settled payment %s for user %s (%s), enrolled %s",
            payment.pk,
            payment.user_id,
            payment.item_type,
            enrolled,
        )
        return SettlementResult(payment.pk, True, enrolled, course_ids)

    def _enroll(self, payment: Payment, course_ids: List[int], source: str) -> List[int]:
        return [
            course_id
            for course_id in course_ids
            if self.store.insert_enrollment(payment.user_id, course_id, source=source, reference=payment.pk)
        ]
