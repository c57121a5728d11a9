"""
Post-settlement Side Effects

Analytics, e-mail and in-app notifications sent once a settlement has
committed. Every sink runs on its own; a failing sink is logged and dropped,
never retried, and never reaches the caller of the settlement.

With PAYMENT_SIDE_EFFECTS_ASYNC enabled the sinks run on a small worker
thread pool; otherwise they run inline (tests, management commands).

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from django.conf import settings
from django.db import close_old_connections

from ..courses.models import Course
from ..notifications.models import Notification
from ..notifications.services import notify, send_enrollment_email, send_payment_confirmation, track_event
from .models import Payment

logger = logging.getLogger(__name__)

_executor: Optional[ThreadPoolExecutor] = None


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="payment-side-effects")
    return _executor


class SideEffectDispatcher:
    """Runs the fire-and-forget sinks for a settled payment."""

    def payment_settled(self, payment_id, enrolled_course_ids: List[int]) -> None:
        if getattr(settings, "PAYMENT_SIDE_EFFECTS_ASYNC", True):
            _get_executor().submit(self._run_in_worker, payment_id, list(enrolled_course_ids))
        else:
            try:
                self.run(payment_id, list(enrolled_course_ids))
            except Exception:
                logger.exception("Side effects crashed for payment %s", payment_id)

    def _run_in_worker(self, payment_id, enrolled_course_ids: List[int]) -> None:
        close_old_connections()
        try:
            self.run(payment_id, enrolled_course_ids)
        except Exception:
            logger.exception("Side effects crashed for payment %s", payment_id)
        finally:
            close_old_connections()

    def run(self, payment_id, enrolled_course_ids: List[int]) -> None:
        try:
            payment = Payment.objects.select_related("user", "course", "bundle").get(pk=payment_id)
        except Payment.DoesNotExist:
            logger.error("Side effects skipped: payment %s not found", payment_id)
            return
        if payment.user is None:
            return

        item = payment.bundle or payment.course
        item_title = item.title if item is not None else ""
        course_titles = list(
            Course.objects.filter(pk__in=enrolled_course_ids).values_list("title", flat=True)
        )

        self._safely("analytics", payment_id, track_event,
                     "payment_completed",
                     user=payment.user,
                     amount=payment.amount,
                     metadata={
                         "payment_id": payment.pk,
                         "method": payment.method,
                         "item_type": payment.item_type,
                         "course_id": payment.course_id,
                         "bundle_id": payment.bundle_id,
                         "coupon_id": payment.coupon_id,
                         "enrolled_course_ids": enrolled_course_ids,
                     })
        self._safely("payment e-mail", payment_id, send_payment_confirmation,
                     payment.user,
                     item_title=item_title,
                     amount=payment.amount,
                     currency=payment.currency,
                     payment_id=payment.pk)
        self._safely("enrollment e-mail", payment_id, send_enrollment_email, payment.user, course_titles)
        self._safely("notification", payment_id, notify,
                     payment.user,
                     f"Payment confirmed: {item_title}",
                     f"You now have access to {len(course_titles) or 1} course(s).",
                     kind=Notification.Kind.PAYMENT)

    @staticmethod
    def _safely(label: str, ref, func, /, *args, **kwargs) -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            logger.exception("Side effect '%s' failed for payment %s", label, ref)
