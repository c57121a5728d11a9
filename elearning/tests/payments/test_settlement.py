"""
Tests for exactly-once settlement: enrollment, coupon redemption and
post-commit side effects.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from unittest import mock

from django.core import mail
from django.db import IntegrityError, connection
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature

from elearning.courses.models import Enrollment
from elearning.notifications.models import AnalyticsEvent, Notification
from elearning.payments.exceptions import CouponLimitExceededError, InvalidStateError, SettlementError
from elearning.payments.models import Coupon, CouponUsage, Payment
from elearning.payments.settlement import SettlementEngine
from elearning.payments.store import PaymentStore

from .factories import enroll, make_bundle, make_coupon, make_course, make_payment, make_user


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class SettleCourseTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course(price="1990", promo_price="990")

    def setUp(self):
        self.engine = SettlementEngine()

    def test_settles_and_enrolls(self):
        payment = make_payment(self.user, course=self.course)

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.settle(payment, external_reference="TX1", source="slip")

        self.assertTrue(result.settled)
        self.assertEqual(result.enrolled_course_ids, [self.course.pk])
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertEqual(payment.external_reference, "TX1")
        self.assertIsNotNone(payment.completed_at)
        enrollment = Enrollment.objects.get(user=self.user, course=self.course)
        self.assertEqual(enrollment.source, "slip")
        self.assertEqual(enrollment.reference, str(payment.pk))

    def test_side_effects_run_after_commit(self):
        payment = make_payment(self.user, course=self.course)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.engine.settle(payment)

        self.assertEqual(len(callbacks), 1)
        self.assertTrue(AnalyticsEvent.objects.filter(name="payment_completed", user=self.user).exists())
        self.assertTrue(Notification.objects.filter(user=self.user, kind=Notification.Kind.PAYMENT).exists())
        self.assertEqual(len(mail.outbox), 2)

    def test_every_sink_receives_the_settled_payment(self):
        payment = make_payment(self.user, course=self.course)

        with mock.patch("elearning.payments.side_effects.logger") as side_effect_logger:
            with self.captureOnCommitCallbacks(execute=True):
                self.engine.settle(payment)

        side_effect_logger.exception.assert_not_called()
        receipt, welcome = mail.outbox
        self.assertEqual(receipt.subject, f"Payment confirmed: {self.course.title}")
        self.assertIn(f"#{payment.pk}", receipt.body)
        self.assertEqual(receipt.to, [self.user.email])
        self.assertIn(self.course.title, welcome.body)
        notification = Notification.objects.get(user=self.user)
        self.assertEqual(notification.title, f"Payment confirmed: {self.course.title}")

    def test_payment_without_buyer_is_not_settled(self):
        payment = make_payment(None, course=self.course)

        with self.assertRaises(SettlementError):
            self.engine.settle(payment)

        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertFalse(Enrollment.objects.filter(course=self.course).exists())

    def test_settling_twice_is_idempotent(self):
        coupon = make_coupon(usage_limit=5)
        payment = make_payment(self.user, course=self.course, coupon=coupon, discount_amount=Decimal("198"))

        with self.captureOnCommitCallbacks(execute=True) as first:
            self.engine.settle(payment)
        with self.captureOnCommitCallbacks(execute=True) as second:
            result = self.engine.settle(payment)

        self.assertFalse(result.settled)
        self.assertEqual(result.enrolled_course_ids, [])
        self.assertEqual(len(first), 1)
        self.assertEqual(len(second), 0)
        self.assertEqual(Enrollment.objects.filter(user=self.user, course=self.course).count(), 1)
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)
        self.assertEqual(CouponUsage.objects.filter(payment=payment).count(), 1)

    def test_existing_enrollment_is_not_an_error(self):
        enroll(self.user, self.course)
        payment = make_payment(self.user, course=self.course)

        result = self.engine.settle(payment)

        self.assertTrue(result.settled)
        self.assertEqual(result.enrolled_course_ids, [])
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    def test_failed_payment_is_not_settleable_by_default(self):
        payment = make_payment(self.user, course=self.course, status=Payment.Status.FAILED)

        with self.assertRaises(InvalidStateError):
            self.engine.settle(payment)

        self.assertFalse(Enrollment.objects.filter(user=self.user).exists())

    def test_exhausted_coupon_rolls_back_everything(self):
        coupon = make_coupon(usage_limit=1, usage_count=1)
        payment = make_payment(self.user, course=self.course, coupon=coupon, discount_amount=Decimal("198"))

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(CouponLimitExceededError):
                self.engine.settle(payment)

        self.assertEqual(callbacks, [])
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertFalse(Enrollment.objects.filter(user=self.user).exists())
        self.assertFalse(CouponUsage.objects.exists())
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)

    def test_side_effect_failure_does_not_reach_caller(self):
        payment = make_payment(self.user, course=self.course)

        with mock.patch("elearning.payments.side_effects.track_event", side_effect=RuntimeError("boom")):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.engine.settle(payment)

        self.assertTrue(result.settled)
        # the other sinks still ran
        self.assertTrue(Notification.objects.filter(user=self.user).exists())


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class CouponConcurrencyTests(TestCase):
    """k redemptions left, N > k payments settling: exactly k succeed."""

    def test_only_remaining_redemptions_succeed(self):
        coupon = make_coupon(usage_limit=3, usage_count=1)
        engine = SettlementEngine()
        outcomes = []

        for _ in range(4):
            user = make_user()
            payment = make_payment(user, course=make_course(), coupon=coupon, discount_amount=Decimal("10"))
            try:
                engine.settle(payment)
                outcomes.append(True)
            except CouponLimitExceededError:
                outcomes.append(False)

        self.assertEqual(outcomes.count(True), 2)
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 3)
        self.assertEqual(CouponUsage.objects.filter(coupon=coupon).count(), 2)
        self.assertEqual(Payment.objects.filter(status=Payment.Status.COMPLETED).count(), 2)

    def test_increment_is_conditional(self):
        coupon = make_coupon(usage_limit=1)
        store = PaymentStore()
        self.assertTrue(store.increment_coupon_usage(coupon.pk))
        self.assertFalse(store.increment_coupon_usage(coupon.pk))
        self.assertEqual(Coupon.objects.get(pk=coupon.pk).usage_count, 1)


@skipUnlessDBFeature("has_select_for_update")
@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class ParallelCouponRedemptionTests(TransactionTestCase):
    """Settlements racing on separate connections for the last redemptions."""

    workers = 5

    def test_only_remaining_redemptions_succeed(self):
        coupon = make_coupon(usage_limit=3, usage_count=1)
        payments = [
            make_payment(make_user(), course=make_course(), coupon=coupon, discount_amount=Decimal("10"))
            for _ in range(self.workers)
        ]
        barrier = Barrier(self.workers)

        def settle(payment):
            try:
                barrier.wait(timeout=10)
                SettlementEngine().settle(payment)
                return True
            except CouponLimitExceededError:
                return False
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            outcomes = list(pool.map(settle, payments))

        self.assertEqual(outcomes.count(True), 2)
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 3)
        self.assertEqual(CouponUsage.objects.filter(coupon=coupon).count(), 2)
        self.assertEqual(Payment.objects.filter(status=Payment.Status.COMPLETED).count(), 2)
        self.assertEqual(Enrollment.objects.count(), 2)


class InsertEnrollmentTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course()

    def setUp(self):
        self.store = PaymentStore()

    def test_existing_enrollment_is_not_created_again(self):
        self.assertTrue(self.store.insert_enrollment(self.user.pk, self.course.pk, source="slip"))
        self.assertFalse(self.store.insert_enrollment(self.user.pk, self.course.pk, source="slip"))
        self.assertEqual(Enrollment.objects.filter(user=self.user).count(), 1)

    def test_lost_insert_race_counts_as_enrolled(self):
        enroll(self.user, self.course)
        with mock.patch.object(Enrollment.objects, "get_or_create", side_effect=IntegrityError("duplicate")):
            self.assertFalse(self.store.insert_enrollment(self.user.pk, self.course.pk))

    def test_other_integrity_errors_propagate(self):
        with mock.patch.object(Enrollment.objects, "get_or_create", side_effect=IntegrityError("not null")):
            with self.assertRaises(IntegrityError):
                self.store.insert_enrollment(self.user.pk, self.course.pk)

    def test_missing_user_is_rejected(self):
        with self.assertRaises(IntegrityError):
            self.store.insert_enrollment(None, self.course.pk)
        self.assertFalse(Enrollment.objects.exists())


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class SettleBundleTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.courses = [make_course(), make_course(), make_course()]
        cls.bundle = make_bundle(cls.courses)

    def test_enrolls_only_missing_courses(self):
        enroll(self.user, self.courses[1])
        payment = make_payment(self.user, bundle=self.bundle, amount="2990")

        result = SettlementEngine().settle(payment)

        self.assertEqual(result.enrolled_course_ids, [self.courses[0].pk, self.courses[2].pk])
        self.assertEqual(result.course_ids, [c.pk for c in self.courses])
        self.assertEqual(Enrollment.objects.filter(user=self.user).count(), 3)

    def test_bundle_coupon_usage_has_no_course(self):
        coupon = make_coupon()
        payment = make_payment(self.user, bundle=self.bundle, amount="2392", coupon=coupon, discount_amount=Decimal("598"))

        SettlementEngine().settle(payment)

        usage = CouponUsage.objects.get(payment=payment)
        self.assertIsNone(usage.course_id)
        self.assertEqual(usage.discount_amount, Decimal("598.00"))
