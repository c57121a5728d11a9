"""
Tests for Stripe Checkout Session fulfillment: webhook handling and the
checkout success page fallback.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

import stripe
from django.test import SimpleTestCase, TestCase, override_settings

from core.stripe_integration.signals import _extract_data_object, on_djstripe_event_created
from elearning.courses.models import Enrollment
from elearning.payments.models import CouponUsage, Payment
from elearning.payments.verification.gateway import (
    CheckoutSessionReconciler,
    metadata_matches,
    to_minor_units,
)

from .factories import enroll, make_bundle, make_coupon, make_course, make_payment, make_user


def session_for(payment, **overrides):
    session = {
        "id": payment.checkout_session_id or "cs_test_1",
        "payment_status": "paid",
        "payment_intent": "pi_1",
        "amount_total": to_minor_units(payment.amount),
        "currency": payment.currency.lower(),
        "metadata": {
            "payment_id": str(payment.pk),
            "user_id": str(payment.user_id),
            "type": payment.item_type,
            "course_id": str(payment.course_id or ""),
            "bundle_id": str(payment.bundle_id or ""),
            "coupon_id": str(payment.coupon_id or ""),
        },
    }
    session.update(overrides)
    return session


class MetadataMatchTests(SimpleTestCase):
    def test_course_metadata(self):
        metadata = {"user_id": "7", "type": "course", "course_id": "3"}
        self.assertTrue(metadata_matches(metadata, user_id=7, course_id=3))
        self.assertFalse(metadata_matches(metadata, user_id=8, course_id=3))
        self.assertFalse(metadata_matches(metadata, user_id=7, course_id=4))

    def test_type_must_match_target(self):
        metadata = {"user_id": "7", "type": "course", "course_id": "3"}
        self.assertFalse(metadata_matches(metadata, user_id=7, bundle_id=3))

    def test_bundle_metadata(self):
        metadata = {"user_id": "7", "type": "bundle", "bundle_id": "5"}
        self.assertTrue(metadata_matches(metadata, user_id=7, bundle_id=5))

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("792.00")), 79200)
        self.assertEqual(to_minor_units(Decimal("0.5")), 50)


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class CompletedSessionTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course(price="990")

    def setUp(self):
        self.payment = make_payment(
            self.user, course=self.course, method=Payment.Method.STRIPE, checkout_session_id="cs_test_1"
        )
        self.reconciler = CheckoutSessionReconciler()

    def test_paid_session_settles_payment(self):
        result = self.reconciler.fulfill_completed_session(session_for(self.payment))

        self.assertTrue(result.settled)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.COMPLETED)
        self.assertEqual(self.payment.external_reference, "pi_1")
        self.assertEqual(Enrollment.objects.get(user=self.user).source, "stripe_webhook")

    def test_redelivered_event_is_harmless(self):
        self.reconciler.fulfill_completed_session(session_for(self.payment))
        result = self.reconciler.fulfill_completed_session(session_for(self.payment))

        self.assertFalse(result.settled)
        self.assertEqual(Enrollment.objects.filter(user=self.user).count(), 1)

    def test_unpaid_session_is_ignored(self):
        self.assertIsNone(self.reconciler.fulfill_completed_session(session_for(self.payment, payment_status="unpaid")))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.PENDING)

    def test_amount_mismatch_is_ignored(self):
        session = session_for(self.payment, amount_total=100)
        self.assertIsNone(self.reconciler.fulfill_completed_session(session))
        self.assertFalse(Enrollment.objects.exists())

    def test_foreign_user_metadata_is_ignored(self):
        session = session_for(self.payment)
        session["metadata"]["user_id"] = str(self.user.pk + 1000)
        self.assertIsNone(self.reconciler.fulfill_completed_session(session))

    def test_session_id_must_belong_to_payment(self):
        session = session_for(self.payment, id="cs_other")
        self.assertIsNone(self.reconciler.fulfill_completed_session(session))

    def test_exhausted_coupon_leaves_payment_pending(self):
        coupon = make_coupon(usage_limit=1, usage_count=1)
        Payment.objects.filter(pk=self.payment.pk).update(coupon=coupon)
        self.payment.refresh_from_db()

        self.assertIsNone(self.reconciler.fulfill_completed_session(session_for(self.payment)))

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.PENDING)
        self.assertFalse(CouponUsage.objects.exists())

    def test_expired_session_fails_pending_payment(self):
        self.assertTrue(self.reconciler.expire_session(session_for(self.payment)))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.FAILED)
        self.assertEqual(self.payment.failure_reason, "expired")

    def test_expired_session_does_not_touch_completed_payment(self):
        self.reconciler.fulfill_completed_session(session_for(self.payment))
        self.assertFalse(self.reconciler.expire_session(session_for(self.payment)))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.COMPLETED)


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class CheckoutPageFallbackTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course(price="990")

    def setUp(self):
        self.payment = make_payment(
            self.user, course=self.course, method=Payment.Method.STRIPE, checkout_session_id="cs_test_1"
        )
        self.retrieve = mock.Mock(return_value=session_for(self.payment))
        self.reconciler = CheckoutSessionReconciler(retrieve_session=self.retrieve)

    def test_settles_when_webhook_is_late(self):
        enrolled = self.reconciler.reconcile_checkout_page(self.user, "cs_test_1", course_id=self.course.pk)

        self.assertTrue(enrolled)
        self.retrieve.assert_called_once_with("cs_test_1")
        self.assertEqual(Enrollment.objects.get(user=self.user).source, "stripe_fallback")

    def test_already_enrolled_skips_stripe(self):
        enroll(self.user, self.course)
        self.assertTrue(self.reconciler.reconcile_checkout_page(self.user, "cs_test_1", course_id=self.course.pk))
        self.retrieve.assert_not_called()

    def test_webhook_then_fallback_converge(self):
        CheckoutSessionReconciler().fulfill_completed_session(session_for(self.payment))

        self.assertTrue(self.reconciler.reconcile_checkout_page(self.user, "cs_test_1", course_id=self.course.pk))
        self.assertEqual(Enrollment.objects.filter(user=self.user).count(), 1)

    def test_unpaid_session(self):
        self.retrieve.return_value = session_for(self.payment, payment_status="unpaid")
        self.assertFalse(self.reconciler.reconcile_checkout_page(self.user, "cs_test_1", course_id=self.course.pk))

    def test_other_users_session(self):
        other = make_user()
        self.assertFalse(self.reconciler.reconcile_checkout_page(other, "cs_test_1", course_id=self.course.pk))
        self.assertFalse(Enrollment.objects.exists())

    def test_stripe_error_returns_false(self):
        self.retrieve.side_effect = stripe.StripeError("down")
        self.assertFalse(self.reconciler.reconcile_checkout_page(self.user, "cs_test_1", course_id=self.course.pk))

    def test_bundle_session(self):
        courses = [make_course(), make_course()]
        bundle = make_bundle(courses, price="1500")
        payment = make_payment(
            self.user, bundle=bundle, amount="1500", method=Payment.Method.STRIPE, checkout_session_id="cs_bundle"
        )
        self.retrieve.return_value = session_for(payment)

        self.assertTrue(self.reconciler.reconcile_checkout_page(self.user, "cs_bundle", bundle=bundle))
        self.assertEqual(Enrollment.objects.filter(user=self.user, course__in=courses).count(), 2)


@override_settings(PAYMENT_SIDE_EFFECTS_ASYNC=False)
class WebhookSignalTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course(price="990")

    def event(self, event_type, data):
        return SimpleNamespace(id="evt_1", type=event_type, data=data)

    def test_completed_event_settles(self):
        payment = make_payment(self.user, course=self.course, method=Payment.Method.STRIPE, checkout_session_id="cs_test_1")
        event = self.event("checkout.session.completed", {"object": session_for(payment)})

        on_djstripe_event_created(sender=None, instance=event, created=True)

        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    def test_updates_are_ignored(self):
        payment = make_payment(self.user, course=self.course, method=Payment.Method.STRIPE, checkout_session_id="cs_test_1")
        event = self.event("checkout.session.completed", {"object": session_for(payment)})

        on_djstripe_event_created(sender=None, instance=event, created=False)

        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)

    def test_handler_errors_are_swallowed(self):
        event = self.event("checkout.session.completed", {"object": {"id": "cs_x"}})
        with mock.patch(
            "core.stripe_integration.signals.CheckoutSessionReconciler.fulfill_completed_session",
            side_effect=RuntimeError("boom"),
        ):
            on_djstripe_event_created(sender=None, instance=event, created=True)

    def test_extract_data_object_shapes(self):
        self.assertEqual(_extract_data_object(self.event("x", {"object": {"id": 1}})), {"id": 1})
        self.assertEqual(_extract_data_object(self.event("x", {"data": {"object": {"id": 2}}})), {"id": 2})
        self.assertEqual(_extract_data_object(self.event("x", None)), {})
