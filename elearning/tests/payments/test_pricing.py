"""
Tests for server-side price resolution.
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from elearning.payments.exceptions import CouponIneligibleError, NotFoundError
from elearning.payments.models import CouponUsage
from elearning.payments.pricing import (
    get_course_or_404,
    load_coupon,
    resolve_bundle_price,
    resolve_course_price,
)
from elearning.courses.models import PublishStatus

from .factories import make_bundle, make_coupon, make_course, make_user


class ResolveCoursePriceTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course(price="1990", promo_price="990")

    def test_open_promo_window_uses_promo_price(self):
        quote = resolve_course_price(self.course, user=self.user)
        self.assertEqual(quote.base_price, Decimal("1990.00"))
        self.assertEqual(quote.effective_price, Decimal("990.00"))
        self.assertEqual(quote.final_amount, Decimal("990.00"))
        self.assertIsNone(quote.coupon)

    def test_closed_promo_window_uses_list_price(self):
        now = timezone.now()
        course = make_course(price="1990", promo_price="990", promo_ends_at=now - timedelta(days=1))
        quote = resolve_course_price(course, user=self.user, now=now)
        self.assertEqual(quote.final_amount, Decimal("1990.00"))

    def test_coupon_applies_to_promo_price(self):
        coupon = make_coupon(code="save20", discount_value="20")
        quote = resolve_course_price(self.course, user=self.user, coupon=coupon)
        self.assertEqual(quote.discount_amount, Decimal("198.00"))
        self.assertEqual(quote.final_amount, Decimal("792.00"))
        self.assertFalse(quote.is_free)

    def test_fixed_coupon_is_clamped_to_price(self):
        coupon = make_coupon(discount_type="fixed", discount_value="5000")
        quote = resolve_course_price(self.course, user=self.user, coupon=coupon)
        self.assertEqual(quote.discount_amount, Decimal("990.00"))
        self.assertEqual(quote.final_amount, Decimal("0.00"))
        self.assertTrue(quote.is_free)

    def test_per_user_limit_counts_recorded_usages(self):
        coupon = make_coupon(per_user_limit=1)
        CouponUsage.objects.create(coupon=coupon, user=self.user, course=self.course, discount_amount=Decimal("1"))
        with self.assertRaises(CouponIneligibleError):
            resolve_course_price(self.course, user=self.user, coupon=coupon)

    def test_exhausted_coupon(self):
        coupon = make_coupon(usage_limit=10, usage_count=10)
        with self.assertRaises(CouponIneligibleError) as ctx:
            resolve_course_price(self.course, user=self.user, coupon=coupon)
        self.assertEqual(ctx.exception.code, "coupon_ineligible")


class ResolveBundlePriceTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user()
        cls.course = make_course()
        cls.bundle = make_bundle([cls.course, make_course()], price="2990")

    def test_global_coupon_applies(self):
        coupon = make_coupon(discount_type="fixed", discount_value="500")
        quote = resolve_bundle_price(self.bundle, user=self.user, coupon=coupon)
        self.assertEqual(quote.final_amount, Decimal("2490.00"))

    def test_course_scoped_coupon_is_rejected(self):
        coupon = make_coupon(course=self.course)
        with self.assertRaises(CouponIneligibleError):
            resolve_bundle_price(self.bundle, user=self.user, coupon=coupon)


class LookupTests(TestCase):
    def test_load_coupon_by_code_is_case_insensitive(self):
        coupon = make_coupon(code="SAVE20")
        self.assertEqual(load_coupon(code=" save20 ").pk, coupon.pk)

    def test_unknown_coupon(self):
        with self.assertRaises(NotFoundError) as ctx:
            load_coupon(code="NOPE")
        self.assertEqual(ctx.exception.code, "coupon_not_found")

    def test_draft_course_is_not_found(self):
        course = make_course(status=PublishStatus.DRAFT)
        with self.assertRaises(NotFoundError) as ctx:
            get_course_or_404(course.pk)
        self.assertEqual(ctx.exception.code, "course_not_found")
