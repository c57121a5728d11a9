"""
Tests for coupon discount arithmetic and eligibility rules.
"""

from datetime import timedelta
from decimal import Decimal

from django.test import SimpleTestCase
from django.utils import timezone

from elearning.payments.coupons import (
    MSG_EXPIRED,
    MSG_INACTIVE,
    MSG_NOT_STARTED,
    MSG_PER_USER_LIMIT,
    MSG_USAGE_LIMIT,
    MSG_WRONG_COURSE,
    apply_discount,
    calculate_discount,
    is_coupon_full_discount,
    validate_coupon_eligibility,
)
from elearning.payments.models import Coupon


class CalculateDiscountTests(SimpleTestCase):
    def test_percentage_of_promo_price(self):
        self.assertEqual(calculate_discount(Decimal("990"), "percentage", 20), Decimal("198.00"))

    def test_percentage_is_capped_by_max_discount(self):
        self.assertEqual(
            calculate_discount(Decimal("1990"), "percentage", 50, max_discount=Decimal("300")),
            Decimal("300.00"),
        )

    def test_zero_max_discount_means_uncapped(self):
        self.assertEqual(calculate_discount(Decimal("1000"), "percentage", 50, max_discount=0), Decimal("500.00"))

    def test_fixed_discount_is_returned_verbatim(self):
        self.assertEqual(calculate_discount(Decimal("100"), "fixed", Decimal("150")), Decimal("150.00"))

    def test_rounds_half_up_to_cents(self):
        # 333.33 * 15% = 49.9995
        self.assertEqual(calculate_discount(Decimal("333.33"), "percentage", 15), Decimal("50.00"))

    def test_unknown_type_raises(self):
        with self.assertRaises(ValueError):
            calculate_discount(Decimal("100"), "bogus", 10)


class FullDiscountTests(SimpleTestCase):
    def test_zero_price_is_always_free(self):
        self.assertTrue(is_coupon_full_discount(0, "percentage", 0))

    def test_hundred_percent_is_free(self):
        self.assertTrue(is_coupon_full_discount(Decimal("990"), "percentage", 100))

    def test_capped_percentage_is_not_free(self):
        self.assertFalse(is_coupon_full_discount(Decimal("990"), "percentage", 100, max_discount=Decimal("500")))

    def test_fixed_larger_than_price_is_free(self):
        self.assertTrue(is_coupon_full_discount(Decimal("100"), "fixed", Decimal("150")))

    def test_apply_discount_never_negative(self):
        self.assertEqual(apply_discount(Decimal("100"), Decimal("150")), Decimal("0.00"))
        self.assertEqual(apply_discount(Decimal("990"), Decimal("198")), Decimal("792.00"))


class EligibilityTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()

    def coupon(self, **kwargs):
        fields = {
            "code": "SAVE20",
            "discount_type": "percentage",
            "discount_value": Decimal("20"),
            "is_active": True,
        }
        fields.update(kwargs)
        return Coupon(**fields)

    def check(self, coupon, *, course_id=1, used=0, price=Decimal("990")):
        return validate_coupon_eligibility(
            coupon, target_course_id=course_id, user_usage_count=used, course_price=price, now=self.now
        )

    def test_valid_coupon(self):
        result = self.check(self.coupon())
        self.assertTrue(result.valid)
        self.assertIsNone(result.error)

    def test_inactive(self):
        self.assertEqual(self.check(self.coupon(is_active=False)).error, str(MSG_INACTIVE))

    def test_not_started(self):
        result = self.check(self.coupon(starts_at=self.now + timedelta(days=1)))
        self.assertEqual(result.error, str(MSG_NOT_STARTED))

    def test_expired(self):
        result = self.check(self.coupon(expires_at=self.now - timedelta(seconds=1)))
        self.assertEqual(result.error, str(MSG_EXPIRED))

    def test_wrong_course(self):
        result = self.check(self.coupon(course_id=2), course_id=1)
        self.assertEqual(result.error, str(MSG_WRONG_COURSE))

    def test_course_scoped_coupon_rejected_without_course(self):
        result = self.check(self.coupon(course_id=2), course_id=None)
        self.assertFalse(result.valid)

    def test_usage_limit_exhausted(self):
        result = self.check(self.coupon(usage_limit=10, usage_count=10))
        self.assertEqual(result.error, str(MSG_USAGE_LIMIT))

    def test_per_user_limit(self):
        result = self.check(self.coupon(per_user_limit=1), used=1)
        self.assertEqual(result.error, str(MSG_PER_USER_LIMIT))

    def test_min_purchase_uses_effective_price(self):
        result = self.check(self.coupon(min_purchase=Decimal("1000")), price=Decimal("990"))
        self.assertFalse(result.valid)
        self.assertIn("1,000", result.error)

    def test_first_failing_rule_wins(self):
        coupon = self.coupon(is_active=False, expires_at=self.now - timedelta(days=1), usage_limit=1, usage_count=1)
        self.assertEqual(self.check(coupon).error, str(MSG_INACTIVE))

    def test_expired_before_wrong_course(self):
        coupon = self.coupon(expires_at=self.now - timedelta(days=1), course_id=99)
        self.assertEqual(self.check(coupon).error, str(MSG_EXPIRED))
