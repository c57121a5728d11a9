"""
Authoritative Pricing

Resolves what a user owes for a course or bundle on the server side. Client
supplied amounts are never used: the price starts from the catalog, takes the
promotional price while its window is open, then applies an eligible coupon.

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from ..courses.models import Bundle, Course, get_published_bundle, get_published_course
from .coupons import apply_discount, calculate_discount, quantize, validate_coupon_eligibility
from .exceptions import CouponIneligibleError, NotFoundError
from .models import Coupon
from .store import default_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    """
    Result of a price resolution.

    Attributes:
        base_price: Catalog list price
        effective_price: Price before coupon (promo applied when active)
        discount_amount: Coupon discount, clamped to the effective price
        final_amount: What must be paid, never negative
        coupon: Applied coupon, if any
    """

    base_price: Decimal
    effective_price: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    coupon: Optional[Coupon] = None

    @property
    def is_free(self) -> bool:
        return self.final_amount <= 0


def load_coupon(coupon_id=None, *, code: Optional[str] = None) -> Coupon:
    coupon = None
    if coupon_id is not None:
        coupon = Coupon.objects.filter(pk=coupon_id).first()
    elif code:
        coupon = Coupon.objects.filter(code=code.strip().upper()).first()
    if coupon is None:
        raise NotFoundError(_("Coupon not found."), code="coupon_not_found")
    return coupon


def _quote(
    base_price: Decimal,
    effective_price: Decimal,
    *,
    user,
    coupon: Optional[Coupon],
    target_course_id: Optional[int],
    store,
    now,
) -> PriceQuote:
    effective_price = quantize(effective_price)
    if coupon is None:
        return PriceQuote(base_price, effective_price, Decimal("0.00"), effective_price)

    result = validate_coupon_eligibility(
        coupon,
        target_course_id=target_course_id,
        user_usage_count=store.count_user_coupon_usages(coupon.pk, user.pk),
        course_price=effective_price,
        now=now,
    )
    if not result.valid:
        logger.info("Coupon %s rejected for user %s: %s", coupon.code, user.pk, result.error)
        raise CouponIneligibleError(result.error)

    discount = calculate_discount(
        effective_price, coupon.discount_type, coupon.discount_value, coupon.max_discount
    )
    discount = min(discount, effective_price)
    return PriceQuote(
        base_price,
        effective_price,
        discount,
        apply_discount(effective_price, discount),
        coupon,
    )


def resolve_course_price(course: Course, *, user, coupon: Optional[Coupon] = None, store=None, now=None) -> PriceQuote:
    """
    Quote a single course.

    Raises:
        CouponIneligibleError: The coupon fails an eligibility rule
    """
    now = now or timezone.now()
    return _quote(
        course.price,
        course.get_effective_price(now),
        user=user,
        coupon=coupon,
        target_course_id=course.pk,
        store=store or default_store,
        now=now,
    )


def resolve_bundle_price(bundle: Bundle, *, user, coupon: Optional[Coupon] = None, store=None, now=None) -> PriceQuote:
    """Quote a bundle. Only coupons not scoped to a course apply to bundles."""
    now = now or timezone.now()
    return _quote(
        bundle.price,
        bundle.get_effective_price(now),
        user=user,
        coupon=coupon,
        target_course_id=None,
        store=store or default_store,
        now=now,
    )


def get_course_or_404(course_id) -> Course:
    course = get_published_course(course_id)
    if course is None:
        raise NotFoundError(_("Course not found."), code="course_not_found")
    return course


def get_bundle_or_404(bundle_id) -> Bundle:
    bundle = get_published_bundle(bundle_id)
    if bundle is None:
        raise NotFoundError(_("Bundle not found."), code="bundle_not_found")
    return bundle
