"""
Coupon Evaluation

Pure functions deciding how much a coupon takes off a price and whether a
coupon may be used at all. Nothing here touches the database; callers pass in
the coupon row and the per-user usage count they looked up themselves.

All money arithmetic is done with Decimal and rounded to two places
(ROUND_HALF_UP).

Author: Academy Development Team
Version: 1.0.0
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from django.utils import timezone
from django.utils.translation import gettext_lazy as _

PERCENTAGE = "percentage"
FIXED = "fixed"

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]

# Eligibility failure messages, one per rule
MSG_INACTIVE = _("This coupon has been deactivated.")
MSG_NOT_STARTED = _("This coupon is not active yet.")
MSG_EXPIRED = _("This coupon has expired.")
MSG_WRONG_COURSE = _("This coupon cannot be used for this course.")
MSG_USAGE_LIMIT = _("This coupon has been fully redeemed.")
MSG_PER_USER_LIMIT = _("You have already used this coupon the maximum number of times.")
MSG_MIN_PURCHASE = _("This coupon requires a minimum purchase of ฿%(amount)s.")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount(
    price: Number,
    discount_type: str,
    discount_value: Number,
    max_discount: Optional[Number] = None,
) -> Decimal:
    """
    Compute the discount a coupon grants on a price.

    Args:
        price: Price the coupon is applied to (effective price, promo included)
        discount_type: ``percentage`` or ``fixed``
        discount_value: Percent for percentage coupons, amount for fixed ones
        max_discount: Cap for percentage coupons; None or 0 means uncapped

    Returns:
        The discount, rounded to cents. Fixed discounts are returned verbatim
        even when larger than the price; clamping the charge is up to the caller.

    Example:
        >>> calculate_discount(Decimal("990"), "percentage", 20)
        Decimal('198.00')
    """
    price = to_decimal(price)
    value = to_decimal(discount_value)

    if discount_type == PERCENTAGE:
        discount = price * value / Decimal(100)
        if max_discount:
            cap = to_decimal(max_discount)
            if discount > cap:
                discount = cap
    elif discount_type == FIXED:
        discount = value
    else:
        raise ValueError(f"Unknown discount type: {discount_type!r}")

    return quantize(discount)


def is_coupon_full_discount(
    price: Number,
    discount_type: str,
    discount_value: Number,
    max_discount: Optional[Number] = None,
) -> bool:
    """True when the coupon leaves nothing to pay. A zero price always is."""
    price = to_decimal(price)
    if price <= 0:
        return True
    return price - calculate_discount(price, discount_type, discount_value, max_discount) <= 0


def apply_discount(price: Number, discount: Number) -> Decimal:
    """Final charge after a discount, never below zero."""
    remaining = to_decimal(price) - to_decimal(discount)
    return quantize(max(remaining, Decimal("0")))


@dataclass(frozen=True)
class EligibilityResult:
    valid: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def validate_coupon_eligibility(
    coupon,
    *,
    target_course_id: Optional[int],
    user_usage_count: int,
    course_price: Number,
    now=None,
) -> EligibilityResult:
    """
    Check whether a coupon may be applied, stopping at the first failing rule.

    Rules, in order: active, started, not expired, course scope, global usage
    limit, per-user limit, minimum purchase. ``course_price`` must be the
    effective price the buyer owes before the coupon.

    Returns:
        EligibilityResult(valid=True) or EligibilityResult(valid=False, error=<message>)
    """
    now = now or timezone.now()

    if coupon.is_active is not True:
        return EligibilityResult(False, str(MSG_INACTIVE))

    if coupon.starts_at and now < coupon.starts_at:
        return EligibilityResult(False, str(MSG_NOT_STARTED))

    if coupon.expires_at and now > coupon.expires_at:
        return EligibilityResult(False, str(MSG_EXPIRED))

    if coupon.course_id is not None and coupon.course_id != target_course_id:
        return EligibilityResult(False, str(MSG_WRONG_COURSE))

    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return EligibilityResult(False, str(MSG_USAGE_LIMIT))

    if coupon.per_user_limit is not None and user_usage_count >= coupon.per_user_limit:
        return EligibilityResult(False, str(MSG_PER_USER_LIMIT))

    if coupon.min_purchase is not None and to_decimal(course_price) < coupon.min_purchase:
        return EligibilityResult(False, str(MSG_MIN_PURCHASE) % {"amount": f"{coupon.min_purchase:,}"})

    return EligibilityResult(True)
