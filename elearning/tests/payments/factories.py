"""
Test data helpers for the payment test-suite.
"""

from decimal import Decimal
from itertools import count

from django.contrib.auth.models import User

from elearning.courses.models import Bundle, BundleCourse, Course, Enrollment, PublishStatus
from elearning.payments.models import Coupon, Payment

_seq = count(1)


def make_user(username=None, **kwargs) -> User:
    n = next(_seq)
    username = username or f"user{n}"
    kwargs.setdefault("email", f"{username}@example.com")
    return User.objects.create_user(username=username, password="Testpassword1", **kwargs)


def make_course(price="1990", promo_price=None, **kwargs) -> Course:
    n = next(_seq)
    kwargs.setdefault("title", f"Course {n}")
    kwargs.setdefault("slug", f"course-{n}")
    kwargs.setdefault("status", PublishStatus.PUBLISHED)
    return Course.objects.create(
        price=Decimal(price),
        promo_price=Decimal(promo_price) if promo_price is not None else None,
        **kwargs,
    )


def make_bundle(courses, price="2990", **kwargs) -> Bundle:
    n = next(_seq)
    kwargs.setdefault("title", f"Bundle {n}")
    kwargs.setdefault("slug", f"bundle-{n}")
    kwargs.setdefault("status", PublishStatus.PUBLISHED)
    bundle = Bundle.objects.create(price=Decimal(price), **kwargs)
    for index, course in enumerate(courses):
        BundleCourse.objects.create(bundle=bundle, course=course, order_index=index)
    return bundle


def make_coupon(code=None, discount_type="percentage", discount_value="20", **kwargs) -> Coupon:
    n = next(_seq)
    return Coupon.objects.create(
        code=code or f"CODE{n}",
        discount_type=discount_type,
        discount_value=Decimal(discount_value),
        **kwargs,
    )


def make_payment(user, *, course=None, bundle=None, amount="990", status=Payment.Status.PENDING,
                 method=Payment.Method.PROMPTPAY, **kwargs) -> Payment:
    return Payment.objects.create(
        user=user,
        course=course,
        bundle=bundle,
        amount=Decimal(amount),
        status=status,
        method=method,
        **kwargs,
    )


def enroll(user, course) -> Enrollment:
    return Enrollment.objects.create(user=user, course=course)
