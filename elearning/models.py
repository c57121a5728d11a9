"""
E-Learning Application Models Registry

This module serves as the central models registry for the E-Learning application.
It imports and exposes all models from the logical submodules (courses, payments,
notifications) to ensure they are properly registered with Django's ORM system.

Architecture:
- courses/: Courses, bundles and enrollments
- payments/: Payments, coupons and coupon usages
- notifications/: In-app notifications and analytics events

Author: Academy Development Team
Version: 1.0.0
"""

# Import all catalog models for registration with Django ORM
from .courses.models import Bundle, BundleCourse, Course, Enrollment, PublishStatus  # noqa: F401

# Import all payment models for registration with Django ORM
from .payments.models import Coupon, CouponUsage, Payment  # noqa: F401

# Import notification sinks for registration with Django ORM
from .notifications.models import AnalyticsEvent, Notification  # noqa: F401
