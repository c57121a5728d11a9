"""
E-Learning Package - Academy

This package contains the course catalog and the payment reconciliation
core of the Academy platform.

Features:
- Courses, bundles and enrollments
- PromptPay slip verification and Stripe checkout fulfillment
- Coupon-governed pricing with concurrency-safe usage limits
- Admin reconciliation of stuck payments

Structure:
- courses/: Catalog and enrollment models
- payments/: Pricing, verification, settlement and recovery
- notifications/: In-app notifications, analytics events, e-mail
- management/: Django Management Commands

Author: Academy Development Team
Version: 1.0.0
"""
