"""
Payment URL patterns, included by elearning.urls under ``payments/``.

Author: Academy Development Team
Version: 1.0.0
"""

from typing import List

from django.urls import URLPattern, path

from . import views

payments_urlpatterns: List[URLPattern] = [
    # Buyer endpoints
    path('slip/verify/', views.SlipVerifyView.as_view(), name='slip-verify'),
    path('coupons/validate/', views.CouponValidateView.as_view(), name='coupon-validate'),
    path('checkout/success/', views.CheckoutSuccessView.as_view(), name='checkout-success'),

    # Admin reconciliation
    path('reconciliation/', views.ReconciliationListView.as_view(), name='reconciliation'),
    path('reconciliation/<int:payment_id>/retry/', views.ReconciliationRetryView.as_view(), name='reconciliation-retry'),
]
