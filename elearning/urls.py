"""
E-Learning Application URL Configuration

This module defines the URL routing structure for the E-Learning application.
Each functional area has its own URL namespace.

URL Structure:
- /api/elearning/token/: Authentication endpoints (JWT token management)
- /api/elearning/payments/: Slip verification, coupons, checkout fallback
  and admin reconciliation

Author: Academy Development Team
Version: 1.0.0
"""

from typing import List

from django.urls import URLPattern, include, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView, TokenVerifyView

from .payments.urls import payments_urlpatterns

app_name = 'elearning'

# --- Main URL Configuration for E-Learning Application ---

urlpatterns: List[URLPattern] = [
    # Authentication endpoints (JWT token management)
    path('token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('token/verify/', TokenVerifyView.as_view(), name='token_verify'),

    # Functional area URL includes with proper namespacing
    path('payments/', include((payments_urlpatterns, 'payments'))),
]
