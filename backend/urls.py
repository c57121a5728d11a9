"""
Academy Backend URL Configuration

Top-level routing:
- /admin/: Django admin (Jazzmin)
- /api/elearning/: Token endpoints, coupons, slip verification, reconciliation
- /api/payments/: Stripe checkout creation
- /stripe/: dj-stripe webhook endpoint (signature verification + event storage)
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/elearning/", include("elearning.urls")),
    path("api/payments/", include("core.stripe_integration.urls")),
    path("stripe/", include("djstripe.urls", namespace="djstripe")),
]
