"""
Stripe Integration AppConfig
============================

This module defines the Django application configuration for the local
`core.stripe_integration`. It is responsible for:

- Registering with Django (name, verbose label, default PK field).
- Importing the signal handlers at startup so that webhook-related
  logic (listening to `djstripe.models.Event` via `post_save`) is connected.

Author: Academy Development Team
Version: 1.0.0
"""

from django.apps import AppConfig


class StripeIntegrationConfig(AppConfig):
    """
    App configuration for the `core.stripe_integration` package.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "core.stripe_integration"
    verbose_name = "Stripe Integration"

    def ready(self):
        # Import signals so Django registers the post_save handler for dj-stripe Event
        from . import signals  # noqa: F401
