"""
Notification & Analytics Models

Sinks written to by the payment side-effect dispatcher after a settlement
commits. Neither table participates in the settlement transaction.

Author: Academy Development Team
Version: 1.0.0
"""

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class Notification(models.Model):
    """An in-app message shown to a single user."""

    class Kind(models.TextChoices):
        PAYMENT = "payment", _("Payment")
        ENROLLMENT = "enrollment", _("Enrollment")
        SYSTEM = "system", _("System")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.SYSTEM)
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True, default="")
    link = models.CharField(max_length=500, blank=True, default="")
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Notification")
        verbose_name_plural = _("Notifications")
        ordering = ["-created_at"]
        db_table = "elearning_notification"

    def __str__(self) -> str:
        return f"{self.user_id}: {self.title}"


class AnalyticsEvent(models.Model):
    """
    A recorded business event.

    Attributes:
        name: Event name, e.g. ``payment_completed``
        user: Actor (optional)
        amount: Monetary value attached to the event (optional)
        metadata: Free-form JSON context
    """

    name = models.CharField(max_length=100, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="analytics_events",
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Analytics Event")
        verbose_name_plural = _("Analytics Events")
        ordering = ["-created_at"]
        db_table = "elearning_analytics_event"

    def __str__(self) -> str:
        return self.name
