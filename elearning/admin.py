"""
E-Learning Application Django Admin Configuration

This module registers the catalog and payment models with the Django admin
(Jazzmin theme) for inspection and support work.

The admin interface is organized into logical sections:
- Catalog: Courses, bundles and enrollments
- Payments: Payments, coupons and coupon usages
- Notifications: In-app notifications and analytics events

Payment rows are read-mostly here: status changes go through the
reconciliation API so that settlement rules (enrollments, coupon limits,
retry counts) are always applied.

Author: Academy Development Team
Version: 1.0.0
"""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from .models import (
    AnalyticsEvent,
    Bundle,
    BundleCourse,
    Coupon,
    CouponUsage,
    Course,
    Enrollment,
    Notification,
    Payment,
)

# --- Catalog Administration ---


class BundleCourseInline(admin.TabularInline):
    """Inline admin for the ordered courses of a bundle."""

    model = BundleCourse
    extra = 1
    fields = ("course", "order_index")
    ordering = ("order_index",)
    autocomplete_fields = ("course",)


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    """Administration interface for courses and their promotional pricing."""

    list_display = ("title", "status", "price", "promo_price", "promo_starts_at", "promo_ends_at")
    list_filter = ("status",)
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}

    fieldsets = (
        (_("Basic Information"), {"fields": ("title", "slug", "description", "status")}),
        (
            _("Pricing"),
            {
                "fields": ("price", "promo_price", "promo_starts_at", "promo_ends_at"),
                "description": _("Leave a promotion bound empty to keep that side of the window open"),
            },
        ),
    )


@admin.register(Bundle)
class BundleAdmin(admin.ModelAdmin):
    list_display = ("title", "status", "price")
    list_filter = ("status",)
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}
    inlines = [BundleCourseInline]


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    """Administration interface for course enrollments."""

    list_display = ("user", "course", "source", "enrolled_at", "completed_at")
    list_filter = ("source", "enrolled_at")
    search_fields = ("user__username", "user__email", "course__title", "reference")
    autocomplete_fields = ("user", "course")
    readonly_fields = ("enrolled_at",)

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        """Optimize queryset with related object prefetch."""
        return super().get_queryset(request).select_related("user", "course")


# --- Payment Administration ---


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Administration interface for payments.

    Lifecycle fields are read-only; use the reconciliation endpoints to
    approve or reject stuck payments.
    """

    list_display = ("id", "user", "item", "amount", "currency", "method", "status", "retry_count", "created_at")
    list_filter = ("status", "method", "created_at")
    search_fields = ("id", "user__username", "user__email", "external_reference", "checkout_session_id")
    date_hierarchy = "created_at"
    readonly_fields = (
        "user",
        "course",
        "bundle",
        "amount",
        "currency",
        "method",
        "status",
        "external_reference",
        "checkout_session_id",
        "coupon",
        "discount_amount",
        "failure_reason",
        "retry_count",
        "last_retry_at",
        "created_at",
        "updated_at",
        "completed_at",
    )

    fieldsets = (
        (_("Purchase"), {"fields": ("user", "course", "bundle", "amount", "currency", "method")}),
        (_("Status"), {"fields": ("status", "failure_reason", "completed_at", "retry_count", "last_retry_at")}),
        (_("References"), {"fields": ("external_reference", "checkout_session_id")}),
        (_("Discount"), {"fields": ("coupon", "discount_amount")}),
        (_("Timestamps"), {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description=_("Item"))
    def item(self, obj: Payment) -> str:
        return str(obj.bundle or obj.course or "-")

    def has_add_permission(self, request: HttpRequest) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("user", "course", "bundle", "coupon")


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    """Administration interface for discount coupons."""

    list_display = ("code", "discount_type", "discount_value", "usage_count", "usage_limit", "course", "is_active", "expires_at")
    list_filter = ("discount_type", "is_active")
    search_fields = ("code", "description")
    autocomplete_fields = ("course",)
    readonly_fields = ("usage_count", "created_at")

    fieldsets = (
        (_("Coupon"), {"fields": ("code", "description", "is_active", "course")}),
        (_("Discount"), {"fields": ("discount_type", "discount_value", "max_discount", "min_purchase")}),
        (_("Limits"), {"fields": ("usage_limit", "usage_count", "per_user_limit")}),
        (_("Availability"), {"fields": ("starts_at", "expires_at", "created_at")}),
    )


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ("coupon", "user", "course", "payment", "discount_amount", "created_at")
    list_filter = ("coupon",)
    search_fields = ("coupon__code", "user__username", "user__email")
    readonly_fields = ("coupon", "user", "course", "payment", "discount_amount", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:
        return False


# --- Notifications ---


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "kind", "title", "is_read", "created_at")
    list_filter = ("kind", "is_read")
    search_fields = ("user__username", "title")


@admin.register(AnalyticsEvent)
class AnalyticsEventAdmin(admin.ModelAdmin):
    list_display = ("name", "user", "amount", "created_at")
    list_filter = ("name",)
    search_fields = ("name", "user__username")
    readonly_fields = ("name", "user", "amount", "metadata", "created_at")
