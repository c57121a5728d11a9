"""
E-Learning Course Catalog Models

This module defines the purchasable units of the platform and the access
records created when a purchase is settled.

Models:
- Course: A single course with list price and optional promotional window
- Bundle: A fixed set of courses sold as one purchase unit
- BundleCourse: Ordered join between bundles and courses
- Enrollment: Grants a user access to a course

Features:
- Time-windowed promotional pricing (open or closed bounds)
- Duplicate-safe enrollment backed by a unique constraint
- Ordered bundle contents

Author: Academy Development Team
Version: 1.0.0
"""

from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class PublishStatus(models.TextChoices):
    DRAFT = "draft", _("Draft")
    PUBLISHED = "published", _("Published")
    ARCHIVED = "archived", _("Archived")


class Course(models.Model):
    """
    A course that can be bought on its own or as part of a bundle.

    Attributes:
        title: Display title
        slug: Unique URL slug
        price: List price in the platform currency
        promo_price: Optional alternate price for a time window
        promo_starts_at: Start of the promotional window (open when empty)
        promo_ends_at: End of the promotional window (open when empty)
        status: Publication state

    Example:
        >>> course = Course(price=Decimal("1990"), promo_price=Decimal("990"))
        >>> course.get_effective_price()
        Decimal('990')
    """

    title = models.CharField(max_length=255, verbose_name=_("Title"))
    slug = models.SlugField(max_length=255, unique=True, verbose_name=_("Slug"))
    description = models.TextField(blank=True, default="", verbose_name=_("Description"))

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
        verbose_name=_("List Price"),
    )
    promo_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name=_("Promotional Price"),
        help_text=_("Charged instead of the list price while the promotion window is open"),
    )
    promo_starts_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Promotion Starts"))
    promo_ends_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Promotion Ends"))

    status = models.CharField(
        max_length=20,
        choices=PublishStatus.choices,
        default=PublishStatus.DRAFT,
        verbose_name=_("Status"),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Course")
        verbose_name_plural = _("Courses")
        ordering = ["title"]
        db_table = "elearning_course"

    def __str__(self) -> str:
        return self.title

    def is_promo_active(self, now=None) -> bool:
        """
        Check whether the promotional price applies at the given moment.

        Both window bounds are optional; a missing bound is treated as open.
        """
        if self.promo_price is None:
            return False
        now = now or timezone.now()
        if self.promo_starts_at and now < self.promo_starts_at:
            return False
        if self.promo_ends_at and now > self.promo_ends_at:
            return False
        return True

    def get_effective_price(self, now=None) -> Decimal:
        """
        Return what a buyer owes before any coupon is applied.

        Returns:
            The promotional price while its window is open, the list price otherwise
        """
        if self.is_promo_active(now):
            return self.promo_price
        return self.price


class Bundle(models.Model):
    """
    A fixed set of courses sold as a single purchase.

    A paid bundle fans out into one Enrollment per contained course.
    """

    title = models.CharField(max_length=255, verbose_name=_("Title"))
    slug = models.SlugField(max_length=255, unique=True, verbose_name=_("Slug"))
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
        verbose_name=_("Bundle Price"),
    )
    status = models.CharField(
        max_length=20,
        choices=PublishStatus.choices,
        default=PublishStatus.DRAFT,
        verbose_name=_("Status"),
    )
    courses = models.ManyToManyField(
        Course,
        through="BundleCourse",
        related_name="bundles",
        verbose_name=_("Courses"),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Bundle")
        verbose_name_plural = _("Bundles")
        ordering = ["title"]
        db_table = "elearning_bundle"

    def __str__(self) -> str:
        return self.title

    def get_effective_price(self, now=None) -> Decimal:
        return self.price

    def get_course_ids(self) -> List[int]:
        """Course ids of this bundle in presentation order."""
        return list(
            BundleCourse.objects.filter(bundle=self)
            .order_by("order_index", "id")
            .values_list("course_id", flat=True)
        )


class BundleCourse(models.Model):
    bundle = models.ForeignKey(Bundle, on_delete=models.CASCADE, related_name="bundle_courses")
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="bundle_memberships")
    order_index = models.PositiveIntegerField(default=0, verbose_name=_("Order"))

    class Meta:
        verbose_name = _("Bundle Course")
        verbose_name_plural = _("Bundle Courses")
        ordering = ["bundle", "order_index"]
        db_table = "elearning_bundle_course"
        constraints = [
            models.UniqueConstraint(fields=["bundle", "course"], name="uq_bundle_course_once"),
        ]

    def __str__(self) -> str:
        return f"{self.bundle} → {self.course}"


class Enrollment(models.Model):
    """
    Grants a user access to a course.

    Attributes:
        user: Enrolled user
        course: Course the user may access
        enrolled_at: Creation timestamp
        completed_at: Set once the course is finished
        source: Which flow created the enrollment (slip, stripe, admin, ...)
        reference: Payment id or gateway reference of the creating flow

    The (user, course) pair is unique; settlement relies on that constraint to
    stay duplicate-safe under concurrent fulfillment.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="enrollments",
        verbose_name=_("User"),
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        related_name="enrollments",
        verbose_name=_("Course"),
    )
    enrolled_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    source = models.CharField(max_length=40, blank=True, default="")
    reference = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        verbose_name = _("Enrollment")
        verbose_name_plural = _("Enrollments")
        ordering = ["-enrolled_at"]
        db_table = "elearning_enrollment"
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="uq_enrollment_user_course"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} → {self.course_id}"

    @staticmethod
    def is_enrolled(user_id: int, course_id: int) -> bool:
        return Enrollment.objects.filter(user_id=user_id, course_id=course_id).exists()

    @staticmethod
    def missing_course_ids(user_id: int, course_ids: List[int]) -> List[int]:
        """
        Return the subset of course_ids the user is not enrolled in yet,
        preserving the given order.
        """
        owned = set(
            Enrollment.objects.filter(user_id=user_id, course_id__in=course_ids).values_list(
                "course_id", flat=True
            )
        )
        return [course_id for course_id in course_ids if course_id not in owned]


def get_published_course(course_id) -> Optional[Course]:
    return Course.objects.filter(pk=course_id, status=PublishStatus.PUBLISHED).first()


def get_published_bundle(bundle_id) -> Optional[Bundle]:
    return Bundle.objects.filter(pk=bundle_id, status=PublishStatus.PUBLISHED).first()
