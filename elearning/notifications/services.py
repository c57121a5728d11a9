"""
Notification Services

Thin writers used after a payment settles:

- notify(): create an in-app Notification
- track_event(): record an AnalyticsEvent
- send_payment_confirmation() / send_enrollment_email(): plain-text e-mail
  through Django's configured EMAIL_BACKEND

Each function does exactly one write and raises on failure; callers decide
whether a failure matters (the payment side-effect dispatcher logs and drops it).

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from django.conf import settings
from django.core.mail import send_mail

from .models import AnalyticsEvent, Notification

logger = logging.getLogger(__name__)


def notify(user, title: str, message: str = "", *, kind: str = Notification.Kind.SYSTEM, link: str = "") -> Notification:
    return Notification.objects.create(user=user, kind=kind, title=title, message=message, link=link)


def track_event(
    name: str,
    *,
    user=None,
    amount: Optional[Decimal] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AnalyticsEvent:
    return AnalyticsEvent.objects.create(name=name, user=user, amount=amount, metadata=metadata or {})


def send_payment_confirmation(user, *, item_title: str, amount: Decimal, currency: str, payment_id: int) -> bool:
    """
    Send the payment receipt e-mail.

    Returns:
        False when the user has no e-mail address, True once handed to the backend
    """
    if not getattr(user, "email", ""):
        logger.info("Skipping payment confirmation for user %s: no e-mail address", user.pk)
        return False

    body = (
        f"Hello {user.get_username()},\n\n"
        f"We received your payment of {amount} {currency} for \"{item_title}\".\n"
        f"Payment reference: #{payment_id}\n\n"
        f"{settings.FRONTEND_URL}/my-courses\n"
    )
    send_mail(
        subject=f"Payment confirmed: {item_title}",
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[user.email],
    )
    return True


def send_enrollment_email(user, course_titles: Iterable[str]) -> bool:
    titles = [title for title in course_titles if title]
    if not titles or not getattr(user, "email", ""):
        return False

    lines = "\n".join(f"- {title}" for title in titles)
    send_mail(
        subject="You're enrolled!",
        message=f"Hello {user.get_username()},\n\nYou now have access to:\n{lines}\n",
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[user.email],
    )
    return True
