"""
Stripe Webhook Signal Handlers for E-Learning Payments
======================================================

Overview
--------
This module contains **post-processing handlers** for Stripe webhooks using
`dj-stripe`. It hooks into **Django's `post_save` signal on
`djstripe.models.Event`**, so it runs **after dj-stripe has verified the
signature, de-duplicated the event, and stored it in the database**.

Event Handling Matrix
---------------------
- `checkout.session.completed`  → settle the local Payment (enrollments,
                                   coupon usage, notifications)
- `checkout.session.expired`    → mark a still pending Payment `failed`
                                   (reason `expired`)

Data Flow (Happy Path)
----------------------
Stripe → Webhook → **dj-stripe verifies & saves `Event`** → this module receives
**`post_save(Event)`** and:
  1. Reads `event.type` and extracts the session from `event.data` safely.
  2. Finds the local Payment from `metadata.payment_id` (or the session id).
  3. Cross-checks metadata, amount and currency against the Payment row.
  4. Hands the Payment to the SettlementEngine, which completes it and
     enrolls the user exactly once.

The checkout success page runs the same reconciliation when the webhook is
late; both paths converge on the same end state.

Idempotency & Safety
--------------------
- Handlers never re-raise exceptions out of the signal; failures are logged to
  avoid webhook retry storms.
- Settlement is conditional on the Payment still being `pending`, and
  enrollment inserts are duplicate-safe, so Stripe retries are harmless.

Author: Academy Development Team
Version: 1.0.0
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from django.db.models.signals import post_save
from django.dispatch import receiver
from djstripe.models import Event

from elearning.payments.verification.gateway import CheckoutSessionReconciler

logger = logging.getLogger(__name__)


# ---------- helpers ----------


def _extract_data_object(event: Event) -> Dict[str, Any]:
    """
    dj-stripe stores the raw Stripe JSON in `event.data`.

    Preferred shape:
      event.data == {"object": {...}}
    Fallback: the full event envelope {"data": {"object": {...}}}.
    """
    data = event.data or {}
    if not isinstance(data, dict):
        return {}
    if isinstance(data.get("object"), dict):
        return data["object"]
    inner = data.get("data")
    if isinstance(inner, dict) and isinstance(inner.get("object"), dict):
        return inner["object"]
    return {}


# ---------- signal entrypoint ----------


@receiver(post_save, sender=Event)
def on_djstripe_event_created(sender, instance: Event, created: bool, **kwargs):
    """
    Post-save hook for dj-stripe Event.

    Runs once for each *new* event saved by dj-stripe (after signature
    verification and de-dup). Never re-raises to avoid webhook retry storms.
    """
    if not created:
        return

    event_type = instance.type
    logger.info("[webhook] %s (event_id=%s)", event_type, instance.id)

    try:
        obj = _extract_data_object(instance)

        if event_type == "checkout.session.completed":
            _handle_checkout_session_completed(obj)

        elif event_type == "checkout.session.expired":
            _handle_checkout_session_expired(obj)

        else:
            # Not an error: we simply don't need to act on every event type.
            logger.debug("Unhandled event type: %s", event_type)

    except Exception as exc:
        # Never re-raise: Stripe may retry. We just log.
        logger.exception("Error handling event %s: %s", event_type, exc)


# ---------- concrete handlers ----------


def _handle_checkout_session_completed(session: Dict[str, Any]) -> None:
    result = CheckoutSessionReconciler().fulfill_completed_session(session)
    if result is None:
        logger.info("checkout.session.completed session=%s not fulfilled", session.get("id"))
    else:
        logger.info(
            "checkout.session.completed session=%s payment=%s settled=%s enrolled=%s",
            session.get("id"),
            result.payment_id,
            result.settled,
            result.enrolled_course_ids,
        )


def _handle_checkout_session_expired(session: Dict[str, Any]) -> None:
    if CheckoutSessionReconciler().expire_session(session):
        logger.info("checkout.session.expired session=%s: payment marked failed", session.get("id"))
