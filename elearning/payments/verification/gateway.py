"""
Stripe Checkout Session Verification

Shared by two entry points that must converge on the same end state:

- the dj-stripe webhook receiver (``checkout.session.completed`` /
  ``checkout.session.expired``), see core.stripe_integration.signals
- the checkout success page fallback, which re-drives fulfillment when the
  webhook has not arrived yet

A session is only fulfilled when ``payment_status == "paid"`` and its
metadata (written by CreateCheckoutSessionView) matches the local payment.
A mismatch is treated as "not paid yet" and logged, never raised.

Metadata keys: payment_id, user_id, type (course|bundle), course_id or
bundle_id, coupon_id (empty string when none).

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe
from django.conf import settings

from ..exceptions import CouponLimitExceededError, InvalidStateError
from ..models import Payment
from ..settlement import SettlementEngine, SettlementResult
from ..store import PaymentStore, default_store

logger = logging.getLogger(__name__)

PAID = "paid"


def as_dict(obj) -> Dict[str, Any]:
    """Plain dict view of a Stripe object or an already decoded payload."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    """
    Fetch a Checkout Session from Stripe.

    Raises:
        stripe.StripeError
    """
    session = stripe.checkout.Session.retrieve(session_id, api_key=settings.STRIPE_SECRET_KEY)
    return as_dict(session)


def _same(meta_value, local_value) -> bool:
    meta = "" if meta_value is None else str(meta_value)
    local = "" if local_value is None else str(local_value)
    return meta == local


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def metadata_matches(metadata: Dict[str, Any], *, user_id, course_id=None, bundle_id=None, payment: Optional[Payment] = None) -> bool:
    """
    Check session metadata against the expected buyer and purchase target.

    Exactly one of course_id / bundle_id is expected. When ``payment`` is
    given, its id, owner, target and coupon must match as well.
    """
    item_type = "bundle" if bundle_id is not None else "course"
    if not _same(metadata.get("user_id"), user_id):
        return False
    if metadata.get("type", "course") != item_type:
        return False
    if item_type == "bundle" and not _same(metadata.get("bundle_id"), bundle_id):
        return False
    if item_type == "course" and not _same(metadata.get("course_id"), course_id):
        return False

    if payment is not None:
        if not _same(metadata.get("payment_id"), payment.pk):
            return False
        if not _same(payment.user_id, user_id):
            return False
        if not _same(payment.course_id, course_id) or not _same(payment.bundle_id, bundle_id):
            return False
        if not _same(metadata.get("coupon_id"), payment.coupon_id):
            return False
    return True


def session_matches_payment(session: Dict[str, Any], payment: Payment) -> bool:
    """
    Cross-check a webhook session against the payment row it claims to pay.

    Checks metadata identity, the amount (within one minor unit) and the currency.
    """
    metadata = session.get("metadata") or {}
    if not metadata_matches(
        metadata,
        user_id=payment.user_id,
        course_id=payment.course_id,
        bundle_id=payment.bundle_id,
        payment=payment,
    ):
        logger.warning("Session %s metadata does not match payment %s", session.get("id"), payment.pk)
        return False

    amount_total = session.get("amount_total")
    if amount_total is None or abs(int(amount_total) - to_minor_units(payment.amount)) > 1:
        logger.warning(
            "Session %s amount %s does not match payment %s (%s)",
            session.get("id"), amount_total, payment.pk, payment.amount,
        )
        return False

    currency = (session.get("currency") or "").lower()
    if currency != (payment.currency or "").lower():
        logger.warning("Session %s currency %s does not match payment %s", session.get("id"), currency, payment.pk)
        return False
    return True


class CheckoutSessionReconciler:
    """
    Fulfills or expires Stripe-paid payments.

    Args:
        store: PaymentStore for reads and writes
        engine: SettlementEngine performing the fulfillment
        retrieve_session: Callable fetching a session by id (network boundary)
    """

    def __init__(self, store: Optional[PaymentStore] = None, engine: Optional[SettlementEngine] = None,
                 retrieve_session=None):
        self.store = store or default_store
        self.engine = engine or SettlementEngine(store=self.store)
        self.retrieve_session = retrieve_session or retrieve_checkout_session

    def _payment_for_session(self, session: Dict[str, Any]) -> Optional[Payment]:
        metadata = session.get("metadata") or {}
        payment_id = metadata.get("payment_id")
        payment = self.store.get_payment(payment_id) if payment_id else None
        if payment is None:
            payment = self.store.get_by_checkout_session(session.get("id"))
        if payment is not None and payment.checkout_session_id and payment.checkout_session_id != session.get("id"):
            logger.warning("Session %s does not belong to payment %s", session.get("id"), payment.pk)
            return None
        return payment

    def _settle(self, payment: Payment, session: Dict[str, Any], source: str) -> Optional[SettlementResult]:
        try:
            return self.engine.settle(
                payment,
                external_reference=session.get("payment_intent") or session.get("id"),
                source=source,
                from_statuses=[Payment.Status.PENDING],
            )
        except CouponLimitExceededError:
            logger.error("Coupon exhausted for paid session %s (payment %s)", session.get("id"), payment.pk)
        except InvalidStateError:
            logger.warning("Payment %s is not settleable from session %s", payment.pk, session.get("id"))
        return None

    def fulfill_completed_session(self, session: Dict[str, Any]) -> Optional[SettlementResult]:
        """Handle a ``checkout.session.completed`` payload."""
        payment = self._payment_for_session(session)
        if payment is None:
            logger.warning("No local payment for checkout session %s", session.get("id"))
            return None
        if session.get("payment_status") != PAID:
            logger.info("Session %s not paid yet (%s)", session.get("id"), session.get("payment_status"))
            return None
        if not session_matches_payment(session, payment):
            return None
        return self._settle(payment, session, source="stripe_webhook")

    def expire_session(self, session: Dict[str, Any]) -> bool:
        """Handle ``checkout.session.expired``: a still pending payment becomes failed."""
        payment = self._payment_for_session(session)
        if payment is None:
            return False
        return self.store.mark_failed(payment.pk, "expired", from_statuses=[Payment.Status.PENDING])

    def _has_access(self, user_id, course_id=None, bundle=None) -> bool:
        if bundle is not None:
            course_ids = bundle.get_course_ids()
            return bool(course_ids) and not self.store.missing_course_ids(user_id, course_ids)
        return self.store.is_enrolled(user_id, course_id)

    def reconcile_checkout_page(self, user, session_id: str, *, course_id=None, bundle=None) -> bool:
        """
        Fallback run by the checkout success page.

        Returns:
            Whether the user has access after the attempt. Safe to call
            repeatedly and concurrently with the webhook.
        """
        bundle_id = bundle.pk if bundle is not None else None
        if self._has_access(user.pk, course_id, bundle):
            return True
        if not session_id:
            return False

        try:
            session = self.retrieve_session(session_id)
        except stripe.StripeError as exc:
            logger.warning("Could not retrieve checkout session %s: %s", session_id, exc)
            return False

        if session.get("payment_status") != PAID:
            return False

        metadata = session.get("metadata") or {}
        if not metadata_matches(metadata, user_id=user.pk, course_id=course_id, bundle_id=bundle_id):
            logger.warning("Checkout fallback: session %s metadata mismatch for user %s", session_id, user.pk)
            return False

        payment = self._payment_for_session(session)
        if payment is None or not metadata_matches(
            metadata, user_id=user.pk, course_id=course_id, bundle_id=bundle_id, payment=payment
        ):
            logger.warning("Checkout fallback: no matching payment for session %s", session_id)
            return False

        result = self._settle(payment, session, source="stripe_fallback")
        if result is not None:
            logger.info("Checkout fallback settled payment %s (settled=%s)", payment.pk, result.settled)
        return self._has_access(user.pk, course_id, bundle)
