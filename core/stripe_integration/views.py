"""

Payments Views for Stripe Integration
=====================================

This module provides the API endpoint that starts a Stripe Checkout for a
course or a bundle.

Endpoints:
----------

1. CreateCheckoutSessionView
   - URL: /api/payments/stripe/checkout-session/
   - Method: POST
   - Auth: Required (user must be logged in)
   - Expected Body:
       {
           "course_id": 42,          # or "bundle_id": 7
           "coupon_id": 3            # optional
       }
   - Purpose:
       Computes the amount on the server (promo price, then coupon), creates
       a `pending` stripe Payment and a Checkout Session whose metadata ties
       the session to that payment.
   - Typical Flow:
       1. Frontend sends the purchase target (and optionally a coupon).
       2. Backend prices it, records the Payment and creates the session.
       3. Stripe redirects to the success page with the session id; the
          webhook (signals.py) or the success-page fallback settles the payment.

Security:
---------
- Requires authentication.
- The client never sends an amount; the charged amount always comes from
  the catalog and coupon rules.
- Card details are collected by Stripe, never by this backend.

Dependencies:
-------------
- Django REST Framework for API endpoints.
- dj-stripe for the Stripe Customer bound to each user.
- stripe (official Stripe Python library) for creating Checkout Sessions.

Author: Academy Development Team
Version: 1.0.0
"""

import logging

import stripe
from django.conf import settings
from django.utils.translation import gettext_lazy as _
from djstripe.models import Customer
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from elearning.payments.exceptions import AlreadyEnrolledError, FreeAfterCouponError, VerificationUnavailableError
from elearning.payments.models import Payment
from elearning.payments.pricing import (
    get_bundle_or_404,
    get_course_or_404,
    load_coupon,
    resolve_bundle_price,
    resolve_course_price,
)
from elearning.payments.serializers import PurchaseTargetSerializer
from elearning.payments.store import default_store
from elearning.payments.verification.gateway import to_minor_units

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY


class CreateCheckoutSessionView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request: Request) -> Response:
        serializer = PurchaseTargetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user

        coupon = load_coupon(data["coupon_id"]) if data.get("coupon_id") else None
        course = bundle = None

        if data.get("course_id") is not None:
            course = get_course_or_404(data["course_id"])
            if default_store.is_enrolled(user.pk, course.pk):
                raise AlreadyEnrolledError()
            quote = resolve_course_price(course, user=user, coupon=coupon)
        else:
            bundle = get_bundle_or_404(data["bundle_id"])
            course_ids = bundle.get_course_ids()
            if course_ids and not default_store.missing_course_ids(user.pk, course_ids):
                raise AlreadyEnrolledError(_("You already own every course in this bundle."))
            quote = resolve_bundle_price(bundle, user=user, coupon=coupon)

        if quote.is_free:
            raise FreeAfterCouponError()

        currency = settings.PAYMENT_CURRENCY
        payment = default_store.create_payment(
            user=user,
            course=course,
            bundle=bundle,
            amount=quote.final_amount,
            currency=currency,
            method=Payment.Method.STRIPE,
            coupon=quote.coupon,
            discount_amount=quote.discount_amount,
        )
        item = bundle or course
        item_param = f"bundle={bundle.pk}" if bundle is not None else f"course={course.pk}"
        metadata = {
            "payment_id": str(payment.pk),
            "user_id": str(user.pk),
            "type": payment.item_type,
            "course_id": str(course.pk) if course is not None else "",
            "bundle_id": str(bundle.pk) if bundle is not None else "",
            "coupon_id": str(quote.coupon.pk) if quote.coupon is not None else "",
        }

        try:
            # Ensure a Stripe Customer exists for this user
            customer, _created = Customer.get_or_create(subscriber=user)
            session = stripe.checkout.Session.create(
                mode="payment",
                customer=customer.id,
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "unit_amount": to_minor_units(quote.final_amount),
                            "product_data": {"name": item.title},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{settings.FRONTEND_URL}/payments/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&{item_param}",
                cancel_url=f"{settings.FRONTEND_URL}/payments/cancel?{item_param}",
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            logger.error("Checkout session creation failed for payment %s: %s", payment.pk, exc)
            default_store.mark_failed(payment.pk, "gateway_error", from_statuses=[Payment.Status.PENDING])
            raise VerificationUnavailableError(_("The payment provider is unavailable. Please try again later.")) from exc

        Payment.objects.filter(pk=payment.pk).update(checkout_session_id=session.id)
        logger.info("Checkout session %s created for payment %s", session.id, payment.pk)

        return Response(
            {"checkout_url": session.url, "id": session.id, "paymentId": payment.pk},
            status=status.HTTP_200_OK,
        )
