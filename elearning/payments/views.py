"""
Payment API Views

Endpoints (mounted under /api/elearning/payments/):

1. SlipVerifyView
   - URL: slip/verify/
   - Method: POST (multipart)
   - Auth: Required, throttled (scope ``slip_verify``)
   - Body: slip=<image>, course_id | bundle_id, coupon_id?
   - Returns:
       {"success": true, "status": "completed", "paymentId": 12, "enrolled": [...]}
       {"success": true, "status": "processing", "paymentId": 12, "message": "..."}   (202)

2. CouponValidateView
   - URL: coupons/validate/
   - Method: POST
   - Auth: Required
   - Body: {"code": "SAVE20", "course_id": 3}
   - Returns the discount the coupon would grant on the current effective price

3. ReconciliationListView
   - URL: reconciliation/
   - GET ?status=verifying|failed|pending&days=30   (admin)
   - POST {"action": "mark_failed", "payment_ids": [...]}   (admin)

4. ReconciliationRetryView
   - URL: reconciliation/<payment_id>/retry/
   - Method: POST {"action": "approve"|"reject", "reason"?}   (admin)

5. CheckoutSuccessView
   - URL: checkout/success/
   - Method: GET ?session_id=cs_...&course_id= | bundle_id=
   - Re-drives Stripe fulfillment when the webhook is late; returns {"enrolled": bool}

Errors are raised as PaymentError subclasses and rendered by
payment_exception_handler as {"success": false, "error": ..., "code": ...}.

Author: Academy Development Team
Version: 1.0.0
"""

import logging

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .exceptions import CouponIneligibleError, NotFoundError
from .pricing import get_bundle_or_404, get_course_or_404, load_coupon, resolve_course_price
from .recovery import ReconciliationService
from .serializers import (
    BulkActionSerializer,
    CheckoutSuccessSerializer,
    CouponValidateSerializer,
    ReconciliationPaymentSerializer,
    RetrySerializer,
    SlipSubmissionSerializer,
)
from .verification.slip import SlipVerifier

logger = logging.getLogger(__name__)


class SlipVerifyView(APIView):
    """Submit a PromptPay slip for a course or bundle."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "slip_verify"

    def get_verifier(self) -> SlipVerifier:
        return SlipVerifier()

    def post(self, request: Request) -> Response:
        serializer = SlipSubmissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self.get_verifier().submit(
            request.user,
            data.get("slip"),
            course_id=data.get("course_id"),
            bundle_id=data.get("bundle_id"),
            coupon_id=data.get("coupon_id"),
        )

        if not result.completed:
            return Response(
                {
                    "success": True,
                    "status": result.status,
                    "paymentId": result.payment_id,
                    "message": result.message,
                },
                status=status.HTTP_202_ACCEPTED,
            )
        return Response(
            {
                "success": True,
                "status": result.status,
                "paymentId": result.payment_id,
                "enrolled": result.enrolled_course_ids,
            },
            status=status.HTTP_200_OK,
        )


class CouponValidateView(APIView):
    """Preview a coupon against the current effective price of a course."""

    permission_classes = [IsAuthenticated]

    def post(self, request: Request) -> Response:
        serializer = CouponValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        course = get_course_or_404(serializer.validated_data["course_id"])
        try:
            coupon = load_coupon(code=serializer.validated_data["code"])
            quote = resolve_course_price(course, user=request.user, coupon=coupon)
        except (CouponIneligibleError, NotFoundError) as exc:
            return Response({"valid": False, "error": str(exc.message)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                "valid": True,
                "couponId": coupon.pk,
                "code": coupon.code,
                "description": coupon.description,
                "discountType": coupon.discount_type,
                "discountValue": str(coupon.discount_value),
                "discountAmount": str(quote.discount_amount),
                "finalPrice": str(quote.final_amount),
            },
            status=status.HTTP_200_OK,
        )


class ReconciliationListView(APIView):
    """Admin listing of stuck promptpay payments and bulk failure marking."""

    permission_classes = [IsAdminUser]

    def get(self, request: Request) -> Response:
        status_filter = request.query_params.get("status", "verifying")
        days = request.query_params.get("days", 30)

        payments, summary, days = ReconciliationService().list_stuck(status_filter, days)
        return Response(
            {
                "payments": ReconciliationPaymentSerializer(payments, many=True).data,
                "summary": summary,
                "filter": {"status": status_filter, "days": days},
            },
            status=status.HTTP_200_OK,
        )

    def post(self, request: Request) -> Response:
        serializer = BulkActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        changed = ReconciliationService().bulk_mark_failed(
            serializer.validated_data["payment_ids"], admin_user=request.user
        )
        return Response({"success": True, "updated": changed}, status=status.HTTP_200_OK)


class ReconciliationRetryView(APIView):
    """Admin approve/reject of a single stuck payment."""

    permission_classes = [IsAdminUser]

    def post(self, request: Request, payment_id: int) -> Response:
        serializer = RetrySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = ReconciliationService().retry(
            payment_id,
            serializer.validated_data["action"],
            admin_user=request.user,
            reason=serializer.validated_data.get("reason", ""),
        )
        return Response(outcome.to_response(), status=status.HTTP_200_OK)


class CheckoutSuccessView(APIView):
    """Checkout success page fallback for late Stripe webhooks."""

    permission_classes = [IsAuthenticated]

    def get(self, request: Request) -> Response:
        serializer = CheckoutSuccessSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        bundle = get_bundle_or_404(data["bundle_id"]) if data.get("bundle_id") else None
        course_id = get_course_or_404(data["course_id"]).pk if data.get("course_id") else None

        enrolled = ReconciliationService().reconcile_from_checkout_page(
            request.user, data["session_id"], course_id=course_id, bundle=bundle
        )
        return Response({"enrolled": enrolled}, status=status.HTTP_200_OK)
