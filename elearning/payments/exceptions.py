"""
Payment Error Classes

Centralized error types for checkout, verification, settlement and recovery,
plus the DRF exception handler that renders them.

Hierarchy:
    PaymentError
    ├── InvalidProofError             400  bad upload / missing field
    ├── NotFoundError                 404  unknown course, bundle, coupon or payment
    ├── BusinessRuleError             400
    │   ├── AlreadyEnrolledError
    │   ├── CouponIneligibleError
    │   ├── FreeAfterCouponError
    │   ├── VerificationRejectedError
    │   └── InvalidStateError
    ├── CouponLimitExceededError      409  lost the race for the last redemption
    ├── VerificationUnavailableError  503  slip provider unreachable
    └── SettlementError               500  unexpected failure inside settlement

Response shape:
    {"success": false, "error": "<message>", "code": "<code>"}

Usage:
    from elearning.payments.exceptions import NotFoundError

    raise NotFoundError(_("Course not found."))

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from typing import Any, Dict, Optional

from django.utils.translation import gettext_lazy as _
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """
    Base class for every expected payment failure.

    Attributes:
        message: User-facing (localizable) message
        code: Stable machine-readable code
        status_code: HTTP status used when rendered by the API
        details: Extra context merged into the response body
    """

    default_message = _("The payment could not be processed.")
    code = "payment_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message=None, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message if message is not None else self.default_message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(str(self.message))

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": str(self.message), "code": self.code}
        body.update(self.details)
        return body


class InvalidProofError(PaymentError):
    default_message = _("The submitted payment proof is invalid.")
    code = "invalid_proof"


class NotFoundError(PaymentError):
    default_message = _("Not found.")
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class BusinessRuleError(PaymentError):
    code = "business_rule"


class AlreadyEnrolledError(BusinessRuleError):
    default_message = _("You are already enrolled in this course.")
    code = "already_enrolled"


class CouponIneligibleError(BusinessRuleError):
    default_message = _("This coupon cannot be applied.")
    code = "coupon_ineligible"


class FreeAfterCouponError(BusinessRuleError):
    default_message = _("This coupon makes the item free; no payment is required.")
    code = "free_after_coupon"


class VerificationRejectedError(BusinessRuleError):
    default_message = _("The payment slip could not be verified. Please try again.")
    code = "verification_rejected"


class InvalidStateError(BusinessRuleError):
    default_message = _("This payment cannot be changed in its current state.")
    code = "invalid_state"


class CouponLimitExceededError(PaymentError):
    default_message = _("This coupon has just reached its usage limit.")
    code = "coupon_limit_exceeded"
    status_code = status.HTTP_409_CONFLICT


class VerificationUnavailableError(PaymentError):
    default_message = _("The verification service is unavailable. Please try again later.")
    code = "verification_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class SettlementError(PaymentError):
    default_message = _("Something went wrong while completing your payment. Please try again.")
    code = "settlement_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def payment_exception_handler(exc, context):
    """
    DRF EXCEPTION_HANDLER.

    PaymentError subclasses are rendered with their own status and message.
    Regular DRF exceptions keep the framework's default rendering. Anything
    else is logged and answered with a generic 500 so no stack trace leaks.
    """
    if isinstance(exc, PaymentError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc, exc_info=exc)
        return Response(exc.to_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        return response

    view = context.get("view")
    logger.exception(
        "Unhandled exception in %s: %s",
        type(view).__name__ if view is not None else "unknown view",
        exc,
        exc_info=exc,
    )
    return Response(
        {"success": False, "error": str(SettlementError.default_message), "code": "internal_error"},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
