"""
PromptPay Slip Verification

Checks an uploaded bank-transfer slip with the SlipOK API and settles the
payment when the slip proves the full amount was transferred.

Flow (SlipVerifier.submit):
    1. Validate the upload (content type, size) before any network call
    2. Refuse when the user already owns the course / every bundle course
    3. Compute the authoritative amount (promo price, then coupon)
    4. Reuse the user's pending promptpay payment or create one
    5. Call SlipOK with a bounded timeout
         - timeout           -> payment ``verifying``, "still processing" result
         - other I/O failure -> payment ``failed``, VerificationUnavailableError
         - provider error    -> payment ``failed``, specific message per error code
         - amount missing or lower than owed -> payment ``failed``
    6. Settle through the SettlementEngine

SlipOK API:
    POST {SLIPOK_API_URL}/{SLIPOK_BRANCH_ID}
    Header:  x-authorization: {SLIPOK_API_KEY}
    Form:    files=<image>, amount=<expected>, log=true
    Reply:   {"success": bool, "code": int, "message": str,
              "data": {"amount": number, "transRef": str, ...}}

Author: Academy Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.utils.translation import gettext_lazy as _

from ..exceptions import (
    AlreadyEnrolledError,
    BusinessRuleError,
    CouponLimitExceededError,
    FreeAfterCouponError,
    InvalidProofError,
    VerificationRejectedError,
    VerificationUnavailableError,
)
from ..models import Payment
from ..pricing import get_bundle_or_404, get_course_or_404, load_coupon, resolve_bundle_price, resolve_course_price
from ..settlement import SettlementEngine
from ..store import PaymentStore, default_store

logger = logging.getLogger(__name__)


# SlipOK error code -> (failure reason stored on the payment, user message)
SLIPOK_ERRORS: Dict[int, tuple] = {
    1001: ("slip_not_found", _("No slip data found. Please check the image and try again.")),
    1002: ("slip_auth_error", _("The slip could not be verified right now. Please try again later.")),
    1003: ("slip_duplicate", _("This slip has already been used. Please upload a new slip.")),
    1004: ("slip_unreadable", _("The slip could not be read. Please upload a clearer picture.")),
    1010: ("slip_not_ready", _("The transfer is not ready to be verified yet. Please wait a moment and try again.")),
}

MSG_PROCESSING = _("Your slip is being verified. We will confirm your payment automatically.")
MSG_AMOUNT_MISMATCH = _("The slip amount does not match (slip: ฿%(paid)s / due: ฿%(due)s).")


@dataclass
class SlipCheck:
    """Parsed SlipOK reply."""

    success: bool
    code: Optional[int] = None
    message: str = ""
    amount: Optional[Decimal] = None
    trans_ref: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlipSubmissionResult:
    """
    Outcome of a slip submission that did not raise.

    Attributes:
        status: ``completed`` or ``processing``
        payment_id: The payment the slip was recorded against
        enrolled_course_ids: Newly enrolled courses (completed only)
    """

    status: str
    payment_id: int
    enrolled_course_ids: List[int] = field(default_factory=list)
    message: str = ""

    @property
    def completed(self) -> bool:
        return self.status == "completed"


def _parse_code(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_amount(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class SlipOkClient:
    """HTTP client for the SlipOK verification API."""

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None,
                 branch_id: Optional[str] = None, timeout: Optional[int] = None):
        self.api_url = (api_url or settings.SLIPOK_API_URL).rstrip("/")
        self.api_key = (api_key if api_key is not None else settings.SLIPOK_API_KEY).strip()
        self.branch_id = (branch_id if branch_id is not None else settings.SLIPOK_BRANCH_ID).strip()
        self.timeout = timeout or settings.SLIP_VERIFY_TIMEOUT_SECONDS

    def verify(self, slip_file, amount: Decimal) -> SlipCheck:
        """
        Send a slip for verification.

        Raises:
            requests.exceptions.Timeout: No answer within the timeout
            requests.exceptions.RequestException: Any other transport or decoding failure
        """
        url = f"{self.api_url}/{self.branch_id}"
        if hasattr(slip_file, "seek"):
            slip_file.seek(0)
        files = {
            "files": (
                getattr(slip_file, "name", "slip"),
                slip_file.read(),
                getattr(slip_file, "content_type", "application/octet-stream"),
            )
        }
        data = {"amount": str(amount), "log": "true"}

        logger.info("SlipOK request: amount=%s (timeout: %ss)", amount, self.timeout)
        response = requests.post(
            url,
            headers={"x-authorization": self.api_key},
            files=files,
            data=data,
            timeout=self.timeout,
        )
        payload = response.json()
        body = payload.get("data") or {}
        code = payload.get("code") or body.get("code")

        check = SlipCheck(
            success=bool(payload.get("success")),
            code=_parse_code(code),
            message=payload.get("message") or "",
            amount=_parse_amount(body.get("amount")),
            trans_ref=body.get("transRef") or "",
            raw=payload,
        )
        logger.info("SlipOK response: status=%s success=%s code=%s", response.status_code, check.success, check.code)
        return check


def validate_slip_upload(slip_file) -> None:
    """
    Reject missing, oversized or non-image uploads.

    Raises:
        InvalidProofError
    """
    if slip_file is None:
        raise InvalidProofError(_("Please attach a payment slip."), code="slip_missing")

    content_type = (getattr(slip_file, "content_type", "") or "").lower()
    if content_type not in settings.SLIP_ALLOWED_CONTENT_TYPES:
        raise InvalidProofError(
            _("Unsupported file type. Please upload a JPEG, PNG, WebP or GIF image."),
            code="slip_invalid_type",
        )

    size = getattr(slip_file, "size", None)
    if size is None or size <= 0:
        raise InvalidProofError(_("The uploaded slip is empty."), code="slip_empty")
    if size > settings.SLIP_MAX_UPLOAD_BYTES:
        max_mb = settings.SLIP_MAX_UPLOAD_BYTES // (1024 * 1024)
        raise InvalidProofError(
            str(_("The slip is too large (maximum %(max)s MB).")) % {"max": max_mb},
            code="slip_too_large",
        )


class SlipVerifier:
    """
    Verifies PromptPay slips for course and bundle purchases.

    Args:
        store: PaymentStore for all writes
        client: SlipOK client (network boundary)
        engine: SettlementEngine used once a slip is accepted
    """

    def __init__(self, store: Optional[PaymentStore] = None, client: Optional[SlipOkClient] = None,
                 engine: Optional[SettlementEngine] = None):
        self.store = store or default_store
        self.client = client or SlipOkClient()
        self.engine = engine or SettlementEngine(store=self.store)

    def submit(self, user, slip_file, *, course_id=None, bundle_id=None, coupon_id=None) -> SlipSubmissionResult:
        validate_slip_upload(slip_file)
        if (course_id is None) == (bundle_id is None):
            raise InvalidProofError(_("Specify either a course or a bundle."), code="target_required")

        coupon = load_coupon(coupon_id) if coupon_id else None
        course = bundle = None

        if course_id is not None:
            course = get_course_or_404(course_id)
            if self.store.is_enrolled(user.pk, course.pk):
                raise AlreadyEnrolledError()
            quote = resolve_course_price(course, user=user, coupon=coupon, store=self.store)
        else:
            bundle = get_bundle_or_404(bundle_id)
            course_ids = bundle.get_course_ids()
            if not course_ids:
                raise BusinessRuleError(_("This bundle has no courses."), code="bundle_empty")
            if not self.store.missing_course_ids(user.pk, course_ids):
                raise AlreadyEnrolledError(_("You already own every course in this bundle."))
            quote = resolve_bundle_price(bundle, user=user, coupon=coupon, store=self.store)

        if quote.is_free:
            raise FreeAfterCouponError()

        payment = self.store.create_or_reuse_pending(
            user=user,
            course=course,
            bundle=bundle,
            amount=quote.final_amount,
            currency=settings.PAYMENT_CURRENCY,
            coupon=quote.coupon,
            discount_amount=quote.discount_amount,
            method=Payment.Method.PROMPTPAY,
        )

        try:
            check = self.client.verify(slip_file, quote.final_amount)
        except requests.exceptions.Timeout:
            logger.warning("SlipOK timed out for payment %s; parked as verifying", payment.pk)
            self.store.mark_verifying(payment.pk)
            return SlipSubmissionResult("processing", payment.pk, message=str(MSG_PROCESSING))
        except requests.exceptions.RequestException as exc:
            logger.error("SlipOK request failed for payment %s: %s", payment.pk, exc)
            self.store.mark_failed(payment.pk, "verification_unavailable")
            raise VerificationUnavailableError() from exc

        if not check.success:
            reason, message = SLIPOK_ERRORS.get(
                check.code, ("slip_rejected", check.message or _("The slip could not be verified. Please try again."))
            )
            logger.info("Slip rejected for payment %s: code=%s reason=%s", payment.pk, check.code, reason)
            self.store.mark_failed(payment.pk, reason)
            raise VerificationRejectedError(message, code=reason)

        if check.amount is None or check.amount < quote.final_amount:
            logger.info(
                "Slip amount mismatch for payment %s: paid=%s due=%s", payment.pk, check.amount, quote.final_amount
            )
            self.store.mark_failed(payment.pk, "amount_mismatch")
            raise VerificationRejectedError(
                str(MSG_AMOUNT_MISMATCH) % {"paid": check.amount if check.amount is not None else "-",
                                             "due": quote.final_amount},
                code="amount_mismatch",
            )

        try:
            result = self.engine.settle(payment, external_reference=check.trans_ref, source="slip")
        except CouponLimitExceededError:
            self.store.mark_failed(payment.pk, "coupon_limit_exceeded")
            raise

        return SlipSubmissionResult("completed", payment.pk, result.enrolled_course_ids)
