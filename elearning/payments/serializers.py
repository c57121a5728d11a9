"""
Payment API Serializers

Input validation for the payment endpoints and the admin reconciliation
listing. Business rules (eligibility, amounts, states) are enforced by the
service layer, not here.

Author: Academy Development Team
Version: 1.0.0
"""

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import Payment
from .recovery import APPROVE, REJECT


class PurchaseTargetSerializer(serializers.Serializer):
    """Exactly one of course_id / bundle_id, plus an optional coupon."""

    course_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    bundle_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    coupon_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate(self, attrs):
        has_course = attrs.get("course_id") is not None
        has_bundle = attrs.get("bundle_id") is not None
        if has_course == has_bundle:
            raise serializers.ValidationError(_("Specify either course_id or bundle_id."))
        return attrs


class SlipSubmissionSerializer(PurchaseTargetSerializer):
    # Type and size are checked by validate_slip_upload
    slip = serializers.FileField(required=False, allow_empty_file=True)


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50)
    course_id = serializers.IntegerField(min_value=1)

    def validate_code(self, value: str) -> str:
        return value.strip().upper()


class RetrySerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=[APPROVE, REJECT], default=APPROVE)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=64, default="")


class BulkActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["mark_failed"])
    payment_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)


class CheckoutSuccessSerializer(serializers.Serializer):
    session_id = serializers.CharField(max_length=255)
    course_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    bundle_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate(self, attrs):
        if (attrs.get("course_id") is None) == (attrs.get("bundle_id") is None):
            raise serializers.ValidationError(_("Specify either course_id or bundle_id."))
        return attrs


class ReconciliationPaymentSerializer(serializers.ModelSerializer):
    """Row of the admin reconciliation listing."""

    user_name = serializers.SerializerMethodField()
    user_email = serializers.SerializerMethodField()
    item_title = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            "id",
            "user_id",
            "user_name",
            "user_email",
            "course_id",
            "bundle_id",
            "item_title",
            "amount",
            "currency",
            "method",
            "status",
            "external_reference",
            "failure_reason",
            "retry_count",
            "last_retry_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_user_name(self, obj: Payment) -> str:
        if obj.user is None:
            return ""
        return obj.user.get_full_name() or obj.user.get_username()

    def get_user_email(self, obj: Payment) -> str:
        return obj.user.email if obj.user is not None else ""

    def get_item_title(self, obj: Payment) -> str:
        item = obj.bundle or obj.course
        return item.title if item is not None else ""
