"""Settlement serializers."""
from rest_framework import serializers

from .domain import (
    CollectionFrequency,
    EntityType,
    PaymentMethod,
    RefundAction,
    RefundMethod,
)


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------

class MoneyTransactionSerializer(serializers.Serializer):
    transaction_id = serializers.CharField()
    type = serializers.CharField()
    sub_type = serializers.CharField(allow_null=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    description = serializers.CharField()
    reference = serializers.CharField()
    entity_id = serializers.CharField()
    entity_type = serializers.CharField()
    entity_name = serializers.CharField()
    status = serializers.CharField()
    metadata = serializers.DictField()
    created_at = serializers.DateTimeField()
    processed_at = serializers.DateTimeField(allow_null=True)


class CommissionAccountSerializer(serializers.Serializer):
    key = serializers.CharField()
    entity_id = serializers.CharField()
    entity_type = serializers.CharField()
    name = serializers.CharField()
    commission_rate = serializers.DecimalField(max_digits=5, decimal_places=4)
    rate_percent = serializers.DecimalField(max_digits=5, decimal_places=2)
    total_sales = serializers.DecimalField(max_digits=14, decimal_places=2)
    entity_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    commission_owed = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_commission_collected = serializers.DecimalField(max_digits=14, decimal_places=2)
    outstanding_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    collection_status = serializers.CharField()
    collection_frequency = serializers.CharField()
    payment_method = serializers.CharField()
    total_orders = serializers.IntegerField()
    average_order_value = serializers.DecimalField(max_digits=14, decimal_places=2)
    next_collection_date = serializers.DateField(allow_null=True)
    last_collection = serializers.DateTimeField(allow_null=True)
    last_order_at = serializers.DateTimeField(allow_null=True)


class DoctorAccountSerializer(serializers.Serializer):
    doctor_id = serializers.CharField()
    name = serializers.CharField()
    commission_rate = serializers.DecimalField(max_digits=5, decimal_places=4)
    payout_frequency = serializers.CharField()
    total_referrals = serializers.IntegerField()
    commission_earned = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    payout_status = serializers.CharField()
    last_payout = serializers.DateTimeField(allow_null=True)


class RefundRequestSerializer(serializers.Serializer):
    refund_id = serializers.CharField()
    order_id = serializers.CharField()
    customer_id = serializers.CharField()
    customer_name = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField()
    refund_method = serializers.CharField()
    status = serializers.CharField()
    requested_at = serializers.DateTimeField()
    processed_at = serializers.DateTimeField(allow_null=True)
    processed_by = serializers.CharField(allow_null=True)
    notes = serializers.CharField(allow_null=True)
    transaction_id = serializers.CharField(allow_null=True)


class PayoutScheduleSerializer(serializers.Serializer):
    schedule_id = serializers.CharField()
    entity_id = serializers.CharField()
    entity_type = serializers.CharField()
    entity_name = serializers.CharField()
    schedule_type = serializers.CharField()
    frequency = serializers.CharField()
    next_due = serializers.DateField()
    minimum_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    status = serializers.CharField()
    payment_method = serializers.CharField()
    last_run_at = serializers.DateTimeField(allow_null=True)


class TransactionMetricsSerializer(serializers.Serializer):
    total_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    gross_transaction_volume = serializers.DecimalField(max_digits=14, decimal_places=2)
    platform_commission = serializers.DecimalField(max_digits=14, decimal_places=2)
    pharmacy_commissions = serializers.DecimalField(max_digits=14, decimal_places=2)
    vendor_commissions = serializers.DecimalField(max_digits=14, decimal_places=2)
    doctor_commissions = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_refunds = serializers.DecimalField(max_digits=14, decimal_places=2)
    processed_refunds = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_payouts = serializers.DecimalField(max_digits=14, decimal_places=2)
    completed_payouts = serializers.IntegerField()
    currency = serializers.CharField()
    last_updated = serializers.DateTimeField()


class TransactionSummarySerializer(serializers.Serializer):
    total_transactions = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    completed_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    refunded_amount = serializers.DecimalField(max_digits=14, decimal_places=2)


class RefundAnalyticsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    pending = serializers.IntegerField()
    approved = serializers.IntegerField()
    rejected = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    average_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    approval_rate = serializers.FloatField()


class RevenueBreakdownSerializer(serializers.Serializer):
    gross_transaction_volume = serializers.DecimalField(max_digits=14, decimal_places=2)
    pharmacy_commission_collected = serializers.DecimalField(max_digits=14, decimal_places=2)
    vendor_commission_collected = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_commission_collected = serializers.DecimalField(max_digits=14, decimal_places=2)
    doctor_commissions_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    revenue_margin = serializers.FloatField()


# ----------------------------------------------------------------------
# Input
# ----------------------------------------------------------------------

PAYER_CHOICES = [EntityType.PHARMACY, EntityType.VENDOR]


class OrderSettlementSerializer(serializers.Serializer):
    """
    POST /settlement/settlements/

    ``commission_rate`` accepts a fraction (0.10) or a percentage (10).
    """
    entity_id = serializers.CharField(max_length=64)
    entity_type = serializers.ChoiceField(choices=PAYER_CHOICES)
    order_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    commission_rate = serializers.DecimalField(max_digits=7, decimal_places=4, required=False, allow_null=True, default=None)
    reference = serializers.CharField(max_length=64, required=False, allow_null=True, default=None)
    entity_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class CommissionAccountConfigSerializer(serializers.Serializer):
    entity_id = serializers.CharField(max_length=64)
    entity_type = serializers.ChoiceField(choices=PAYER_CHOICES)
    name = serializers.CharField(max_length=255, required=False, default=None)
    commission_rate = serializers.DecimalField(max_digits=7, decimal_places=4, required=False, allow_null=True, default=None)
    collection_frequency = serializers.ChoiceField(
        choices=CollectionFrequency.choices, required=False, allow_null=True, default=None
    )
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_null=True, default=None)


class CollectSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_null=True, default=None)


class ScheduleCollectionSerializer(serializers.Serializer):
    scheduled_for = serializers.DateField()


class DoctorAccrualSerializer(serializers.Serializer):
    order_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reference = serializers.CharField(max_length=64)
    doctor_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    commission_rate = serializers.DecimalField(max_digits=7, decimal_places=4, required=False, allow_null=True, default=None)


class RefundCreateSerializer(serializers.Serializer):
    order_id = serializers.CharField(max_length=64)
    customer_id = serializers.CharField(max_length=64, required=False)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(allow_blank=True)
    refund_method = serializers.ChoiceField(choices=RefundMethod.choices, default=RefundMethod.WALLET)
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class RefundResolveSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=RefundAction.choices)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class PayoutScheduleCreateSerializer(serializers.Serializer):
    entity_id = serializers.CharField(max_length=64)
    entity_type = serializers.ChoiceField(choices=[EntityType.PHARMACY, EntityType.VENDOR, EntityType.DOCTOR])
    frequency = serializers.ChoiceField(choices=CollectionFrequency.choices)
    first_due = serializers.DateField()
    minimum_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.BANK_TRANSFER)
    entity_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
