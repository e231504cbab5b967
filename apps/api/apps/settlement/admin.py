from django.contrib import admin

from .models import (
    CommissionAccountRecord,
    DoctorAccountRecord,
    MoneyTransactionRecord,
    PayoutScheduleRecord,
    RefundRequestRecord,
)


@admin.register(MoneyTransactionRecord)
class MoneyTransactionRecordAdmin(admin.ModelAdmin):
    """Ledger entries are append-only."""
    list_display = ['transaction_id', 'type', 'sub_type', 'amount', 'entity_type', 'entity_id', 'status', 'created_at']
    list_filter = ['type', 'status', 'entity_type']
    search_fields = ['transaction_id', 'reference', 'entity_id']

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CommissionAccountRecord)
class CommissionAccountRecordAdmin(admin.ModelAdmin):
    list_display = ['key', 'name', 'commission_rate', 'pending_amount', 'total_commission_collected', 'collection_status']
    list_filter = ['entity_type', 'collection_status']
    search_fields = ['key', 'name']
    readonly_fields = ['total_sales', 'commission_owed', 'pending_amount', 'total_commission_collected']


@admin.register(DoctorAccountRecord)
class DoctorAccountRecordAdmin(admin.ModelAdmin):
    list_display = ['doctor_id', 'name', 'pending_amount', 'total_paid', 'payout_status']
    readonly_fields = ['commission_earned', 'pending_amount', 'total_paid']


@admin.register(RefundRequestRecord)
class RefundRequestRecordAdmin(admin.ModelAdmin):
    list_display = ['refund_id', 'order_id', 'amount', 'status', 'requested_at']
    list_filter = ['status', 'refund_method']
    search_fields = ['refund_id', 'order_id', 'customer_id']


@admin.register(PayoutScheduleRecord)
class PayoutScheduleRecordAdmin(admin.ModelAdmin):
    list_display = ['schedule_id', 'entity_type', 'entity_id', 'schedule_type', 'frequency', 'next_due', 'status']
    list_filter = ['schedule_type', 'status', 'frequency']
