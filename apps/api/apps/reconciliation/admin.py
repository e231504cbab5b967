from django.contrib import admin

from .models import SuspendedOrderRecord


@admin.register(SuspendedOrderRecord)
class SuspendedOrderRecordAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'pharmacy_id', 'status', 'priority', 'escalation_level', 'total_amount', 'suspended_at']
    list_filter = ['status', 'priority', 'issue_type']
    search_fields = ['order_id', 'order_number', 'pharmacy_id']
    readonly_fields = ['order_id', 'original_items', 'changes', 'agent_notes', 'suspended_at', 'updated_at']
