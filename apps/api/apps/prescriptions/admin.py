from django.contrib import admin

from .models import PrescriptionRecord, PrescriptionStatusEntry


class PrescriptionStatusEntryInline(admin.TabularInline):
    """History is append-only; the admin shows it read-only."""
    model = PrescriptionStatusEntry
    extra = 0
    can_delete = False
    readonly_fields = ['sequence', 'status', 'timestamp', 'user_id', 'user_name', 'user_role', 'notes']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(PrescriptionRecord)
class PrescriptionRecordAdmin(admin.ModelAdmin):
    list_display = ['id', 'current_status', 'urgency', 'assigned_reader_id', 'total_amount', 'created_at']
    list_filter = ['current_status', 'urgency']
    search_fields = ['id', 'customer_id']
    readonly_fields = ['id', 'current_status', 'created_at', 'updated_at']
    inlines = [PrescriptionStatusEntryInline]
