"""Prescription serializers."""
from rest_framework import serializers

from .domain import FileType, PrescriptionStatus, Urgency


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------

class FileRefSerializer(serializers.Serializer):
    file_id = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255)
    file_type = serializers.ChoiceField(choices=FileType.choices)
    url = serializers.CharField(required=False, allow_blank=True, default='')


class ProcessedMedicineSerializer(serializers.Serializer):
    medicine_id = serializers.CharField(read_only=True)
    product_id = serializers.CharField()
    product_name = serializers.CharField()
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    dosage = serializers.CharField(required=False, allow_blank=True, default='')
    instructions = serializers.CharField(required=False, allow_blank=True, default='')
    is_available = serializers.BooleanField(required=False, default=True)
    pharmacy_id = serializers.CharField(required=False, allow_blank=True, default='')
    frequency = serializers.CharField(required=False, allow_blank=True, default='')
    duration = serializers.CharField(required=False, allow_blank=True, default='')
    alternatives = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    active_ingredient = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.CharField(required=False, allow_blank=True, default='')
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)


class StatusHistoryEntrySerializer(serializers.Serializer):
    sequence = serializers.IntegerField()
    status = serializers.CharField()
    timestamp = serializers.DateTimeField()
    user_id = serializers.CharField()
    user_name = serializers.CharField()
    user_role = serializers.CharField()
    notes = serializers.CharField(allow_null=True)


class InteractionSerializer(serializers.Serializer):
    medicine1 = serializers.CharField()
    medicine2 = serializers.CharField()
    severity = serializers.CharField()
    description = serializers.CharField()


class SuspensionDataSerializer(serializers.Serializer):
    category = serializers.CharField()
    reason = serializers.CharField()
    suspended_by = serializers.CharField()
    suspended_at = serializers.DateTimeField()


class PrescriptionSerializer(serializers.Serializer):
    """Read-only representation of a PrescriptionWorkflow."""
    id = serializers.CharField()
    patient_name = serializers.CharField()
    customer_id = serializers.CharField()
    customer_name = serializers.CharField()
    customer_phone = serializers.CharField()
    doctor_name = serializers.CharField(allow_null=True)
    hospital_clinic = serializers.CharField(allow_null=True)
    notes = serializers.CharField(allow_null=True)
    files = FileRefSerializer(many=True)
    current_status = serializers.CharField()
    urgency = serializers.CharField()
    processed_medicines = ProcessedMedicineSerializer(many=True)
    status_history = StatusHistoryEntrySerializer(many=True)
    assigned_reader_id = serializers.CharField(allow_null=True)
    rejection_reason = serializers.CharField(allow_null=True)
    suspension_data = SuspensionDataSerializer(allow_null=True)
    interaction_warnings = InteractionSerializer(many=True)
    category_warnings = serializers.ListField(child=serializers.CharField())
    delivery_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    estimated_completion = serializers.DateTimeField(allow_null=True)
    actual_completion = serializers.DateTimeField(allow_null=True)
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


class PrescriptionAnalyticsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    status_counts = serializers.DictField(child=serializers.IntegerField())
    urgency_counts = serializers.DictField(child=serializers.IntegerField())
    pending_review = serializers.IntegerField()
    average_processing_hours = serializers.FloatField(allow_null=True)
    completion_rate = serializers.FloatField()


# ----------------------------------------------------------------------
# Input
# ----------------------------------------------------------------------

class PrescriptionSubmitSerializer(serializers.Serializer):
    patient_name = serializers.CharField(max_length=255)
    customer_id = serializers.CharField(max_length=64, required=False)
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    customer_phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default='')
    doctor_name = serializers.CharField(max_length=255, required=False, allow_null=True, default=None)
    hospital_clinic = serializers.CharField(max_length=255, required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    files = FileRefSerializer(many=True, allow_empty=True)
    urgency = serializers.ChoiceField(choices=Urgency.choices, default=Urgency.NORMAL)
    delivery_fee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default=0)


class AssignReaderSerializer(serializers.Serializer):
    reader_id = serializers.CharField(max_length=64)


class MedicineFromCatalogSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    instructions = serializers.CharField(required=False, allow_blank=True, default='')
    dosage = serializers.CharField(required=False, allow_null=True, default=None)
    frequency = serializers.CharField(required=False, allow_blank=True, default='')
    duration = serializers.CharField(required=False, allow_blank=True, default='')
    pharmacy_id = serializers.CharField(required=False, allow_blank=True, default='')


class MedicinePatchSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1, required=False)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    dosage = serializers.CharField(required=False, allow_blank=True)
    instructions = serializers.CharField(required=False, allow_blank=True)
    is_available = serializers.BooleanField(required=False)
    pharmacy_id = serializers.CharField(required=False, allow_blank=True)
    frequency = serializers.CharField(required=False, allow_blank=True)
    duration = serializers.CharField(required=False, allow_blank=True)
    alternatives = serializers.ListField(child=serializers.CharField(), required=False)


class QualityChecksSerializer(serializers.Serializer):
    prescription_clear = serializers.BooleanField(default=False)
    dosage_verified = serializers.BooleanField(default=False)
    interactions_checked = serializers.BooleanField(default=False)
    patient_info_confirmed = serializers.BooleanField(default=False)


class PrescriptionTransitionSerializer(serializers.Serializer):
    """
    POST /prescriptions/{id}/transition/

    The transition table itself is enforced by the engine; this only
    validates shape.
    """
    new_status = serializers.ChoiceField(choices=PrescriptionStatus.choices)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    rejection_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    suspension_category = serializers.CharField(required=False, allow_null=True, default=None)
    quality_checks = QualityChecksSerializer(required=False, allow_null=True)
