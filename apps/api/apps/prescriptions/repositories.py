"""Prescription repositories."""
from typing import List

from apps.core.exceptions import NotFoundError
from apps.core.repositories import AggregateRepository, DjangoRepository, InMemoryRepository

from .domain import (
    FileRef,
    PrescriptionWorkflow,
    ProcessedMedicine,
    StatusHistoryEntry,
    SuspensionData,
)
from .interactions import Interaction
from .models import PrescriptionRecord, PrescriptionStatusEntry


class PrescriptionRepository(AggregateRepository[PrescriptionWorkflow]):
    entity_name = 'Prescription'


class InMemoryPrescriptionRepository(InMemoryRepository[PrescriptionWorkflow], PrescriptionRepository):
    pass


class DjangoPrescriptionRepository(DjangoRepository[PrescriptionWorkflow], PrescriptionRepository):
    model = PrescriptionRecord

    def to_domain(self, record: PrescriptionRecord) -> PrescriptionWorkflow:
        history: List[StatusHistoryEntry] = [
            StatusHistoryEntry(
                sequence=entry.sequence,
                status=entry.status,
                timestamp=entry.timestamp,
                user_id=entry.user_id,
                user_name=entry.user_name,
                user_role=entry.user_role,
                notes=entry.notes,
            )
            for entry in record.history.order_by('sequence')
        ]
        return PrescriptionWorkflow(
            id=record.id,
            patient_name=record.patient_name,
            customer_id=record.customer_id,
            customer_name=record.customer_name,
            customer_phone=record.customer_phone,
            doctor_name=record.doctor_name,
            hospital_clinic=record.hospital_clinic,
            notes=record.notes,
            files=[FileRef.from_dict(f) for f in record.files],
            current_status=record.current_status,
            urgency=record.urgency,
            processed_medicines=[ProcessedMedicine.from_dict(m) for m in record.processed_medicines],
            status_history=history,
            assigned_reader_id=record.assigned_reader_id,
            rejection_reason=record.rejection_reason,
            suspension_data=SuspensionData.from_dict(record.suspension_data),
            interaction_warnings=[Interaction.from_dict(i) for i in record.interaction_warnings],
            category_warnings=list(record.category_warnings),
            delivery_fee=record.delivery_fee,
            total_amount=record.total_amount,
            estimated_completion=record.estimated_completion,
            actual_completion=record.actual_completion,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def write(self, aggregate: PrescriptionWorkflow, created: bool) -> None:
        data = aggregate.to_dict()
        values = {
            'patient_name': aggregate.patient_name,
            'customer_id': aggregate.customer_id,
            'customer_name': aggregate.customer_name,
            'customer_phone': aggregate.customer_phone,
            'doctor_name': aggregate.doctor_name,
            'hospital_clinic': aggregate.hospital_clinic,
            'notes': aggregate.notes,
            'files': data['files'],
            'current_status': aggregate.current_status,
            'urgency': aggregate.urgency,
            'processed_medicines': data['processed_medicines'],
            'interaction_warnings': data['interaction_warnings'],
            'category_warnings': data['category_warnings'],
            'assigned_reader_id': aggregate.assigned_reader_id,
            'rejection_reason': aggregate.rejection_reason,
            'suspension_data': data['suspension_data'],
            'delivery_fee': aggregate.delivery_fee,
            'total_amount': aggregate.total_amount,
            'estimated_completion': aggregate.estimated_completion,
            'actual_completion': aggregate.actual_completion,
            'created_at': aggregate.created_at,
            'updated_at': aggregate.updated_at,
        }
        if created:
            PrescriptionRecord.objects.create(id=aggregate.id, **values)
            last_sequence = 0
        else:
            updated = PrescriptionRecord.objects.filter(pk=aggregate.id).update(**values)
            if not updated:
                raise NotFoundError(self.entity_name, aggregate.id)
            last_sequence = (
                PrescriptionStatusEntry.objects.filter(prescription_id=aggregate.id)
                .order_by('-sequence')
                .values_list('sequence', flat=True)
                .first()
            ) or 0

        # History is append-only: only entries past the stored tail are written
        PrescriptionStatusEntry.objects.bulk_create([
            PrescriptionStatusEntry(
                prescription_id=aggregate.id,
                sequence=entry.sequence,
                status=entry.status,
                timestamp=entry.timestamp,
                user_id=entry.user_id,
                user_name=entry.user_name,
                user_role=entry.user_role,
                notes=entry.notes,
            )
            for entry in aggregate.status_history
            if entry.sequence > last_sequence
        ])
