"""
Prescription models - persistent form of the workflow aggregate.

Nested value lists (files, medicines, interaction warnings) are stored as
JSON; the status history is its own append-only table.
"""
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.core.actors import ActorRole

from .domain import PrescriptionStatus, Urgency


class PrescriptionRecord(models.Model):
    id = models.CharField(primary_key=True, max_length=64, editable=False)

    # Patient / customer
    patient_name = models.CharField(_('Patient name'), max_length=255)
    customer_id = models.CharField(_('Customer ID'), max_length=64, db_index=True)
    customer_name = models.CharField(_('Customer name'), max_length=255, blank=True)
    customer_phone = models.CharField(_('Customer phone'), max_length=32, blank=True)
    doctor_name = models.CharField(_('Doctor name'), max_length=255, blank=True, null=True)
    hospital_clinic = models.CharField(_('Hospital / clinic'), max_length=255, blank=True, null=True)
    notes = models.TextField(_('Notes'), blank=True, null=True)

    files = models.JSONField(_('Files'), default=list)

    current_status = models.CharField(
        _('Status'),
        max_length=20,
        choices=PrescriptionStatus.choices,
        default=PrescriptionStatus.SUBMITTED
    )
    urgency = models.CharField(
        _('Urgency'),
        max_length=10,
        choices=Urgency.choices,
        default=Urgency.NORMAL
    )

    processed_medicines = models.JSONField(_('Processed medicines'), default=list)
    interaction_warnings = models.JSONField(_('Interaction warnings'), default=list)
    category_warnings = models.JSONField(_('Category warnings'), default=list)

    assigned_reader_id = models.CharField(_('Assigned reader'), max_length=64, blank=True, null=True, db_index=True)
    rejection_reason = models.TextField(_('Rejection reason'), blank=True, null=True)
    suspension_data = models.JSONField(_('Suspension data'), blank=True, null=True)

    delivery_fee = models.DecimalField(_('Delivery fee'), max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(_('Total amount'), max_digits=12, decimal_places=2, default=Decimal('0.00'))

    estimated_completion = models.DateTimeField(_('Estimated completion'), blank=True, null=True)
    actual_completion = models.DateTimeField(_('Actual completion'), blank=True, null=True)

    # Server-assigned by the engine, not auto_now: history and record must agree
    created_at = models.DateTimeField(_('Created At'))
    updated_at = models.DateTimeField(_('Updated At'))

    class Meta:
        db_table = 'prescriptions'
        ordering = ['-created_at']
        verbose_name = _('Prescription')
        verbose_name_plural = _('Prescriptions')
        indexes = [
            models.Index(fields=['current_status', '-created_at'], name='idx_rx_status_created'),
            models.Index(fields=['urgency', '-created_at'], name='idx_rx_urgency_created'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(total_amount__gte=0), name='prescription_total_non_negative'),
        ]

    def __str__(self):
        return f"Prescription {self.id} ({self.current_status})"


class PrescriptionStatusEntry(models.Model):
    """Append-only audit log of status transitions."""

    prescription = models.ForeignKey(
        PrescriptionRecord,
        on_delete=models.CASCADE,
        related_name='history',
        verbose_name=_('Prescription')
    )
    sequence = models.PositiveIntegerField(_('Sequence'))
    status = models.CharField(_('Status'), max_length=20, choices=PrescriptionStatus.choices)
    timestamp = models.DateTimeField(_('Timestamp'))
    user_id = models.CharField(_('User ID'), max_length=64)
    user_name = models.CharField(_('User name'), max_length=255, blank=True)
    user_role = models.CharField(_('User role'), max_length=32, choices=ActorRole.choices)
    notes = models.TextField(_('Notes'), blank=True, null=True)

    class Meta:
        db_table = 'prescription_status_history'
        ordering = ['prescription', 'sequence']
        verbose_name = _('Prescription status entry')
        verbose_name_plural = _('Prescription status entries')
        constraints = [
            models.UniqueConstraint(fields=['prescription', 'sequence'], name='uniq_rx_history_sequence'),
        ]

    def __str__(self):
        return f"{self.prescription_id} #{self.sequence} {self.status}"
