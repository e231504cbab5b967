"""
Settlement models.

Ledger rows are plain columns keyed by the domain ids; entities
(pharmacies, vendors, doctors, customers) are referenced by id only.
"""
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from .domain import (
    CollectionFrequency,
    CollectionStatus,
    EntityType,
    PaymentMethod,
    RefundMethod,
    RefundStatus,
    ScheduleStatus,
    ScheduleType,
    TransactionStatus,
    TransactionSubType,
    TransactionType,
)


class MoneyTransactionRecord(models.Model):
    transaction_id = models.CharField(primary_key=True, max_length=64, editable=False)
    type = models.CharField(_('Type'), max_length=20, choices=TransactionType.choices)
    sub_type = models.CharField(
        _('Sub type'),
        max_length=32,
        choices=TransactionSubType.choices,
        blank=True,
        null=True
    )
    amount = models.DecimalField(_('Amount'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('Currency'), max_length=3)
    description = models.CharField(_('Description'), max_length=255, blank=True)
    reference = models.CharField(_('Reference'), max_length=64, db_index=True)
    entity_id = models.CharField(_('Entity ID'), max_length=64)
    entity_type = models.CharField(_('Entity type'), max_length=20, choices=EntityType.choices)
    entity_name = models.CharField(_('Entity name'), max_length=255, blank=True)
    status = models.CharField(_('Status'), max_length=20, choices=TransactionStatus.choices)
    metadata = models.JSONField(_('Metadata'), default=dict, blank=True)
    created_at = models.DateTimeField(_('Created At'))
    processed_at = models.DateTimeField(_('Processed At'), blank=True, null=True)

    class Meta:
        db_table = 'settlement_transactions'
        ordering = ['-created_at']
        verbose_name = _('Money transaction')
        verbose_name_plural = _('Money transactions')
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', '-created_at'], name='idx_txn_entity_created'),
            models.Index(fields=['type', 'status'], name='idx_txn_type_status'),
        ]

    def __str__(self):
        return f"{self.transaction_id} {self.type} {self.amount} ({self.status})"


class CommissionAccountRecord(models.Model):
    key = models.CharField(primary_key=True, max_length=96, editable=False)
    entity_id = models.CharField(_('Entity ID'), max_length=64)
    entity_type = models.CharField(_('Entity type'), max_length=20, choices=EntityType.choices)
    name = models.CharField(_('Name'), max_length=255, blank=True)
    commission_rate = models.DecimalField(_('Commission rate'), max_digits=5, decimal_places=4)
    collection_frequency = models.CharField(
        _('Collection frequency'),
        max_length=10,
        choices=CollectionFrequency.choices
    )
    payment_method = models.CharField(_('Payment method'), max_length=20, choices=PaymentMethod.choices)
    total_sales = models.DecimalField(_('Total sales'), max_digits=14, decimal_places=2, default=Decimal('0.00'))
    commission_owed = models.DecimalField(
        _('Commission owed'), max_digits=14, decimal_places=2, default=Decimal('0.00')
    )
    pending_amount = models.DecimalField(_('Pending'), max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total_commission_collected = models.DecimalField(
        _('Collected'), max_digits=14, decimal_places=2, default=Decimal('0.00')
    )
    collection_status = models.CharField(
        _('Collection status'),
        max_length=10,
        choices=CollectionStatus.choices,
        default=CollectionStatus.PENDING
    )
    total_orders = models.PositiveIntegerField(_('Total orders'), default=0)
    next_collection_date = models.DateField(_('Next collection'), blank=True, null=True)
    last_collection = models.DateTimeField(_('Last collection'), blank=True, null=True)
    last_order_at = models.DateTimeField(_('Last order'), blank=True, null=True)
    created_at = models.DateTimeField(_('Created At'))
    updated_at = models.DateTimeField(_('Updated At'))

    class Meta:
        db_table = 'settlement_commission_accounts'
        verbose_name = _('Commission account')
        verbose_name_plural = _('Commission accounts')
        constraints = [
            models.UniqueConstraint(fields=['entity_type', 'entity_id'], name='uniq_commission_account_entity'),
            models.CheckConstraint(
                condition=models.Q(pending_amount__gte=0),
                name='commission_pending_non_negative'
            ),
        ]

    def __str__(self):
        return f"{self.key} owes {self.pending_amount}"


class DoctorAccountRecord(models.Model):
    doctor_id = models.CharField(primary_key=True, max_length=64, editable=False)
    name = models.CharField(_('Name'), max_length=255, blank=True)
    commission_rate = models.DecimalField(_('Commission rate'), max_digits=5, decimal_places=4)
    payout_frequency = models.CharField(_('Payout frequency'), max_length=10, choices=CollectionFrequency.choices)
    total_referrals = models.PositiveIntegerField(_('Referrals'), default=0)
    commission_earned = models.DecimalField(_('Earned'), max_digits=14, decimal_places=2, default=Decimal('0.00'))
    pending_amount = models.DecimalField(_('Pending'), max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total_paid = models.DecimalField(_('Paid'), max_digits=14, decimal_places=2, default=Decimal('0.00'))
    payout_status = models.CharField(
        _('Payout status'),
        max_length=10,
        choices=CollectionStatus.choices,
        default=CollectionStatus.PENDING
    )
    last_payout = models.DateTimeField(_('Last payout'), blank=True, null=True)
    created_at = models.DateTimeField(_('Created At'))
    updated_at = models.DateTimeField(_('Updated At'))

    class Meta:
        db_table = 'settlement_doctor_accounts'
        verbose_name = _('Doctor account')
        verbose_name_plural = _('Doctor accounts')

    def __str__(self):
        return f"Doctor {self.doctor_id} pending {self.pending_amount}"


class RefundRequestRecord(models.Model):
    refund_id = models.CharField(primary_key=True, max_length=64, editable=False)
    order_id = models.CharField(_('Order ID'), max_length=64, db_index=True)
    customer_id = models.CharField(_('Customer ID'), max_length=64, db_index=True)
    customer_name = models.CharField(_('Customer name'), max_length=255, blank=True)
    amount = models.DecimalField(_('Amount'), max_digits=12, decimal_places=2)
    reason = models.TextField(_('Reason'))
    refund_method = models.CharField(_('Refund method'), max_length=20, choices=RefundMethod.choices)
    status = models.CharField(
        _('Status'),
        max_length=10,
        choices=RefundStatus.choices,
        default=RefundStatus.PENDING
    )
    notes = models.TextField(_('Notes'), blank=True, null=True)
    processed_by = models.CharField(_('Processed by'), max_length=64, blank=True, null=True)
    transaction_id = models.CharField(_('Transaction ID'), max_length=64, blank=True, null=True)
    requested_at = models.DateTimeField(_('Requested At'))
    processed_at = models.DateTimeField(_('Processed At'), blank=True, null=True)

    class Meta:
        db_table = 'settlement_refund_requests'
        ordering = ['-requested_at']
        verbose_name = _('Refund request')
        verbose_name_plural = _('Refund requests')

    def __str__(self):
        return f"Refund {self.refund_id} for {self.order_id} ({self.status})"


class PayoutScheduleRecord(models.Model):
    schedule_id = models.CharField(primary_key=True, max_length=64, editable=False)
    entity_id = models.CharField(_('Entity ID'), max_length=64)
    entity_type = models.CharField(_('Entity type'), max_length=20, choices=EntityType.choices)
    entity_name = models.CharField(_('Entity name'), max_length=255, blank=True)
    schedule_type = models.CharField(_('Schedule type'), max_length=10, choices=ScheduleType.choices)
    frequency = models.CharField(_('Frequency'), max_length=10, choices=CollectionFrequency.choices)
    next_due = models.DateField(_('Next due'))
    minimum_amount = models.DecimalField(_('Minimum amount'), max_digits=12, decimal_places=2)
    status = models.CharField(
        _('Status'),
        max_length=10,
        choices=ScheduleStatus.choices,
        default=ScheduleStatus.ACTIVE
    )
    payment_method = models.CharField(_('Payment method'), max_length=20, choices=PaymentMethod.choices)
    last_run_at = models.DateTimeField(_('Last run'), blank=True, null=True)
    created_at = models.DateTimeField(_('Created At'))
    updated_at = models.DateTimeField(_('Updated At'))

    class Meta:
        db_table = 'settlement_payout_schedules'
        ordering = ['next_due']
        verbose_name = _('Payout schedule')
        verbose_name_plural = _('Payout schedules')
        indexes = [
            models.Index(fields=['status', 'next_due'], name='idx_schedule_status_due'),
        ]

    def __str__(self):
        return f"{self.schedule_type} schedule for {self.entity_type}:{self.entity_id}"
