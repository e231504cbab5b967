"""
Suspended order models.

The item diff and the agent activity log are stored as JSON on the
order row; the row lock taken by the repository serialises writers.
"""
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from .domain import IssueType, Priority, SuspendedOrderStatus


class SuspendedOrderRecord(models.Model):
    order_id = models.CharField(primary_key=True, max_length=64, editable=False)
    order_number = models.CharField(_('Order number'), max_length=64, db_index=True)
    pharmacy_id = models.CharField(_('Pharmacy ID'), max_length=64, db_index=True)
    customer_id = models.CharField(_('Customer ID'), max_length=64, db_index=True)
    customer_name = models.CharField(_('Customer name'), max_length=255, blank=True)
    customer_phone = models.CharField(_('Customer phone'), max_length=32, blank=True)

    original_items = models.JSONField(_('Original items'), default=list)
    changes = models.JSONField(_('Item changes'), default=list)
    modified_items = models.JSONField(_('Modified items'), blank=True, null=True)

    issue_type = models.CharField(_('Issue type'), max_length=32, choices=IssueType.choices)
    issue_notes = models.TextField(_('Issue notes'), blank=True)
    priority = models.CharField(_('Priority'), max_length=10, choices=Priority.choices, default=Priority.NORMAL)
    status = models.CharField(
        _('Status'),
        max_length=20,
        choices=SuspendedOrderStatus.choices,
        default=SuspendedOrderStatus.SUSPENDED
    )

    original_total_amount = models.DecimalField(_('Original total'), max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(_('Total'), max_digits=12, decimal_places=2, default=Decimal('0.00'))

    escalation_level = models.PositiveSmallIntegerField(_('Escalation level'), default=0)
    customer_contacted = models.BooleanField(_('Customer contacted'), default=False)
    pharmacy_contacted = models.BooleanField(_('Pharmacy contacted'), default=False)
    agent_notes = models.JSONField(_('Agent notes'), default=list)
    resolution = models.JSONField(_('Resolution'), blank=True, null=True)

    suspended_at = models.DateTimeField(_('Suspended At'))
    updated_at = models.DateTimeField(_('Updated At'))

    class Meta:
        db_table = 'suspended_orders'
        ordering = ['-suspended_at']
        verbose_name = _('Suspended order')
        verbose_name_plural = _('Suspended orders')
        indexes = [
            models.Index(fields=['status', '-suspended_at'], name='idx_so_status_suspended'),
            models.Index(fields=['priority', '-suspended_at'], name='idx_so_priority_suspended'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(total_amount__gte=0), name='suspended_order_total_non_negative'),
        ]

    def __str__(self):
        return f"Suspended order {self.order_number} ({self.status})"
