"""
Settlement domain.

Cash-on-delivery marketplace: pharmacies and vendors receive the money
from customers and owe the platform a commission; doctors are owed a
referral commission by the platform. The ledger tracks obligations, it
never moves money.
"""
import calendar
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.core.exceptions import InvalidStateError, ValidationError
from apps.core.money import ZERO, to_money


class TransactionType(models.TextChoices):
    ORDER = 'order', _('Order')
    COMMISSION = 'commission', _('Commission')
    REFUND = 'refund', _('Refund')
    PAYOUT = 'payout', _('Payout')
    ADJUSTMENT = 'adjustment', _('Adjustment')


class TransactionSubType(models.TextChoices):
    PHARMACY_COMMISSION = 'pharmacy_commission', _('Pharmacy commission')
    VENDOR_COMMISSION = 'vendor_commission', _('Vendor commission')
    DOCTOR_COMMISSION = 'doctor_commission', _('Doctor commission')
    PLATFORM_REVENUE = 'platform_revenue', _('Platform revenue')
    CUSTOMER_REFUND = 'customer_refund', _('Customer refund')


class EntityType(models.TextChoices):
    PHARMACY = 'pharmacy', _('Pharmacy')
    VENDOR = 'vendor', _('Vendor')
    DOCTOR = 'doctor', _('Doctor')
    CUSTOMER = 'customer', _('Customer')
    PLATFORM = 'platform', _('Platform')

    @classmethod
    def commission_payers(cls):
        return {cls.PHARMACY, cls.VENDOR}


class TransactionStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    PROCESSING = 'processing', _('Processing')
    COMPLETED = 'completed', _('Completed')
    FAILED = 'failed', _('Failed')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def voided(cls):
        return {cls.FAILED, cls.CANCELLED}


class CollectionStatus(models.TextChoices):
    """
    Transitions:
    - pending -> scheduled, completed
    - scheduled -> completed
    - completed -> pending (a new order accrues commission)
    """
    PENDING = 'pending', _('Pending')
    SCHEDULED = 'scheduled', _('Scheduled')
    COMPLETED = 'completed', _('Completed')


class CollectionFrequency(models.TextChoices):
    WEEKLY = 'weekly', _('Weekly')
    BIWEEKLY = 'biweekly', _('Biweekly')
    MONTHLY = 'monthly', _('Monthly')


class PaymentMethod(models.TextChoices):
    CASH = 'cash', _('Cash')
    BANK_TRANSFER = 'bank_transfer', _('Bank transfer')
    MOBILE_WALLET = 'mobile_wallet', _('Mobile wallet')


class RefundStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    APPROVED = 'approved', _('Approved')
    REJECTED = 'rejected', _('Rejected')
    PROCESSED = 'processed', _('Processed')


class RefundMethod(models.TextChoices):
    WALLET = 'wallet', _('Wallet')
    ORIGINAL_PAYMENT = 'original_payment', _('Original payment')
    BANK_TRANSFER = 'bank_transfer', _('Bank transfer')


class RefundAction(models.TextChoices):
    APPROVE = 'approve', _('Approve')
    REJECT = 'reject', _('Reject')


class ScheduleStatus(models.TextChoices):
    ACTIVE = 'active', _('Active')
    PAUSED = 'paused', _('Paused')
    OVERDUE = 'overdue', _('Overdue')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def runnable(cls):
        return {cls.ACTIVE, cls.OVERDUE}


class ScheduleType(models.TextChoices):
    COLLECTION = 'collection', _('Collection')
    PAYOUT = 'payout', _('Payout')


def account_key(entity_type: str, entity_id: str) -> str:
    return f'{entity_type}:{entity_id}'


def advance_due_date(due: date, frequency: str) -> date:
    """
    Next due date for a frequency.

    Monthly keeps the day of month, clamped to the last day of a shorter
    month (Jan 31 -> Feb 28/29).
    """
    if frequency == CollectionFrequency.WEEKLY:
        return due + timedelta(days=7)
    if frequency == CollectionFrequency.BIWEEKLY:
        return due + timedelta(days=14)
    if frequency == CollectionFrequency.MONTHLY:
        year, month = (due.year + 1, 1) if due.month == 12 else (due.year, due.month + 1)
        day = min(due.day, calendar.monthrange(year, month)[1])
        return date(year, month, day)
    raise ValidationError(f"Unknown frequency '{frequency}'")


def positive_amount(value, label='Amount') -> Decimal:
    amount = to_money(value)
    if amount <= 0:
        raise ValidationError(f'{label} must be greater than zero', details={'amount': str(amount)})
    return amount


# ----------------------------------------------------------------------
# Ledger entries
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class MoneyTransaction:
    """One ledger entry. Immutable once completed."""
    transaction_id: str
    type: str
    amount: Decimal
    currency: str
    reference: str
    entity_id: str
    entity_type: str
    status: str
    created_at: datetime
    sub_type: Optional[str] = None
    entity_name: str = ''
    description: str = ''
    processed_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    def with_status(self, status: str, processed_at: Optional[datetime] = None) -> 'MoneyTransaction':
        if self.is_completed:
            raise InvalidStateError(
                f'Transaction {self.transaction_id} is completed and cannot change',
                details={'transaction_id': self.transaction_id},
            )
        return replace(self, status=status, processed_at=processed_at or self.processed_at)


@dataclass
class CommissionAccount:
    """
    What one pharmacy or vendor owes the platform.

    Business Rules:
    - commission_owed accumulates total_sales x rate per order
    - outstanding_balance = commission_owed - total_commission_collected >= 0
    - a collection moves pending_amount into total_commission_collected
    """
    entity_id: str
    entity_type: str
    commission_rate: Decimal
    collection_frequency: str
    created_at: datetime
    updated_at: datetime
    name: str = ''
    payment_method: str = PaymentMethod.CASH
    total_sales: Decimal = ZERO
    commission_owed: Decimal = ZERO
    pending_amount: Decimal = ZERO
    total_commission_collected: Decimal = ZERO
    collection_status: str = CollectionStatus.PENDING
    total_orders: int = 0
    next_collection_date: Optional[date] = None
    last_collection: Optional[datetime] = None
    last_order_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return account_key(self.entity_type, self.entity_id)

    @property
    def rate_percent(self) -> Decimal:
        return (self.commission_rate * 100).quantize(Decimal('0.01'))

    @property
    def entity_revenue(self) -> Decimal:
        return to_money(self.total_sales - self.commission_owed)

    @property
    def outstanding_balance(self) -> Decimal:
        return to_money(self.commission_owed - self.total_commission_collected)

    @property
    def average_order_value(self) -> Decimal:
        if not self.total_orders:
            return ZERO
        return to_money(self.total_sales / self.total_orders)


@dataclass
class DoctorAccount:
    """Referral commission the platform owes a doctor."""
    doctor_id: str
    commission_rate: Decimal
    payout_frequency: str
    created_at: datetime
    updated_at: datetime
    name: str = ''
    total_referrals: int = 0
    commission_earned: Decimal = ZERO
    pending_amount: Decimal = ZERO
    total_paid: Decimal = ZERO
    payout_status: str = CollectionStatus.PENDING
    last_payout: Optional[datetime] = None


@dataclass
class RefundRequest:
    refund_id: str
    order_id: str
    customer_id: str
    amount: Decimal
    reason: str
    refund_method: str
    requested_at: datetime
    status: str = RefundStatus.PENDING
    customer_name: str = ''
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class PayoutSchedule:
    """
    Recurring collection (pharmacy/vendor) or payout (doctor).

    A run only happens when the pending amount reaches minimum_amount.
    """
    schedule_id: str
    entity_id: str
    entity_type: str
    schedule_type: str
    frequency: str
    next_due: date
    minimum_amount: Decimal
    created_at: datetime
    updated_at: datetime
    entity_name: str = ''
    status: str = ScheduleStatus.ACTIVE
    payment_method: str = PaymentMethod.BANK_TRANSFER
    last_run_at: Optional[datetime] = None

    def days_until_due(self, today: date) -> int:
        return max((self.next_due - today).days, 0)

    def days_past_due(self, today: date) -> int:
        return max((today - self.next_due).days, 0)


# ----------------------------------------------------------------------
# Queries and reports
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class MetricsWindow:
    """Half-open reporting window [start, end). Either bound may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def last_days(cls, days: int, now: datetime) -> 'MetricsWindow':
        return cls(start=now - timedelta(days=days), end=None)

    def contains(self, timestamp: Optional[datetime]) -> bool:
        if timestamp is None:
            return False
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp >= self.end:
            return False
        return True


@dataclass(frozen=True)
class TransactionFilter:
    types: Optional[frozenset] = None
    statuses: Optional[frozenset] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    window: Optional[MetricsWindow] = None

    def matches(self, txn: MoneyTransaction) -> bool:
        if self.types and txn.type not in self.types:
            return False
        if self.statuses and txn.status not in self.statuses:
            return False
        if self.entity_type and txn.entity_type != self.entity_type:
            return False
        if self.entity_id and txn.entity_id != self.entity_id:
            return False
        if self.window and not self.window.contains(txn.created_at):
            return False
        return True


@dataclass
class TransactionMetrics:
    """
    total_revenue is net platform revenue:
    pharmacy + vendor commission collected - doctor commission paid.
    gross_transaction_volume is reported separately and never mixed in.
    """
    total_revenue: Decimal
    gross_transaction_volume: Decimal
    platform_commission: Decimal
    pharmacy_commissions: Decimal
    vendor_commissions: Decimal
    doctor_commissions: Decimal
    pending_refunds: Decimal
    processed_refunds: Decimal
    pending_payouts: Decimal
    completed_payouts: int
    currency: str
    last_updated: datetime


@dataclass
class TransactionSummary:
    total_transactions: int
    total_amount: Decimal
    pending_amount: Decimal
    completed_amount: Decimal
    refunded_amount: Decimal


@dataclass
class RefundAnalytics:
    total: int
    pending: int
    approved: int
    rejected: int
    total_amount: Decimal
    average_amount: Decimal
    approval_rate: float


@dataclass
class RevenueBreakdown:
    gross_transaction_volume: Decimal
    pharmacy_commission_collected: Decimal
    vendor_commission_collected: Decimal
    total_commission_collected: Decimal
    doctor_commissions_paid: Decimal
    net_revenue: Decimal
    revenue_margin: float
