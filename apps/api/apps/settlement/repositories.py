"""
Settlement repositories.

The ledger owns five record sets. ``SettlementStore`` bundles one
repository per set so the engine receives a single collaborator.
"""
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional

from apps.core.exceptions import NotFoundError
from apps.core.repositories import AggregateRepository, DjangoRepository, InMemoryRepository

from .domain import (
    CommissionAccount,
    DoctorAccount,
    MoneyTransaction,
    PayoutSchedule,
    RefundRequest,
    TransactionStatus,
)
from .models import (
    CommissionAccountRecord,
    DoctorAccountRecord,
    MoneyTransactionRecord,
    PayoutScheduleRecord,
    RefundRequestRecord,
)


class TransactionLog(AggregateRepository[MoneyTransaction]):
    """Append-only ledger; only non-completed entries may change status."""
    entity_name = 'MoneyTransaction'
    id_attribute = 'transaction_id'

    def complete_pending(self, entity_type: str, entity_id: str, sub_type: str, processed_at: datetime) -> int:
        """Mark the entity's pending accrual entries of ``sub_type`` completed."""
        pending = self.filter(
            lambda txn: txn.entity_type == entity_type
            and txn.entity_id == entity_id
            and txn.sub_type == sub_type
            and txn.status == TransactionStatus.PENDING
        )
        for txn in pending:
            self.save(txn.with_status(TransactionStatus.COMPLETED, processed_at))
        return len(pending)


class CommissionAccountRepository(AggregateRepository[CommissionAccount]):
    entity_name = 'CommissionAccount'
    id_attribute = 'key'


class DoctorAccountRepository(AggregateRepository[DoctorAccount]):
    entity_name = 'DoctorAccount'
    id_attribute = 'doctor_id'


class RefundRepository(AggregateRepository[RefundRequest]):
    entity_name = 'RefundRequest'
    id_attribute = 'refund_id'


class PayoutScheduleRepository(AggregateRepository[PayoutSchedule]):
    entity_name = 'PayoutSchedule'
    id_attribute = 'schedule_id'


# ----------------------------------------------------------------------
# In-memory
# ----------------------------------------------------------------------

class InMemoryTransactionLog(InMemoryRepository[MoneyTransaction], TransactionLog):
    id_attribute = 'transaction_id'


class InMemoryCommissionAccountRepository(InMemoryRepository[CommissionAccount], CommissionAccountRepository):
    id_attribute = 'key'


class InMemoryDoctorAccountRepository(InMemoryRepository[DoctorAccount], DoctorAccountRepository):
    id_attribute = 'doctor_id'


class InMemoryRefundRepository(InMemoryRepository[RefundRequest], RefundRepository):
    id_attribute = 'refund_id'


class InMemoryPayoutScheduleRepository(InMemoryRepository[PayoutSchedule], PayoutScheduleRepository):
    id_attribute = 'schedule_id'


# ----------------------------------------------------------------------
# Django ORM
# ----------------------------------------------------------------------

class FieldMappedRepository(DjangoRepository):
    """
    Maps a flat dataclass onto a model with identically named columns.

    ``id_attribute`` names the aggregate attribute used as primary key;
    it may be a property (CommissionAccount.key) rather than a field.
    """
    domain_class = None

    def field_names(self):
        return [f.name for f in fields(self.domain_class) if f.name != self.id_attribute]

    def to_domain(self, record):
        values = {name: getattr(record, name) for name in self.field_names()}
        if self.id_attribute in {f.name for f in fields(self.domain_class)}:
            values[self.id_attribute] = record.pk
        return self.domain_class(**values)

    def write(self, aggregate, created: bool) -> None:
        pk = getattr(aggregate, self.id_attribute)
        values = {name: getattr(aggregate, name) for name in self.field_names()}
        if created:
            self.model.objects.create(pk=pk, **values)
        elif not self.model.objects.filter(pk=pk).update(**values):
            raise NotFoundError(self.entity_name, pk)


class DjangoTransactionLog(FieldMappedRepository, TransactionLog):
    model = MoneyTransactionRecord
    domain_class = MoneyTransaction

    def complete_pending(self, entity_type, entity_id, sub_type, processed_at) -> int:
        return MoneyTransactionRecord.objects.filter(
            entity_type=entity_type,
            entity_id=entity_id,
            sub_type=sub_type,
            status=TransactionStatus.PENDING,
        ).update(status=TransactionStatus.COMPLETED, processed_at=processed_at)


class DjangoCommissionAccountRepository(FieldMappedRepository, CommissionAccountRepository):
    model = CommissionAccountRecord
    domain_class = CommissionAccount


class DjangoDoctorAccountRepository(FieldMappedRepository, DoctorAccountRepository):
    model = DoctorAccountRecord
    domain_class = DoctorAccount


class DjangoRefundRepository(FieldMappedRepository, RefundRepository):
    model = RefundRequestRecord
    domain_class = RefundRequest


class DjangoPayoutScheduleRepository(FieldMappedRepository, PayoutScheduleRepository):
    model = PayoutScheduleRecord
    domain_class = PayoutSchedule


@dataclass
class SettlementStore:
    transactions: TransactionLog
    accounts: CommissionAccountRepository
    doctors: DoctorAccountRepository
    refunds: RefundRepository
    schedules: PayoutScheduleRepository

    @classmethod
    def in_memory(cls, accounts: Optional[list] = None) -> 'SettlementStore':
        return cls(
            transactions=InMemoryTransactionLog(),
            accounts=InMemoryCommissionAccountRepository(accounts),
            doctors=InMemoryDoctorAccountRepository(),
            refunds=InMemoryRefundRepository(),
            schedules=InMemoryPayoutScheduleRepository(),
        )

    @classmethod
    def django(cls) -> 'SettlementStore':
        return cls(
            transactions=DjangoTransactionLog(),
            accounts=DjangoCommissionAccountRepository(),
            doctors=DjangoDoctorAccountRepository(),
            refunds=DjangoRefundRepository(),
            schedules=DjangoPayoutScheduleRepository(),
        )
