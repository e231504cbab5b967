"""
Settlement ledger service layer.

SettlementLedger turns order facts into commission obligations, records
collections, doctor payouts and refunds, runs payout schedules and
reports platform revenue.

Net platform revenue is commission collected from pharmacies and vendors
minus commission paid to doctors. Gross transaction volume is a separate
number and is never added into revenue.
"""
import uuid
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional

from apps.core.actors import SYSTEM_ACTOR, Actor
from apps.core.clock import not_before, utc_now
from apps.core.conf import cura_setting
from apps.core.exceptions import InvalidStateError, ValidationError
from apps.core.money import ZERO, to_money, to_rate
from apps.core.observability import get_sanitized_logger, log_domain_event, metrics, trace_span
from apps.core.observability.events import (
    log_commission_collected,
    log_consistency_checkpoint,
    log_refund_resolved,
)

from .domain import (
    CollectionFrequency,
    CollectionStatus,
    CommissionAccount,
    DoctorAccount,
    EntityType,
    MetricsWindow,
    MoneyTransaction,
    PaymentMethod,
    PayoutSchedule,
    RefundAction,
    RefundAnalytics,
    RefundMethod,
    RefundRequest,
    RefundStatus,
    RevenueBreakdown,
    ScheduleStatus,
    ScheduleType,
    TransactionFilter,
    TransactionMetrics,
    TransactionStatus,
    TransactionSubType,
    TransactionSummary,
    TransactionType,
    account_key,
    advance_due_date,
    positive_amount,
)
from .repositories import SettlementStore

logger = get_sanitized_logger(__name__)

ACCRUAL_SUB_TYPES = {
    EntityType.PHARMACY: TransactionSubType.PHARMACY_COMMISSION,
    EntityType.VENDOR: TransactionSubType.VENDOR_COMMISSION,
}

DEFAULT_RATE_SETTINGS = {
    EntityType.PHARMACY: 'DEFAULT_PHARMACY_COMMISSION_RATE',
    EntityType.VENDOR: 'DEFAULT_VENDOR_COMMISSION_RATE',
}


def _new_id(prefix: str) -> str:
    return f'{prefix}-{uuid.uuid4().hex[:12].upper()}'


def _sum(amounts) -> Decimal:
    return to_money(sum(amounts, ZERO))


def _require_payer(entity_type: str) -> None:
    if entity_type not in EntityType.commission_payers():
        raise ValidationError(
            f"Commission accounts exist for pharmacies and vendors, not '{entity_type}'",
            details={'entity_type': entity_type},
        )


def _require_choice(value, choices, label):
    if value not in choices.values:
        raise ValidationError(f"Unknown {label} '{value}'")
    return choices(value)


class SettlementLedger:
    """
    Exclusive owner of commission, payout and refund records.

    Every mutating call locks the one account, refund or schedule it
    touches; transactions are appended inside that lock.
    """

    def __init__(
        self,
        store: SettlementStore,
        clock: Callable = utc_now,
        id_factory: Callable[[str], str] = _new_id,
        currency: Optional[str] = None,
    ):
        self.store = store
        self.clock = clock
        self.new_id = id_factory
        self.currency = currency or cura_setting('CURRENCY')

    def _today(self) -> date:
        return self.clock().date()

    def _timestamp(self, floor):
        return not_before(self.clock(), floor)

    def _append(self, **values) -> MoneyTransaction:
        txn = MoneyTransaction(transaction_id=self.new_id('TXN'), currency=self.currency, **values)
        self.store.transactions.add(txn)
        metrics.settlement_transactions_total.labels(type=str(txn.type), entity_type=str(txn.entity_type)).inc()
        return txn

    # ------------------------------------------------------------------
    # Commission accounts
    # ------------------------------------------------------------------

    def _new_account(self, entity_id, entity_type, name='', commission_rate=None,
                     collection_frequency=None, payment_method=None) -> CommissionAccount:
        now = self.clock()
        frequency = _require_choice(
            collection_frequency or cura_setting('DEFAULT_COLLECTION_FREQUENCY'),
            CollectionFrequency,
            'collection frequency',
        )
        rate = commission_rate if commission_rate is not None else cura_setting(DEFAULT_RATE_SETTINGS[entity_type])
        return CommissionAccount(
            entity_id=entity_id,
            entity_type=EntityType(entity_type),
            name=name or '',
            commission_rate=to_rate(rate),
            collection_frequency=frequency,
            payment_method=_require_choice(payment_method or PaymentMethod.CASH, PaymentMethod, 'payment method'),
            next_collection_date=advance_due_date(now.date(), frequency),
            created_at=now,
            updated_at=now,
        )

    def configure_account(
        self,
        entity_id: str,
        entity_type: str,
        actor: Actor,
        name: Optional[str] = None,
        commission_rate=None,
        collection_frequency: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> CommissionAccount:
        """
        Create or update a pharmacy/vendor account.

        A rate change applies to orders recorded afterwards; amounts
        already accrued are not recomputed.
        """
        _require_payer(entity_type)
        key = account_key(entity_type, entity_id)
        with self.store.accounts.locked(key):
            if not self.store.accounts.exists(key):
                account = self._new_account(
                    entity_id, entity_type, name, commission_rate, collection_frequency, payment_method
                )
                self.store.accounts.add(account)
                created = True
            else:
                account = self.store.accounts.get(key)
                if name is not None:
                    account.name = name
                if commission_rate is not None:
                    account.commission_rate = to_rate(commission_rate)
                if collection_frequency is not None:
                    account.collection_frequency = _require_choice(
                        collection_frequency, CollectionFrequency, 'collection frequency'
                    )
                if payment_method is not None:
                    account.payment_method = _require_choice(payment_method, PaymentMethod, 'payment method')
                account.updated_at = self._timestamp(account.updated_at)
                self.store.accounts.save(account)
                created = False

        log_domain_event(
            'commission_account_configured',
            entity_type='CommissionAccount',
            entity_id=key,
            actor=actor,
            account_created=created,
            commission_rate=str(account.commission_rate),
        )
        return account

    def get_account(self, entity_id: str, entity_type: str) -> CommissionAccount:
        return self.store.accounts.get(account_key(entity_type, entity_id))

    def list_accounts(self, entity_type: Optional[str] = None) -> List[CommissionAccount]:
        accounts = self.store.accounts.filter(lambda a: entity_type is None or a.entity_type == entity_type)
        return sorted(accounts, key=lambda a: a.pending_amount, reverse=True)

    # ------------------------------------------------------------------
    # Order settlement and collection
    # ------------------------------------------------------------------

    @metrics.track_duration('settlement', 'record_order_settlement')
    def record_order_settlement(
        self,
        entity_id: str,
        entity_type: str,
        order_amount,
        commission_rate=None,
        reference: Optional[str] = None,
        entity_name: str = '',
        actor: Optional[Actor] = None,
    ) -> List[MoneyTransaction]:
        """
        Post one completed order into the ledger.

        Produces exactly two pending transactions: the ``order`` for the
        full amount and the ``commission`` for amount x rate, both
        attributed to the fulfilling entity. ``commission_rate`` overrides
        the account's configured rate for this order only.

        Raises:
            ValidationError: Non-positive amount, bad rate, entity is not a pharmacy/vendor
        """
        _require_payer(entity_type)
        amount = positive_amount(order_amount, 'Order amount')
        override_rate = to_rate(commission_rate) if commission_rate is not None else None
        actor = actor or SYSTEM_ACTOR
        key = account_key(entity_type, entity_id)
        reference = reference or self.new_id('ORD')

        with trace_span('settlement.record_order_settlement', attributes={'account': key}):
            with self.store.accounts.locked(key):
                created = not self.store.accounts.exists(key)
                if created:
                    account = self._new_account(entity_id, entity_type, entity_name, commission_rate)
                else:
                    account = self.store.accounts.get(key)
                rate = override_rate if override_rate is not None else account.commission_rate
                commission = to_money(amount * rate)
                now = self._timestamp(account.updated_at)
                name = entity_name or account.name

                order_txn = self._append(
                    type=TransactionType.ORDER,
                    amount=amount,
                    reference=reference,
                    entity_id=entity_id,
                    entity_type=account.entity_type,
                    entity_name=name,
                    status=TransactionStatus.PENDING,
                    created_at=now,
                    description=f'Order {reference}',
                )
                commission_txn = self._append(
                    type=TransactionType.COMMISSION,
                    sub_type=ACCRUAL_SUB_TYPES[account.entity_type],
                    amount=commission,
                    reference=reference,
                    entity_id=entity_id,
                    entity_type=account.entity_type,
                    entity_name=name,
                    status=TransactionStatus.PENDING,
                    created_at=now,
                    description=f'Commission owed on order {reference}',
                    metadata={'commission_rate': str(rate)},
                )

                account.total_sales = to_money(account.total_sales + amount)
                account.commission_owed = to_money(account.commission_owed + commission)
                account.pending_amount = to_money(account.pending_amount + commission)
                account.total_orders += 1
                account.last_order_at = now
                if account.collection_status == CollectionStatus.COMPLETED:
                    account.collection_status = CollectionStatus.PENDING
                account.updated_at = now
                if created:
                    self.store.accounts.add(account)
                else:
                    self.store.accounts.save(account)

        log_domain_event(
            'order_settlement_recorded',
            entity_type='CommissionAccount',
            entity_id=key,
            entity_ids={'reference': reference},
            actor=actor,
            order_amount=str(amount),
            commission=str(commission),
            commission_rate=str(rate),
        )
        log_consistency_checkpoint(
            'commission_account_balance',
            entity_ids={'account': key},
            checks_passed={
                'outstanding_non_negative': account.outstanding_balance >= 0,
                'pending_within_outstanding': account.pending_amount <= account.outstanding_balance,
            },
        )
        return [order_txn, commission_txn]

    @metrics.track_duration('settlement', 'collect_commission')
    def collect_commission(
        self,
        entity_id: str,
        entity_type: str,
        actor: Optional[Actor] = None,
        payment_method: Optional[str] = None,
    ) -> bool:
        """
        Record that the entity paid its pending commission.

        Returns False, without raising, when nothing is pending or the
        entity has no account. Calling it twice in a row therefore
        collects once.
        """
        actor = actor or SYSTEM_ACTOR
        key = account_key(entity_type, entity_id)

        with trace_span('settlement.collect_commission', attributes={'account': key}):
            if not self.store.accounts.exists(key):
                return self._nothing_to_collect(key, entity_type, actor, 'no_account')

            with self.store.accounts.locked(key):
                account = self.store.accounts.get(key)
                if account.pending_amount <= 0:
                    return self._nothing_to_collect(key, entity_type, actor, 'nothing_pending')

                collected = account.pending_amount
                now = self._timestamp(account.updated_at)
                self._append(
                    type=TransactionType.COMMISSION,
                    sub_type=TransactionSubType.PLATFORM_REVENUE,
                    amount=collected,
                    reference=self.new_id('COL'),
                    entity_id=entity_id,
                    entity_type=account.entity_type,
                    entity_name=account.name,
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                    processed_at=now,
                    description=f'Commission collected from {account.name or key}',
                    metadata={
                        'commission_rate': str(account.commission_rate),
                        'payment_method': str(payment_method or account.payment_method),
                    },
                )
                self.store.transactions.complete_pending(
                    account.entity_type, entity_id, ACCRUAL_SUB_TYPES[account.entity_type], now
                )

                account.pending_amount = ZERO
                account.total_commission_collected = to_money(account.total_commission_collected + collected)
                account.collection_status = CollectionStatus.COMPLETED
                account.last_collection = now
                account.next_collection_date = advance_due_date(now.date(), account.collection_frequency)
                account.updated_at = now
                self.store.accounts.save(account)

        metrics.commission_collections_total.labels(entity_type=str(entity_type), result='collected').inc()
        log_commission_collected(key, collected, actor)
        log_consistency_checkpoint(
            'commission_collected',
            entity_ids={'account': key},
            checks_passed={
                'pending_cleared': account.pending_amount == ZERO,
                'outstanding_non_negative': account.outstanding_balance >= 0,
            },
        )
        return True

    def _nothing_to_collect(self, key, entity_type, actor, reason) -> bool:
        metrics.commission_collections_total.labels(entity_type=str(entity_type), result='nothing_pending').inc()
        log_domain_event(
            'commission_collected',
            entity_type='CommissionAccount',
            entity_id=key,
            result='noop',
            actor=actor,
            reason=reason,
        )
        return False

    def schedule_collection(
        self,
        entity_id: str,
        entity_type: str,
        scheduled_for: date,
        actor: Actor,
    ) -> CommissionAccount:
        """
        Move a pending collection to scheduled.

        Raises:
            NotFoundError: No such account
            InvalidStateError: Not pending, or nothing to collect
            ValidationError: Date in the past
        """
        key = account_key(entity_type, entity_id)
        with self.store.accounts.locked(key):
            account = self.store.accounts.get(key)
            if account.collection_status != CollectionStatus.PENDING:
                raise InvalidStateError(
                    f"Cannot schedule a collection that is '{account.collection_status}'",
                    details={'collection_status': str(account.collection_status)},
                )
            if account.pending_amount <= 0:
                raise InvalidStateError('Nothing pending to collect', details={'account': key})
            if scheduled_for < self._today():
                raise ValidationError('Collection date cannot be in the past', details={'date': str(scheduled_for)})
            account.collection_status = CollectionStatus.SCHEDULED
            account.next_collection_date = scheduled_for
            account.updated_at = self._timestamp(account.updated_at)
            self.store.accounts.save(account)

        log_domain_event(
            'commission_collection_scheduled',
            entity_type='CommissionAccount',
            entity_id=key,
            actor=actor,
            scheduled_for=scheduled_for.isoformat(),
            amount=str(account.pending_amount),
        )
        return account

    # ------------------------------------------------------------------
    # Doctor commissions
    # ------------------------------------------------------------------

    def accrue_doctor_commission(
        self,
        doctor_id: str,
        order_amount,
        reference: str,
        actor: Optional[Actor] = None,
        doctor_name: str = '',
        commission_rate=None,
    ) -> MoneyTransaction:
        """Credit a doctor with referral commission on an order."""
        amount = positive_amount(order_amount, 'Order amount')
        override_rate = to_rate(commission_rate) if commission_rate is not None else None
        actor = actor or SYSTEM_ACTOR

        with self.store.doctors.locked(doctor_id):
            created = not self.store.doctors.exists(doctor_id)
            if created:
                now = self.clock()
                doctor = DoctorAccount(
                    doctor_id=doctor_id,
                    name=doctor_name,
                    commission_rate=override_rate if override_rate is not None else to_rate(
                        cura_setting('DEFAULT_DOCTOR_COMMISSION_RATE')
                    ),
                    payout_frequency=CollectionFrequency(cura_setting('DEFAULT_COLLECTION_FREQUENCY')),
                    created_at=now,
                    updated_at=now,
                )
            else:
                doctor = self.store.doctors.get(doctor_id)
            rate = override_rate if override_rate is not None else doctor.commission_rate
            commission = to_money(amount * rate)
            now = self._timestamp(doctor.updated_at)

            txn = self._append(
                type=TransactionType.COMMISSION,
                sub_type=TransactionSubType.DOCTOR_COMMISSION,
                amount=commission,
                reference=reference,
                entity_id=doctor_id,
                entity_type=EntityType.DOCTOR,
                entity_name=doctor_name or doctor.name,
                status=TransactionStatus.PENDING,
                created_at=now,
                description=f'Referral commission on order {reference}',
                metadata={'commission_rate': str(rate)},
            )
            doctor.total_referrals += 1
            doctor.commission_earned = to_money(doctor.commission_earned + commission)
            doctor.pending_amount = to_money(doctor.pending_amount + commission)
            if doctor.payout_status == CollectionStatus.COMPLETED:
                doctor.payout_status = CollectionStatus.PENDING
            doctor.updated_at = now
            if created:
                self.store.doctors.add(doctor)
            else:
                self.store.doctors.save(doctor)

        log_domain_event(
            'doctor_commission_accrued',
            entity_type='DoctorAccount',
            entity_id=doctor_id,
            entity_ids={'reference': reference},
            actor=actor,
            commission=str(commission),
        )
        return txn

    @metrics.track_duration('settlement', 'process_doctor_payout')
    def process_doctor_payout(self, doctor_id: str, actor: Optional[Actor] = None) -> bool:
        """Pay out a doctor's pending commission. False when nothing is owed."""
        actor = actor or SYSTEM_ACTOR
        if not self.store.doctors.exists(doctor_id):
            return self._nothing_to_pay(doctor_id, actor)

        with self.store.doctors.locked(doctor_id):
            doctor = self.store.doctors.get(doctor_id)
            if doctor.pending_amount <= 0:
                return self._nothing_to_pay(doctor_id, actor)

            paid = doctor.pending_amount
            now = self._timestamp(doctor.updated_at)
            self._append(
                type=TransactionType.PAYOUT,
                amount=paid,
                reference=self.new_id('PAY'),
                entity_id=doctor_id,
                entity_type=EntityType.DOCTOR,
                entity_name=doctor.name,
                status=TransactionStatus.COMPLETED,
                created_at=now,
                processed_at=now,
                description=f'Commission payout to {doctor.name or doctor_id}',
            )
            self.store.transactions.complete_pending(
                EntityType.DOCTOR, doctor_id, TransactionSubType.DOCTOR_COMMISSION, now
            )
            doctor.pending_amount = ZERO
            doctor.total_paid = to_money(doctor.total_paid + paid)
            doctor.payout_status = CollectionStatus.COMPLETED
            doctor.last_payout = now
            doctor.updated_at = now
            self.store.doctors.save(doctor)

        log_domain_event(
            'doctor_payout_processed',
            entity_type='DoctorAccount',
            entity_id=doctor_id,
            actor=actor,
            amount=str(paid),
        )
        return True

    def _nothing_to_pay(self, doctor_id, actor) -> bool:
        log_domain_event(
            'doctor_payout_processed',
            entity_type='DoctorAccount',
            entity_id=doctor_id,
            result='noop',
            actor=actor,
        )
        return False

    def get_doctor_account(self, doctor_id: str) -> DoctorAccount:
        return self.store.doctors.get(doctor_id)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def request_refund(
        self,
        order_id: str,
        customer_id: str,
        amount,
        reason: str,
        actor: Optional[Actor] = None,
        refund_method: str = RefundMethod.WALLET,
        customer_name: str = '',
    ) -> RefundRequest:
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError('A refund reason is required')
        refund = RefundRequest(
            refund_id=self.new_id('REF'),
            order_id=order_id,
            customer_id=customer_id,
            customer_name=customer_name,
            amount=positive_amount(amount, 'Refund amount'),
            reason=reason,
            refund_method=_require_choice(refund_method, RefundMethod, 'refund method'),
            requested_at=self.clock(),
        )
        self.store.refunds.add(refund)
        log_domain_event(
            'refund_requested',
            entity_type='RefundRequest',
            entity_id=refund.refund_id,
            entity_ids={'order_id': order_id},
            actor=actor,
            amount=str(refund.amount),
        )
        return refund

    @metrics.track_duration('settlement', 'resolve_refund')
    def resolve_refund(
        self,
        refund_id: str,
        action: str,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Approve or reject a pending refund.

        Approval appends a completed ``refund`` transaction and marks the
        request processed; rejection only changes its status.

        Raises:
            ValidationError: Unknown action
            NotFoundError: Unknown refund
            InvalidStateError: Refund already resolved
        """
        action = _require_choice(action, RefundAction, 'refund action')
        actor = actor or SYSTEM_ACTOR

        with self.store.refunds.locked(refund_id):
            refund = self.store.refunds.get(refund_id)
            if refund.status != RefundStatus.PENDING:
                raise InvalidStateError(
                    f"Refund {refund_id} is already '{refund.status}'",
                    details={'status': str(refund.status)},
                )
            now = self._timestamp(refund.requested_at)
            if action == RefundAction.APPROVE:
                txn = self._append(
                    type=TransactionType.REFUND,
                    sub_type=TransactionSubType.CUSTOMER_REFUND,
                    amount=refund.amount,
                    reference=refund.order_id,
                    entity_id=refund.customer_id,
                    entity_type=EntityType.CUSTOMER,
                    entity_name=refund.customer_name,
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                    processed_at=now,
                    description=f'Approved refund for order {refund.order_id}',
                    metadata={'refund_id': refund_id, 'refund_method': str(refund.refund_method)},
                )
                refund.status = RefundStatus.PROCESSED
                refund.transaction_id = txn.transaction_id
            else:
                refund.status = RefundStatus.REJECTED
            refund.processed_at = now
            refund.processed_by = actor.actor_id
            if notes:
                refund.notes = notes
            self.store.refunds.save(refund)

        metrics.refund_resolutions_total.labels(action=str(action)).inc()
        log_refund_resolved(refund_id, action, actor, refund.amount)
        return True

    def get_refund(self, refund_id: str) -> RefundRequest:
        return self.store.refunds.get(refund_id)

    def list_refunds(self, status: Optional[str] = None) -> List[RefundRequest]:
        refunds = self.store.refunds.filter(lambda r: status is None or r.status == status)
        return sorted(refunds, key=lambda r: r.requested_at, reverse=True)

    # ------------------------------------------------------------------
    # Payout schedules
    # ------------------------------------------------------------------

    def create_payout_schedule(
        self,
        entity_id: str,
        entity_type: str,
        frequency: str,
        first_due: date,
        actor: Actor,
        minimum_amount=None,
        payment_method: str = PaymentMethod.BANK_TRANSFER,
        entity_name: str = '',
    ) -> PayoutSchedule:
        """
        Pharmacies and vendors get a collection schedule, doctors a payout
        schedule.
        """
        if entity_type in EntityType.commission_payers():
            schedule_type = ScheduleType.COLLECTION
        elif entity_type == EntityType.DOCTOR:
            schedule_type = ScheduleType.PAYOUT
        else:
            raise ValidationError(f"No schedules for entity type '{entity_type}'")
        minimum = to_money(
            minimum_amount if minimum_amount is not None else cura_setting('DEFAULT_PAYOUT_MINIMUM')
        )
        if minimum < 0:
            raise ValidationError('Minimum amount cannot be negative')

        now = self.clock()
        schedule = PayoutSchedule(
            schedule_id=self.new_id('SCH'),
            entity_id=entity_id,
            entity_type=EntityType(entity_type),
            entity_name=entity_name,
            schedule_type=schedule_type,
            frequency=_require_choice(frequency, CollectionFrequency, 'frequency'),
            next_due=first_due,
            minimum_amount=minimum,
            payment_method=_require_choice(payment_method, PaymentMethod, 'payment method'),
            created_at=now,
            updated_at=now,
        )
        self.store.schedules.add(schedule)
        log_domain_event(
            'payout_schedule_created',
            entity_type='PayoutSchedule',
            entity_id=schedule.schedule_id,
            entity_ids={'account': account_key(entity_type, entity_id)},
            actor=actor,
            schedule_type=str(schedule_type),
            frequency=str(schedule.frequency),
        )
        return schedule

    def pause_schedule(self, schedule_id: str, actor: Actor) -> PayoutSchedule:
        return self._change_schedule(schedule_id, ScheduleStatus.runnable(), ScheduleStatus.PAUSED, actor)

    def resume_schedule(self, schedule_id: str, actor: Actor) -> PayoutSchedule:
        return self._change_schedule(schedule_id, {ScheduleStatus.PAUSED}, ScheduleStatus.ACTIVE, actor)

    def cancel_schedule(self, schedule_id: str, actor: Actor) -> PayoutSchedule:
        allowed = {ScheduleStatus.ACTIVE, ScheduleStatus.PAUSED, ScheduleStatus.OVERDUE}
        return self._change_schedule(schedule_id, allowed, ScheduleStatus.CANCELLED, actor)

    def _change_schedule(self, schedule_id, allowed_from, new_status, actor) -> PayoutSchedule:
        with self.store.schedules.locked(schedule_id):
            schedule = self.store.schedules.get(schedule_id)
            if schedule.status not in allowed_from:
                raise InvalidStateError(
                    f"Cannot move schedule from '{schedule.status}' to '{new_status}'",
                    details={'status': str(schedule.status)},
                )
            previous = schedule.status
            schedule.status = new_status
            schedule.updated_at = self._timestamp(schedule.updated_at)
            self.store.schedules.save(schedule)

        log_domain_event(
            'payout_schedule_status_changed',
            entity_type='PayoutSchedule',
            entity_id=schedule_id,
            actor=actor,
            from_status=str(previous),
            to_status=str(new_status),
        )
        return schedule

    def _pending_for(self, schedule: PayoutSchedule) -> Decimal:
        if schedule.schedule_type == ScheduleType.PAYOUT:
            repository, key = self.store.doctors, schedule.entity_id
        else:
            repository, key = self.store.accounts, account_key(schedule.entity_type, schedule.entity_id)
        if not repository.exists(key):
            return ZERO
        return repository.get(key).pending_amount

    def process_schedule(self, schedule_id: str, actor: Optional[Actor] = None) -> bool:
        """
        Run one collection or payout for a schedule.

        Below the schedule's minimum nothing happens and False is
        returned; otherwise the run is recorded and next_due advances by
        one period.

        Raises:
            InvalidStateError: Schedule paused or cancelled
        """
        actor = actor or SYSTEM_ACTOR
        with self.store.schedules.locked(schedule_id):
            schedule = self.store.schedules.get(schedule_id)
            if schedule.status not in ScheduleStatus.runnable():
                raise InvalidStateError(
                    f"Schedule is '{schedule.status}'",
                    details={'status': str(schedule.status)},
                )
            pending = self._pending_for(schedule)
            if pending <= 0 or pending < schedule.minimum_amount:
                metrics.payout_schedule_runs_total.labels(
                    schedule_type=str(schedule.schedule_type), result='below_minimum'
                ).inc()
                log_domain_event(
                    'payout_schedule_processed',
                    entity_type='PayoutSchedule',
                    entity_id=schedule_id,
                    result='noop',
                    actor=actor,
                    pending=str(pending),
                    minimum=str(schedule.minimum_amount),
                )
                return False

            if schedule.schedule_type == ScheduleType.PAYOUT:
                done = self.process_doctor_payout(schedule.entity_id, actor)
            else:
                done = self.collect_commission(
                    schedule.entity_id, schedule.entity_type, actor, schedule.payment_method
                )
            if not done:
                return False

            schedule.next_due = advance_due_date(schedule.next_due, schedule.frequency)
            schedule.status = ScheduleStatus.ACTIVE
            schedule.last_run_at = self._timestamp(schedule.updated_at)
            schedule.updated_at = schedule.last_run_at
            self.store.schedules.save(schedule)

        metrics.payout_schedule_runs_total.labels(
            schedule_type=str(schedule.schedule_type), result='processed'
        ).inc()
        log_domain_event(
            'payout_schedule_processed',
            entity_type='PayoutSchedule',
            entity_id=schedule_id,
            actor=actor,
            amount=str(pending),
            next_due=schedule.next_due.isoformat(),
        )
        return True

    def due_schedules(self, today: Optional[date] = None) -> List[PayoutSchedule]:
        today = today or self._today()
        due = self.store.schedules.filter(
            lambda s: s.status in ScheduleStatus.runnable() and s.next_due <= today
        )
        return sorted(due, key=lambda s: s.next_due)

    def flag_overdue_schedules(self, today: Optional[date] = None) -> int:
        """Mark active schedules whose due date has passed as overdue."""
        today = today or self._today()
        flagged = 0
        for candidate in self.store.schedules.filter(
            lambda s: s.status == ScheduleStatus.ACTIVE and s.next_due < today
        ):
            with self.store.schedules.locked(candidate.schedule_id):
                schedule = self.store.schedules.get(candidate.schedule_id)
                if schedule.status != ScheduleStatus.ACTIVE or schedule.next_due >= today:
                    continue
                schedule.status = ScheduleStatus.OVERDUE
                schedule.updated_at = self._timestamp(schedule.updated_at)
                self.store.schedules.save(schedule)
                flagged += 1
        if flagged:
            log_domain_event(
                'payout_schedules_overdue',
                entity_type='PayoutSchedule',
                result='warning',
                count=flagged,
            )
        return flagged

    def get_schedule(self, schedule_id: str) -> PayoutSchedule:
        return self.store.schedules.get(schedule_id)

    def list_schedules(self, status: Optional[str] = None) -> List[PayoutSchedule]:
        schedules = self.store.schedules.filter(lambda s: status is None or s.status == status)
        return sorted(schedules, key=lambda s: s.next_due)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def list_transactions(self, criteria: Optional[TransactionFilter] = None) -> List[MoneyTransaction]:
        """Matching transactions, newest first."""
        criteria = criteria or TransactionFilter()
        return sorted(
            self.store.transactions.filter(criteria.matches),
            key=lambda t: t.created_at,
            reverse=True,
        )

    def _windowed(self, window: Optional[MetricsWindow]) -> List[MoneyTransaction]:
        window = window or MetricsWindow()
        return self.store.transactions.filter(lambda t: window.contains(t.created_at))

    def compute_metrics(self, window: Optional[MetricsWindow] = None) -> TransactionMetrics:
        window = window or MetricsWindow()
        txns = self._windowed(window)

        def total(predicate):
            return _sum(t.amount for t in txns if predicate(t))

        def collected_from(entity_type):
            return total(lambda t: t.type == TransactionType.COMMISSION
                         and t.sub_type == TransactionSubType.PLATFORM_REVENUE
                         and t.entity_type == entity_type
                         and t.is_completed)

        pharmacy = collected_from(EntityType.PHARMACY)
        vendor = collected_from(EntityType.VENDOR)
        doctor = total(lambda t: t.type == TransactionType.PAYOUT
                       and t.entity_type == EntityType.DOCTOR
                       and t.is_completed)
        accrual_types = set(ACCRUAL_SUB_TYPES.values())

        return TransactionMetrics(
            total_revenue=to_money(pharmacy + vendor - doctor),
            gross_transaction_volume=total(lambda t: t.type == TransactionType.ORDER
                                           and t.status not in TransactionStatus.voided()),
            platform_commission=total(lambda t: t.type == TransactionType.COMMISSION
                                      and t.sub_type in accrual_types
                                      and t.status not in TransactionStatus.voided()),
            pharmacy_commissions=pharmacy,
            vendor_commissions=vendor,
            doctor_commissions=doctor,
            pending_refunds=_sum(
                r.amount for r in self.store.refunds.all()
                if r.status == RefundStatus.PENDING and window.contains(r.requested_at)
            ),
            processed_refunds=total(lambda t: t.type == TransactionType.REFUND and t.is_completed),
            pending_payouts=_sum(d.pending_amount for d in self.store.doctors.all()),
            completed_payouts=sum(
                1 for t in txns if t.type == TransactionType.PAYOUT and t.is_completed
            ),
            currency=self.currency,
            last_updated=self.clock(),
        )

    def transaction_summary(self, window: Optional[MetricsWindow] = None) -> TransactionSummary:
        txns = self._windowed(window)
        return TransactionSummary(
            total_transactions=len(txns),
            total_amount=_sum(t.amount for t in txns),
            pending_amount=_sum(
                t.amount for t in txns
                if t.status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING)
            ),
            completed_amount=_sum(t.amount for t in txns if t.is_completed),
            refunded_amount=_sum(
                t.amount for t in txns if t.type == TransactionType.REFUND and t.is_completed
            ),
        )

    def refund_analytics(self) -> RefundAnalytics:
        refunds = self.store.refunds.all()
        approved = sum(1 for r in refunds if r.status in (RefundStatus.APPROVED, RefundStatus.PROCESSED))
        total_amount = _sum(r.amount for r in refunds)
        return RefundAnalytics(
            total=len(refunds),
            pending=sum(1 for r in refunds if r.status == RefundStatus.PENDING),
            approved=approved,
            rejected=sum(1 for r in refunds if r.status == RefundStatus.REJECTED),
            total_amount=total_amount,
            average_amount=to_money(total_amount / len(refunds)) if refunds else ZERO,
            approval_rate=round(approved / len(refunds) * 100, 2) if refunds else 0.0,
        )

    def revenue_breakdown(self, window: Optional[MetricsWindow] = None) -> RevenueBreakdown:
        m = self.compute_metrics(window)
        gtv = m.gross_transaction_volume
        return RevenueBreakdown(
            gross_transaction_volume=gtv,
            pharmacy_commission_collected=m.pharmacy_commissions,
            vendor_commission_collected=m.vendor_commissions,
            total_commission_collected=to_money(m.pharmacy_commissions + m.vendor_commissions),
            doctor_commissions_paid=m.doctor_commissions,
            net_revenue=m.total_revenue,
            revenue_margin=round(float(m.total_revenue / gtv * 100), 2) if gtv > 0 else 0.0,
        )


def get_default_engine() -> SettlementLedger:
    return SettlementLedger(SettlementStore.django())
