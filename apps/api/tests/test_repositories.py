"""
Tests for the ORM repositories.

Each engine is run against its Django repository and the aggregate is
read back through a fresh repository instance.
"""
from decimal import Decimal

import pytest
from django.db import IntegrityError, models, transaction

from apps.catalog.models import Product
from apps.catalog.services import DjangoProductCatalog
from apps.core.exceptions import NotFoundError, QualityGateError
from apps.prescriptions.domain import PrescriptionStatus
from apps.prescriptions.models import PrescriptionRecord, PrescriptionStatusEntry
from apps.prescriptions.repositories import DjangoPrescriptionRepository
from apps.prescriptions.services import PrescriptionWorkflowEngine
from apps.reconciliation.domain import ItemModification, NewItem, OrderModification, SuspendedOrderStatus
from apps.reconciliation.models import SuspendedOrderRecord
from apps.reconciliation.repositories import DjangoSuspendedOrderRepository
from apps.reconciliation.services import OrderReconciliationEngine
from apps.settlement.domain import CollectionStatus, RefundStatus, TransactionStatus, TransactionSubType
from apps.settlement.models import CommissionAccountRecord, MoneyTransactionRecord
from apps.settlement.repositories import SettlementStore
from apps.settlement.services import SettlementLedger


@pytest.mark.django_db
class TestDjangoPrescriptionRepository:

    @pytest.fixture
    def engine(self, clock, catalog):
        return PrescriptionWorkflowEngine(repository=DjangoPrescriptionRepository(), catalog=catalog, clock=clock)

    def test_round_trip(self, engine, patient_info, prescription_files, reader, clock):
        record = engine.submit(patient_info, prescription_files, urgency='urgent', delivery_fee='15.00')
        clock.advance(minutes=10)
        engine.update_status(record.id, PrescriptionStatus.REVIEWING, reader, notes='Picked up')
        engine.add_medicine_from_catalog(record.id, 'PARA-500', 2, reader, instructions='Twice daily')

        stored = DjangoPrescriptionRepository().get(record.id)

        assert stored.current_status == PrescriptionStatus.REVIEWING
        assert stored.urgency == 'urgent'
        assert stored.patient_name == 'Omar Adel'
        assert [f.name for f in stored.files] == ['rx-front.jpg']
        assert [m.product_name for m in stored.processed_medicines] == ['Paracetamol 500mg']
        assert stored.total_amount == Decimal('65.00')
        assert [(e.sequence, e.status) for e in stored.status_history] == [
            (1, PrescriptionStatus.SUBMITTED),
            (2, PrescriptionStatus.REVIEWING),
        ]
        assert stored.status_history[1].notes == 'Picked up'

    def test_history_rows_are_appended_once(self, engine, patient_info, prescription_files, reader):
        record = engine.submit(patient_info, prescription_files)
        engine.update_status(record.id, PrescriptionStatus.REVIEWING, reader)
        engine.add_medicine_from_catalog(record.id, 'IBU-400', 1, reader, instructions='After meals')

        assert PrescriptionStatusEntry.objects.filter(prescription_id=record.id).count() == 2

    def test_failed_transition_changes_nothing(self, engine, patient_info, prescription_files, reader):
        record = engine.submit(patient_info, prescription_files)
        engine.update_status(record.id, PrescriptionStatus.REVIEWING, reader)

        with pytest.raises(QualityGateError):
            engine.update_status(record.id, PrescriptionStatus.APPROVED, reader)

        stored = engine.get(record.id)
        assert stored.current_status == PrescriptionStatus.REVIEWING
        assert len(stored.status_history) == 2

    def test_unknown_prescription(self):
        with pytest.raises(NotFoundError):
            DjangoPrescriptionRepository().get('RX-404')


@pytest.mark.django_db
class TestDjangoSuspendedOrderRepository:

    def test_round_trip(self, clock, catalog, order_snapshot, pharmacy, agent):
        engine = OrderReconciliationEngine(
            repository=DjangoSuspendedOrderRepository(), catalog=catalog, clock=clock, max_escalation_level=2
        )
        order = engine.suspend(order_snapshot, 'medicine-unavailable', 'Out of stock', pharmacy)
        engine.modify_order(
            OrderModification(
                order_id=order.order_id,
                notes='Swap antibiotic',
                items_to_modify=(ItemModification('i2', substitute_product_id='ASP-81'),),
                items_to_add=(NewItem('IBU-400', 1),),
            ),
            pharmacy,
        )
        engine.approve(order.order_id, agent)

        stored = DjangoSuspendedOrderRepository().get(order.order_id)

        assert stored.status == SuspendedOrderStatus.RESOLVED
        assert stored.original_total_amount == Decimal('105.00')
        assert stored.total_amount == Decimal('105.00')
        assert [i.item_id for i in stored.original_items] == ['i1', 'i2']
        assert sorted(c.kind for c in stored.changes) == ['added', 'modified', 'unchanged']
        assert {i.status for i in stored.modified_items} == {'approved'}
        assert [n.sequence for n in stored.agent_notes] == [1, 2, 3]
        assert stored.resolution.resolved_by == 'agent-1'

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            DjangoSuspendedOrderRepository().get('SO-404')


@pytest.mark.django_db
class TestDjangoSettlementStore:

    @pytest.fixture
    def ledger(self, clock):
        return SettlementLedger(SettlementStore.django(), clock=clock, currency='EGP')

    def test_commission_account_round_trip(self, ledger, admin):
        ledger.record_order_settlement('ph-1', 'pharmacy', '200.00', entity_name='Nile Pharmacy')
        ledger.collect_commission('ph-1', 'pharmacy', admin)

        account = SettlementStore.django().accounts.get('pharmacy:ph-1')

        assert account.name == 'Nile Pharmacy'
        assert account.commission_rate == Decimal('0.10')
        assert account.total_commission_collected == Decimal('20.00')
        assert account.pending_amount == Decimal('0.00')
        assert account.collection_status == CollectionStatus.COMPLETED

    def test_complete_pending_updates_accruals(self, ledger, clock):
        ledger.record_order_settlement('ph-1', 'pharmacy', '100.00')
        ledger.record_order_settlement('ph-1', 'pharmacy', '50.00')

        updated = SettlementStore.django().transactions.complete_pending(
            'pharmacy', 'ph-1', TransactionSubType.PHARMACY_COMMISSION, clock()
        )

        assert updated == 2
        statuses = set(
            MoneyTransactionRecord.objects.filter(sub_type=TransactionSubType.PHARMACY_COMMISSION)
            .values_list('status', flat=True)
        )
        assert statuses == {TransactionStatus.COMPLETED}

    def test_refund_and_schedule_round_trip(self, ledger, customer, admin):
        refund = ledger.request_refund('ORD-1', 'cust-1', '40.00', 'Damaged', customer)
        ledger.resolve_refund(refund.refund_id, 'approve', admin)
        ledger.accrue_doctor_commission('d-1', '400.00', 'ORD-1', doctor_name='Dr. Hany')
        schedule = ledger.create_payout_schedule('d-1', 'doctor', 'monthly', ledger.clock().date(), admin, '10.00')

        assert ledger.process_schedule(schedule.schedule_id, admin) is True

        store = SettlementStore.django()
        assert store.refunds.get(refund.refund_id).status == RefundStatus.PROCESSED
        assert store.doctors.get('d-1').total_paid == Decimal('20.00')
        assert store.schedules.get(schedule.schedule_id).last_run_at is not None
        assert ledger.compute_metrics().processed_refunds == Decimal('40.00')


@pytest.mark.django_db
class TestDjangoProductCatalog:

    def test_find_active_product(self, catalog_products):
        product = DjangoProductCatalog().find_product('PARA-500')
        assert product.name == 'Paracetamol 500mg'
        assert product.price == Decimal('25.00')

    def test_inactive_product_is_not_found(self, catalog_products):
        Product.objects.filter(product_id='IBU-400').update(is_active=False)
        with pytest.raises(NotFoundError):
            DjangoProductCatalog().find_product('IBU-400')


class TestCheckConstraints:

    @pytest.mark.parametrize('model,field', [
        (Product, 'price'),
        (PrescriptionRecord, 'total_amount'),
        (SuspendedOrderRecord, 'total_amount'),
        (CommissionAccountRecord, 'pending_amount'),
    ])
    def test_amounts_are_non_negative(self, model, field):
        checks = [c for c in model._meta.constraints if isinstance(c, models.CheckConstraint)]

        assert [c.condition for c in checks] == [models.Q(**{f'{field}__gte': 0})]

    @pytest.mark.django_db
    def test_database_rejects_negative_price(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Product.objects.create(product_id='BAD-1', name='Broken', price=Decimal('-1.00'))
