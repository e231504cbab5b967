"""
Tests for suspended order reconciliation.

Every modification is a diff against the frozen original items; the
order total always equals the sum over items that are not removed.
"""
from decimal import Decimal

import pytest

from apps.core.actors import ActorRole
from apps.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from apps.reconciliation.domain import (
    ItemModification,
    ItemStatus,
    NewItem,
    NoteKind,
    OrderItem,
    OrderModification,
    OrderSnapshot,
    Priority,
    ResolutionAction,
    SuspendedOrderFilter,
    SuspendedOrderStatus,
    active_total,
)


@pytest.fixture
def suspended(reconciliation_engine, order_snapshot, pharmacy):
    return reconciliation_engine.suspend(
        order_snapshot, 'medicine-unavailable', 'Amoxicillin out of stock', pharmacy
    )


def modify(engine, order_id, actor, notes='Adjusted with customer', remove=(), add=(), edit=()):
    return engine.modify_order(
        OrderModification(
            order_id=order_id,
            notes=notes,
            items_to_remove=tuple(remove),
            items_to_add=tuple(add),
            items_to_modify=tuple(edit),
        ),
        actor,
    )


def kinds(order):
    return {change.item_id: change.kind for change in order.changes}


class TestSuspend:

    def test_suspend_freezes_original_items(self, suspended):
        assert suspended.order_id.startswith('SO-')
        assert suspended.status == SuspendedOrderStatus.SUSPENDED
        assert suspended.original_total_amount == Decimal('105.00')
        assert suspended.total_amount == Decimal('105.00')
        assert suspended.modified_items is None
        assert kinds(suspended) == {'i1': 'unchanged', 'i2': 'unchanged'}
        assert [n.kind for n in suspended.agent_notes] == [NoteKind.SUSPENSION]

    def test_order_without_items(self, reconciliation_engine, pharmacy):
        empty = OrderSnapshot(order_number='ORD-2', pharmacy_id='ph-1', customer_id='cust-1', items=[])
        with pytest.raises(ValidationError):
            reconciliation_engine.suspend(empty, 'other', '', pharmacy)

    def test_duplicate_item_ids(self, reconciliation_engine, pharmacy):
        item = OrderItem('i1', 'PARA-500', 'Paracetamol 500mg', 1, '25.00')
        snapshot = OrderSnapshot(order_number='ORD-3', pharmacy_id='ph-1', customer_id='cust-1', items=[item, item])
        with pytest.raises(ValidationError):
            reconciliation_engine.suspend(snapshot, 'other', '', pharmacy)

    def test_unknown_issue_type(self, reconciliation_engine, order_snapshot, pharmacy):
        with pytest.raises(ValidationError):
            reconciliation_engine.suspend(order_snapshot, 'bad-weather', '', pharmacy)

    def test_item_total_price_is_derived(self):
        item = OrderItem('i9', 'PARA-500', 'Paracetamol 500mg', 3, '12.335')
        assert item.unit_price == Decimal('12.34')
        assert item.total_price == Decimal('37.02')

    def test_item_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderItem('i9', 'PARA-500', 'Paracetamol 500mg', 0, '10.00')


class TestModifyOrder:
    """Removals, edits and additions folded into the diff."""

    def test_remove_and_edit(self, reconciliation_engine, suspended, pharmacy):
        order = modify(
            reconciliation_engine, suspended.order_id, pharmacy,
            remove=['i2'], edit=[ItemModification('i1', new_quantity=3)],
        )

        assert order.status == SuspendedOrderStatus.IN_PROGRESS
        assert order.total_amount == Decimal('75.00')
        assert kinds(order) == {'i1': 'modified', 'i2': 'removed'}
        statuses = {item.item_id: item.status for item in order.modified_items}
        assert statuses == {'i1': ItemStatus.MODIFIED, 'i2': ItemStatus.REMOVED}
        assert [i.quantity for i in order.original_items] == [2, 1]
        assert order.agent_notes[-1].text == 'Adjusted with customer (removed 1, modified 1, added 0)'

    def test_add_item_priced_from_catalog(self, reconciliation_engine, suspended, pharmacy):
        order = modify(reconciliation_engine, suspended.order_id, pharmacy, add=[NewItem('IBU-400', 2)])

        added = [c.active_item for c in order.changes if c.kind == 'added']
        assert len(added) == 1
        assert added[0].item_id.startswith('ITEM-')
        assert added[0].product_name == 'Ibuprofen 400mg'
        assert added[0].total_price == Decimal('80.00')
        assert order.total_amount == Decimal('185.00')

    def test_add_item_with_explicit_price_skips_catalog(self, reconciliation_engine, suspended, pharmacy):
        order = modify(
            reconciliation_engine, suspended.order_id, pharmacy,
            add=[NewItem('LOCAL-1', 1, unit_price='30.00', product_name='Local syrup', unit_type='bottle')],
        )
        assert order.total_amount == Decimal('135.00')

    def test_add_unknown_product_without_price(self, reconciliation_engine, suspended, pharmacy):
        with pytest.raises(NotFoundError):
            modify(reconciliation_engine, suspended.order_id, pharmacy, add=[NewItem('NOPE', 1)])

    def test_quantities_are_clamped_to_one(self, reconciliation_engine, suspended, pharmacy):
        order = modify(
            reconciliation_engine, suspended.order_id, pharmacy,
            edit=[ItemModification('i1', new_quantity=0)],
            add=[NewItem('PARA-500', -3)],
        )
        quantities = sorted(item.quantity for item in order.active_items)
        assert quantities == [1, 1, 1]
        assert order.total_amount == Decimal('105.00')

    def test_added_item_is_not_an_original_item(self, reconciliation_engine, suspended, pharmacy):
        order = modify(reconciliation_engine, suspended.order_id, pharmacy, add=[NewItem('IBU-400', 1)])
        added_id = next(c.item_id for c in order.changes if c.kind == 'added')

        with pytest.raises(NotFoundError):
            modify(reconciliation_engine, suspended.order_id, pharmacy, remove=[added_id])

        stored = reconciliation_engine.get(suspended.order_id)
        assert kinds(stored)[added_id] == 'added'

    def test_later_call_replaces_earlier_additions(self, reconciliation_engine, suspended, pharmacy):
        order = modify(reconciliation_engine, suspended.order_id, pharmacy, add=[NewItem('IBU-400', 1)])
        added_id = next(c.item_id for c in order.changes if c.kind == 'added')

        order = modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i2'])

        assert kinds(order) == {'i1': 'unchanged', 'i2': 'removed'}
        assert added_id not in {item.item_id for item in order.modified_items}
        assert order.total_amount == Decimal('50.00')

    def test_substitution(self, reconciliation_engine, suspended, pharmacy):
        order = modify(
            reconciliation_engine, suspended.order_id, pharmacy,
            edit=[ItemModification('i2', substitute_product_id='ASP-81')],
        )

        current = next(c.active_item for c in order.changes if c.item_id == 'i2')
        assert current.product_id == 'ASP-81'
        assert current.unit_price == Decimal('15.00')
        assert current.status == ItemStatus.SUBSTITUTED
        assert current.prescription is False
        assert order.total_amount == Decimal('65.00')

    def test_edit_back_to_original_collapses_to_unchanged(self, reconciliation_engine, suspended, pharmacy):
        modify(reconciliation_engine, suspended.order_id, pharmacy, edit=[ItemModification('i1', new_quantity=5)])
        order = modify(reconciliation_engine, suspended.order_id, pharmacy, edit=[ItemModification('i1', new_quantity=2)])

        assert kinds(order)['i1'] == 'unchanged'
        assert order.total_amount == order.original_total_amount

    def test_remove_and_modify_same_item_is_rejected(self, reconciliation_engine, suspended, pharmacy):
        with pytest.raises(ValidationError):
            modify(
                reconciliation_engine, suspended.order_id, pharmacy,
                remove=['i1'], edit=[ItemModification('i1', new_quantity=4)],
            )

        stored = reconciliation_engine.get(suspended.order_id)
        assert stored.status == SuspendedOrderStatus.SUSPENDED
        assert stored.modified_items is None

    def test_modifying_an_item_removed_by_an_earlier_call(self, reconciliation_engine, suspended, pharmacy):
        modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i1'])

        order = modify(reconciliation_engine, suspended.order_id, pharmacy, edit=[ItemModification('i1', new_quantity=3)])

        assert kinds(order) == {'i1': 'modified', 'i2': 'unchanged'}
        assert order.total_amount == Decimal('130.00')

    def test_each_call_starts_from_original_items(self, reconciliation_engine, suspended, pharmacy):
        first = modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i1'])
        assert first.total_amount == Decimal('55.00')

        order = modify(reconciliation_engine, suspended.order_id, pharmacy, edit=[ItemModification('i2', new_quantity=2)])

        assert kinds(order) == {'i1': 'unchanged', 'i2': 'modified'}
        assert order.total_amount == Decimal('160.00')
        assert [i.quantity for i in order.original_items] == [2, 1]

    def test_unknown_item_and_order(self, reconciliation_engine, suspended, pharmacy):
        with pytest.raises(NotFoundError):
            modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i404'])
        with pytest.raises(NotFoundError):
            modify(reconciliation_engine, 'SO-404', pharmacy, remove=['i1'])

    def test_notes_are_required(self, reconciliation_engine, suspended, pharmacy):
        with pytest.raises(ValidationError):
            modify(reconciliation_engine, suspended.order_id, pharmacy, notes='  ', remove=['i1'])

    def test_total_matches_active_items_after_many_edits(self, reconciliation_engine, suspended, pharmacy):
        requests = [
            {'add': [NewItem('WARF-5', 2)]},
            {'edit': [ItemModification('i1', new_quantity=7)], 'remove': ['i2']},
            {'remove': ['i1'], 'add': [NewItem('ASP-81', 3)]},
            {
                'add': [NewItem('WARF-5', 2)],
                'edit': [ItemModification('i1', new_quantity=7)],
                'remove': ['i2'],
            },
        ]

        for request in requests:
            order = modify(reconciliation_engine, suspended.order_id, pharmacy, **request)
            assert order.total_amount == active_total(order.changes)
            assert order.total_amount == sum((i.total_price for i in order.active_items), Decimal('0'))

        assert order.total_amount == Decimal('295.00')


class TestRestoreItem:

    def test_restore_removed_item(self, reconciliation_engine, suspended, pharmacy):
        modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i2'])

        order = reconciliation_engine.restore_item(suspended.order_id, 'i2', pharmacy)

        assert kinds(order)['i2'] == 'unchanged'
        assert order.total_amount == Decimal('105.00')
        assert order.agent_notes[-1].kind == NoteKind.RESTORE

    def test_restore_is_idempotent(self, reconciliation_engine, suspended, pharmacy):
        first = reconciliation_engine.restore_item(suspended.order_id, 'i1', pharmacy)
        second = reconciliation_engine.restore_item(suspended.order_id, 'i1', pharmacy)

        assert len(first.agent_notes) == len(second.agent_notes) == 1
        assert second.total_amount == Decimal('105.00')

    def test_added_item_has_nothing_to_restore(self, reconciliation_engine, suspended, pharmacy):
        order = modify(reconciliation_engine, suspended.order_id, pharmacy, add=[NewItem('IBU-400', 1)])
        added_id = next(c.item_id for c in order.changes if c.kind == 'added')

        with pytest.raises(InvalidStateError):
            reconciliation_engine.restore_item(suspended.order_id, added_id, pharmacy)


class TestApproval:

    def test_approve_requires_a_modification(self, reconciliation_engine, suspended, agent):
        with pytest.raises(InvalidStateError):
            reconciliation_engine.approve(suspended.order_id, agent)

        reconciliation_engine.mark_customer_contacted(suspended.order_id, agent)
        reconciliation_engine.mark_pharmacy_contacted(suspended.order_id, agent)
        with pytest.raises(InvalidStateError):
            reconciliation_engine.approve(suspended.order_id, agent)

    def test_approve_locks_items(self, reconciliation_engine, suspended, pharmacy, agent):
        modify(
            reconciliation_engine, suspended.order_id, pharmacy,
            remove=['i2'], edit=[ItemModification('i1', new_quantity=3)],
        )

        order = reconciliation_engine.approve(suspended.order_id, agent, 'Customer agreed by phone')

        assert order.status == SuspendedOrderStatus.RESOLVED
        assert order.resolution.action == ResolutionAction.ORDER_MODIFIED
        assert order.resolution.resolved_by == 'agent-1'
        statuses = {item.item_id: item.status for item in order.modified_items}
        assert statuses == {'i1': ItemStatus.APPROVED, 'i2': ItemStatus.REMOVED}

    def test_closed_order_rejects_further_changes(self, reconciliation_engine, suspended, pharmacy, agent):
        modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i2'])
        reconciliation_engine.approve(suspended.order_id, agent)

        with pytest.raises(InvalidStateError):
            modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i1'])
        with pytest.raises(InvalidStateError):
            reconciliation_engine.restore_item(suspended.order_id, 'i2', pharmacy)
        with pytest.raises(InvalidStateError):
            reconciliation_engine.cancel(suspended.order_id, 'Too late', agent)


class TestAgentWorkflow:

    def test_contacting_both_parties_starts_work(self, reconciliation_engine, suspended, agent):
        order = reconciliation_engine.mark_customer_contacted(suspended.order_id, agent, 'Left a voicemail')
        assert order.customer_contacted
        assert order.status == SuspendedOrderStatus.SUSPENDED
        assert order.agent_notes[-1].text == 'Customer contacted. Left a voicemail'

        order = reconciliation_engine.mark_pharmacy_contacted(suspended.order_id, agent)
        assert order.pharmacy_contacted
        assert order.status == SuspendedOrderStatus.IN_PROGRESS

    def test_escalation_is_capped(self, reconciliation_engine, suspended, agent):
        first = reconciliation_engine.escalate(suspended.order_id, 'No answer from pharmacy', agent)
        assert first.escalation_level == 1
        assert first.priority == Priority.HIGH

        second = reconciliation_engine.escalate(suspended.order_id, 'Still no answer', agent)
        third = reconciliation_engine.escalate(suspended.order_id, 'Customer complaining', agent)

        assert second.escalation_level == 2
        assert second.priority == Priority.URGENT
        assert third.escalation_level == 2
        assert third.agent_notes[-1].text == 'Escalated to level 2: Customer complaining'

    def test_escalation_requires_reason(self, reconciliation_engine, suspended, agent):
        with pytest.raises(ValidationError):
            reconciliation_engine.escalate(suspended.order_id, '', agent)

    def test_resolve_with_alternative(self, reconciliation_engine, suspended, agent):
        order = reconciliation_engine.resolve(
            suspended.order_id, 'alternative-provided', 'Sent to partner pharmacy', agent
        )
        assert order.status == SuspendedOrderStatus.RESOLVED
        assert order.resolution.notes == 'Sent to partner pharmacy'
        assert order.agent_notes[-1].text == 'alternative-provided: Sent to partner pharmacy'

    def test_resolve_requires_notes_and_known_action(self, reconciliation_engine, suspended, agent):
        with pytest.raises(ValidationError):
            reconciliation_engine.resolve(suspended.order_id, ResolutionAction.ISSUE_RESOLVED, '', agent)
        with pytest.raises(ValidationError):
            reconciliation_engine.resolve(suspended.order_id, 'shrug', 'notes', agent)

    def test_resolve_as_cancelled(self, reconciliation_engine, suspended, agent):
        order = reconciliation_engine.resolve(
            suspended.order_id, ResolutionAction.ORDER_CANCELLED, 'Customer withdrew', agent
        )
        assert order.status == SuspendedOrderStatus.CANCELLED
        assert order.resolution.action == ResolutionAction.ORDER_CANCELLED

    def test_customer_rejects_changes(self, reconciliation_engine, suspended, pharmacy, customer):
        """A customer declining the proposal cancels the order in their name."""
        modify(reconciliation_engine, suspended.order_id, pharmacy, remove=['i2'])

        order = reconciliation_engine.cancel(suspended.order_id, 'I need the antibiotic', customer)

        assert order.status == SuspendedOrderStatus.CANCELLED
        assert order.resolution.resolved_by == 'cust-1'
        assert order.resolution.resolved_by_role == ActorRole.CUSTOMER

    def test_notes_are_sequenced_and_monotonic(self, reconciliation_engine, suspended, agent, clock):
        clock.advance(hours=1)
        reconciliation_engine.mark_customer_contacted(suspended.order_id, agent)
        clock.rewind(hours=3)
        order = reconciliation_engine.escalate(suspended.order_id, 'Clock skew', agent)

        assert [n.sequence for n in order.agent_notes] == [1, 2, 3]
        timestamps = [n.timestamp for n in order.agent_notes]
        assert timestamps == sorted(timestamps)


class TestQueries:

    def _suspend(self, engine, pharmacy, clock, pharmacy_id='ph-1', issue='other'):
        clock.advance(minutes=5)
        snapshot = OrderSnapshot(
            order_number=f'ORD-{clock.now.minute}',
            pharmacy_id=pharmacy_id,
            customer_id='cust-1',
            items=[OrderItem('i1', 'PARA-500', 'Paracetamol 500mg', 1, '25.00')],
        )
        return engine.suspend(snapshot, issue, '', pharmacy)

    def test_list_newest_first_with_filters(self, reconciliation_engine, pharmacy, agent, clock):
        first = self._suspend(reconciliation_engine, pharmacy, clock)
        second = self._suspend(reconciliation_engine, pharmacy, clock, pharmacy_id='ph-2')
        third = self._suspend(reconciliation_engine, pharmacy, clock)
        reconciliation_engine.escalate(third.order_id, 'Slow', agent)

        assert [o.order_id for o in reconciliation_engine.list()] == [third.order_id, second.order_id, first.order_id]
        assert [o.order_id for o in reconciliation_engine.list(SuspendedOrderFilter(pharmacy_id='ph-2'))] == [
            second.order_id
        ]
        assert [o.order_id for o in reconciliation_engine.list(SuspendedOrderFilter(min_escalation_level=1))] == [
            third.order_id
        ]
        assert reconciliation_engine.list(
            SuspendedOrderFilter(statuses=frozenset({SuspendedOrderStatus.RESOLVED}))
        ) == []

    def test_statistics(self, reconciliation_engine, pharmacy, agent, clock):
        resolved = self._suspend(reconciliation_engine, pharmacy, clock, issue='payment-issue')
        self._suspend(reconciliation_engine, pharmacy, clock)
        clock.advance(hours=3)
        reconciliation_engine.escalate(resolved.order_id, 'Payment gateway down', agent)
        reconciliation_engine.resolve(resolved.order_id, ResolutionAction.ISSUE_RESOLVED, 'Paid in cash', agent)

        stats = reconciliation_engine.statistics()

        assert stats.total == 2
        assert stats.by_status['resolved'] == 1
        assert stats.by_status['suspended'] == 1
        assert stats.by_issue_type['payment-issue'] == 1
        assert stats.by_priority['high'] == 1
        assert stats.escalated == 1
        assert stats.average_resolution_hours == 3.08

    def test_statistics_without_resolutions(self, reconciliation_engine):
        stats = reconciliation_engine.statistics()
        assert stats.total == 0
        assert stats.average_resolution_hours is None
