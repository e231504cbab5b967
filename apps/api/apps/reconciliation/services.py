"""
Suspended order service layer.

OrderReconciliationEngine owns orders a pharmacy cannot fulfil as placed:
it snapshots the original items, folds pharmacy edits into a diff,
keeps the total equal to the active items, and drives the order to
resolution or cancellation.
"""
import uuid
from typing import Callable, List, Optional

from apps.catalog.domain import ProductCatalog
from apps.core.actors import Actor
from apps.core.clock import not_before, utc_now
from apps.core.conf import cura_setting
from apps.core.exceptions import InvalidStateError, ValidationError
from apps.core.observability import get_sanitized_logger, log_domain_event, metrics, trace_span
from apps.core.observability.events import log_consistency_checkpoint, log_order_modified

from .domain import (
    IssueType,
    ItemStatus,
    NoteKind,
    OrderModification,
    OrderSnapshot,
    Priority,
    Resolution,
    ResolutionAction,
    SuspendedOrder,
    SuspendedOrderFilter,
    SuspendedOrderStatistics,
    SuspendedOrderStatus,
    Unchanged,
    active_total,
    apply_modification,
    restore_change,
)
from .repositories import SuspendedOrderRepository

logger = get_sanitized_logger(__name__)

APPROVABLE_ITEM_STATUSES = frozenset({ItemStatus.PENDING, ItemStatus.MODIFIED, ItemStatus.SUBSTITUTED})


def _new_id(prefix: str) -> str:
    return f'{prefix}-{uuid.uuid4().hex[:12].upper()}'


def _require_text(value: Optional[str], message: str) -> str:
    text = (value or '').strip()
    if not text:
        raise ValidationError(message)
    return text


class OrderReconciliationEngine:
    """
    Lifecycle owner for suspended orders.

    ``catalog`` prices added and substituted items.
    """

    def __init__(
        self,
        repository: SuspendedOrderRepository,
        catalog: ProductCatalog,
        clock: Callable = utc_now,
        id_factory: Callable[[str], str] = _new_id,
        max_escalation_level: Optional[int] = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.clock = clock
        self.new_id = id_factory
        self.max_escalation_level = (
            max_escalation_level if max_escalation_level is not None
            else int(cura_setting('MAX_ESCALATION_LEVEL'))
        )

    # ------------------------------------------------------------------
    # Suspension
    # ------------------------------------------------------------------

    def suspend(
        self,
        order: OrderSnapshot,
        issue_type: str,
        issue_notes: str,
        actor: Actor,
        priority: str = Priority.NORMAL,
    ) -> SuspendedOrder:
        """
        Flag an order as unprocessable and freeze its original items.

        Raises:
            ValidationError: No items, duplicate item ids, unknown issue type or priority
        """
        items = tuple(order.items)
        if not items:
            raise ValidationError('Cannot suspend an order without items')
        item_ids = [item.item_id for item in items]
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError('Order item ids must be unique')
        if issue_type not in IssueType.values:
            raise ValidationError(f"Unknown issue type '{issue_type}'")
        if priority not in Priority.values:
            raise ValidationError(f"Unknown priority '{priority}'")

        now = self.clock()
        changes = [Unchanged(item) for item in items]
        suspended = SuspendedOrder(
            order_id=self.new_id('SO'),
            order_number=order.order_number,
            pharmacy_id=order.pharmacy_id,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            original_items=items,
            changes=changes,
            issue_type=IssueType(issue_type),
            issue_notes=(issue_notes or '').strip(),
            priority=Priority(priority),
            status=SuspendedOrderStatus.SUSPENDED,
            original_total_amount=active_total(changes),
            total_amount=active_total(changes),
            suspended_at=now,
            updated_at=now,
        )
        suspended.add_note(NoteKind.SUSPENSION, f'Order suspended: {issue_type}', actor, now)
        self.repository.add(suspended)

        metrics.suspended_orders_total.labels(issue_type=str(issue_type)).inc()
        log_domain_event(
            'order_suspended',
            entity_type='SuspendedOrder',
            entity_id=suspended.order_id,
            entity_ids={'order_number': order.order_number, 'pharmacy_id': order.pharmacy_id},
            actor=actor,
            issue_type=str(issue_type),
            priority=str(priority),
            items_count=len(items),
        )
        return suspended

    # ------------------------------------------------------------------
    # Modification protocol
    # ------------------------------------------------------------------

    @metrics.track_duration('reconciliation', 'modify_order')
    def modify_order(self, modification: OrderModification, actor: Actor) -> SuspendedOrder:
        """
        Apply removals, edits and additions and recompute the total.

        Business Rules:
            1. Notes are mandatory
            2. Every referenced item must be one of the original items
            3. Each call starts from the original items and replaces the diff
            4. Quantities are clamped to >= 1
            5. total_amount = sum of total_price over non-removed items
            6. Order moves to in-progress

        Raises:
            ValidationError: Blank notes, conflicting item requests
            NotFoundError: Unknown order, item or catalog product
            InvalidStateError: Order already resolved or cancelled
        """
        notes = _require_text(modification.notes, 'Modification notes are required')

        with trace_span('reconciliation.modify_order', attributes={'order_id': modification.order_id}):
            with self.repository.locked(modification.order_id):
                order = self.repository.get(modification.order_id)
                self._require_open(order, 'modify')

                changes, summary = apply_modification(
                    order.original_items,
                    modification,
                    self.catalog,
                    lambda: self.new_id('ITEM'),
                )
                order.changes = changes
                order.refresh_totals()
                order.status = SuspendedOrderStatus.IN_PROGRESS
                timestamp = self._timestamp(order)
                order.add_note(
                    NoteKind.MODIFICATION,
                    f'{notes} (removed {summary.removed}, modified {summary.modified}, added {summary.added})',
                    actor,
                    timestamp,
                )
                order.updated_at = timestamp
                self.repository.save(order)

        metrics.suspended_order_modifications_total.labels(result='success').inc()
        log_order_modified(
            order.order_id, actor,
            removed=summary.removed, added=summary.added, modified=summary.modified,
            total_amount=order.total_amount,
        )
        log_consistency_checkpoint(
            'suspended_order_total',
            entity_ids={'order_id': order.order_id},
            checks_passed={
                'total_matches_active_items': order.total_amount == active_total(order.changes),
            },
        )
        return order

    def restore_item(self, order_id: str, item_id: str, actor: Actor) -> SuspendedOrder:
        """
        Revert one item to its original quantity, unit and price.

        IDEMPOTENT: restoring an unchanged item changes nothing.

        Raises:
            NotFoundError: Unknown order or item
            InvalidStateError: Order closed, or the item was added
        """
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            self._require_open(order, 'restore items on')
            changes, changed = restore_change(order.changes, item_id)
            if not changed:
                log_domain_event(
                    'suspended_order_item_restored',
                    entity_type='SuspendedOrder',
                    entity_id=order_id,
                    result='noop',
                    actor=actor,
                    item_id=item_id,
                )
                return order

            order.changes = changes
            order.refresh_totals()
            timestamp = self._timestamp(order)
            order.add_note(NoteKind.RESTORE, f'Item {item_id} restored to original', actor, timestamp)
            order.updated_at = timestamp
            self.repository.save(order)

        log_domain_event(
            'suspended_order_item_restored',
            entity_type='SuspendedOrder',
            entity_id=order_id,
            actor=actor,
            item_id=item_id,
            total_amount=str(order.total_amount),
        )
        return order

    def approve(self, order_id: str, actor: Actor, notes: str = '') -> SuspendedOrder:
        """
        Lock the modified items as final and resolve the order.

        Raises:
            InvalidStateError: Order not in-progress or never modified
        """
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            if order.status != SuspendedOrderStatus.IN_PROGRESS or order.modified_items is None:
                raise InvalidStateError(
                    'Only an in-progress order with a modification can be approved',
                    details={'status': str(order.status), 'modified': order.modified_items is not None},
                )
            order.modified_items = [
                item.with_changes(status=ItemStatus.APPROVED) if item.status in APPROVABLE_ITEM_STATUSES else item
                for item in order.modified_items
            ]
            self._close(order, SuspendedOrderStatus.RESOLVED, ResolutionAction.ORDER_MODIFIED,
                        notes or 'Modified order approved', actor)
            self.repository.save(order)

        self._log_closed(order, actor)
        return order

    # ------------------------------------------------------------------
    # Agent workflow
    # ------------------------------------------------------------------

    def mark_customer_contacted(self, order_id: str, actor: Actor, notes: str = '') -> SuspendedOrder:
        return self._mark_contacted(order_id, 'customer', actor, notes)

    def mark_pharmacy_contacted(self, order_id: str, actor: Actor, notes: str = '') -> SuspendedOrder:
        return self._mark_contacted(order_id, 'pharmacy', actor, notes)

    def _mark_contacted(self, order_id, party, actor, notes) -> SuspendedOrder:
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            self._require_open(order, 'contact parties for')
            setattr(order, f'{party}_contacted', True)
            # Both sides reached: the agent is now actively working the order
            if order.customer_contacted and order.pharmacy_contacted \
                    and order.status == SuspendedOrderStatus.SUSPENDED:
                order.status = SuspendedOrderStatus.IN_PROGRESS
            timestamp = self._timestamp(order)
            order.add_note(NoteKind.CONTACT, f'{party.capitalize()} contacted. {notes}'.strip(), actor, timestamp)
            order.updated_at = timestamp
            self.repository.save(order)

        log_domain_event(
            f'suspended_order_{party}_contacted',
            entity_type='SuspendedOrder',
            entity_id=order_id,
            actor=actor,
            status=str(order.status),
        )
        return order

    def escalate(self, order_id: str, reason: str, actor: Actor) -> SuspendedOrder:
        """
        Raise the escalation level (capped) and bump priority.

        Priority becomes high below the cap and urgent at the cap.
        """
        reason = _require_text(reason, 'An escalation reason is required')
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            self._require_open(order, 'escalate')
            order.escalation_level = min(order.escalation_level + 1, self.max_escalation_level)
            order.priority = (
                Priority.URGENT if order.escalation_level >= self.max_escalation_level else Priority.HIGH
            )
            timestamp = self._timestamp(order)
            order.add_note(
                NoteKind.ESCALATION,
                f'Escalated to level {order.escalation_level}: {reason}',
                actor,
                timestamp,
            )
            order.updated_at = timestamp
            self.repository.save(order)

        metrics.suspended_order_escalations_total.labels(level=str(order.escalation_level)).inc()
        log_domain_event(
            'suspended_order_escalated',
            entity_type='SuspendedOrder',
            entity_id=order_id,
            result='warning',
            actor=actor,
            escalation_level=order.escalation_level,
            priority=str(order.priority),
        )
        return order

    def resolve(self, order_id: str, action: str, notes: str, actor: Actor) -> SuspendedOrder:
        """
        Close an order with a resolution action.

        ``order-modified`` goes through ``approve`` and ``order-cancelled``
        through ``cancel`` so their rules apply unchanged.
        """
        if action not in ResolutionAction.values:
            raise ValidationError(f"Unknown resolution action '{action}'")
        if action == ResolutionAction.ORDER_MODIFIED:
            return self.approve(order_id, actor, notes)
        if action == ResolutionAction.ORDER_CANCELLED:
            return self.cancel(order_id, notes, actor)

        notes = _require_text(notes, 'Resolution notes are required')
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            self._require_open(order, 'resolve')
            self._close(order, SuspendedOrderStatus.RESOLVED, action, notes, actor)
            self.repository.save(order)

        self._log_closed(order, actor)
        return order

    def cancel(self, order_id: str, reason: str, actor: Actor) -> SuspendedOrder:
        """
        Cancel an open order.

        This is also the path for a customer rejecting the pharmacy's
        proposed changes: the resolution records the customer as actor.
        """
        reason = _require_text(reason, 'A cancellation reason is required')
        with self.repository.locked(order_id):
            order = self.repository.get(order_id)
            self._require_open(order, 'cancel')
            self._close(order, SuspendedOrderStatus.CANCELLED, ResolutionAction.ORDER_CANCELLED, reason, actor)
            self.repository.save(order)

        self._log_closed(order, actor)
        return order

    def _close(self, order, status, action, notes, actor) -> None:
        timestamp = self._timestamp(order)
        order.status = status
        order.resolution = Resolution(
            action=action,
            notes=notes,
            resolved_by=actor.actor_id,
            resolved_by_role=actor.role,
            resolved_at=timestamp,
        )
        order.add_note(NoteKind.RESOLUTION, f'{action}: {notes}', actor, timestamp)
        order.updated_at = timestamp

    def _log_closed(self, order, actor) -> None:
        metrics.suspended_order_resolutions_total.labels(action=str(order.resolution.action)).inc()
        log_domain_event(
            'suspended_order_closed',
            entity_type='SuspendedOrder',
            entity_id=order.order_id,
            actor=actor,
            status=str(order.status),
            action=str(order.resolution.action),
            total_amount=str(order.total_amount),
        )

    def _require_open(self, order: SuspendedOrder, operation: str) -> None:
        if not order.is_open:
            raise InvalidStateError(
                f"Cannot {operation} an order that is '{order.status}'",
                details={'status': str(order.status)},
            )

    def _timestamp(self, order: SuspendedOrder):
        return not_before(self.clock(), order.last_activity_at())

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def get(self, order_id: str) -> SuspendedOrder:
        return self.repository.get(order_id)

    def list(self, criteria: Optional[SuspendedOrderFilter] = None) -> List[SuspendedOrder]:
        """Matching orders, most recently suspended first."""
        criteria = criteria or SuspendedOrderFilter()
        return sorted(self.repository.filter(criteria.matches), key=lambda o: o.suspended_at, reverse=True)

    def statistics(self) -> SuspendedOrderStatistics:
        orders = self.repository.all()
        by_status = {str(s): 0 for s in SuspendedOrderStatus}
        by_priority = {str(p): 0 for p in Priority}
        by_issue_type = {str(i): 0 for i in IssueType}
        durations = []
        for order in orders:
            by_status[str(order.status)] += 1
            by_priority[str(order.priority)] += 1
            by_issue_type[str(order.issue_type)] += 1
            if order.status == SuspendedOrderStatus.RESOLVED and order.resolution:
                durations.append((order.resolution.resolved_at - order.suspended_at).total_seconds() / 3600)

        return SuspendedOrderStatistics(
            total=len(orders),
            by_status=by_status,
            by_priority=by_priority,
            by_issue_type=by_issue_type,
            escalated=sum(1 for order in orders if order.escalation_level > 0),
            average_resolution_hours=round(sum(durations) / len(durations), 2) if durations else None,
        )


def get_default_engine() -> OrderReconciliationEngine:
    from apps.catalog.services import get_default_catalog
    from .repositories import DjangoSuspendedOrderRepository

    return OrderReconciliationEngine(
        repository=DjangoSuspendedOrderRepository(),
        catalog=get_default_catalog(),
    )
