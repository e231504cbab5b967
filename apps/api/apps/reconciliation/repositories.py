"""Suspended order repositories."""
from apps.core.exceptions import NotFoundError
from apps.core.repositories import AggregateRepository, DjangoRepository, InMemoryRepository

from .domain import AgentNote, OrderItem, Resolution, SuspendedOrder, change_from_dict
from .models import SuspendedOrderRecord


class SuspendedOrderRepository(AggregateRepository[SuspendedOrder]):
    entity_name = 'SuspendedOrder'


class InMemorySuspendedOrderRepository(InMemoryRepository[SuspendedOrder], SuspendedOrderRepository):
    id_attribute = 'order_id'


class DjangoSuspendedOrderRepository(DjangoRepository[SuspendedOrder], SuspendedOrderRepository):
    model = SuspendedOrderRecord

    def to_domain(self, record: SuspendedOrderRecord) -> SuspendedOrder:
        return SuspendedOrder(
            order_id=record.order_id,
            order_number=record.order_number,
            pharmacy_id=record.pharmacy_id,
            customer_id=record.customer_id,
            customer_name=record.customer_name,
            customer_phone=record.customer_phone,
            original_items=tuple(OrderItem.from_dict(i) for i in record.original_items),
            changes=[change_from_dict(c) for c in record.changes],
            modified_items=(
                [OrderItem.from_dict(i) for i in record.modified_items]
                if record.modified_items is not None else None
            ),
            issue_type=record.issue_type,
            issue_notes=record.issue_notes,
            priority=record.priority,
            status=record.status,
            original_total_amount=record.original_total_amount,
            total_amount=record.total_amount,
            escalation_level=record.escalation_level,
            customer_contacted=record.customer_contacted,
            pharmacy_contacted=record.pharmacy_contacted,
            agent_notes=[AgentNote.from_dict(n) for n in record.agent_notes],
            resolution=Resolution.from_dict(record.resolution),
            suspended_at=record.suspended_at,
            updated_at=record.updated_at,
        )

    def write(self, aggregate: SuspendedOrder, created: bool) -> None:
        values = {
            'order_number': aggregate.order_number,
            'pharmacy_id': aggregate.pharmacy_id,
            'customer_id': aggregate.customer_id,
            'customer_name': aggregate.customer_name,
            'customer_phone': aggregate.customer_phone,
            'original_items': [i.to_dict() for i in aggregate.original_items],
            'changes': [c.to_dict() for c in aggregate.changes],
            'modified_items': (
                [i.to_dict() for i in aggregate.modified_items]
                if aggregate.modified_items is not None else None
            ),
            'issue_type': aggregate.issue_type,
            'issue_notes': aggregate.issue_notes,
            'priority': aggregate.priority,
            'status': aggregate.status,
            'original_total_amount': aggregate.original_total_amount,
            'total_amount': aggregate.total_amount,
            'escalation_level': aggregate.escalation_level,
            'customer_contacted': aggregate.customer_contacted,
            'pharmacy_contacted': aggregate.pharmacy_contacted,
            'agent_notes': [n.to_dict() for n in aggregate.agent_notes],
            'resolution': aggregate.resolution.to_dict() if aggregate.resolution else None,
            'suspended_at': aggregate.suspended_at,
            'updated_at': aggregate.updated_at,
        }
        if created:
            SuspendedOrderRecord.objects.create(order_id=aggregate.order_id, **values)
        elif not SuspendedOrderRecord.objects.filter(pk=aggregate.order_id).update(**values):
            raise NotFoundError(self.entity_name, aggregate.order_id)
