"""
Suspended order domain.

A suspended order keeps its original items frozen and describes every
pharmacy edit as a diff against them. Each line is exactly one of
``Unchanged``, ``Modified``, ``Added`` or ``Removed``, so an item can
never be both new and removed.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from django.db import models
from django.utils.dateparse import parse_datetime
from django.utils.translation import gettext_lazy as _

from apps.catalog.domain import CatalogProduct, ProductCatalog
from apps.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from apps.core.money import ZERO, line_total, to_money


class SuspendedOrderStatus(models.TextChoices):
    """
    Transitions:
    - suspended -> in-progress, resolved, cancelled
    - in-progress -> resolved, cancelled
    - resolved, cancelled are terminal
    """
    SUSPENDED = 'suspended', _('Suspended')
    IN_PROGRESS = 'in-progress', _('In progress')
    RESOLVED = 'resolved', _('Resolved')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def get_valid_transitions(cls):
        return {
            cls.SUSPENDED: {cls.IN_PROGRESS, cls.RESOLVED, cls.CANCELLED},
            cls.IN_PROGRESS: {cls.RESOLVED, cls.CANCELLED},
            cls.RESOLVED: set(),
            cls.CANCELLED: set(),
        }

    @classmethod
    def open_statuses(cls):
        return {cls.SUSPENDED, cls.IN_PROGRESS}


class Priority(models.TextChoices):
    URGENT = 'urgent', _('Urgent')
    HIGH = 'high', _('High')
    NORMAL = 'normal', _('Normal')
    LOW = 'low', _('Low')

    @classmethod
    def rank(cls, value) -> int:
        return {cls.URGENT: 4, cls.HIGH: 3, cls.NORMAL: 2, cls.LOW: 1}[cls(value)]


class IssueType(models.TextChoices):
    PRESCRIPTION_ISSUE = 'prescription-issue', _('Prescription issue')
    MEDICINE_UNAVAILABLE = 'medicine-unavailable', _('Medicine unavailable')
    CUSTOMER_REQUEST = 'customer-request', _('Customer request')
    PHARMACY_ISSUE = 'pharmacy-issue', _('Pharmacy issue')
    PAYMENT_ISSUE = 'payment-issue', _('Payment issue')
    OTHER = 'other', _('Other')


class UnitType(models.TextChoices):
    BOX = 'box', _('Box')
    BLISTER = 'blister', _('Blister')
    BOTTLE = 'bottle', _('Bottle')
    PIECE = 'piece', _('Piece')
    TUBE = 'tube', _('Tube')


class ItemStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    APPROVED = 'approved', _('Approved')
    REJECTED = 'rejected', _('Rejected')
    MODIFIED = 'modified', _('Modified')
    SUBSTITUTED = 'substituted', _('Substituted')
    REMOVED = 'removed', _('Removed')


class ResolutionAction(models.TextChoices):
    ORDER_MODIFIED = 'order-modified', _('Order modified')
    ORDER_CANCELLED = 'order-cancelled', _('Order cancelled')
    ISSUE_RESOLVED = 'issue-resolved', _('Issue resolved')
    ALTERNATIVE_PROVIDED = 'alternative-provided', _('Alternative provided')


class NoteKind(models.TextChoices):
    SUSPENSION = 'suspension', _('Suspension')
    MODIFICATION = 'modification', _('Modification')
    RESTORE = 'restore', _('Restore')
    CONTACT = 'contact', _('Contact')
    ESCALATION = 'escalation', _('Escalation')
    RESOLUTION = 'resolution', _('Resolution')


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class OrderItem:
    """One order line. ``total_price`` is always quantity x unit_price."""
    item_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    unit_type: str = UnitType.BOX
    prescription: bool = False
    status: str = ItemStatus.PENDING
    total_price: Decimal = field(init=False)

    def __post_init__(self):
        if not self.item_id or not self.product_id:
            raise ValidationError('Order items need an item id and a product id')
        try:
            quantity = int(self.quantity)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid quantity: {self.quantity!r}')
        if quantity < 1:
            raise ValidationError(f'Quantity of item {self.item_id} must be at least 1')
        if self.unit_type not in UnitType.values:
            raise ValidationError(f"Unknown unit type '{self.unit_type}'")
        if self.status not in ItemStatus.values:
            raise ValidationError(f"Unknown item status '{self.status}'")
        unit_price = to_money(self.unit_price)
        if unit_price < 0:
            raise ValidationError(f'Unit price of item {self.item_id} cannot be negative')
        object.__setattr__(self, 'quantity', quantity)
        object.__setattr__(self, 'unit_price', unit_price)
        object.__setattr__(self, 'total_price', line_total(quantity, unit_price))

    def with_changes(self, **changes) -> 'OrderItem':
        return replace(self, **changes)

    def same_line_as(self, other: 'OrderItem') -> bool:
        return (
            self.product_id == other.product_id
            and self.quantity == other.quantity
            and self.unit_type == other.unit_type
            and self.unit_price == other.unit_price
        )

    def to_dict(self):
        return {
            'item_id': self.item_id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'unit_type': str(self.unit_type),
            'prescription': self.prescription,
            'status': str(self.status),
            'total_price': str(self.total_price),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            item_id=data['item_id'],
            product_id=data['product_id'],
            product_name=data.get('product_name', ''),
            quantity=data['quantity'],
            unit_price=data['unit_price'],
            unit_type=data.get('unit_type', UnitType.BOX),
            prescription=data.get('prescription', False),
            status=data.get('status', ItemStatus.PENDING),
        )


# ----------------------------------------------------------------------
# Diff variants
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Unchanged:
    original: OrderItem
    kind: ClassVar[str] = 'unchanged'

    @property
    def item_id(self):
        return self.original.item_id

    @property
    def active_item(self) -> Optional[OrderItem]:
        return self.original

    @property
    def audit_item(self) -> OrderItem:
        return self.original

    def to_dict(self):
        return {'kind': self.kind, 'original': self.original.to_dict()}


@dataclass(frozen=True)
class Modified:
    original: OrderItem
    current: OrderItem
    kind: ClassVar[str] = 'modified'

    @property
    def item_id(self):
        return self.original.item_id

    @property
    def active_item(self) -> Optional[OrderItem]:
        return self.current

    @property
    def audit_item(self) -> OrderItem:
        return self.current

    def to_dict(self):
        return {'kind': self.kind, 'original': self.original.to_dict(), 'current': self.current.to_dict()}


@dataclass(frozen=True)
class Added:
    item: OrderItem
    kind: ClassVar[str] = 'added'

    @property
    def item_id(self):
        return self.item.item_id

    @property
    def active_item(self) -> Optional[OrderItem]:
        return self.item

    @property
    def audit_item(self) -> OrderItem:
        return self.item

    def to_dict(self):
        return {'kind': self.kind, 'item': self.item.to_dict()}


@dataclass(frozen=True)
class Removed:
    original: OrderItem
    kind: ClassVar[str] = 'removed'

    @property
    def item_id(self):
        return self.original.item_id

    @property
    def active_item(self) -> Optional[OrderItem]:
        return None

    @property
    def audit_item(self) -> OrderItem:
        return self.original.with_changes(status=ItemStatus.REMOVED)

    def to_dict(self):
        return {'kind': self.kind, 'original': self.original.to_dict()}


ItemChange = Union[Unchanged, Modified, Added, Removed]


def change_from_dict(data) -> ItemChange:
    kind = data['kind']
    if kind == Unchanged.kind:
        return Unchanged(OrderItem.from_dict(data['original']))
    if kind == Modified.kind:
        return Modified(OrderItem.from_dict(data['original']), OrderItem.from_dict(data['current']))
    if kind == Added.kind:
        return Added(OrderItem.from_dict(data['item']))
    if kind == Removed.kind:
        return Removed(OrderItem.from_dict(data['original']))
    raise ValidationError(f"Unknown item change kind '{kind}'")


# ----------------------------------------------------------------------
# Modification requests
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class NewItem:
    """An item to append. Missing price or name is filled from the catalog."""
    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None
    product_name: Optional[str] = None
    unit_type: Optional[str] = None
    prescription: Optional[bool] = None


@dataclass(frozen=True)
class ItemModification:
    item_id: str
    new_quantity: Optional[int] = None
    new_unit_type: Optional[str] = None
    substitute_product_id: Optional[str] = None


@dataclass(frozen=True)
class OrderModification:
    order_id: str
    notes: str
    items_to_remove: Sequence[str] = ()
    items_to_add: Sequence[NewItem] = ()
    items_to_modify: Sequence[ItemModification] = ()


@dataclass
class ModificationSummary:
    removed: int = 0
    added: int = 0
    modified: int = 0


def _clamp_quantity(value) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid quantity: {value!r}')


def apply_modification(
    original_items: Sequence[OrderItem],
    modification: OrderModification,
    catalog: ProductCatalog,
    new_item_id: Callable[[], str],
) -> Tuple[List[ItemChange], ModificationSummary]:
    """
    Build the diff of one modification request against the original items.

    Each request starts again from the frozen originals, so the result
    replaces whatever diff the order held before. Order of application:
    removals, then quantity/unit/substitution changes, then additions.
    Quantities are clamped to >= 1. A line edited to its original values
    stays Unchanged.

    Raises:
        NotFoundError: Referenced item id is not an original item
        ValidationError: Same item both removed and modified
    """
    state: Dict[str, ItemChange] = {item.item_id: Unchanged(item) for item in original_items}
    summary = ModificationSummary()

    remove_ids = list(dict.fromkeys(modification.items_to_remove))
    modify_ids = [m.item_id for m in modification.items_to_modify]
    for item_id in remove_ids + modify_ids:
        if item_id not in state:
            raise NotFoundError('OrderItem', item_id)
    conflicting = set(remove_ids) & set(modify_ids)
    if conflicting:
        raise ValidationError(
            'Items cannot be removed and modified in the same request',
            details={'item_ids': sorted(conflicting)},
        )

    for item_id in remove_ids:
        state[item_id] = Removed(state[item_id].original)
        summary.removed += 1

    for request in modification.items_to_modify:
        change = state[request.item_id]
        updates = {}
        if request.new_quantity is not None:
            updates['quantity'] = _clamp_quantity(request.new_quantity)
        if request.new_unit_type is not None:
            updates['unit_type'] = request.new_unit_type
        if request.substitute_product_id:
            product = catalog.find_product(request.substitute_product_id)
            updates.update(
                product_id=product.product_id,
                product_name=product.name,
                unit_price=product.price,
                prescription=product.requires_prescription,
            )
        if not updates:
            continue

        updated = change.active_item.with_changes(**updates)
        if updated.same_line_as(change.original):
            state[request.item_id] = Unchanged(change.original)
        else:
            substituted = updated.product_id != change.original.product_id
            state[request.item_id] = Modified(
                change.original,
                updated.with_changes(status=ItemStatus.SUBSTITUTED if substituted else ItemStatus.MODIFIED),
            )
        summary.modified += 1

    for new in modification.items_to_add:
        product: Optional[CatalogProduct] = None
        if new.unit_price is None or not new.product_name:
            product = catalog.find_product(new.product_id)
        item = OrderItem(
            item_id=new_item_id(),
            product_id=new.product_id,
            product_name=new.product_name or product.name,
            quantity=_clamp_quantity(new.quantity),
            unit_price=new.unit_price if new.unit_price is not None else product.price,
            unit_type=new.unit_type or (product.unit_type if product else UnitType.BOX),
            prescription=new.prescription if new.prescription is not None else bool(
                product and product.requires_prescription
            ),
            status=ItemStatus.PENDING,
        )
        state[item.item_id] = Added(item)
        summary.added += 1

    return list(state.values()), summary


def restore_change(changes: Sequence[ItemChange], item_id: str) -> Tuple[List[ItemChange], bool]:
    """
    Revert one original item to its original values.

    Returns the new diff and whether anything changed; restoring an
    Unchanged item is a no-op.

    Raises:
        NotFoundError: Item id not on the order
        InvalidStateError: Item was added (it has no original to restore)
    """
    result = list(changes)
    for index, change in enumerate(result):
        if change.item_id != item_id:
            continue
        if isinstance(change, Added):
            raise InvalidStateError(
                f'Item {item_id} was added during modification and has no original to restore',
                details={'item_id': item_id},
            )
        if isinstance(change, Unchanged):
            return result, False
        result[index] = Unchanged(change.original)
        return result, True
    raise NotFoundError('OrderItem', item_id)


def active_total(changes: Sequence[ItemChange]) -> Decimal:
    return to_money(sum(
        (change.active_item.total_price for change in changes if change.active_item is not None),
        ZERO,
    ))


# ----------------------------------------------------------------------
# Aggregate
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class AgentNote:
    sequence: int
    timestamp: datetime
    kind: str
    text: str
    author_id: str
    author_role: str

    def to_dict(self):
        return {
            'sequence': self.sequence,
            'timestamp': _iso(self.timestamp),
            'kind': str(self.kind),
            'text': self.text,
            'author_id': self.author_id,
            'author_role': str(self.author_role),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            sequence=data['sequence'],
            timestamp=_parse_dt(data['timestamp']),
            kind=data['kind'],
            text=data['text'],
            author_id=data['author_id'],
            author_role=data['author_role'],
        )


@dataclass(frozen=True)
class Resolution:
    action: str
    notes: str
    resolved_by: str
    resolved_by_role: str
    resolved_at: datetime

    def to_dict(self):
        return {
            'action': str(self.action),
            'notes': self.notes,
            'resolved_by': self.resolved_by,
            'resolved_by_role': str(self.resolved_by_role),
            'resolved_at': _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            action=data['action'],
            notes=data['notes'],
            resolved_by=data['resolved_by'],
            resolved_by_role=data['resolved_by_role'],
            resolved_at=_parse_dt(data['resolved_at']),
        )


@dataclass(frozen=True)
class OrderSnapshot:
    """The order as placed, handed over when a pharmacy suspends it."""
    order_number: str
    pharmacy_id: str
    customer_id: str
    items: Sequence[OrderItem]
    customer_name: str = ''
    customer_phone: str = ''


@dataclass
class SuspendedOrder:
    """
    Business Rules:
    - original_items never change after suspension
    - total_amount == sum of total_price over items not removed
    - modified_items is None until the first modification
    """
    order_id: str
    order_number: str
    pharmacy_id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    original_items: Tuple[OrderItem, ...]
    changes: List[ItemChange]
    issue_type: str
    issue_notes: str
    priority: str
    status: str
    original_total_amount: Decimal
    total_amount: Decimal
    suspended_at: datetime
    updated_at: datetime
    modified_items: Optional[List[OrderItem]] = None
    escalation_level: int = 0
    customer_contacted: bool = False
    pharmacy_contacted: bool = False
    agent_notes: List[AgentNote] = field(default_factory=list)
    resolution: Optional[Resolution] = None

    @property
    def is_open(self) -> bool:
        return self.status in SuspendedOrderStatus.open_statuses()

    @property
    def active_items(self) -> List[OrderItem]:
        return [c.active_item for c in self.changes if c.active_item is not None]

    def refresh_totals(self) -> None:
        """Recompute total and the audit list from the diff."""
        self.total_amount = active_total(self.changes)
        self.modified_items = [change.audit_item for change in self.changes]

    def add_note(self, kind, text, actor, timestamp) -> AgentNote:
        sequence = self.agent_notes[-1].sequence + 1 if self.agent_notes else 1
        note = AgentNote(
            sequence=sequence,
            timestamp=timestamp,
            kind=kind,
            text=text,
            author_id=actor.actor_id,
            author_role=actor.role,
        )
        self.agent_notes.append(note)
        return note

    def last_activity_at(self) -> datetime:
        if self.agent_notes:
            return max(self.updated_at, self.agent_notes[-1].timestamp)
        return self.updated_at


@dataclass(frozen=True)
class SuspendedOrderFilter:
    statuses: Optional[frozenset] = None
    priorities: Optional[frozenset] = None
    issue_types: Optional[frozenset] = None
    pharmacy_id: Optional[str] = None
    customer_id: Optional[str] = None
    min_escalation_level: Optional[int] = None

    def matches(self, order: SuspendedOrder) -> bool:
        if self.statuses and order.status not in self.statuses:
            return False
        if self.priorities and order.priority not in self.priorities:
            return False
        if self.issue_types and order.issue_type not in self.issue_types:
            return False
        if self.pharmacy_id and order.pharmacy_id != self.pharmacy_id:
            return False
        if self.customer_id and order.customer_id != self.customer_id:
            return False
        if self.min_escalation_level is not None and order.escalation_level < self.min_escalation_level:
            return False
        return True


@dataclass
class SuspendedOrderStatistics:
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_issue_type: Dict[str, int]
    escalated: int
    average_resolution_hours: Optional[float]
