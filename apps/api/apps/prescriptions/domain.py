"""
Prescription workflow domain: statuses, transition table and records.

The transition table and the role table are the single place where
lifecycle legality is decided; the engine only consults them.
"""
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import models
from django.utils.dateparse import parse_datetime
from django.utils.translation import gettext_lazy as _

from apps.catalog.domain import CatalogProduct
from apps.core.actors import ActorRole
from apps.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from apps.core.money import ZERO, line_total, to_money

from .interactions import Interaction, Medicine


class PrescriptionStatus(models.TextChoices):
    """
    Prescription status choices with state machine.

    Transitions:
    - submitted -> reviewing
    - reviewing -> approved, rejected, suspended
    - suspended -> reviewing
    - approved -> preparing -> ready -> out-for-delivery -> delivered
    - any non-terminal -> cancelled
    - delivered, cancelled, rejected are terminal
    """
    SUBMITTED = 'submitted', _('Submitted')
    REVIEWING = 'reviewing', _('Reviewing')
    APPROVED = 'approved', _('Approved')
    REJECTED = 'rejected', _('Rejected')
    SUSPENDED = 'suspended', _('Suspended')
    PREPARING = 'preparing', _('Preparing')
    READY = 'ready', _('Ready')
    OUT_FOR_DELIVERY = 'out-for-delivery', _('Out for delivery')
    DELIVERED = 'delivered', _('Delivered')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def terminal_statuses(cls):
        return {cls.DELIVERED, cls.CANCELLED, cls.REJECTED}

    @classmethod
    def get_valid_transitions(cls):
        transitions = {
            cls.SUBMITTED: {cls.REVIEWING},
            cls.REVIEWING: {cls.APPROVED, cls.REJECTED, cls.SUSPENDED},
            cls.SUSPENDED: {cls.REVIEWING},
            cls.APPROVED: {cls.PREPARING},
            cls.PREPARING: {cls.READY},
            cls.READY: {cls.OUT_FOR_DELIVERY},
            cls.OUT_FOR_DELIVERY: {cls.DELIVERED},
        }
        for status in cls:
            if status not in cls.terminal_statuses():
                transitions.setdefault(status, set()).add(cls.CANCELLED)
        for status in cls.terminal_statuses():
            transitions[status] = set()
        return transitions


class Urgency(models.TextChoices):
    URGENT = 'urgent', _('Urgent')
    NORMAL = 'normal', _('Normal')
    ROUTINE = 'routine', _('Routine')

    @classmethod
    def rank(cls, value) -> int:
        return {cls.URGENT: 3, cls.NORMAL: 2, cls.ROUTINE: 1}[cls(value)]


class FileType(models.TextChoices):
    IMAGE = 'image', _('Image')
    PDF = 'pdf', _('PDF')


@dataclass(frozen=True)
class WorkflowStep:
    status: str
    title: str
    estimated_hours: float
    roles: frozenset


# Roles allowed to move a prescription INTO each status. Admin and the
# system actor may perform every step.
WORKFLOW_STEPS = {
    PrescriptionStatus.SUBMITTED: WorkflowStep(
        PrescriptionStatus.SUBMITTED, 'Prescription submitted', 0,
        frozenset({ActorRole.CUSTOMER, ActorRole.APP_SERVICES})),
    PrescriptionStatus.REVIEWING: WorkflowStep(
        PrescriptionStatus.REVIEWING, 'Under review', 2,
        frozenset({ActorRole.PRESCRIPTION_READER})),
    PrescriptionStatus.APPROVED: WorkflowStep(
        PrescriptionStatus.APPROVED, 'Approved', 0,
        frozenset({ActorRole.PRESCRIPTION_READER})),
    PrescriptionStatus.REJECTED: WorkflowStep(
        PrescriptionStatus.REJECTED, 'Rejected', 0,
        frozenset({ActorRole.PRESCRIPTION_READER})),
    PrescriptionStatus.SUSPENDED: WorkflowStep(
        PrescriptionStatus.SUSPENDED, 'Suspended for clarification', 4,
        frozenset({ActorRole.PRESCRIPTION_READER})),
    PrescriptionStatus.PREPARING: WorkflowStep(
        PrescriptionStatus.PREPARING, 'Pharmacy preparing order', 1,
        frozenset({ActorRole.PHARMACY})),
    PrescriptionStatus.READY: WorkflowStep(
        PrescriptionStatus.READY, 'Ready for pickup', 0,
        frozenset({ActorRole.PHARMACY})),
    PrescriptionStatus.OUT_FOR_DELIVERY: WorkflowStep(
        PrescriptionStatus.OUT_FOR_DELIVERY, 'Out for delivery', 1,
        frozenset({ActorRole.PHARMACY, ActorRole.DELIVERY})),
    PrescriptionStatus.DELIVERED: WorkflowStep(
        PrescriptionStatus.DELIVERED, 'Delivered', 0,
        frozenset({ActorRole.DELIVERY})),
    PrescriptionStatus.CANCELLED: WorkflowStep(
        PrescriptionStatus.CANCELLED, 'Cancelled', 0,
        frozenset({ActorRole.CUSTOMER, ActorRole.APP_SERVICES})),
}

URGENCY_MULTIPLIERS = {
    Urgency.ROUTINE: 1.5,
    Urgency.NORMAL: 1.0,
    Urgency.URGENT: 0.5,
}

# Roles that may edit the medicine list while a prescription is in review
MEDICINE_EDITOR_ROLES = frozenset({ActorRole.PRESCRIPTION_READER, ActorRole.PHARMACY})
MEDICINE_EDITABLE_STATUSES = frozenset({PrescriptionStatus.REVIEWING, PrescriptionStatus.SUSPENDED})
READER_ASSIGNABLE_STATUSES = frozenset({PrescriptionStatus.SUBMITTED, PrescriptionStatus.SUSPENDED})
READER_ASSIGNER_ROLES = frozenset({ActorRole.APP_SERVICES, ActorRole.PRESCRIPTION_READER})


def role_may_enter(role, status) -> bool:
    if role in (ActorRole.ADMIN, ActorRole.SYSTEM):
        return True
    return role in WORKFLOW_STEPS[PrescriptionStatus(status)].roles


def check_transition(from_status, to_status, role) -> None:
    """
    Raise unless ``role`` may move a prescription from ``from_status``
    to ``to_status``.

    Raises:
        InvalidTransitionError: Pair not in the transition table
        PermissionDeniedError: Pair is legal but not for this role
    """
    try:
        target = PrescriptionStatus(to_status)
    except ValueError:
        raise InvalidTransitionError(str(from_status), str(to_status), f"Unknown status '{to_status}'")
    allowed = PrescriptionStatus.get_valid_transitions()[PrescriptionStatus(from_status)]
    if target not in allowed:
        raise InvalidTransitionError(str(from_status), str(to_status))
    if not role_may_enter(role, target):
        raise PermissionDeniedError(
            f"Role '{role}' cannot move a prescription to '{target}'",
            details={'role': str(role), 'to_status': str(target)},
        )


def next_possible_steps(status, role) -> List[str]:
    allowed = PrescriptionStatus.get_valid_transitions()[PrescriptionStatus(status)]
    return sorted(str(s) for s in allowed if role_may_enter(role, s))


def estimate_completion(status, urgency, now: datetime) -> datetime:
    step = WORKFLOW_STEPS[PrescriptionStatus(status)]
    hours = step.estimated_hours * URGENCY_MULTIPLIERS[Urgency(urgency)]
    return now + timedelta(hours=hours)


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class FileRef:
    file_id: str
    name: str
    file_type: str
    url: str = ''

    def __post_init__(self):
        if not self.file_id or not self.name:
            raise ValidationError('Prescription files need an id and a name')
        if self.file_type not in FileType.values:
            raise ValidationError(f"Unsupported file type '{self.file_type}'")

    def to_dict(self):
        return {'file_id': self.file_id, 'name': self.name, 'file_type': str(self.file_type), 'url': self.url}

    @classmethod
    def from_dict(cls, data):
        return cls(file_id=data['file_id'], name=data['name'], file_type=data['file_type'], url=data.get('url', ''))


@dataclass(frozen=True)
class PatientInfo:
    patient_name: str
    customer_id: str
    customer_name: str = ''
    customer_phone: str = ''
    doctor_name: Optional[str] = None
    hospital_clinic: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if not (self.patient_name or '').strip():
            raise ValidationError('Patient name is required')
        if not self.customer_id:
            raise ValidationError('Customer id is required')


# Fields a caller may patch on a processed medicine
MEDICINE_PATCH_FIELDS = frozenset({
    'quantity', 'dosage', 'instructions', 'price', 'is_available',
    'pharmacy_id', 'frequency', 'duration', 'alternatives',
})


@dataclass(frozen=True)
class ProcessedMedicine:
    """A medicine line the reader built for the prescription."""
    medicine_id: str
    product_id: str
    product_name: str
    quantity: int
    price: Decimal
    dosage: str = ''
    instructions: str = ''
    is_available: bool = True
    pharmacy_id: str = ''
    frequency: str = ''
    duration: str = ''
    alternatives: tuple = ()
    active_ingredient: str = ''
    category: str = ''

    def __post_init__(self):
        if not self.medicine_id or not self.product_id:
            raise ValidationError('Medicine requires medicine_id and product_id')
        if not (self.product_name or '').strip():
            raise ValidationError('Medicine requires a product name')
        try:
            quantity = int(self.quantity)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid quantity: {self.quantity!r}')
        if quantity < 1:
            raise ValidationError('Medicine quantity must be at least 1')
        object.__setattr__(self, 'quantity', quantity)
        object.__setattr__(self, 'price', to_money(self.price))
        if self.price < 0:
            raise ValidationError('Medicine price cannot be negative')
        object.__setattr__(self, 'alternatives', tuple(self.alternatives))

    @property
    def line_total(self) -> Decimal:
        return line_total(self.quantity, self.price)

    @property
    def has_instructions(self) -> bool:
        return bool((self.instructions or '').strip())

    def patched(self, patch: Dict[str, Any]) -> 'ProcessedMedicine':
        unknown = set(patch) - MEDICINE_PATCH_FIELDS
        if unknown:
            raise ValidationError(
                'Cannot update medicine fields: ' + ', '.join(sorted(unknown)),
                details={'fields': sorted(unknown)},
            )
        return replace(self, **patch)

    def as_medicine(self) -> Medicine:
        return Medicine(
            medicine_id=self.medicine_id,
            name=self.product_name,
            active_ingredient=self.active_ingredient,
            category=self.category,
        )

    @classmethod
    def from_catalog_product(
        cls,
        product: CatalogProduct,
        medicine_id: str,
        quantity: int,
        instructions: str = '',
        dosage: Optional[str] = None,
        pharmacy_id: str = '',
        frequency: str = '',
        duration: str = '',
    ) -> 'ProcessedMedicine':
        return cls(
            medicine_id=medicine_id,
            product_id=product.product_id,
            product_name=product.name,
            quantity=quantity,
            price=product.price,
            dosage=product.dosage if dosage is None else dosage,
            instructions=instructions,
            pharmacy_id=pharmacy_id,
            frequency=frequency,
            duration=duration,
            active_ingredient=product.active_ingredient,
            category=product.category,
        )

    def to_dict(self):
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['price'] = str(self.price)
        data['alternatives'] = list(self.alternatives)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(**{f.name: data[f.name] for f in fields(cls) if f.name in data})


@dataclass(frozen=True)
class QualityChecks:
    """Reviewer checklist; every flag must be true before approval."""
    prescription_clear: bool = False
    dosage_verified: bool = False
    interactions_checked: bool = False
    patient_info_confirmed: bool = False

    def failed_checks(self) -> List[str]:
        return [f.name for f in fields(self) if not getattr(self, f.name)]

    @property
    def all_passed(self) -> bool:
        return not self.failed_checks()


@dataclass(frozen=True)
class StatusHistoryEntry:
    sequence: int
    status: str
    timestamp: datetime
    user_id: str
    user_name: str
    user_role: str
    notes: Optional[str] = None

    def to_dict(self):
        return {
            'sequence': self.sequence,
            'status': str(self.status),
            'timestamp': _iso(self.timestamp),
            'user_id': self.user_id,
            'user_name': self.user_name,
            'user_role': str(self.user_role),
            'notes': self.notes,
        }


@dataclass(frozen=True)
class SuspensionData:
    category: str
    reason: str
    suspended_by: str
    suspended_at: datetime

    def to_dict(self):
        return {
            'category': self.category,
            'reason': self.reason,
            'suspended_by': self.suspended_by,
            'suspended_at': _iso(self.suspended_at),
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            category=data['category'],
            reason=data['reason'],
            suspended_by=data['suspended_by'],
            suspended_at=_parse_dt(data['suspended_at']),
        )


@dataclass
class PrescriptionWorkflow:
    """
    Prescription aggregate.

    Business Rules:
    - current_status always equals the status of the last history entry
    - approved requires at least one medicine, each with instructions
    - rejected requires a rejection_reason
    - status_history is append-only with strictly increasing sequence
    """
    id: str
    patient_name: str
    customer_id: str
    customer_name: str
    customer_phone: str
    files: List[FileRef]
    current_status: str
    urgency: str
    created_at: datetime
    updated_at: datetime
    doctor_name: Optional[str] = None
    hospital_clinic: Optional[str] = None
    notes: Optional[str] = None
    processed_medicines: List[ProcessedMedicine] = field(default_factory=list)
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    assigned_reader_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    suspension_data: Optional[SuspensionData] = None
    interaction_warnings: List[Interaction] = field(default_factory=list)
    category_warnings: List[str] = field(default_factory=list)
    delivery_fee: Decimal = ZERO
    total_amount: Decimal = ZERO
    estimated_completion: Optional[datetime] = None
    actual_completion: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.current_status in PrescriptionStatus.terminal_statuses()

    @property
    def last_history_entry(self) -> Optional[StatusHistoryEntry]:
        return self.status_history[-1] if self.status_history else None

    @property
    def submitted_at(self) -> datetime:
        return self.status_history[0].timestamp if self.status_history else self.created_at

    def find_medicine(self, medicine_id: str) -> ProcessedMedicine:
        for medicine in self.processed_medicines:
            if medicine.medicine_id == medicine_id:
                return medicine
        raise NotFoundError('Medicine', medicine_id)

    def recompute_total(self) -> Decimal:
        self.total_amount = to_money(
            sum((m.line_total for m in self.processed_medicines), ZERO) + self.delivery_fee
        )
        return self.total_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'patient_name': self.patient_name,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'doctor_name': self.doctor_name,
            'hospital_clinic': self.hospital_clinic,
            'notes': self.notes,
            'files': [f.to_dict() for f in self.files],
            'current_status': str(self.current_status),
            'urgency': str(self.urgency),
            'processed_medicines': [m.to_dict() for m in self.processed_medicines],
            'status_history': [e.to_dict() for e in self.status_history],
            'assigned_reader_id': self.assigned_reader_id,
            'rejection_reason': self.rejection_reason,
            'suspension_data': self.suspension_data.to_dict() if self.suspension_data else None,
            'interaction_warnings': [i.to_dict() for i in self.interaction_warnings],
            'category_warnings': list(self.category_warnings),
            'delivery_fee': str(self.delivery_fee),
            'total_amount': str(self.total_amount),
            'estimated_completion': _iso(self.estimated_completion),
            'actual_completion': _iso(self.actual_completion),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


@dataclass(frozen=True)
class PrescriptionFilter:
    statuses: Optional[frozenset] = None
    urgencies: Optional[frozenset] = None
    customer_id: Optional[str] = None
    assigned_reader_id: Optional[str] = None
    query: Optional[str] = None
    submitted_after: Optional[datetime] = None
    submitted_before: Optional[datetime] = None

    def matches(self, record: PrescriptionWorkflow) -> bool:
        if self.statuses and record.current_status not in self.statuses:
            return False
        if self.urgencies and record.urgency not in self.urgencies:
            return False
        if self.customer_id and record.customer_id != self.customer_id:
            return False
        if self.assigned_reader_id and record.assigned_reader_id != self.assigned_reader_id:
            return False
        if self.submitted_after and record.created_at < self.submitted_after:
            return False
        if self.submitted_before and record.created_at > self.submitted_before:
            return False
        if self.query and not matches_query(record, self.query):
            return False
        return True


def matches_query(record: PrescriptionWorkflow, query: str) -> bool:
    needle = query.strip().lower()
    haystack = (record.id, record.patient_name, record.customer_name, record.doctor_name or '')
    return any(needle in (value or '').lower() for value in haystack)


SORT_KEYS = {
    'created_at': lambda r: r.created_at,
    'updated_at': lambda r: r.updated_at,
    'urgency': lambda r: Urgency.rank(r.urgency),
    'patient_name': lambda r: r.patient_name.lower(),
    'total_amount': lambda r: r.total_amount,
    'status': lambda r: str(r.current_status),
}


@dataclass
class PrescriptionAnalytics:
    total: int
    status_counts: Dict[str, int]
    urgency_counts: Dict[str, int]
    pending_review: int
    average_processing_hours: Optional[float]
    completion_rate: float
