"""
Prescription workflow service layer.

PrescriptionWorkflowEngine owns the lifecycle of a submitted prescription:
reader assignment, medicine list construction, the quality-gated review
state machine and delivery tracking.

Every mutating operation is a single read-modify-write under the
repository's per-prescription lock. A failed operation never saves, so
the stored record is left exactly as it was.
"""
import uuid
from typing import Callable, Iterable, List, Optional, Union

from apps.catalog.domain import InMemoryProductCatalog, ProductCatalog
from apps.core.actors import Actor, ActorRole
from apps.core.clock import not_before, utc_now
from apps.core.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    PermissionDeniedError,
    QualityGateError,
    ValidationError,
)
from apps.core.money import ZERO, to_money
from apps.core.observability import get_sanitized_logger, log_domain_event, metrics, trace_span
from apps.core.observability.events import log_prescription_transition, log_quality_gate_blocked

from .domain import (
    MEDICINE_EDITABLE_STATUSES,
    MEDICINE_EDITOR_ROLES,
    READER_ASSIGNABLE_STATUSES,
    READER_ASSIGNER_ROLES,
    SORT_KEYS,
    FileRef,
    PatientInfo,
    PrescriptionAnalytics,
    PrescriptionFilter,
    PrescriptionStatus,
    PrescriptionWorkflow,
    ProcessedMedicine,
    QualityChecks,
    StatusHistoryEntry,
    SuspensionData,
    Urgency,
    check_transition,
    estimate_completion,
    next_possible_steps,
)
from .interactions import MedicineInteractionService
from .repositories import PrescriptionRepository

logger = get_sanitized_logger(__name__)

# Statuses visible to fulfilment roles
FULFILMENT_STATUSES = frozenset({
    PrescriptionStatus.APPROVED,
    PrescriptionStatus.PREPARING,
    PrescriptionStatus.READY,
    PrescriptionStatus.OUT_FOR_DELIVERY,
    PrescriptionStatus.DELIVERED,
})


def _new_id(prefix: str) -> str:
    return f'{prefix}-{uuid.uuid4().hex[:12].upper()}'


class PrescriptionWorkflowEngine:
    """
    Lifecycle owner for prescriptions.

    Collaborators are injected: the repository (storage), the product
    catalog (template pricing) and the interaction checker (advisory).
    """

    def __init__(
        self,
        repository: PrescriptionRepository,
        catalog: Optional[ProductCatalog] = None,
        interaction_service: Optional[MedicineInteractionService] = None,
        clock: Callable = utc_now,
        id_factory: Callable[[str], str] = _new_id,
    ):
        self.repository = repository
        self.catalog = catalog or InMemoryProductCatalog()
        self.interaction_service = interaction_service or MedicineInteractionService()
        self.clock = clock
        self.new_id = id_factory

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    @metrics.track_duration('prescriptions', 'submit')
    def submit(
        self,
        patient_info: PatientInfo,
        files: Iterable[Union[FileRef, dict]],
        urgency: str = Urgency.NORMAL,
        actor: Optional[Actor] = None,
        delivery_fee=ZERO,
    ) -> PrescriptionWorkflow:
        """
        Create a prescription in ``submitted`` with a one-entry history.

        Raises:
            ValidationError: No files, unknown urgency or malformed file refs
        """
        files = [f if isinstance(f, FileRef) else FileRef.from_dict(f) for f in (files or [])]
        if not files:
            raise ValidationError('At least one prescription file is required')
        if urgency not in Urgency.values:
            raise ValidationError(f"Unknown urgency '{urgency}'")
        actor = actor or Actor(actor_id=patient_info.customer_id, role=ActorRole.CUSTOMER,
                               name=patient_info.customer_name)

        now = self.clock()
        record = PrescriptionWorkflow(
            id=self.new_id('RX'),
            patient_name=patient_info.patient_name.strip(),
            customer_id=patient_info.customer_id,
            customer_name=patient_info.customer_name,
            customer_phone=patient_info.customer_phone,
            doctor_name=patient_info.doctor_name,
            hospital_clinic=patient_info.hospital_clinic,
            notes=patient_info.notes,
            files=files,
            current_status=PrescriptionStatus.SUBMITTED,
            urgency=Urgency(urgency),
            delivery_fee=to_money(delivery_fee),
            created_at=now,
            updated_at=now,
        )
        record.status_history.append(StatusHistoryEntry(
            sequence=1,
            status=PrescriptionStatus.SUBMITTED,
            timestamp=now,
            user_id=actor.actor_id,
            user_name=actor.name,
            user_role=actor.role,
            notes='Prescription submitted',
        ))
        record.recompute_total()
        record.estimated_completion = estimate_completion(PrescriptionStatus.SUBMITTED, record.urgency, now)

        with trace_span('prescriptions.submit', attributes={'prescription_id': record.id}):
            self.repository.add(record)

        metrics.prescription_submissions_total.labels(urgency=str(record.urgency)).inc()
        log_domain_event(
            'prescription_submitted',
            entity_type='Prescription',
            entity_id=record.id,
            actor=actor,
            urgency=str(record.urgency),
            files_count=len(files),
        )
        return record

    def assign_reader(self, prescription_id: str, reader_id: str, actor: Actor) -> PrescriptionWorkflow:
        """
        Assign a prescription reader.

        Raises:
            PermissionDeniedError: Role may not assign readers
            ValidationError: Blank reader id
            InvalidStateError: Prescription is not submitted or suspended
        """
        if not actor.is_admin and actor.role not in READER_ASSIGNER_ROLES:
            raise PermissionDeniedError(
                f"Role '{actor.role}' cannot assign prescription readers",
                details={'role': str(actor.role)},
            )
        if not reader_id:
            raise ValidationError('Reader id is required')

        with self.repository.locked(prescription_id):
            record = self.repository.get(prescription_id)
            if record.current_status not in READER_ASSIGNABLE_STATUSES:
                raise InvalidStateError(
                    f"Cannot assign a reader while prescription is '{record.current_status}'",
                    details={'status': str(record.current_status)},
                )
            previous_reader = record.assigned_reader_id
            record.assigned_reader_id = reader_id
            record.updated_at = self._timestamp(record)
            self.repository.save(record)

        log_domain_event(
            'prescription_reader_assigned',
            entity_type='Prescription',
            entity_id=prescription_id,
            actor=actor,
            reader_id=reader_id,
            previous_reader_id=previous_reader,
        )
        return record

    # ------------------------------------------------------------------
    # Medicine list
    # ------------------------------------------------------------------

    def add_medicine(
        self,
        prescription_id: str,
        medicine: Union[ProcessedMedicine, dict],
        actor: Actor,
    ) -> PrescriptionWorkflow:
        if isinstance(medicine, dict):
            data = dict(medicine)
            data.setdefault('medicine_id', self.new_id('MED'))
            medicine = ProcessedMedicine.from_dict(data)

        def mutate(record):
            if any(m.medicine_id == medicine.medicine_id for m in record.processed_medicines):
                raise ValidationError(f'Medicine {medicine.medicine_id} is already on the prescription')
            record.processed_medicines.append(medicine)

        return self._edit_medicines(prescription_id, actor, mutate, 'add')

    def add_medicine_from_catalog(
        self,
        prescription_id: str,
        product_id: str,
        quantity: int,
        actor: Actor,
        instructions: str = '',
        dosage: Optional[str] = None,
        frequency: str = '',
        duration: str = '',
        pharmacy_id: str = '',
    ) -> PrescriptionWorkflow:
        """
        Add a medicine priced and named from the catalog.

        Raises:
            NotFoundError: Unknown product or prescription
        """
        product = self.catalog.find_product(product_id)
        medicine = ProcessedMedicine.from_catalog_product(
            product,
            medicine_id=self.new_id('MED'),
            quantity=quantity,
            instructions=instructions,
            dosage=dosage,
            pharmacy_id=pharmacy_id,
            frequency=frequency,
            duration=duration,
        )
        return self.add_medicine(prescription_id, medicine, actor)

    def remove_medicine(self, prescription_id: str, medicine_id: str, actor: Actor) -> PrescriptionWorkflow:
        def mutate(record):
            record.find_medicine(medicine_id)
            record.processed_medicines = [
                m for m in record.processed_medicines if m.medicine_id != medicine_id
            ]

        return self._edit_medicines(prescription_id, actor, mutate, 'remove')

    def update_medicine(
        self,
        prescription_id: str,
        medicine_id: str,
        patch: dict,
        actor: Actor,
    ) -> PrescriptionWorkflow:
        def mutate(record):
            current = record.find_medicine(medicine_id)
            updated = current.patched(patch)
            record.processed_medicines = [
                updated if m.medicine_id == medicine_id else m for m in record.processed_medicines
            ]

        return self._edit_medicines(prescription_id, actor, mutate, 'update')

    def _edit_medicines(self, prescription_id, actor, mutate, operation) -> PrescriptionWorkflow:
        if not actor.is_admin and actor.role not in MEDICINE_EDITOR_ROLES:
            raise PermissionDeniedError(
                f"Role '{actor.role}' cannot edit prescription medicines",
                details={'role': str(actor.role)},
            )

        with self.repository.locked(prescription_id):
            record = self.repository.get(prescription_id)
            if record.current_status not in MEDICINE_EDITABLE_STATUSES:
                raise InvalidStateError(
                    f"Medicines can only be edited while reviewing or suspended, not '{record.current_status}'",
                    details={'status': str(record.current_status)},
                )
            mutate(record)
            record.recompute_total()
            self._refresh_interactions(record)
            record.updated_at = self._timestamp(record)
            self.repository.save(record)

        log_domain_event(
            f'prescription_medicine_{operation}',
            entity_type='Prescription',
            entity_id=prescription_id,
            actor=actor,
            medicines_count=len(record.processed_medicines),
            total_amount=str(record.total_amount),
        )
        return record

    def _refresh_interactions(self, record: PrescriptionWorkflow) -> None:
        """Re-run the advisory interaction check; never raises on findings."""
        if len(record.processed_medicines) < 2:
            record.interaction_warnings = []
            record.category_warnings = []
            return

        report = self.interaction_service.check_interactions(
            [m.as_medicine() for m in record.processed_medicines]
        )
        previous = set(record.interaction_warnings)
        for interaction in report.interactions:
            if interaction not in previous:
                metrics.prescription_interaction_warnings_total.labels(
                    severity=str(interaction.severity)
                ).inc()
        record.interaction_warnings = list(report.interactions)
        record.category_warnings = list(report.warnings)

        if report.has_interactions:
            log_domain_event(
                'prescription_interactions_detected',
                entity_type='Prescription',
                entity_id=record.id,
                result='warning',
                interactions_count=len(report.interactions),
            )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @metrics.track_duration('prescriptions', 'update_status')
    def update_status(
        self,
        prescription_id: str,
        new_status: str,
        actor: Actor,
        notes: Optional[str] = None,
        quality_checks: Optional[QualityChecks] = None,
        rejection_reason: Optional[str] = None,
        suspension_category: Optional[str] = None,
    ) -> PrescriptionWorkflow:
        """
        Move a prescription to ``new_status``.

        Business Rules:
            1. The (current, new) pair must be in the transition table
            2. The actor's role must be allowed to enter the new status
               and a customer may only move its own prescriptions
            3. approved requires >=1 medicine, instructions on every
               medicine and all four quality checks
            4. rejected requires a non-empty rejection reason
            5. Exactly one history entry is appended, with a timestamp
               never earlier than the previous entry
            6. A reader starting review claims an unassigned prescription

        Raises:
            InvalidTransitionError: Pair not in the transition table
            PermissionDeniedError: Role may not perform this step, or
                customer does not own the prescription
            QualityGateError: Approval checks failing (all listed)
            ValidationError: Rejection without a reason
        """
        with trace_span('prescriptions.update_status', attributes={
            'prescription_id': prescription_id,
            'to_status': str(new_status),
        }):
            with self.repository.locked(prescription_id):
                record = self.repository.get(prescription_id)
                from_status = record.current_status

                try:
                    check_transition(from_status, new_status, actor.role)
                except InvalidTransitionError:
                    metrics.prescription_transitions_total.labels(
                        from_status=str(from_status), to_status=str(new_status), result='invalid'
                    ).inc()
                    log_prescription_transition(prescription_id, from_status, new_status, actor, result='blocked')
                    raise

                if actor.role == ActorRole.CUSTOMER and record.customer_id != actor.actor_id:
                    log_prescription_transition(prescription_id, from_status, new_status, actor, result='blocked')
                    raise PermissionDeniedError(
                        'Customers can only change their own prescriptions',
                        details={'prescription_id': prescription_id},
                    )

                target = PrescriptionStatus(new_status)
                timestamp = self._timestamp(record)

                if target == PrescriptionStatus.APPROVED:
                    failed = self._failed_approval_checks(record, quality_checks)
                    if failed:
                        for check in failed:
                            metrics.prescription_quality_gate_blocked_total.labels(check=check).inc()
                        metrics.prescription_transitions_total.labels(
                            from_status=str(from_status), to_status=str(target), result='blocked'
                        ).inc()
                        log_quality_gate_blocked(prescription_id, failed, actor)
                        raise QualityGateError(failed)

                if target == PrescriptionStatus.REJECTED:
                    reason = (rejection_reason or '').strip()
                    if not reason:
                        raise ValidationError('A rejection reason is required to reject a prescription')
                    record.rejection_reason = reason

                if target == PrescriptionStatus.REVIEWING and actor.role == ActorRole.PRESCRIPTION_READER:
                    record.assigned_reader_id = record.assigned_reader_id or actor.actor_id

                if target == PrescriptionStatus.SUSPENDED:
                    record.suspension_data = SuspensionData(
                        category=suspension_category or 'other',
                        reason=(notes or '').strip(),
                        suspended_by=actor.actor_id,
                        suspended_at=timestamp,
                    )

                record.status_history.append(StatusHistoryEntry(
                    sequence=record.last_history_entry.sequence + 1,
                    status=target,
                    timestamp=timestamp,
                    user_id=actor.actor_id,
                    user_name=actor.name,
                    user_role=actor.role,
                    notes=notes,
                ))
                record.current_status = target
                record.updated_at = timestamp
                if target == PrescriptionStatus.DELIVERED:
                    record.actual_completion = timestamp
                elif not record.is_terminal:
                    record.estimated_completion = estimate_completion(target, record.urgency, timestamp)

                self.repository.save(record)

        metrics.prescription_transitions_total.labels(
            from_status=str(from_status), to_status=str(target), result='success'
        ).inc()
        log_prescription_transition(prescription_id, from_status, target, actor)
        return record

    def _failed_approval_checks(self, record, quality_checks: Optional[QualityChecks]) -> List[str]:
        failed = []
        if not record.processed_medicines:
            failed.append('processed_medicines')
        elif not all(m.has_instructions for m in record.processed_medicines):
            failed.append('medicine_instructions')
        failed.extend((quality_checks or QualityChecks()).failed_checks())
        return failed

    def _timestamp(self, record: PrescriptionWorkflow):
        last = record.last_history_entry
        floor = max(record.updated_at, last.timestamp) if last else record.updated_at
        return not_before(self.clock(), floor)

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def get(self, prescription_id: str) -> PrescriptionWorkflow:
        return self.repository.get(prescription_id)

    def list_by_status(self, statuses: Iterable[str]) -> List[PrescriptionWorkflow]:
        return self.filter_and_sort(PrescriptionFilter(statuses=frozenset(statuses)))

    def filter_and_sort(
        self,
        criteria: Optional[PrescriptionFilter] = None,
        sort_key: str = 'created_at',
        sort_order: str = 'desc',
    ) -> List[PrescriptionWorkflow]:
        """
        Filter then sort. Urgency sorts by rank urgent(3) > normal(2) >
        routine(1); ties fall back to creation time.

        Raises:
            ValidationError: Unknown sort key or order
        """
        if sort_key not in SORT_KEYS:
            raise ValidationError(f"Unknown sort key '{sort_key}'", details={'allowed': sorted(SORT_KEYS)})
        if sort_order not in ('asc', 'desc'):
            raise ValidationError(f"Unknown sort order '{sort_order}'")

        criteria = criteria or PrescriptionFilter()
        key = SORT_KEYS[sort_key]
        records = self.repository.filter(criteria.matches)
        return sorted(records, key=lambda r: (key(r), r.created_at), reverse=(sort_order == 'desc'))

    def search(self, query: str) -> List[PrescriptionWorkflow]:
        if not (query or '').strip():
            return []
        return self.filter_and_sort(PrescriptionFilter(query=query))

    def urgent(self) -> List[PrescriptionWorkflow]:
        """Open prescriptions flagged urgent, oldest first."""
        return [
            r for r in self.filter_and_sort(
                PrescriptionFilter(urgencies=frozenset({Urgency.URGENT})), sort_order='asc'
            )
            if not r.is_terminal
        ]

    def list_for_actor(self, actor: Actor) -> List[PrescriptionWorkflow]:
        if actor.is_admin or actor.role == ActorRole.APP_SERVICES:
            return self.filter_and_sort()
        if actor.role == ActorRole.CUSTOMER:
            return self.filter_and_sort(PrescriptionFilter(customer_id=actor.actor_id))
        if actor.role == ActorRole.PRESCRIPTION_READER:
            return [
                r for r in self.filter_and_sort()
                if r.assigned_reader_id == actor.actor_id
                or (r.assigned_reader_id is None and r.current_status == PrescriptionStatus.SUBMITTED)
            ]
        if actor.role in (ActorRole.PHARMACY, ActorRole.DELIVERY):
            return self.filter_and_sort(PrescriptionFilter(statuses=FULFILMENT_STATUSES))
        return []

    def next_possible_steps(self, prescription_id: str, actor: Actor) -> List[str]:
        record = self.repository.get(prescription_id)
        return next_possible_steps(record.current_status, actor.role)

    def analytics(self) -> PrescriptionAnalytics:
        records = self.repository.all()
        status_counts = {str(s): 0 for s in PrescriptionStatus}
        urgency_counts = {str(u): 0 for u in Urgency}
        durations = []
        for record in records:
            status_counts[str(record.current_status)] += 1
            urgency_counts[str(record.urgency)] += 1
            if record.current_status == PrescriptionStatus.DELIVERED:
                delivered_at = record.last_history_entry.timestamp
                durations.append((delivered_at - record.submitted_at).total_seconds() / 3600)

        total = len(records)
        delivered = status_counts[PrescriptionStatus.DELIVERED]
        return PrescriptionAnalytics(
            total=total,
            status_counts=status_counts,
            urgency_counts=urgency_counts,
            pending_review=status_counts[PrescriptionStatus.SUBMITTED] + status_counts[PrescriptionStatus.REVIEWING],
            average_processing_hours=round(sum(durations) / len(durations), 2) if durations else None,
            completion_rate=round(delivered / total * 100, 1) if total else 0.0,
        )


def get_default_engine() -> PrescriptionWorkflowEngine:
    """Engine wired to the ORM repository and catalog."""
    from apps.catalog.services import get_default_catalog
    from .repositories import DjangoPrescriptionRepository

    return PrescriptionWorkflowEngine(
        repository=DjangoPrescriptionRepository(),
        catalog=get_default_catalog(),
    )
