"""Prescription views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.actors import ActorRole
from apps.core.api import ActorMixin
from apps.core.exceptions import NotFoundError

from .domain import PatientInfo, PrescriptionFilter, QualityChecks
from .serializers import (
    AssignReaderSerializer,
    MedicineFromCatalogSerializer,
    MedicinePatchSerializer,
    PrescriptionAnalyticsSerializer,
    PrescriptionSerializer,
    PrescriptionSubmitSerializer,
    PrescriptionTransitionSerializer,
)
from .services import get_default_engine


def _csv(value):
    if not value:
        return None
    return frozenset(v.strip() for v in value.split(',') if v.strip())


class PrescriptionViewSet(ActorMixin, viewsets.ViewSet):
    """
    Prescription workflow endpoints.

    Additional endpoints:
    - POST   /prescriptions/{id}/assign-reader/
    - POST   /prescriptions/{id}/medicines/
    - PATCH  /prescriptions/{id}/medicines/{medicine_id}/
    - DELETE /prescriptions/{id}/medicines/{medicine_id}/
    - POST   /prescriptions/{id}/transition/
    - GET    /prescriptions/{id}/next-steps/
    - GET    /prescriptions/search/?q=
    - GET    /prescriptions/urgent/
    - GET    /prescriptions/analytics/

    Domain errors are rendered by apps.core.api.domain_exception_handler.
    """
    permission_classes = [IsAuthenticated]

    @property
    def engine(self):
        if not hasattr(self, '_engine'):
            self._engine = get_default_engine()
        return self._engine

    def _visible(self, actor):
        return {record.id for record in self.engine.list_for_actor(actor)}

    def _respond(self, record, status_code=status.HTTP_200_OK):
        return Response(PrescriptionSerializer(record).data, status=status_code)

    def list(self, request):
        """
        GET /api/v1/prescriptions/?status=reviewing,suspended&urgency=urgent&sort=urgency&order=desc
        """
        actor = self.get_actor()
        params = request.query_params
        criteria = PrescriptionFilter(
            statuses=_csv(params.get('status')),
            urgencies=_csv(params.get('urgency')),
            customer_id=params.get('customer_id') or None,
            assigned_reader_id=params.get('reader_id') or None,
            query=params.get('search') or None,
        )
        visible = self._visible(actor)
        records = [
            record for record in self.engine.filter_and_sort(
                criteria,
                sort_key=params.get('sort', 'created_at'),
                sort_order=params.get('order', 'desc'),
            )
            if record.id in visible
        ]
        return Response(PrescriptionSerializer(records, many=True).data)

    def create(self, request):
        actor = self.get_actor()
        serializer = PrescriptionSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        customer_id = actor.actor_id
        if actor.role != ActorRole.CUSTOMER and data.get('customer_id'):
            customer_id = data['customer_id']

        record = self.engine.submit(
            PatientInfo(
                patient_name=data['patient_name'],
                customer_id=customer_id,
                customer_name=data['customer_name'] or actor.name,
                customer_phone=data['customer_phone'],
                doctor_name=data['doctor_name'],
                hospital_clinic=data['hospital_clinic'],
                notes=data['notes'],
            ),
            files=[dict(f) for f in data['files']],
            urgency=data['urgency'],
            actor=actor,
            delivery_fee=data['delivery_fee'],
        )
        return self._respond(record, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        actor = self.get_actor()
        if pk not in self._visible(actor):
            raise NotFoundError('Prescription', pk)
        return self._respond(self.engine.get(pk))

    @action(detail=True, methods=['post'], url_path='assign-reader')
    def assign_reader(self, request, pk=None):
        serializer = AssignReaderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        if pk not in self._visible(actor):
            raise NotFoundError('Prescription', pk)
        record = self.engine.assign_reader(pk, serializer.validated_data['reader_id'], actor)
        return self._respond(record)

    @action(detail=True, methods=['post'], url_path='medicines')
    def medicines(self, request, pk=None):
        """Add a catalog product as a processed medicine."""
        serializer = MedicineFromCatalogSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        record = self.engine.add_medicine_from_catalog(
            pk,
            product_id=data['product_id'],
            quantity=data['quantity'],
            actor=self.get_actor(),
            instructions=data['instructions'],
            dosage=data['dosage'],
            frequency=data['frequency'],
            duration=data['duration'],
            pharmacy_id=data['pharmacy_id'],
        )
        return self._respond(record, status.HTTP_201_CREATED)

    @action(detail=True, methods=['patch', 'delete'], url_path=r'medicines/(?P<medicine_id>[^/.]+)')
    def medicine_detail(self, request, pk=None, medicine_id=None):
        actor = self.get_actor()
        if request.method == 'DELETE':
            return self._respond(self.engine.remove_medicine(pk, medicine_id, actor))

        serializer = MedicinePatchSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        record = self.engine.update_medicine(pk, medicine_id, dict(serializer.validated_data), actor)
        return self._respond(record)

    @action(detail=True, methods=['post'], url_path='transition')
    def transition(self, request, pk=None):
        """
        POST /api/v1/prescriptions/{id}/transition/
        {
            "new_status": "approved",
            "notes": "All good",
            "quality_checks": {"prescription_clear": true, ...}
        }

        Returns:
        - 200: Transition successful
        - 400: Quality gate or validation failure
        - 403: Role may not perform this step
        - 409: Transition not allowed from current status
        """
        serializer = PrescriptionTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        checks = data.get('quality_checks')

        record = self.engine.update_status(
            pk,
            data['new_status'],
            self.get_actor(),
            notes=data['notes'],
            quality_checks=QualityChecks(**checks) if checks else None,
            rejection_reason=data['rejection_reason'],
            suspension_category=data['suspension_category'],
        )
        return self._respond(record)

    @action(detail=True, methods=['get'], url_path='next-steps')
    def next_steps(self, request, pk=None):
        actor = self.get_actor()
        if pk not in self._visible(actor):
            raise NotFoundError('Prescription', pk)
        return Response({'next_steps': self.engine.next_possible_steps(pk, actor)})

    @action(detail=False, methods=['get'], url_path='search')
    def search(self, request):
        visible = self._visible(self.get_actor())
        records = [r for r in self.engine.search(request.query_params.get('q', '')) if r.id in visible]
        return Response(PrescriptionSerializer(records, many=True).data)

    @action(detail=False, methods=['get'], url_path='urgent')
    def urgent(self, request):
        visible = self._visible(self.get_actor())
        records = [r for r in self.engine.urgent() if r.id in visible]
        return Response(PrescriptionSerializer(records, many=True).data)

    @action(detail=False, methods=['get'], url_path='analytics')
    def analytics(self, request):
        return Response(PrescriptionAnalyticsSerializer(self.engine.analytics()).data)
