"""Suspended order views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.core.actors import ActorRole
from apps.core.api import ActorMixin
from apps.core.permissions import SuspendedOrderPermission

from .domain import (
    ItemModification,
    NewItem,
    OrderItem,
    OrderModification,
    OrderSnapshot,
    SuspendedOrderFilter,
)
from .serializers import (
    ApproveSerializer,
    ContactSerializer,
    ItemRefSerializer,
    OrderModificationSerializer,
    ReasonSerializer,
    ResolveSerializer,
    SuspendedOrderSerializer,
    SuspendedOrderStatisticsSerializer,
    SuspendOrderSerializer,
)
from .services import get_default_engine


def _csv(value):
    if not value:
        return None
    return frozenset(v.strip() for v in value.split(',') if v.strip())


class SuspendedOrderViewSet(ActorMixin, viewsets.ViewSet):
    """
    Suspended order endpoints.

    Additional endpoints:
    - POST /suspended-orders/{id}/modify/
    - POST /suspended-orders/{id}/restore-item/
    - POST /suspended-orders/{id}/approve/
    - POST /suspended-orders/{id}/escalate/
    - POST /suspended-orders/{id}/contact/
    - POST /suspended-orders/{id}/resolve/
    - POST /suspended-orders/{id}/cancel/
    - GET  /suspended-orders/statistics/
    """
    permission_classes = [SuspendedOrderPermission]

    @property
    def engine(self):
        if not hasattr(self, '_engine'):
            self._engine = get_default_engine()
        return self._engine

    def _get_order(self, pk):
        order = self.engine.get(pk)
        self.check_object_permissions(self.request, order)
        return order

    def _respond(self, order, status_code=status.HTTP_200_OK):
        return Response(SuspendedOrderSerializer(order).data, status=status_code)

    def list(self, request):
        """
        GET /api/v1/suspended-orders/?status=suspended,in-progress&priority=urgent&pharmacy_id=ph-1
        """
        actor = self.get_actor()
        params = request.query_params
        pharmacy_id = params.get('pharmacy_id') or None
        if actor.role == ActorRole.PHARMACY:
            pharmacy_id = actor.actor_id
        min_level = params.get('min_escalation_level')
        criteria = SuspendedOrderFilter(
            statuses=_csv(params.get('status')),
            priorities=_csv(params.get('priority')),
            issue_types=_csv(params.get('issue_type')),
            pharmacy_id=pharmacy_id,
            customer_id=params.get('customer_id') or None,
            min_escalation_level=int(min_level) if min_level and min_level.isdigit() else None,
        )
        return Response(SuspendedOrderSerializer(self.engine.list(criteria), many=True).data)

    def create(self, request):
        """Suspend an order."""
        serializer = SuspendOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        actor = self.get_actor()
        pharmacy_id = actor.actor_id if actor.role == ActorRole.PHARMACY else data['pharmacy_id']
        snapshot = OrderSnapshot(
            order_number=data['order_number'],
            pharmacy_id=pharmacy_id,
            customer_id=data['customer_id'],
            customer_name=data['customer_name'],
            customer_phone=data['customer_phone'],
            items=[OrderItem(**dict(item)) for item in data['items']],
        )
        order = self.engine.suspend(
            snapshot,
            issue_type=data['issue_type'],
            issue_notes=data['issue_notes'],
            actor=actor,
            priority=data['priority'],
        )
        return self._respond(order, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return self._respond(self._get_order(pk))

    @action(detail=True, methods=['post'])
    def modify(self, request, pk=None):
        """
        POST /api/v1/suspended-orders/{id}/modify/
        {
            "notes": "Amoxicillin out of stock, substituted",
            "items_to_remove": ["i2"],
            "items_to_modify": [{"item_id": "i1", "new_quantity": 3}],
            "items_to_add": [{"product_id": "p9", "quantity": 1}]
        }
        """
        self._get_order(pk)
        serializer = OrderModificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        modification = OrderModification(
            order_id=pk,
            notes=data['notes'],
            items_to_remove=tuple(data['items_to_remove']),
            items_to_add=tuple(NewItem(**dict(item)) for item in data['items_to_add']),
            items_to_modify=tuple(ItemModification(**dict(item)) for item in data['items_to_modify']),
        )
        return self._respond(self.engine.modify_order(modification, self.get_actor()))

    @action(detail=True, methods=['post'], url_path='restore-item')
    def restore_item(self, request, pk=None):
        self._get_order(pk)
        serializer = ItemRefSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = self.engine.restore_item(pk, serializer.validated_data['item_id'], self.get_actor())
        return self._respond(order)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        self._get_order(pk)
        serializer = ApproveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(self.engine.approve(pk, self.get_actor(), serializer.validated_data['notes']))

    @action(detail=True, methods=['post'])
    def escalate(self, request, pk=None):
        self._get_order(pk)
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(self.engine.escalate(pk, serializer.validated_data['reason'], self.get_actor()))

    @action(detail=True, methods=['post'])
    def contact(self, request, pk=None):
        self._get_order(pk)
        serializer = ContactSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        actor = self.get_actor()
        if data['party'] == 'customer':
            order = self.engine.mark_customer_contacted(pk, actor, data['notes'])
        else:
            order = self.engine.mark_pharmacy_contacted(pk, actor, data['notes'])
        return self._respond(order)

    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        self._get_order(pk)
        serializer = ResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._respond(self.engine.resolve(pk, data['action'], data['notes'], self.get_actor()))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        self._get_order(pk)
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(self.engine.cancel(pk, serializer.validated_data['reason'], self.get_actor()))

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        return Response(SuspendedOrderStatisticsSerializer(self.engine.statistics()).data)
