"""Settlement views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.core.actors import ActorRole
from apps.core.api import ActorMixin
from apps.core.exceptions import ValidationError
from apps.core.permissions import SettlementPermission

from .domain import MetricsWindow, TransactionFilter
from .serializers import (
    CollectSerializer,
    CommissionAccountConfigSerializer,
    CommissionAccountSerializer,
    DoctorAccountSerializer,
    DoctorAccrualSerializer,
    MoneyTransactionSerializer,
    OrderSettlementSerializer,
    PayoutScheduleCreateSerializer,
    PayoutScheduleSerializer,
    RefundAnalyticsSerializer,
    RefundCreateSerializer,
    RefundRequestSerializer,
    RefundResolveSerializer,
    RevenueBreakdownSerializer,
    ScheduleCollectionSerializer,
    TransactionMetricsSerializer,
    TransactionSummarySerializer,
)
from .services import get_default_engine


def _csv(value):
    if not value:
        return None
    return frozenset(v.strip() for v in value.split(',') if v.strip())


def _split_account_key(pk):
    entity_type, sep, entity_id = (pk or '').partition(':')
    if not sep or not entity_id:
        raise ValidationError('Account ids look like <entity_type>:<entity_id>', details={'id': pk})
    return entity_id, entity_type


class LedgerViewSet(ActorMixin, viewsets.ViewSet):
    """Base for settlement endpoints; all of them share one ledger."""
    permission_classes = [SettlementPermission]

    @property
    def ledger(self):
        if not hasattr(self, '_ledger'):
            self._ledger = get_default_engine()
        return self._ledger

    def window(self):
        """``?days=30`` limits reports to the last N days."""
        days = self.request.query_params.get('days')
        if not days:
            return None
        if not days.isdigit():
            raise ValidationError('days must be a positive integer', details={'days': days})
        return MetricsWindow.last_days(int(days), self.ledger.clock())


class SettlementViewSet(LedgerViewSet):
    """
    POST /api/v1/settlement/settlements/
    {
        "entity_id": "pharmacy-1",
        "entity_type": "pharmacy",
        "order_amount": "200.00",
        "commission_rate": "0.10"
    }

    Returns the order and commission transactions.
    """

    def create(self, request):
        serializer = OrderSettlementSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        transactions = self.ledger.record_order_settlement(
            data['entity_id'],
            data['entity_type'],
            data['order_amount'],
            commission_rate=data['commission_rate'],
            reference=data['reference'],
            entity_name=data['entity_name'],
            actor=self.get_actor(),
        )
        return Response(MoneyTransactionSerializer(transactions, many=True).data, status=status.HTTP_201_CREATED)


class TransactionViewSet(LedgerViewSet):
    """GET /api/v1/settlement/transactions/?type=commission&status=pending&entity_type=pharmacy&days=30"""

    def list(self, request):
        params = request.query_params
        criteria = TransactionFilter(
            types=_csv(params.get('type')),
            statuses=_csv(params.get('status')),
            entity_type=params.get('entity_type') or None,
            entity_id=params.get('entity_id') or None,
            window=self.window(),
        )
        return Response(MoneyTransactionSerializer(self.ledger.list_transactions(criteria), many=True).data)


class CommissionAccountViewSet(LedgerViewSet):
    """
    Pharmacy and vendor commission accounts, addressed as ``pharmacy:<id>``.

    Additional endpoints:
    - POST /accounts/{key}/collect/
    - POST /accounts/{key}/schedule-collection/
    """
    lookup_value_regex = r'[^/]+'

    def list(self, request):
        accounts = self.ledger.list_accounts(request.query_params.get('entity_type') or None)
        return Response(CommissionAccountSerializer(accounts, many=True).data)

    def create(self, request):
        serializer = CommissionAccountConfigSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        account = self.ledger.configure_account(
            data['entity_id'],
            data['entity_type'],
            self.get_actor(),
            name=data['name'],
            commission_rate=data['commission_rate'],
            collection_frequency=data['collection_frequency'],
            payment_method=data['payment_method'],
        )
        return Response(CommissionAccountSerializer(account).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        entity_id, entity_type = _split_account_key(pk)
        return Response(CommissionAccountSerializer(self.ledger.get_account(entity_id, entity_type)).data)

    @action(detail=True, methods=['post'])
    def collect(self, request, pk=None):
        """
        Returns ``{"collected": false}`` with 200 when nothing is pending.
        """
        serializer = CollectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        entity_id, entity_type = _split_account_key(pk)
        collected = self.ledger.collect_commission(
            entity_id, entity_type, self.get_actor(), serializer.validated_data['payment_method']
        )
        return Response({'collected': collected})

    @action(detail=True, methods=['post'], url_path='schedule-collection')
    def schedule_collection(self, request, pk=None):
        serializer = ScheduleCollectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        entity_id, entity_type = _split_account_key(pk)
        account = self.ledger.schedule_collection(
            entity_id, entity_type, serializer.validated_data['scheduled_for'], self.get_actor()
        )
        return Response(CommissionAccountSerializer(account).data)


class DoctorAccountViewSet(LedgerViewSet):
    """
    Additional endpoints:
    - POST /doctors/{id}/accrue/
    - POST /doctors/{id}/payout/
    """

    def retrieve(self, request, pk=None):
        return Response(DoctorAccountSerializer(self.ledger.get_doctor_account(pk)).data)

    @action(detail=True, methods=['post'])
    def accrue(self, request, pk=None):
        serializer = DoctorAccrualSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        txn = self.ledger.accrue_doctor_commission(
            pk,
            data['order_amount'],
            data['reference'],
            actor=self.get_actor(),
            doctor_name=data['doctor_name'],
            commission_rate=data['commission_rate'],
        )
        return Response(MoneyTransactionSerializer(txn).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def payout(self, request, pk=None):
        return Response({'paid': self.ledger.process_doctor_payout(pk, self.get_actor())})


class RefundViewSet(LedgerViewSet):
    """
    Customers may request refunds for themselves; everything else is
    back-office only.

    Additional endpoints:
    - POST /refunds/{id}/resolve/
    - GET  /refunds/analytics/
    """
    customer_actions = ('create',)

    def list(self, request):
        refunds = self.ledger.list_refunds(request.query_params.get('status') or None)
        return Response(RefundRequestSerializer(refunds, many=True).data)

    def create(self, request):
        actor = self.get_actor()
        serializer = RefundCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        customer_id = actor.actor_id
        if actor.role != ActorRole.CUSTOMER and data.get('customer_id'):
            customer_id = data['customer_id']

        refund = self.ledger.request_refund(
            data['order_id'],
            customer_id,
            data['amount'],
            data['reason'],
            actor=actor,
            refund_method=data['refund_method'],
            customer_name=data['customer_name'] or actor.name,
        )
        return Response(RefundRequestSerializer(refund).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return Response(RefundRequestSerializer(self.ledger.get_refund(pk)).data)

    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        serializer = RefundResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        self.ledger.resolve_refund(pk, data['action'], self.get_actor(), data['notes'])
        return Response(RefundRequestSerializer(self.ledger.get_refund(pk)).data)

    @action(detail=False, methods=['get'])
    def analytics(self, request):
        return Response(RefundAnalyticsSerializer(self.ledger.refund_analytics()).data)


class PayoutScheduleViewSet(LedgerViewSet):
    """
    Additional endpoints:
    - POST /schedules/{id}/pause/ | resume/ | cancel/ | process/
    - GET  /schedules/due/
    """

    def list(self, request):
        schedules = self.ledger.list_schedules(request.query_params.get('status') or None)
        return Response(PayoutScheduleSerializer(schedules, many=True).data)

    def create(self, request):
        serializer = PayoutScheduleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        schedule = self.ledger.create_payout_schedule(
            data['entity_id'],
            data['entity_type'],
            data['frequency'],
            data['first_due'],
            self.get_actor(),
            minimum_amount=data['minimum_amount'],
            payment_method=data['payment_method'],
            entity_name=data['entity_name'],
        )
        return Response(PayoutScheduleSerializer(schedule).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return Response(PayoutScheduleSerializer(self.ledger.get_schedule(pk)).data)

    @action(detail=True, methods=['post'])
    def pause(self, request, pk=None):
        return Response(PayoutScheduleSerializer(self.ledger.pause_schedule(pk, self.get_actor())).data)

    @action(detail=True, methods=['post'])
    def resume(self, request, pk=None):
        return Response(PayoutScheduleSerializer(self.ledger.resume_schedule(pk, self.get_actor())).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        return Response(PayoutScheduleSerializer(self.ledger.cancel_schedule(pk, self.get_actor())).data)

    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        processed = self.ledger.process_schedule(pk, self.get_actor())
        return Response({
            'processed': processed,
            'schedule': PayoutScheduleSerializer(self.ledger.get_schedule(pk)).data,
        })

    @action(detail=False, methods=['get'])
    def due(self, request):
        return Response(PayoutScheduleSerializer(self.ledger.due_schedules(), many=True).data)


class ReportViewSet(LedgerViewSet):
    """
    GET /api/v1/settlement/reports/?days=30          -> transaction metrics
    GET /api/v1/settlement/reports/summary/?days=30
    GET /api/v1/settlement/reports/revenue/?days=30
    """

    def list(self, request):
        return Response(TransactionMetricsSerializer(self.ledger.compute_metrics(self.window())).data)

    @action(detail=False, methods=['get'])
    def summary(self, request):
        return Response(TransactionSummarySerializer(self.ledger.transaction_summary(self.window())).data)

    @action(detail=False, methods=['get'])
    def revenue(self, request):
        return Response(RevenueBreakdownSerializer(self.ledger.revenue_breakdown(self.window())).data)
