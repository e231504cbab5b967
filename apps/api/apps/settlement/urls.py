"""Settlement URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    CommissionAccountViewSet,
    DoctorAccountViewSet,
    PayoutScheduleViewSet,
    RefundViewSet,
    ReportViewSet,
    SettlementViewSet,
    TransactionViewSet,
)

router = DefaultRouter()
router.register(r'settlements', SettlementViewSet, basename='settlement')
router.register(r'transactions', TransactionViewSet, basename='transaction')
router.register(r'accounts', CommissionAccountViewSet, basename='commission-account')
router.register(r'doctors', DoctorAccountViewSet, basename='doctor-account')
router.register(r'refunds', RefundViewSet, basename='refund')
router.register(r'schedules', PayoutScheduleViewSet, basename='payout-schedule')
router.register(r'reports', ReportViewSet, basename='settlement-report')

urlpatterns = [
    path('', include(router.urls)),
]
