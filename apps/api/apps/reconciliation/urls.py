"""Suspended order URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import SuspendedOrderViewSet

router = DefaultRouter()
router.register(r'suspended-orders', SuspendedOrderViewSet, basename='suspended-order')

urlpatterns = [
    path('', include(router.urls)),
]
