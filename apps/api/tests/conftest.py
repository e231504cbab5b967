"""
Global test fixtures for pytest.

Provides reusable fixtures for engine and API testing:
- A controllable clock and an in-memory product catalog
- Actors for every marketplace role
- Engines wired to in-memory repositories
- Authenticated API clients by role (auth groups named after ActorRole)
"""
from datetime import datetime, timedelta, timezone

import pytest
from django.contrib.auth.models import Group, User
from rest_framework.test import APIClient

from apps.catalog.domain import CatalogProduct, InMemoryProductCatalog
from apps.catalog.models import Product
from apps.core.actors import Actor, ActorRole
from apps.prescriptions.domain import PatientInfo
from apps.prescriptions.repositories import InMemoryPrescriptionRepository
from apps.prescriptions.services import PrescriptionWorkflowEngine
from apps.reconciliation.domain import OrderItem, OrderSnapshot
from apps.reconciliation.repositories import InMemorySuspendedOrderRepository
from apps.reconciliation.services import OrderReconciliationEngine
from apps.settlement.repositories import SettlementStore
from apps.settlement.services import SettlementLedger


# ============================================================================
# Clock and Catalog
# ============================================================================

class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def rewind(self, **kwargs):
        self.now = self.now - timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc))


CATALOG = [
    CatalogProduct('PARA-500', 'Paracetamol 500mg', '25.00', active_ingredient='Paracetamol',
                   dosage='500mg', category='pain-relief'),
    CatalogProduct('IBU-400', 'Ibuprofen 400mg', '40.00', active_ingredient='Ibuprofen',
                   dosage='400mg', category='pain-relief'),
    CatalogProduct('WARF-5', 'Warfarin 5mg', '60.00', active_ingredient='Warfarin',
                   dosage='5mg', category='cardiovascular', requires_prescription=True),
    CatalogProduct('ASP-81', 'Aspirin 81mg', '15.00', active_ingredient='Aspirin',
                   dosage='81mg', category='cardiovascular'),
    CatalogProduct('AMOX-500', 'Amoxicillin 500mg', '55.00', active_ingredient='Amoxicillin',
                   dosage='500mg', category='antibiotics', unit_type='blister', requires_prescription=True),
]


@pytest.fixture
def catalog():
    return InMemoryProductCatalog(CATALOG)


@pytest.fixture
def catalog_products(db):
    """The same products stored in the catalog table, for API tests."""
    return [
        Product.objects.create(
            product_id=p.product_id,
            name=p.name,
            price=p.price,
            active_ingredient=p.active_ingredient,
            dosage=p.dosage,
            category=p.category,
            unit_type=p.unit_type,
            requires_prescription=p.requires_prescription,
        )
        for p in CATALOG
    ]


# ============================================================================
# Actors
# ============================================================================

@pytest.fixture
def customer():
    return Actor(actor_id='cust-1', role=ActorRole.CUSTOMER, name='Mona Adel')


@pytest.fixture
def reader():
    return Actor(actor_id='reader-1', role=ActorRole.PRESCRIPTION_READER, name='Reader One')


@pytest.fixture
def pharmacy():
    return Actor(actor_id='ph-1', role=ActorRole.PHARMACY, name='Nile Pharmacy')


@pytest.fixture
def courier():
    return Actor(actor_id='courier-1', role=ActorRole.DELIVERY, name='Courier')


@pytest.fixture
def agent():
    return Actor(actor_id='agent-1', role=ActorRole.APP_SERVICES, name='Support Agent')


@pytest.fixture
def admin():
    return Actor(actor_id='admin-1', role=ActorRole.ADMIN, name='Admin')


# ============================================================================
# Engines (in-memory)
# ============================================================================

@pytest.fixture
def prescription_engine(clock, catalog):
    return PrescriptionWorkflowEngine(
        repository=InMemoryPrescriptionRepository(),
        catalog=catalog,
        clock=clock,
    )


@pytest.fixture
def patient_info():
    return PatientInfo(
        patient_name='Omar Adel',
        customer_id='cust-1',
        customer_name='Mona Adel',
        customer_phone='+201000000000',
        doctor_name='Dr. Hany',
    )


@pytest.fixture
def prescription_files():
    return [{'file_id': 'f1', 'name': 'rx-front.jpg', 'file_type': 'image'}]


@pytest.fixture
def reconciliation_engine(clock, catalog):
    return OrderReconciliationEngine(
        repository=InMemorySuspendedOrderRepository(),
        catalog=catalog,
        clock=clock,
        max_escalation_level=2,
    )


@pytest.fixture
def order_snapshot():
    """Two lines: 2 x 25.00 + 1 x 55.00 = 105.00."""
    return OrderSnapshot(
        order_number='ORD-1001',
        pharmacy_id='ph-1',
        customer_id='cust-1',
        customer_name='Mona Adel',
        items=[
            OrderItem('i1', 'PARA-500', 'Paracetamol 500mg', 2, '25.00'),
            OrderItem('i2', 'AMOX-500', 'Amoxicillin 500mg', 1, '55.00', unit_type='blister',
                      prescription=True),
        ],
    )


@pytest.fixture
def ledger(clock):
    return SettlementLedger(SettlementStore.in_memory(), clock=clock, currency='EGP')


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def make_client(db):
    """
    Factory for authenticated API clients.

    Usage:
        client = make_client('reader', ActorRole.PRESCRIPTION_READER)
        client.user  # the authenticated user
    """
    def _make(username, role=None, **user_fields):
        user = User.objects.create_user(username=username, password='testpass123', **user_fields)
        if role:
            group, _ = Group.objects.get_or_create(name=role)
            user.groups.add(group)
        client = APIClient()
        client.force_authenticate(user=user)
        client.user = user
        return client

    return _make


@pytest.fixture
def admin_client(make_client):
    """Staff user without a role group; acts as admin."""
    return make_client('admin', is_staff=True, is_superuser=True)


@pytest.fixture
def customer_client(make_client):
    return make_client('customer', ActorRole.CUSTOMER)


@pytest.fixture
def reader_client(make_client):
    return make_client('reader', ActorRole.PRESCRIPTION_READER)


@pytest.fixture
def pharmacy_client(make_client):
    return make_client('pharmacy', ActorRole.PHARMACY)


@pytest.fixture
def delivery_client(make_client):
    return make_client('courier', ActorRole.DELIVERY)


@pytest.fixture
def agent_client(make_client):
    return make_client('agent', ActorRole.APP_SERVICES)
