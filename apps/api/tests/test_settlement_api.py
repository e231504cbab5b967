"""
Integration tests for the settlement API.

Back-office roles drive the ledger; pharmacies, vendors and doctors only
read; customers may only file refund requests.
"""
import pytest
from django.utils import timezone
from rest_framework import status

BASE = '/api/v1/settlement'


def settle(client, entity_id='ph-1', amount='200.00', **fields):
    payload = {'entity_id': entity_id, 'entity_type': 'pharmacy', 'order_amount': amount}
    payload.update(fields)
    return client.post(f'{BASE}/settlements/', payload, format='json')


@pytest.mark.django_db
class TestSettlementPermissions:

    def test_anonymous_rejected(self, api_client):
        response = api_client.get(f'{BASE}/transactions/')
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)

    def test_customer_cannot_read_ledger(self, customer_client):
        assert customer_client.get(f'{BASE}/transactions/').status_code == status.HTTP_403_FORBIDDEN
        assert customer_client.get(f'{BASE}/refunds/').status_code == status.HTTP_403_FORBIDDEN

    def test_pharmacy_is_read_only(self, pharmacy_client):
        assert pharmacy_client.get(f'{BASE}/accounts/').status_code == status.HTTP_200_OK
        assert settle(pharmacy_client).status_code == status.HTTP_403_FORBIDDEN

    def test_app_services_can_write(self, agent_client):
        assert settle(agent_client).status_code == status.HTTP_201_CREATED


@pytest.mark.django_db
class TestOrderSettlementEndpoint:
    """POST /api/v1/settlement/settlements/"""

    def test_returns_order_and_commission(self, admin_client):
        response = settle(admin_client, reference='ORD-1', entity_name='Nile Pharmacy')

        assert response.status_code == status.HTTP_201_CREATED
        assert [t['type'] for t in response.data] == ['order', 'commission']
        assert [t['amount'] for t in response.data] == ['200.00', '20.00']
        assert {t['reference'] for t in response.data} == {'ORD-1'}
        assert {t['status'] for t in response.data} == {'pending'}

    def test_percentage_rate_is_accepted(self, admin_client):
        response = settle(admin_client, commission_rate='15')
        assert response.data[1]['amount'] == '30.00'

    def test_non_positive_amount(self, admin_client):
        response = settle(admin_client, amount='0.00')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_type'] == 'validation_error'

    def test_doctor_is_not_a_payer(self, admin_client):
        response = settle(admin_client, entity_type='doctor')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_transaction_filters(self, admin_client):
        settle(admin_client)
        settle(admin_client, entity_id='v-1', entity_type='vendor', amount='100.00')

        commissions = admin_client.get(f'{BASE}/transactions/?type=commission')
        vendor = admin_client.get(f'{BASE}/transactions/?entity_type=vendor&days=30')
        bad_window = admin_client.get(f'{BASE}/transactions/?days=soon')

        assert len(commissions.data) == 2
        assert {t['entity_id'] for t in vendor.data} == {'v-1'}
        assert bad_window.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestCommissionAccountEndpoints:
    """/api/v1/settlement/accounts/{entity_type}:{entity_id}/"""

    def test_retrieve_by_key(self, admin_client, pharmacy_client):
        settle(admin_client, entity_name='Nile Pharmacy')

        response = pharmacy_client.get(f'{BASE}/accounts/pharmacy:ph-1/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['key'] == 'pharmacy:ph-1'
        assert response.data['name'] == 'Nile Pharmacy'
        assert response.data['commission_rate'] == '0.1000'
        assert response.data['pending_amount'] == '20.00'
        assert response.data['total_orders'] == 1

    def test_malformed_key(self, admin_client):
        response = admin_client.get(f'{BASE}/accounts/ph-1/')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_account(self, admin_client):
        response = admin_client.get(f'{BASE}/accounts/pharmacy:ph-404/')
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_configure_account(self, admin_client):
        response = admin_client.post(f'{BASE}/accounts/', {
            'entity_id': 'v-1',
            'entity_type': 'vendor',
            'name': 'Delta Supplies',
            'collection_frequency': 'weekly',
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['key'] == 'vendor:v-1'
        assert response.data['commission_rate'] == '0.1500'
        assert response.data['collection_frequency'] == 'weekly'

    def test_collect_then_nothing_left(self, admin_client):
        settle(admin_client)
        url = f'{BASE}/accounts/pharmacy:ph-1/collect/'

        first = admin_client.post(url, {'payment_method': 'cash'}, format='json')
        second = admin_client.post(url, {}, format='json')
        account = admin_client.get(f'{BASE}/accounts/pharmacy:ph-1/')

        assert first.data == {'collected': True}
        assert second.data == {'collected': False}
        assert account.data['pending_amount'] == '0.00'
        assert account.data['total_commission_collected'] == '20.00'
        assert account.data['collection_status'] == 'completed'

    def test_collect_unknown_account(self, admin_client):
        response = admin_client.post(f'{BASE}/accounts/vendor:v-404/collect/', {}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {'collected': False}

    def test_schedule_collection_in_past(self, admin_client):
        settle(admin_client)
        response = admin_client.post(
            f'{BASE}/accounts/pharmacy:ph-1/schedule-collection/',
            {'scheduled_for': '2020-01-01'},
            format='json',
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestDoctorEndpoints:

    def test_accrue_and_payout(self, admin_client, make_client):
        accrued = admin_client.post(f'{BASE}/doctors/d-1/accrue/', {
            'order_amount': '400.00', 'reference': 'ORD-9', 'doctor_name': 'Dr. Hany',
        }, format='json')
        assert accrued.status_code == status.HTTP_201_CREATED
        assert accrued.data['amount'] == '20.00'
        assert accrued.data['sub_type'] == 'doctor_commission'

        doctor = make_client('dr-hany', 'doctor')
        account = doctor.get(f'{BASE}/doctors/d-1/')
        assert account.data['pending_amount'] == '20.00'
        assert account.data['total_referrals'] == 1

        paid = admin_client.post(f'{BASE}/doctors/d-1/payout/', {}, format='json')
        again = admin_client.post(f'{BASE}/doctors/d-1/payout/', {}, format='json')

        assert paid.data == {'paid': True}
        assert again.data == {'paid': False}
        assert doctor.get(f'{BASE}/doctors/d-1/').data['total_paid'] == '20.00'

    def test_doctor_cannot_trigger_payout(self, make_client):
        doctor = make_client('dr-hany', 'doctor')
        response = doctor.post(f'{BASE}/doctors/d-1/payout/', {}, format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_doctor(self, admin_client):
        assert admin_client.get(f'{BASE}/doctors/d-404/').status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestRefundEndpoints:
    """/api/v1/settlement/refunds/"""

    endpoint = f'{BASE}/refunds/'

    @pytest.fixture
    def refund(self, customer_client):
        response = customer_client.post(self.endpoint, {
            'order_id': 'ORD-1',
            'customer_id': 'someone-else',
            'amount': '40.00',
            'reason': 'Damaged package',
        }, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        return response.data

    def test_customer_requests_for_self(self, refund, customer_client):
        assert refund['refund_id'].startswith('REF-')
        assert refund['customer_id'] == str(customer_client.user.pk)
        assert refund['status'] == 'pending'
        assert refund['refund_method'] == 'wallet'

    def test_customer_cannot_resolve(self, refund, customer_client):
        response = customer_client.post(
            f"{self.endpoint}{refund['refund_id']}/resolve/", {'action': 'approve'}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_blank_reason(self, customer_client):
        response = customer_client.post(self.endpoint, {
            'order_id': 'ORD-1', 'amount': '40.00', 'reason': '  ',
        }, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_approve_refund(self, refund, admin_client):
        url = f"{self.endpoint}{refund['refund_id']}/resolve/"

        response = admin_client.post(url, {'action': 'approve', 'notes': 'Photo confirms damage'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'processed'
        assert response.data['transaction_id'].startswith('TXN-')
        assert response.data['notes'] == 'Photo confirms damage'

        again = admin_client.post(url, {'action': 'reject'}, format='json')
        assert again.status_code == status.HTTP_409_CONFLICT
        assert again.data['error_type'] == 'invalid_state'

    def test_unknown_action(self, refund, admin_client):
        response = admin_client.post(
            f"{self.endpoint}{refund['refund_id']}/resolve/", {'action': 'maybe'}, format='json'
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_refund(self, admin_client):
        response = admin_client.post(f'{self.endpoint}REF-404/resolve/', {'action': 'approve'}, format='json')
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_and_analytics(self, refund, admin_client):
        admin_client.post(f"{self.endpoint}{refund['refund_id']}/resolve/", {'action': 'reject'}, format='json')

        rejected = admin_client.get(f'{self.endpoint}?status=rejected')
        analytics = admin_client.get(f'{self.endpoint}analytics/')

        assert [r['refund_id'] for r in rejected.data] == [refund['refund_id']]
        assert analytics.data['total'] == 1
        assert analytics.data['rejected'] == 1
        assert analytics.data['approval_rate'] == 0.0


@pytest.mark.django_db
class TestPayoutScheduleEndpoints:
    """/api/v1/settlement/schedules/"""

    endpoint = f'{BASE}/schedules/'

    @pytest.fixture
    def schedule(self, admin_client):
        response = admin_client.post(self.endpoint, {
            'entity_id': 'ph-1',
            'entity_type': 'pharmacy',
            'frequency': 'monthly',
            'first_due': timezone.now().date().isoformat(),
            'minimum_amount': '10.00',
        }, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        return response.data

    def test_create(self, schedule):
        assert schedule['schedule_id'].startswith('SCH-')
        assert schedule['schedule_type'] == 'collection'
        assert schedule['status'] == 'active'
        assert schedule['minimum_amount'] == '10.00'

    def test_pause_resume_cancel(self, schedule, admin_client):
        url = f"{self.endpoint}{schedule['schedule_id']}"

        assert admin_client.post(f'{url}/pause/').data['status'] == 'paused'
        assert admin_client.post(f'{url}/resume/').data['status'] == 'active'
        assert admin_client.post(f'{url}/cancel/').data['status'] == 'cancelled'

        response = admin_client.post(f'{url}/resume/')
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_process_below_minimum(self, schedule, admin_client):
        response = admin_client.post(f"{self.endpoint}{schedule['schedule_id']}/process/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data['processed'] is False
        assert response.data['schedule']['last_run_at'] is None

    def test_process_collects(self, schedule, admin_client):
        settle(admin_client)

        response = admin_client.post(f"{self.endpoint}{schedule['schedule_id']}/process/")

        assert response.data['processed'] is True
        assert response.data['schedule']['next_due'] > schedule['next_due']

    def test_due_schedules(self, schedule, admin_client):
        response = admin_client.get(f'{self.endpoint}due/')
        assert [s['schedule_id'] for s in response.data] == [schedule['schedule_id']]


@pytest.mark.django_db
class TestReportEndpoints:
    """/api/v1/settlement/reports/"""

    def test_reports(self, admin_client):
        settle(admin_client)
        admin_client.post(f'{BASE}/accounts/pharmacy:ph-1/collect/', {}, format='json')

        metrics = admin_client.get(f'{BASE}/reports/?days=30')
        summary = admin_client.get(f'{BASE}/reports/summary/')
        revenue = admin_client.get(f'{BASE}/reports/revenue/')

        assert metrics.status_code == status.HTTP_200_OK
        assert metrics.data['gross_transaction_volume'] == '200.00'
        assert metrics.data['pharmacy_commissions'] == '20.00'
        assert summary.data['total_transactions'] == 3
        assert revenue.data['net_revenue'] == '20.00'
        assert revenue.data['revenue_margin'] == 10.0

    def test_pharmacy_can_read_reports(self, pharmacy_client):
        response = pharmacy_client.get(f'{BASE}/reports/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['gross_transaction_volume'] == '0.00'
