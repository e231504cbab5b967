"""
Integration tests for the suspended order API.
"""
import pytest
from rest_framework import status

ENDPOINT = '/api/v1/suspended-orders/'


def suspend_payload(**overrides):
    payload = {
        'order_number': 'ORD-1001',
        'pharmacy_id': 'ph-1',
        'customer_id': 'cust-1',
        'customer_name': 'Mona Adel',
        'items': [
            {'item_id': 'i1', 'product_id': 'PARA-500', 'product_name': 'Paracetamol 500mg',
             'quantity': 2, 'unit_price': '25.00'},
            {'item_id': 'i2', 'product_id': 'AMOX-500', 'product_name': 'Amoxicillin 500mg',
             'quantity': 1, 'unit_price': '55.00', 'unit_type': 'blister', 'prescription': True},
        ],
        'issue_type': 'medicine-unavailable',
        'issue_notes': 'Amoxicillin out of stock',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def suspended(pharmacy_client, customer_client):
    payload = suspend_payload(
        pharmacy_id=str(pharmacy_client.user.pk),
        customer_id=str(customer_client.user.pk),
    )
    response = pharmacy_client.post(ENDPOINT, payload, format='json')
    assert response.status_code == status.HTTP_201_CREATED
    return response.data


@pytest.mark.django_db
class TestSuspendOrder:
    """POST /api/v1/suspended-orders/"""

    def test_suspend(self, suspended):
        assert suspended['order_id'].startswith('SO-')
        assert suspended['status'] == 'suspended'
        assert suspended['total_amount'] == '105.00'
        assert suspended['original_total_amount'] == '105.00'
        assert suspended['modified_items'] is None
        assert [c['kind'] for c in suspended['changes']] == ['unchanged', 'unchanged']
        assert suspended['agent_notes'][0]['kind'] == 'suspension'

    def test_items_required(self, pharmacy_client):
        response = pharmacy_client.post(ENDPOINT, suspend_payload(items=[]), format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_duplicate_item_ids(self, pharmacy_client):
        item = {'item_id': 'i1', 'product_id': 'PARA-500', 'quantity': 1, 'unit_price': '25.00'}
        response = pharmacy_client.post(ENDPOINT, suspend_payload(items=[item, item]), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_type'] == 'validation_error'

    def test_retrieve_unknown(self, agent_client):
        response = agent_client.get(f'{ENDPOINT}SO-404/')
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestModifyOrder:
    """POST /api/v1/suspended-orders/{id}/modify/"""

    def url(self, order_id, action='modify'):
        return f'{ENDPOINT}{order_id}/{action}/'

    def test_modify_recomputes_total(self, suspended, pharmacy_client, catalog_products):
        response = pharmacy_client.post(self.url(suspended['order_id']), {
            'notes': 'Amoxicillin out of stock, substituted',
            'items_to_modify': [{'item_id': 'i2', 'substitute_product_id': 'ASP-81'}],
            'items_to_add': [{'product_id': 'IBU-400', 'quantity': 0}],
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'in-progress'
        assert response.data['total_amount'] == '105.00'
        kinds = sorted(c['kind'] for c in response.data['changes'])
        assert kinds == ['added', 'modified', 'unchanged']
        assert response.data['agent_notes'][-1]['text'].endswith('(removed 0, modified 1, added 1)')

    def test_conflicting_request(self, suspended, pharmacy_client):
        response = pharmacy_client.post(self.url(suspended['order_id']), {
            'notes': 'Conflicting',
            'items_to_remove': ['i1'],
            'items_to_modify': [{'item_id': 'i1', 'new_quantity': 5}],
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['details'] == {'item_ids': ['i1']}

    def test_unknown_item(self, suspended, pharmacy_client):
        response = pharmacy_client.post(
            self.url(suspended['order_id']), {'notes': 'Remove', 'items_to_remove': ['i9']}, format='json'
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_second_modify_starts_from_original_items(self, suspended, pharmacy_client):
        order_id = suspended['order_id']
        pharmacy_client.post(self.url(order_id), {'notes': 'Remove', 'items_to_remove': ['i2']}, format='json')

        response = pharmacy_client.post(self.url(order_id), {
            'notes': 'Keep the antibiotic, two boxes',
            'items_to_modify': [{'item_id': 'i2', 'new_quantity': 2}],
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total_amount'] == '160.00'
        kinds = {c['kind'] for c in response.data['changes']}
        assert kinds == {'unchanged', 'modified'}

    def test_restore_item(self, suspended, pharmacy_client):
        order_id = suspended['order_id']
        pharmacy_client.post(self.url(order_id), {'notes': 'Remove', 'items_to_remove': ['i2']}, format='json')

        response = pharmacy_client.post(self.url(order_id, 'restore-item'), {'item_id': 'i2'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total_amount'] == '105.00'


@pytest.mark.django_db
class TestAgentActions:

    def url(self, order_id, action):
        return f'{ENDPOINT}{order_id}/{action}/'

    def test_approve_requires_modification(self, suspended, agent_client):
        response = agent_client.post(self.url(suspended['order_id'], 'approve'), {}, format='json')
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_approve_after_modification(self, suspended, pharmacy_client, agent_client):
        order_id = suspended['order_id']
        pharmacy_client.post(self.url(order_id, 'modify'), {
            'notes': 'Drop antibiotic', 'items_to_remove': ['i2'],
        }, format='json')

        response = agent_client.post(self.url(order_id, 'approve'), {'notes': 'Customer agreed'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'resolved'
        assert response.data['resolution']['action'] == 'order-modified'
        statuses = {i['item_id']: i['status'] for i in response.data['modified_items']}
        assert statuses == {'i1': 'approved', 'i2': 'removed'}

    def test_contact_both_parties(self, suspended, agent_client):
        order_id = suspended['order_id']
        agent_client.post(self.url(order_id, 'contact'), {'party': 'customer'}, format='json')
        response = agent_client.post(self.url(order_id, 'contact'), {'party': 'pharmacy'}, format='json')

        assert response.data['customer_contacted'] is True
        assert response.data['pharmacy_contacted'] is True
        assert response.data['status'] == 'in-progress'

    def test_escalate_twice(self, suspended, agent_client):
        order_id = suspended['order_id']
        agent_client.post(self.url(order_id, 'escalate'), {'reason': 'No answer'}, format='json')
        response = agent_client.post(self.url(order_id, 'escalate'), {'reason': 'Still no answer'}, format='json')

        assert response.data['escalation_level'] == 2
        assert response.data['priority'] == 'urgent'

    def test_escalate_without_reason(self, suspended, agent_client):
        response = agent_client.post(self.url(suspended['order_id'], 'escalate'), {'reason': ''}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_customer_cancels(self, suspended, customer_client):
        response = customer_client.post(
            self.url(suspended['order_id'], 'cancel'), {'reason': 'I need the antibiotic'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'cancelled'
        assert response.data['resolution']['resolved_by_role'] == 'customer'

    def test_resolve_closed_order_is_conflict(self, suspended, agent_client):
        order_id = suspended['order_id']
        agent_client.post(self.url(order_id, 'resolve'), {
            'action': 'issue-resolved', 'notes': 'Stock arrived',
        }, format='json')

        response = agent_client.post(self.url(order_id, 'cancel'), {'reason': 'Too late'}, format='json')
        assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.django_db
class TestSuspendedOrderQueries:

    def test_list_filters(self, suspended, agent_client):
        agent_client.post(ENDPOINT, suspend_payload(order_number='ORD-2', pharmacy_id='ph-2'), format='json')

        everything = agent_client.get(ENDPOINT)
        by_pharmacy = agent_client.get(f'{ENDPOINT}?pharmacy_id=ph-2')
        resolved = agent_client.get(f'{ENDPOINT}?status=resolved')

        assert len(everything.data) == 2
        assert [o['order_number'] for o in by_pharmacy.data] == ['ORD-2']
        assert resolved.data == []

    def test_statistics(self, suspended, agent_client):
        response = agent_client.get(f'{ENDPOINT}statistics/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total'] == 1
        assert response.data['by_status']['suspended'] == 1
        assert response.data['by_issue_type']['medicine-unavailable'] == 1
        assert response.data['average_resolution_hours'] is None


@pytest.mark.django_db
class TestSuspendedOrderPermissions:
    """Role gating and ownership on /api/v1/suspended-orders/."""

    def url(self, order_id, action=None):
        return f'{ENDPOINT}{order_id}/{action}/' if action else f'{ENDPOINT}{order_id}/'

    def test_customer_cannot_suspend(self, customer_client):
        response = customer_client.post(ENDPOINT, suspend_payload(), format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_customer_cannot_list(self, suspended, customer_client):
        response = customer_client.get(ENDPOINT)
        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.parametrize('action,payload', [
        ('modify', {'notes': 'Remove', 'items_to_remove': ['i2']}),
        ('restore-item', {'item_id': 'i2'}),
        ('approve', {}),
        ('escalate', {'reason': 'Slow'}),
        ('resolve', {'action': 'issue-resolved', 'notes': 'Done'}),
    ])
    def test_customer_cannot_work_the_order(self, suspended, customer_client, agent_client, action, payload):
        response = customer_client.post(self.url(suspended['order_id'], action), payload, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        stored = agent_client.get(self.url(suspended['order_id']))
        assert stored.data['status'] == 'suspended'

    def test_customer_reads_own_order(self, suspended, customer_client):
        response = customer_client.get(self.url(suspended['order_id']))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['order_id'] == suspended['order_id']

    def test_other_customer_is_forbidden(self, suspended, make_client, agent_client):
        stranger = make_client('stranger', 'customer')

        read = stranger.get(self.url(suspended['order_id']))
        cancel = stranger.post(self.url(suspended['order_id'], 'cancel'), {'reason': 'Not mine'}, format='json')

        assert read.status_code == status.HTTP_403_FORBIDDEN
        assert cancel.status_code == status.HTTP_403_FORBIDDEN
        assert agent_client.get(self.url(suspended['order_id'])).data['status'] == 'suspended'

    def test_other_pharmacy_is_forbidden(self, suspended, make_client):
        other = make_client('other-pharmacy', 'pharmacy')

        response = other.post(
            self.url(suspended['order_id'], 'modify'),
            {'notes': 'Remove', 'items_to_remove': ['i2']},
            format='json',
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_pharmacy_back_office_actions_are_forbidden(self, suspended, pharmacy_client):
        escalate = pharmacy_client.post(self.url(suspended['order_id'], 'escalate'), {'reason': 'Slow'}, format='json')
        statistics = pharmacy_client.get(f'{ENDPOINT}statistics/')

        assert escalate.status_code == status.HTTP_403_FORBIDDEN
        assert statistics.status_code == status.HTTP_403_FORBIDDEN

    def test_pharmacy_suspends_and_lists_only_its_own(self, suspended, pharmacy_client, agent_client):
        agent_client.post(ENDPOINT, suspend_payload(order_number='ORD-2', pharmacy_id='ph-2'), format='json')
        spoofed = pharmacy_client.post(
            ENDPOINT, suspend_payload(order_number='ORD-3', pharmacy_id='ph-2'), format='json'
        )

        response = pharmacy_client.get(f'{ENDPOINT}?pharmacy_id=ph-2')

        assert spoofed.data['pharmacy_id'] == str(pharmacy_client.user.pk)
        assert sorted(o['order_number'] for o in response.data) == ['ORD-1001', 'ORD-3']

    def test_pharmacy_approves_its_own_modification(self, suspended, pharmacy_client):
        order_id = suspended['order_id']
        pharmacy_client.post(self.url(order_id, 'modify'), {
            'notes': 'Drop antibiotic', 'items_to_remove': ['i2'],
        }, format='json')

        response = pharmacy_client.post(self.url(order_id, 'approve'), {}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'resolved'

    def test_other_roles_have_no_access(self, suspended, reader_client, delivery_client):
        assert reader_client.get(ENDPOINT).status_code == status.HTTP_403_FORBIDDEN
        assert delivery_client.get(self.url(suspended['order_id'])).status_code == status.HTTP_403_FORBIDDEN

    def test_unauthenticated(self, api_client):
        response = api_client.get(ENDPOINT)
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)
