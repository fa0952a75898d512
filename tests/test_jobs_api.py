"""
Tests for job endpoints and admin escrow operations.
"""

import pytest

from handyhire import db
from handyhire.models import Job, JobStatus, User

from conftest import expire_escrow


class TestCreateJob:
    """POST /api/jobs"""

    def test_create_job(self, client, buyer, buyer_headers):
        response = client.post('/api/jobs', json={
            'title': 'Fix leaking kitchen tap',
            'description': 'Tap drips constantly, needs a new washer.',
            'category': 'plumbing',
            'location': 'Riga, Latvia',
            'price': '150.50',
        }, headers=buyer_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['price'] == 150.5
        assert data['status'] == JobStatus.ACTIVE
        assert data['posted_by_id'] == buyer
        assert db.session.get(Job, data['id']).price == 15050

    @pytest.mark.parametrize('price', [0, -10, 'abc', '10.555'])
    def test_create_job_invalid_price(self, client, buyer_headers, price):
        response = client.post('/api/jobs', json={
            'title': 'Paint fence',
            'description': 'Two coats.',
            'category': 'painting',
            'location': 'Jurmala',
            'price': price,
        }, headers=buyer_headers)

        assert response.status_code == 400
        details = response.get_json()['details']
        assert details[0]['field'] == 'price'

    def test_create_job_requires_token(self, client, db_session):
        response = client.post('/api/jobs', json={'title': 'No auth'})

        assert response.status_code == 401

    def test_get_missing_job(self, client, db_session):
        assert client.get('/api/jobs/999999').status_code == 404


class TestHireAndCancel:
    """POST /api/jobs/<id>/hire and /cancel"""

    def test_hire(self, client, make_job, buyer, provider, buyer_headers):
        job_id = make_job(buyer)

        response = client.post(f'/api/jobs/{job_id}/hire', json={'provider_id': provider}, headers=buyer_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['client_secret'].endswith('_secret_test')
        assert data['amount'] == 100.0
        assert data['service_fee'] == 10.0
        assert data['transaction']['status'] == 'pending_capture'

    def test_hire_by_other_user(self, client, make_job, buyer, provider, provider_headers):
        job_id = make_job(buyer)

        response = client.post(f'/api/jobs/{job_id}/hire', json={'provider_id': provider}, headers=provider_headers)

        assert response.status_code == 403

    def test_hire_unknown_provider(self, client, make_job, buyer, buyer_headers):
        job_id = make_job(buyer)

        response = client.post(f'/api/jobs/{job_id}/hire', json={'provider_id': 999999}, headers=buyer_headers)

        assert response.status_code == 404
        assert db.session.get(Job, job_id).hired_provider_id is None

    def test_cancel(self, client, hired_job, buyer_headers):
        response = client.post(f'/api/jobs/{hired_job["job_id"]}/cancel', headers=buyer_headers)

        assert response.status_code == 200
        assert response.get_json()['job']['status'] == JobStatus.CANCELLED

    def test_cancel_in_progress(self, client, escrowed_job, buyer_headers):
        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/cancel', headers=buyer_headers)

        assert response.status_code == 409
        assert db.session.get(Job, escrowed_job['job_id']).status == JobStatus.IN_PROGRESS


class TestCompleteJob:
    """POST /api/jobs/<id>/complete"""

    def test_buyer_too_early(self, client, escrowed_job, provider, buyer_headers):
        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete', headers=buyer_headers)

        assert response.status_code == 409
        data = response.get_json()
        assert 0 < data['seconds_remaining'] <= 3600
        assert data['error'].startswith('Please wait')
        assert db.session.get(User, provider).available_balance == 0

    def test_buyer_after_escrow_end(self, client, escrowed_job, provider, buyer_headers):
        expire_escrow(escrowed_job['job_id'])

        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete', headers=buyer_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['job']['status'] == JobStatus.COMPLETED
        assert data['payment_details']['provider_amount'] == 90.0
        assert data['payment_details']['new_provider_balance'] == 90.0

    def test_complete_twice(self, client, escrowed_job, provider, buyer_headers):
        expire_escrow(escrowed_job['job_id'])
        url = f'/api/jobs/{escrowed_job["job_id"]}/complete'

        client.post(url, headers=buyer_headers)
        response = client.post(url, headers=buyer_headers)

        assert response.status_code == 409
        assert db.session.get(User, provider).available_balance == 9000

    def test_provider_cannot_complete(self, client, escrowed_job, provider_headers):
        expire_escrow(escrowed_job['job_id'])

        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete', headers=provider_headers)

        assert response.status_code == 403

    def test_requires_token(self, client, escrowed_job):
        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete')

        assert response.status_code == 401

    def test_auto_complete_without_secret(self, client, escrowed_job, buyer_headers):
        headers = dict(buyer_headers, **{'X-Auto-Complete': 'true'})

        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete', headers=headers)

        assert response.status_code == 403
        assert db.session.get(Job, escrowed_job['job_id']).status == JobStatus.IN_PROGRESS

    def test_auto_complete_with_secret(self, client, escrowed_job, provider):
        headers = {'X-Auto-Complete': 'true', 'X-Admin-Secret': 'test-admin-secret'}

        response = client.post(f'/api/jobs/{escrowed_job["job_id"]}/complete', headers=headers)

        assert response.status_code == 200
        assert db.session.get(User, provider).available_balance == 9000


class TestAdminEscrow:
    """Operator endpoints under /api/admin"""

    def test_escrow_period_roundtrip(self, client, admin_headers):
        assert client.get('/api/admin/settings/escrow-period', headers=admin_headers).get_json()['minutes'] == 60

        response = client.put('/api/admin/settings/escrow-period', json={'minutes': 1440}, headers=admin_headers)

        assert response.status_code == 200
        data = client.get('/api/admin/settings/escrow-period', headers=admin_headers).get_json()
        assert data['minutes'] == 1440
        assert data['default_minutes'] == 60

    def test_escrow_period_must_be_positive(self, client, admin_headers):
        response = client.put('/api/admin/settings/escrow-period', json={'minutes': 0}, headers=admin_headers)

        assert response.status_code == 400

    @pytest.mark.parametrize('minutes', [10 ** 12, 10 * 365 * 24 * 60 + 1])
    def test_escrow_period_upper_bound(self, client, admin_headers, minutes):
        response = client.put('/api/admin/settings/escrow-period', json={'minutes': minutes}, headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()['details'][0]['field'] == 'minutes'
        data = client.get('/api/admin/settings/escrow-period', headers=admin_headers).get_json()
        assert data['minutes'] == 60

    def test_non_admin_rejected(self, client, buyer_headers):
        response = client.put('/api/admin/settings/escrow-period', json={'minutes': 5}, headers=buyer_headers)

        assert response.status_code == 403

    def test_sweep(self, client, escrowed_job, admin_headers):
        expire_escrow(escrowed_job['job_id'])

        response = client.post('/api/admin/escrow/sweep', headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()['released'] == [escrowed_job['job_id']]

    def test_force_release(self, client, escrowed_job, provider, admin_headers):
        response = client.post(f'/api/admin/jobs/{escrowed_job["job_id"]}/release', headers=admin_headers)

        assert response.status_code == 200
        assert db.session.get(User, provider).available_balance == 9000

    def test_manual_start_escrow_outside_development(self, client, hired_job, admin_headers):
        response = client.post(f'/api/admin/jobs/{hired_job["job_id"]}/start-escrow', headers=admin_headers)

        assert response.status_code == 403
        assert db.session.get(Job, hired_job['job_id']).status == JobStatus.ACTIVE
