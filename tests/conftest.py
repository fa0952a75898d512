"""
Pytest configuration and fixtures for testing the escrow backend.
"""

import hashlib
import hmac
import json
import os
import sys
import time
from datetime import datetime, timedelta

import pytest
from faker import Faker

# Add the parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from handyhire import create_app, db
from handyhire.models import Job, Transaction, User
from handyhire.services import escrow
from handyhire.services.gateway import StripeGateway
from handyhire.utils.auth import create_token

fake = Faker()

WEBHOOK_SECRET = 'whsec_test_secret'


class FakeGateway(StripeGateway):
    """Stripe adapter whose outbound calls are recorded instead of sent.

    Signature verification and event parsing are the real Stripe code paths.
    """

    def __init__(self):
        super().__init__(secret_key='sk_test_fake', webhook_secret=WEBHOOK_SECRET)
        self.reset()

    def reset(self):
        self.charges = []
        self.captures = []
        self.cancellations = []
        self.payouts = []
        self.fail_with = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error

    def create_charge(self, amount_cents, currency, metadata=None):
        self._maybe_fail()
        payment_id = f'pi_{fake.unique.pystr(min_chars=16, max_chars=16)}'
        self.charges.append({'payment_id': payment_id, 'amount': amount_cents, 'currency': currency})
        return {'payment_id': payment_id, 'client_secret': f'{payment_id}_secret_test'}

    def capture(self, payment_id):
        self._maybe_fail()
        self.captures.append(payment_id)

    def cancel_charge(self, payment_id):
        self._maybe_fail()
        self.cancellations.append(payment_id)

    def payout(self, amount_cents, currency, payout_email, reference, destination_account=None):
        self._maybe_fail()
        self.payouts.append({'amount': amount_cents, 'email': payout_email, 'reference': reference})
        return f'tr_{reference}'


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing', gateway=FakeGateway())

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client for each test function."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create a fresh database session for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        yield db.session
        db.session.rollback()


@pytest.fixture
def gateway(app):
    gateway = app.extensions['payment_gateway']
    gateway.reset()
    return gateway


@pytest.fixture
def scheduler(app):
    return app.extensions['completion_scheduler']


def _create_user(**overrides):
    """Helper to create a user with sensible defaults."""
    data = {
        'username': fake.user_name() + fake.pystr(min_chars=4, max_chars=6),
        'email': fake.unique.email(),
        'first_name': fake.first_name(),
        'last_name': fake.last_name(),
    }
    data.update(overrides)
    user = User(**data)
    db.session.add(user)
    db.session.commit()
    return user.id


def auth_headers_for(user_id):
    return {'Authorization': f'Bearer {create_token(user_id)}'}


@pytest.fixture
def make_user(db_session):
    return _create_user


@pytest.fixture
def buyer(db_session):
    return _create_user(user_type='buyer')


@pytest.fixture
def provider(db_session):
    return _create_user(user_type='seller', stripe_account_id='acct_test_provider')


@pytest.fixture
def admin_user(db_session):
    return _create_user(email='ops@handyhire.test')


@pytest.fixture
def buyer_headers(buyer):
    return auth_headers_for(buyer)


@pytest.fixture
def provider_headers(provider):
    return auth_headers_for(provider)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers_for(admin_user)


@pytest.fixture
def make_job(db_session):
    """Factory for an active job posted by ``buyer_id``."""
    def _make_job(buyer_id, price_cents=10000, **overrides):
        data = {
            'title': fake.sentence(nb_words=4),
            'description': fake.paragraph(),
            'category': 'plumbing',
            'location': 'Riga, Latvia',
            'price': price_cents,
            'posted_by_id': buyer_id,
        }
        data.update(overrides)
        job = Job(**data)
        db.session.add(job)
        db.session.commit()
        return job.id
    return _make_job


@pytest.fixture
def hired_job(make_job, buyer, provider, gateway):
    """Active job with a provider selected and a charge pending capture."""
    job_id = make_job(buyer)
    transaction, _ = escrow.hire_provider(db.session.get(Job, job_id), buyer, provider, gateway)
    return {'job_id': job_id, 'transaction_id': transaction.id, 'payment_id': transaction.payment_id}


@pytest.fixture
def escrowed_job(hired_job):
    """Job in progress with its payment held in escrow."""
    job = db.session.get(Job, hired_job['job_id'])
    transaction = db.session.get(Transaction, hired_job['transaction_id'])
    escrow.start_escrow(job, transaction)
    return hired_job


def expire_escrow(job_id, minutes_ago=1):
    """Move a job's escrow end date into the past."""
    job = db.session.get(Job, job_id)
    job.escrow_end_date = datetime.utcnow() - timedelta(minutes=minutes_ago)
    db.session.commit()


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f'{timestamp}.{payload}'.encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def stripe_event(event_type, payment_id, **intent_fields):
    """Serialized Stripe event envelope for a payment intent."""
    return json.dumps({
        'id': f'evt_{fake.pystr(min_chars=14, max_chars=14)}',
        'object': 'event',
        'type': event_type,
        'data': {'object': dict({'id': payment_id, 'object': 'payment_intent'}, **intent_fields)},
    })
