"""Escrow state machine for jobs and their payments.

This module is the only place that moves a Job or a job-payment Transaction
between states. Every transition is written as a conditional UPDATE keyed on
the state it expects, so a concurrent or repeated caller loses cleanly
instead of double-applying.

Job lifecycle::

    active --(capture completed)--> in_progress --(release)--> completed
    active --(buyer cancels)------> cancelled
    in_progress --(payment denied)--> active  (provider cleared)
"""

import logging
import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from handyhire import db
from handyhire.models import (
    Job, JobStatus, PaymentStatus, NotificationType, PlatformSetting,
    Transaction, TransactionStatus, TransactionType, User,
)
from handyhire.schemas import MAX_ESCROW_PERIOD_MINUTES
from handyhire.services.errors import (
    DuplicateEscrowError, EscrowNotElapsedError, GatewayError, InvalidStateError,
    NotAuthorizedError, NotFoundError, ValidationError,
)
from handyhire.services.ledger import calculate_fees, from_cents, increment_user_totals
from handyhire.services.notifications import notify

logger = logging.getLogger(__name__)


def _valid_period(value):
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if 1 <= minutes <= MAX_ESCROW_PERIOD_MINUTES else None


def get_escrow_period_minutes():
    """Escrow period for newly started escrows (operator setting, then config).

    Stored values outside 1 minute..10 years are ignored.
    """
    value = PlatformSetting.get_value(PlatformSetting.ESCROW_PERIOD_MINUTES)
    if value is not None:
        minutes = _valid_period(value)
        if minutes is not None:
            return minutes
        logger.error(f'Ignoring invalid escrow period setting: {value!r}')

    minutes = _valid_period(current_app.config['ESCROW_PERIOD_MINUTES'])
    if minutes is None:
        raise ValidationError('ESCROW_PERIOD_MINUTES is out of range')
    return minutes


def get_job_or_404(job_id):
    job = db.session.get(Job, job_id)
    if job is None:
        raise NotFoundError('Job not found')
    return job


def active_transaction_for(job):
    """The job's non-terminal job-payment transaction, if any."""
    return (
        Transaction.query
        .filter(
            Transaction.job_id == job.id,
            Transaction.type == TransactionType.JOB_PAYMENT,
            Transaction.status.in_([TransactionStatus.PENDING_CAPTURE, TransactionStatus.IN_ESCROW]),
        )
        .order_by(Transaction.created_at.desc())
        .first()
    )


def hire_provider(job, buyer_id, provider_id, gateway):
    """Select a provider and open a charge for the job price.

    The service fee is fixed here and stored on the transaction; it is never
    recomputed later.

    Returns:
        tuple: (Transaction, client_secret)
    """
    if job.posted_by_id != buyer_id:
        raise NotAuthorizedError('Only the job poster can hire a provider')
    if provider_id == buyer_id:
        raise ValidationError('You cannot hire yourself')
    if job.status != JobStatus.ACTIVE:
        raise InvalidStateError(f'Job is not open for hiring (status: {job.status})')
    if active_transaction_for(job) is not None:
        raise DuplicateEscrowError('A payment is already in progress for this job')
    if db.session.get(User, provider_id) is None:
        raise NotFoundError('Provider not found')

    service_fee, _ = calculate_fees(job.price, current_app.config['PLATFORM_FEE_PERCENT'])

    # Charge first: a gateway failure leaves nothing behind in the database
    charge = gateway.create_charge(
        amount_cents=job.price,
        currency=job.currency,
        metadata={'job_id': job.id, 'customer_id': buyer_id, 'provider_id': provider_id},
    )

    claimed = db.session.execute(
        update(Job)
        .where(Job.id == job.id, Job.status == JobStatus.ACTIVE, Job.hired_provider_id.is_(None))
        .values(hired_provider_id=provider_id, payment_status=PaymentStatus.PENDING)
    ).rowcount
    if claimed != 1:
        db.session.rollback()
        try:
            gateway.cancel_charge(charge['payment_id'])
        except GatewayError as e:
            logger.error(f'ORPHANED_CHARGE payment={charge["payment_id"]} job={job.id}: {e.message}')
        raise DuplicateEscrowError('A provider has already been selected for this job')

    transaction = Transaction(
        type=TransactionType.JOB_PAYMENT,
        job_id=job.id,
        customer_id=buyer_id,
        amount=job.price,
        service_fee=service_fee,
        currency=job.currency,
        payment_id=charge['payment_id'],
        payment_method=gateway.name,
        status=TransactionStatus.PENDING_CAPTURE,
    )
    db.session.add(transaction)
    db.session.commit()

    logger.info(
        f'Job {job.id}: provider {provider_id} selected, charge {transaction.payment_id} '
        f'opened for {job.price} cents (fee {service_fee})'
    )
    return transaction, charge['client_secret']


def record_order_approved(transaction):
    """Bookkeeping for a buyer-approved charge. Returns False if already seen."""
    if transaction.status != TransactionStatus.PENDING_CAPTURE or transaction.approved_at:
        return False
    transaction.approved_at = datetime.utcnow()
    db.session.commit()
    return True


def start_escrow(job, transaction, now=None):
    """Move a captured payment into escrow and start the holding period.

    Raises:
        DuplicateEscrowError: transaction already in escrow or released
        InvalidStateError: job/transaction not eligible
    """
    now = now or datetime.utcnow()

    if transaction.status in (TransactionStatus.IN_ESCROW, TransactionStatus.RELEASED):
        raise DuplicateEscrowError('Escrow already started for this payment')
    if transaction.status != TransactionStatus.PENDING_CAPTURE:
        raise InvalidStateError(f'Payment cannot enter escrow (status: {transaction.status})')
    if transaction.job_id != job.id:
        raise InvalidStateError('Payment does not belong to this job')
    if job.status != JobStatus.ACTIVE or not job.hired_provider_id:
        raise InvalidStateError('Job must be active with a hired provider to start escrow')

    escrow_end_date = now + timedelta(minutes=get_escrow_period_minutes())
    job_id, transaction_id = job.id, transaction.id
    customer_id, provider_id = transaction.customer_id, job.hired_provider_id
    amount, job_title = transaction.amount, job.title

    moved = db.session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.PENDING_CAPTURE)
        .values(status=TransactionStatus.IN_ESCROW, held_at=now)
    ).rowcount
    if moved != 1:
        db.session.rollback()
        raise DuplicateEscrowError('Escrow already started for this payment')

    started = db.session.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.ACTIVE, Job.hired_provider_id.isnot(None))
        .values(
            status=JobStatus.IN_PROGRESS,
            payment_status=PaymentStatus.IN_ESCROW,
            escrow_end_date=escrow_end_date,
            transaction_id=transaction_id,
        )
    ).rowcount
    if started != 1:
        db.session.rollback()
        raise InvalidStateError('Job must be active with a hired provider to start escrow')

    increment_user_totals(customer_id, total_spending=amount)

    notify(
        customer_id, NotificationType.PAYMENT,
        f'Payment successful for job: {job_title}. Provider has been hired.',
        related_id=transaction_id, related_type='transaction',
    )
    notify(
        provider_id, NotificationType.JOB_ASSIGNED,
        f'You have been hired for the job: {job_title}. Payment has been received.',
        related_id=job_id, related_type='job',
    )
    db.session.commit()

    logger.info(f'Job {job_id}: escrow started with transaction {transaction_id}, ends {escrow_end_date.isoformat()}')

    current_app.extensions['completion_scheduler'].arm(job_id, escrow_end_date, now=now)
    return escrow_end_date


def mark_complete(job, acting_user_id, auto_complete=False, now=None):
    """Complete a job and release its escrow.

    Buyers may only complete once the escrow period has elapsed. Trusted
    internal callers pass ``auto_complete=True`` and skip both the identity
    and the timing guard.

    Returns:
        ReleaseResult
    """
    from handyhire.services.release import release

    now = now or datetime.utcnow()

    if job.status != JobStatus.IN_PROGRESS:
        raise InvalidStateError('Job is not in progress')

    if not auto_complete:
        if acting_user_id != job.posted_by_id:
            raise NotAuthorizedError('Only the job poster can mark the job as completed')
        if job.escrow_end_date and now < job.escrow_end_date:
            remaining = math.ceil((job.escrow_end_date - now).total_seconds())
            raise EscrowNotElapsedError(remaining)

    result = release(job.id, now=now)
    if not result.released:
        raise InvalidStateError('Job payment has already been released', reason=result.reason)
    return result


def cancel(job, acting_user_id):
    """Buyer cancels a job that has not entered escrow yet."""
    if job.posted_by_id != acting_user_id:
        raise NotAuthorizedError('Only the job poster can cancel this job')
    if job.status != JobStatus.ACTIVE:
        raise InvalidStateError(f'Job cannot be cancelled (status: {job.status})')

    job_id, provider_id, job_title = job.id, job.hired_provider_id, job.title
    pending = active_transaction_for(job)

    cancelled = db.session.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.ACTIVE)
        .values(status=JobStatus.CANCELLED)
    ).rowcount
    if cancelled != 1:
        db.session.rollback()
        raise InvalidStateError('Job cannot be cancelled')

    if pending is not None:
        db.session.execute(
            update(Transaction)
            .where(Transaction.id == pending.id, Transaction.status == TransactionStatus.PENDING_CAPTURE)
            .values(status=TransactionStatus.FAILED, failure_reason='Job cancelled by buyer')
        )

    notify(
        provider_id, NotificationType.JOB_CANCELLED,
        f'The job "{job_title}" was cancelled by the buyer.',
        related_id=job_id, related_type='job',
    )
    db.session.commit()
    logger.info(f'Job {job_id} cancelled by buyer {acting_user_id}')


def deny_payment(job, transaction, reason=None):
    """Handle a gateway-reported capture denial.

    The transaction fails and the job goes back to open-for-quotes with the
    provider cleared. Returns False when the denial was already applied.
    """
    if transaction.status == TransactionStatus.FAILED:
        return False
    if transaction.status not in (TransactionStatus.PENDING_CAPTURE, TransactionStatus.IN_ESCROW):
        raise InvalidStateError(f'Payment can no longer be denied (status: {transaction.status})')

    was_in_escrow = transaction.status == TransactionStatus.IN_ESCROW
    transaction_id, customer_id, amount = transaction.id, transaction.customer_id, transaction.amount

    failed = db.session.execute(
        update(Transaction)
        .where(
            Transaction.id == transaction_id,
            Transaction.status.in_([TransactionStatus.PENDING_CAPTURE, TransactionStatus.IN_ESCROW]),
        )
        .values(status=TransactionStatus.FAILED, failure_reason=reason)
    ).rowcount
    if failed != 1:
        db.session.rollback()
        return False

    if was_in_escrow:
        # Undo the spending recorded when escrow started
        increment_user_totals(customer_id, total_spending=-amount)

    job_title = None
    if job is not None:
        job_title = job.title
        db.session.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status.in_([JobStatus.ACTIVE, JobStatus.IN_PROGRESS]),
                Job.payment_status != PaymentStatus.RELEASED,
            )
            .values(
                status=JobStatus.ACTIVE,
                hired_provider_id=None,
                payment_status=PaymentStatus.PENDING,
                escrow_end_date=None,
                transaction_id=None,
            )
        )

    notify(
        customer_id, NotificationType.PAYMENT_FAILED,
        f'Payment failed for job: {job_title or "unknown job"}. Please try again.',
        related_id=transaction_id, related_type='transaction',
        data={'amount': from_cents(amount), 'reason': reason} if reason else None,
    )
    db.session.commit()

    logger.info(f'Transaction {transaction_id} failed ({reason or "denied"}); job reopened')
    return True
