"""Release engine: moves escrowed funds to the provider, and withdrawals.

``release`` is safe to call any number of times for the same job. The only
thing standing between a second caller and a second credit is the
conditional UPDATE on ``jobs`` (``status='in_progress' AND
payment_status='in_escrow'``), executed in the same database transaction as
the balance increment. Whoever flips that row first wins; everyone else gets
a "not eligible" result.
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from handyhire import db
from handyhire.models import (
    Job, JobStatus, PaymentStatus, NotificationType,
    Transaction, TransactionStatus, TransactionType, User,
)
from handyhire.services.errors import (
    GatewayError, InsufficientFundsError, NotFoundError, ReleaseFailedError, ValidationError,
)
from handyhire.services.ledger import debit_available_balance, from_cents, increment_user_totals
from handyhire.services.notifications import notify

logger = logging.getLogger(__name__)


@dataclass
class ReleaseResult:
    """Outcome of a release attempt. Amounts in cents."""
    job_id: int
    released: bool
    reason: str | None = None
    transaction_id: int | None = None
    provider_amount: int = 0
    new_provider_balance: int | None = None
    new_total_earnings: int | None = None

    def to_dict(self):
        payload = asdict(self)
        for key in ('provider_amount', 'new_provider_balance', 'new_total_earnings'):
            if payload[key] is not None:
                payload[key] = from_cents(payload[key])
        return payload


def release(job_id, now=None):
    """Release a job's escrow to its hired provider.

    Args:
        job_id: Job ID
        now: Completion timestamp (defaults to utcnow)

    Returns:
        ReleaseResult: ``released=False`` when the job is not (or no longer)
        in escrow

    Raises:
        NotFoundError: job does not exist
        ReleaseFailedError: ledger inconsistent or storage failure; nothing
            was committed
    """
    now = now or datetime.utcnow()

    job = db.session.get(Job, job_id)
    if job is None:
        raise NotFoundError('Job not found', job_id=job_id)

    if job.status != JobStatus.IN_PROGRESS or job.payment_status != PaymentStatus.IN_ESCROW:
        return ReleaseResult(
            job_id=job_id, released=False,
            reason=f'not eligible (status={job.status}, payment_status={job.payment_status})',
        )

    transaction = db.session.get(Transaction, job.transaction_id) if job.transaction_id else None
    if transaction is None or transaction.status != TransactionStatus.IN_ESCROW:
        logger.error(
            f'RELEASE_INCONSISTENT job={job_id} transaction={job.transaction_id} '
            f'status={transaction.status if transaction else "missing"}'
        )
        raise ReleaseFailedError('Escrow transaction not found for job', job_id=job_id)

    provider_id = job.hired_provider_id
    if not provider_id:
        logger.error(f'RELEASE_INCONSISTENT job={job_id} transaction={transaction.id} has no hired provider')
        raise ReleaseFailedError('Job has no hired provider', job_id=job_id)

    transaction_id = transaction.id
    customer_id = transaction.customer_id
    provider_amount = transaction.provider_amount
    job_title = job.title

    try:
        claimed = db.session.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.IN_PROGRESS,
                Job.payment_status == PaymentStatus.IN_ESCROW,
            )
            .values(
                status=JobStatus.COMPLETED,
                payment_status=PaymentStatus.RELEASED,
                completed_at=now,
                escrow_end_date=None,
            )
        ).rowcount
        if claimed != 1:
            db.session.rollback()
            logger.info(f'Job {job_id} already released by a concurrent caller')
            return ReleaseResult(job_id=job_id, released=False, reason='already released')

        moved = db.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.IN_ESCROW)
            .values(status=TransactionStatus.RELEASED, provider_id=provider_id, released_at=now)
        ).rowcount
        if moved != 1:
            db.session.rollback()
            logger.error(f'RELEASE_INCONSISTENT job={job_id} transaction={transaction_id} left escrow concurrently')
            raise ReleaseFailedError('Escrow transaction changed during release', job_id=job_id)

        increment_user_totals(provider_id, available_balance=provider_amount, total_earnings=provider_amount)

        notify(
            customer_id, NotificationType.JOB_COMPLETED,
            f'Your job "{job_title}" has been completed and payment has been released to the provider.',
            related_id=job_id, related_type='job',
        )
        notify(
            provider_id, NotificationType.PAYMENT,
            f'Payment for job "{job_title}" has been released to your account. '
            f'Your available balance has been updated.',
            related_id=transaction_id, related_type='transaction',
            data={'amount': from_cents(provider_amount)},
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f'RELEASE_FAILED job={job_id} transaction={transaction_id} provider={provider_id} '
            f'amount={provider_amount}: {e}',
            exc_info=True,
        )
        raise ReleaseFailedError('Payment release failed', job_id=job_id)

    provider = db.session.get(User, provider_id)
    logger.info(f'Job {job_id}: released {provider_amount} cents to provider {provider_id} (transaction {transaction_id})')

    return ReleaseResult(
        job_id=job_id,
        released=True,
        transaction_id=transaction_id,
        provider_amount=provider_amount,
        new_provider_balance=provider.available_balance,
        new_total_earnings=provider.total_earnings,
    )


def withdraw(user_id, amount_cents, payout_email, gateway):
    """Withdraw from a user's available balance to their payout account.

    The debit and the withdrawal record are committed before the gateway is
    called, so a payout is never sent for funds that are still spendable. If
    the payout fails, the amount is credited back and the withdrawal is
    marked failed in a second commit.

    Returns:
        dict: {'transaction': Transaction, 'new_balance': cents}
    """
    if amount_cents <= 0:
        raise ValidationError('Please provide a valid amount')

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')

    if user.available_balance < amount_cents:
        raise InsufficientFundsError(
            f'Insufficient funds. Available balance: ${from_cents(user.available_balance):.2f}',
            available_balance=from_cents(user.available_balance),
        )

    reference = f'WD-{uuid.uuid4().hex[:20]}'
    currency = current_app.config['DEFAULT_CURRENCY']
    destination_account = user.stripe_account_id

    try:
        if not debit_available_balance(user_id, amount_cents):
            db.session.rollback()
            raise InsufficientFundsError('Insufficient funds')

        if user.payout_email != payout_email:
            user.payout_email = payout_email

        transaction = Transaction(
            type=TransactionType.WITHDRAWAL,
            customer_id=user_id,
            provider_id=user_id,
            amount=amount_cents,
            service_fee=0,
            currency=currency,
            payment_id=reference,
            payment_method=gateway.name,
            payout_email=payout_email,
            status=TransactionStatus.COMPLETED,
        )
        db.session.add(transaction)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f'WITHDRAWAL_FAILED user={user_id} amount={amount_cents} reference={reference}: {e}', exc_info=True)
        raise

    transaction_id = transaction.id

    try:
        gateway.payout(
            amount_cents, currency, payout_email, reference,
            destination_account=destination_account,
        )
    except GatewayError as e:
        _reverse_withdrawal(user_id, transaction_id, amount_cents, reference, e.message)
        raise

    notify(
        user_id, NotificationType.WITHDRAWAL,
        f'${from_cents(amount_cents):.2f} has been sent to your payout account.',
        related_id=transaction_id, related_type='transaction',
    )
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f'Withdrawal {reference} paid out but its notification was not saved: {e}')

    logger.info(f'Withdrawal {reference}: {amount_cents} cents for user {user_id}')
    return {
        'transaction': db.session.get(Transaction, transaction_id),
        'new_balance': db.session.get(User, user_id).available_balance,
    }


def _reverse_withdrawal(user_id, transaction_id, amount_cents, reference, reason):
    """Credit back a committed withdrawal whose payout was rejected."""
    try:
        reversed_rows = db.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.COMPLETED)
            .values(status=TransactionStatus.FAILED, failure_reason=reason)
        ).rowcount
        if reversed_rows == 1:
            increment_user_totals(user_id, available_balance=amount_cents)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f'WITHDRAWAL_REVERSAL_FAILED user={user_id} transaction={transaction_id} '
            f'amount={amount_cents} reference={reference}: {e}',
            exc_info=True,
        )
        raise
    logger.warning(f'Withdrawal {reference} payout rejected ({reason}); {amount_cents} cents credited back')
