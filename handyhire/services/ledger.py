"""Money helpers, atomic balance updates and ledger reconciliation.

All amounts are integer cents. Stored running totals on ``User`` are a cache
of the transaction ledger; ``reconcile_user`` recomputes them from the ledger
and corrects any drift.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, func, or_, select, update

from handyhire import db
from handyhire.models import Transaction, TransactionStatus, TransactionType, User

logger = logging.getLogger(__name__)

# Stored totals within one cent of the ledger are left alone
DRIFT_TOLERANCE_CENTS = 1

# Job payments that count towards a buyer's spending
SPENDING_STATUSES = (TransactionStatus.IN_ESCROW, TransactionStatus.RELEASED)


def to_cents(amount) -> int:
    """Convert a currency amount (Decimal, str, int or float) to cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_cents(cents) -> float:
    return round((cents or 0) / 100, 2)


def calculate_fees(amount_cents, fee_percent):
    """Calculate platform fee and provider amount.

    Args:
        amount_cents: Gross amount in cents
        fee_percent: Platform fee percentage (10.0 means 10%)

    Returns:
        tuple: (service_fee_cents, provider_amount_cents)
    """
    fee = Decimal(amount_cents) * Decimal(str(fee_percent)) / 100
    service_fee = int(fee.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    return service_fee, amount_cents - service_fee


def increment_user_totals(user_id, available_balance=0, total_earnings=0, total_spending=0):
    """Add deltas to a user's stored totals in one UPDATE statement.

    The increment happens in SQL (``col = col + delta``) so concurrent
    updates for the same user never lose each other's writes.
    """
    values = {}
    if available_balance:
        values[User.available_balance] = User.available_balance + available_balance
    if total_earnings:
        values[User.total_earnings] = User.total_earnings + total_earnings
    if total_spending:
        values[User.total_spending] = User.total_spending + total_spending
    if not values:
        return 0

    result = db.session.execute(
        update(User).where(User.id == user_id).values(values)
    )
    return result.rowcount


def debit_available_balance(user_id, amount_cents):
    """Atomically subtract from the balance only if enough funds remain.

    Returns True when the debit was applied.
    """
    result = db.session.execute(
        update(User)
        .where(User.id == user_id, User.available_balance >= amount_cents)
        .values({User.available_balance: User.available_balance - amount_cents})
    )
    return result.rowcount == 1


# =============================================================================
# Reconciliation
# =============================================================================

def _earnings_sum(user_id):
    return (
        select(func.coalesce(func.sum(Transaction.amount - Transaction.service_fee), 0))
        .where(
            Transaction.provider_id == user_id,
            Transaction.type == TransactionType.JOB_PAYMENT,
            Transaction.status == TransactionStatus.RELEASED,
        )
        .scalar_subquery()
    )


def _withdrawals_sum(user_id):
    return (
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(
            Transaction.provider_id == user_id,
            Transaction.type == TransactionType.WITHDRAWAL,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        .scalar_subquery()
    )


def _spending_sum(user_id):
    return (
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(
            Transaction.customer_id == user_id,
            Transaction.type == TransactionType.JOB_PAYMENT,
            Transaction.status.in_(SPENDING_STATUSES),
        )
        .scalar_subquery()
    )


def _balance_expr(user_id):
    net = _earnings_sum(user_id) - _withdrawals_sum(user_id)
    return case((net > 0, net), else_=0)


def compute_ledger_totals(user_id):
    """Recompute a user's totals from the transaction ledger (cents)."""
    row = db.session.execute(
        select(
            _earnings_sum(user_id).label('total_earnings'),
            _balance_expr(user_id).label('available_balance'),
            _spending_sum(user_id).label('total_spending'),
        )
    ).one()
    return {
        'available_balance': int(row.available_balance),
        'total_earnings': int(row.total_earnings),
        'total_spending': int(row.total_spending),
    }


def reconcile_user(user_id):
    """Correct a user's stored totals from the ledger if they drifted.

    The correction is a single UPDATE whose values are subqueries over the
    ledger, so it cannot clobber a release that commits in between.

    Returns:
        dict: ledger totals in cents plus ``corrected`` flag
    """
    user = db.session.get(User, user_id)
    if user is None:
        return None

    totals = compute_ledger_totals(user_id)
    drifted = any(
        abs((getattr(user, field) or 0) - value) > DRIFT_TOLERANCE_CENTS
        for field, value in totals.items()
    )

    if drifted:
        logger.warning(
            f'Ledger drift for user {user_id}: stored '
            f'balance={user.available_balance} earnings={user.total_earnings} '
            f'spending={user.total_spending}, ledger {totals}. Correcting.'
        )
        db.session.execute(
            update(User)
            .where(User.id == user_id)
            .values({
                User.total_earnings: _earnings_sum(user_id),
                User.available_balance: _balance_expr(user_id),
                User.total_spending: _spending_sum(user_id),
            })
        )
        db.session.commit()
        totals = compute_ledger_totals(user_id)

    return dict(totals, corrected=drifted)


def _transaction_row(transaction, user_id):
    """Shape one transaction for the dashboard, from ``user_id``'s side."""
    is_withdrawal = transaction.type == TransactionType.WITHDRAWAL
    is_earning = (
        not is_withdrawal
        and transaction.provider_id == user_id
        and transaction.status == TransactionStatus.RELEASED
    )
    job = transaction.job
    job_title = job.title if job else ('Withdrawal' if is_withdrawal else 'Unknown Job')

    if is_withdrawal:
        row_type, description = 'withdrawal', 'Withdrawal to payout account'
        amount = transaction.amount
    elif is_earning:
        row_type, description = 'job_earning', f'Earned from {job_title}'
        amount = transaction.provider_amount
    else:
        row_type, description = 'job_payment', f'Paid for {job_title}'
        amount = transaction.amount

    return {
        'id': transaction.id,
        'jobTitle': job_title,
        'description': description,
        'amount': from_cents(amount),
        'type': row_type,
        'status': transaction.status,
        'date': transaction.created_at.isoformat(),
        'category': job.category if job else 'General',
    }


def financial_summary(user_id, limit=20):
    """Reconciled balances plus recent activity for the financial dashboard."""
    totals = reconcile_user(user_id)
    if totals is None:
        return None

    transactions = (
        Transaction.query
        .filter(or_(Transaction.customer_id == user_id, Transaction.provider_id == user_id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(50)
        .all()
    )

    spending_by_category = {}
    earnings_by_month = {}
    for t in transactions:
        if t.type != TransactionType.JOB_PAYMENT:
            continue
        category = t.job.category if t.job else 'General'
        if t.customer_id == user_id and t.status in SPENDING_STATUSES:
            spending_by_category[category] = spending_by_category.get(category, 0) + t.amount
        if t.provider_id == user_id and t.status == TransactionStatus.RELEASED:
            month = (t.released_at or t.created_at).strftime('%Y-%m')
            earnings_by_month[month] = earnings_by_month.get(month, 0) + t.provider_amount

    return {
        'availableBalance': from_cents(totals['available_balance']),
        'totalEarnings': from_cents(totals['total_earnings']),
        'totalSpending': from_cents(totals['total_spending']),
        'recentTransactions': [_transaction_row(t, user_id) for t in transactions[:limit]],
        'spendingByCategory': [
            {'category': category, 'amount': from_cents(amount)}
            for category, amount in sorted(spending_by_category.items())
        ],
        'earningsTrend': [
            {'month': month, 'amount': from_cents(amount)}
            for month, amount in sorted(earnings_by_month.items())
        ],
    }
