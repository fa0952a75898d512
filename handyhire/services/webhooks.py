"""Dispatch verified gateway events to escrow state transitions.

Gateways deliver at least once, so every handler is idempotent: the
transaction is looked up by ``payment_id`` and a repeated event finds it
already moved and reports ``duplicate``.
"""

import logging

from handyhire.models import Transaction, TransactionStatus
from handyhire.schemas import GatewayEvent, WebhookEventKind
from handyhire.services import escrow
from handyhire.services.errors import DuplicateEscrowError, InvalidStateError

logger = logging.getLogger(__name__)


def _find_transaction(event):
    transaction = Transaction.query.filter_by(payment_id=event.payment_id).first()
    if transaction is None:
        logger.warning(f'Webhook {event.event_id} ({event.raw_type}): no transaction for payment {event.payment_id}')
    return transaction


def handle_order_approved(event, gateway):
    """Buyer approved the charge: record it and request the capture."""
    transaction = _find_transaction(event)
    if transaction is None:
        return {'status': 'ignored', 'reason': 'unknown payment'}
    if transaction.status != TransactionStatus.PENDING_CAPTURE or transaction.approved_at:
        return {'status': 'duplicate'}

    # GatewayError propagates: the webhook answers 5xx and the gateway redelivers
    gateway.capture(transaction.payment_id)
    escrow.record_order_approved(transaction)
    logger.info(f'Payment {transaction.payment_id} approved, capture requested')
    return {'status': 'approved'}


def handle_capture_completed(event, gateway):
    transaction = _find_transaction(event)
    if transaction is None:
        return {'status': 'ignored', 'reason': 'unknown payment'}

    try:
        escrow_end_date = escrow.start_escrow(transaction.job, transaction)
    except DuplicateEscrowError:
        return {'status': 'duplicate'}
    except InvalidStateError as e:
        # Captured money for a job that can no longer take it; needs an operator refund
        logger.error(
            f'CAPTURE_REJECTED payment={transaction.payment_id} transaction={transaction.id} '
            f'job={transaction.job_id}: {e.message}'
        )
        return {'status': 'rejected', 'reason': e.message}

    return {'status': 'in_escrow', 'escrow_end_date': escrow_end_date.isoformat()}


def handle_capture_denied(event, gateway):
    transaction = _find_transaction(event)
    if transaction is None:
        return {'status': 'ignored', 'reason': 'unknown payment'}

    try:
        applied = escrow.deny_payment(transaction.job, transaction, reason=event.failure_reason)
    except InvalidStateError as e:
        logger.error(f'Capture denial for settled payment {transaction.payment_id} ignored: {e.message}')
        return {'status': 'rejected', 'reason': e.message}

    return {'status': 'failed' if applied else 'duplicate'}


def handle_unknown(event, gateway):
    logger.info(f'Unhandled webhook event type: {event.raw_type}')
    return {'status': 'ignored'}


HANDLERS = {
    WebhookEventKind.ORDER_APPROVED: handle_order_approved,
    WebhookEventKind.CAPTURE_COMPLETED: handle_capture_completed,
    WebhookEventKind.CAPTURE_DENIED: handle_capture_denied,
    WebhookEventKind.UNKNOWN: handle_unknown,
}


def dispatch(event: GatewayEvent, gateway):
    """Route one verified event to its handler. Returns a status dict."""
    return HANDLERS[event.kind](event, gateway)
