"""Payment routes: gateway webhook, withdrawals and transaction history."""

from flask import Blueprint, request, jsonify, current_app

from handyhire import db
from handyhire.models import Transaction
from handyhire.schemas import WithdrawRequest
from handyhire.services import webhooks
from handyhire.services.errors import EscrowError, GatewayError
from handyhire.services.ledger import from_cents, to_cents
from handyhire.services.release import withdraw
from handyhire.utils import token_required, error_response, parse_body

payments_bp = Blueprint('payments', __name__)


@payments_bp.route('/webhook', methods=['POST'])
def payment_webhook():
    """Handle payment gateway webhooks.

    The signature is verified before the body is even parsed; a bad
    signature changes nothing.
    """
    gateway = current_app.extensions['payment_gateway']
    payload = request.get_data()

    if not gateway.verify_webhook_signature(request.headers, payload):
        current_app.logger.warning('Rejected webhook with invalid signature')
        return jsonify({'error': 'Invalid signature'}), 401

    try:
        event = gateway.parse_event(payload)
        result = webhooks.dispatch(event, gateway)
    except GatewayError as e:
        db.session.rollback()
        current_app.logger.error(f'Webhook processing hit a gateway failure: {e.message}')
        return error_response(e)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    return jsonify(dict(result, received=True)), 200


@payments_bp.route('/withdraw', methods=['POST'])
@token_required
def withdraw_funds(current_user_id):
    """Withdraw available balance to the user's payout account.

    Body:
        amount: decimal - Amount to withdraw
        paypalEmail: str - Payout email address
    """
    try:
        data = parse_body(WithdrawRequest)
        gateway = current_app.extensions['payment_gateway']
        result = withdraw(current_user_id, to_cents(data.amount), str(data.payout_email), gateway)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    transaction = result['transaction']
    return jsonify({
        'message': f'${from_cents(transaction.amount):.2f} has been sent to your payout account',
        'new_balance': from_cents(result['new_balance']),
        'transaction': transaction.to_dict(),
    }), 200


@payments_bp.route('/transactions', methods=['GET'])
@token_required
def get_transactions(current_user_id):
    """Get user's transaction history.

    Query params:
        status: Filter by status (optional)
        type: Filter by type, 'job_payment' or 'withdrawal' (optional)
    """
    query = Transaction.query.filter(
        db.or_(
            Transaction.customer_id == current_user_id,
            Transaction.provider_id == current_user_id
        )
    )

    status = request.args.get('status')
    if status:
        query = query.filter(Transaction.status == status)
    transaction_type = request.args.get('type')
    if transaction_type:
        query = query.filter(Transaction.type == transaction_type)

    transactions = query.order_by(Transaction.created_at.desc()).all()

    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'total': len(transactions)
    }), 200


@payments_bp.route('/config', methods=['GET'])
def get_payment_config():
    """Public payment configuration for the frontend."""
    return jsonify({
        'gateway': current_app.extensions['payment_gateway'].name,
        'currency': current_app.config['DEFAULT_CURRENCY'],
        'platform_fee_percent': current_app.config['PLATFORM_FEE_PERCENT'],
    }), 200
