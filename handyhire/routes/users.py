"""User routes: profile, financial summary and notifications."""

from flask import Blueprint, request, jsonify

from handyhire import db
from handyhire.models import Notification, User
from handyhire.services.ledger import financial_summary
from handyhire.utils import token_required

users_bp = Blueprint('users', __name__)


@users_bp.route('/me', methods=['GET'])
@token_required
def get_me(current_user_id):
    user = db.session.get(User, current_user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify(user.to_dict()), 200


@users_bp.route('/financial-summary', methods=['GET'])
@token_required
def get_financial_summary(current_user_id):
    """Balances recomputed from the transaction ledger, plus recent activity.

    Stored running totals are corrected here when they have drifted from
    the ledger.
    """
    summary = financial_summary(current_user_id)
    if summary is None:
        return jsonify({'error': 'User not found'}), 404
    return jsonify(summary), 200


@users_bp.route('/notifications', methods=['GET'])
@token_required
def get_notifications(current_user_id):
    """Get notifications for the current user.

    Query params:
        - unread_only: If 'true', only return unread notifications
        - page: Page number (default 1)
        - per_page: Results per page (default 20, max 100)
    """
    unread_only = request.args.get('unread_only', 'false').lower() == 'true'
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)

    query = Notification.query.filter_by(user_id=current_user_id)
    if unread_only:
        query = query.filter_by(is_read=False)

    notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'notifications': [n.to_dict() for n in notifications.items],
        'total': notifications.total,
        'page': page,
        'per_page': per_page,
        'has_more': notifications.has_next,
        'unread_count': Notification.query.filter_by(user_id=current_user_id, is_read=False).count(),
    }), 200


@users_bp.route('/notifications/read-all', methods=['POST'])
@token_required
def mark_all_read(current_user_id):
    updated = Notification.query.filter_by(user_id=current_user_id, is_read=False).update({'is_read': True})
    db.session.commit()
    return jsonify({'marked_read': updated}), 200
