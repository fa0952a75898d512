"""Admin routes for escrow operations."""

from flask import Blueprint, jsonify, current_app

from handyhire import db
from handyhire.models import Job, PlatformSetting
from handyhire.schemas import EscrowPeriodUpdate
from handyhire.services import escrow
from handyhire.services.errors import EscrowError, NotFoundError
from handyhire.utils import admin_required, error_response, parse_body

admin_bp = Blueprint('admin', __name__)


# ============================================================================
# SETTINGS
# ============================================================================

@admin_bp.route('/settings/escrow-period', methods=['GET'])
@admin_required
def get_escrow_period(current_user_id):
    return jsonify({
        'minutes': escrow.get_escrow_period_minutes(),
        'default_minutes': current_app.config['ESCROW_PERIOD_MINUTES'],
    }), 200


@admin_bp.route('/settings/escrow-period', methods=['PUT'])
@admin_required
def update_escrow_period(current_user_id):
    """Change the escrow period. Only escrows started afterwards use it."""
    try:
        data = parse_body(EscrowPeriodUpdate)
    except EscrowError as e:
        return error_response(e)

    setting = PlatformSetting.set_value(
        PlatformSetting.ESCROW_PERIOD_MINUTES, data.minutes, updated_by_id=current_user_id
    )
    db.session.commit()
    current_app.logger.info(f'Escrow period set to {data.minutes} minutes by admin {current_user_id}')
    return jsonify({'minutes': data.minutes, 'setting': setting.to_dict()}), 200


# ============================================================================
# ESCROW OPERATIONS
# ============================================================================

@admin_bp.route('/escrow/sweep', methods=['POST'])
@admin_required
def run_sweep(current_user_id):
    """Release every escrow that is past its end date, right now."""
    summary = current_app.extensions['completion_scheduler'].sweep()
    return jsonify(summary), 200


@admin_bp.route('/jobs/<int:job_id>/release', methods=['POST'])
@admin_required
def force_release(current_user_id, job_id):
    """Admin completes a job in escrow without waiting for the period."""
    try:
        job = escrow.get_job_or_404(job_id)
        result = escrow.mark_complete(job, current_user_id, auto_complete=True)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    current_app.logger.info(f'Admin {current_user_id} released escrow for job {job_id}')
    return jsonify({'message': 'Payment released', 'payment_details': result.to_dict()}), 200


@admin_bp.route('/jobs/<int:job_id>/start-escrow', methods=['POST'])
@admin_required
def manual_start_escrow(current_user_id, job_id):
    """Start escrow without a gateway event. Development only."""
    if current_app.config.get('ENV_NAME') != 'development':
        return jsonify({'error': 'This endpoint is only available in development mode'}), 403

    try:
        job = escrow.get_job_or_404(job_id)
        transaction = escrow.active_transaction_for(job)
        if transaction is None:
            raise NotFoundError('No transaction found for this job')
        escrow_end_date = escrow.start_escrow(job, transaction)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    job = db.session.get(Job, job_id)
    return jsonify({
        'message': 'Escrow process started successfully',
        'job': job.to_dict(),
        'escrow_end_date': escrow_end_date.isoformat(),
    }), 200
