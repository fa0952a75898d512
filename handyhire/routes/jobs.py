"""Job routes: posting, hiring, cancelling and completing jobs."""

from flask import Blueprint, request, jsonify, current_app
import jwt

from handyhire import db
from handyhire.models import Job
from handyhire.schemas import HireRequest, JobCreate
from handyhire.services import escrow
from handyhire.services.errors import EscrowError
from handyhire.services.ledger import from_cents, to_cents
from handyhire.utils import (
    token_required, check_admin_secret, decode_token_user_id, error_response, parse_body,
)

jobs_bp = Blueprint('jobs', __name__)


@jobs_bp.route('', methods=['POST'])
@token_required
def create_job(current_user_id):
    """Post a new job.

    Body:
        title, description, category, location: str
        price: decimal - Requested budget
        preferred_date: ISO datetime (optional)
    """
    try:
        data = parse_body(JobCreate)
        job = Job(
            title=data.title,
            description=data.description,
            category=data.category,
            location=data.location,
            price=to_cents(data.price),
            currency=current_app.config['DEFAULT_CURRENCY'],
            preferred_date=data.preferred_date,
            posted_by_id=current_user_id,
        )
        db.session.add(job)
        db.session.commit()
        return jsonify(job.to_dict()), 201
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)


@jobs_bp.route('/<int:job_id>', methods=['GET'])
def get_job(job_id):
    job = db.session.get(Job, job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(job.to_dict()), 200


@jobs_bp.route('/<int:job_id>/hire', methods=['POST'])
@token_required
def hire(current_user_id, job_id):
    """Hire a provider and open the escrow charge.

    Body:
        provider_id: int

    Returns:
        client_secret: Gateway client secret for the frontend
        transaction: Pending transaction (amount and fixed service fee)
    """
    try:
        data = parse_body(HireRequest)
        job = escrow.get_job_or_404(job_id)
        gateway = current_app.extensions['payment_gateway']
        transaction, client_secret = escrow.hire_provider(job, current_user_id, data.provider_id, gateway)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    return jsonify({
        'message': 'Provider selected. Complete the payment to start the job.',
        'client_secret': client_secret,
        'transaction': transaction.to_dict(),
        'amount': from_cents(transaction.amount),
        'service_fee': from_cents(transaction.service_fee),
    }), 201


@jobs_bp.route('/<int:job_id>/cancel', methods=['POST'])
@token_required
def cancel_job(current_user_id, job_id):
    """Cancel a job (only the poster, only while still active)."""
    try:
        job = escrow.get_job_or_404(job_id)
        escrow.cancel(job, current_user_id)
    except EscrowError as e:
        db.session.rollback()
        return error_response(e)

    job = db.session.get(Job, job_id)
    return jsonify({'message': 'Job cancelled', 'job': job.to_dict()}), 200


@jobs_bp.route('/<int:job_id>/complete', methods=['POST'])
def complete_job(job_id):
    """Mark a job complete and release the escrowed payment.

    Callers are either the job poster (JWT, only after the escrow period) or
    a trusted internal caller sending ``X-Auto-Complete: true`` together with
    a valid ``X-Admin-Secret``.
    """
    auto_complete = request.headers.get('X-Auto-Complete', '').lower() == 'true'
    acting_user_id = None

    if auto_complete:
        if not check_admin_secret():
            return jsonify({'error': 'Auto-complete is restricted to trusted callers'}), 403
    else:
        if not request.headers.get('Authorization'):
            return jsonify({'error': 'Token is missing'}), 401
        try:
            acting_user_id = decode_token_user_id()
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'Token has expired'}), 401
        except (jwt.InvalidTokenError, KeyError):
            return jsonify({'error': 'Token is invalid'}), 401

    try:
        job = escrow.get_job_or_404(job_id)
        result = escrow.mark_complete(job, acting_user_id, auto_complete=auto_complete)
    except EscrowError as e:
        db.session.rollback()
        if e.status_code >= 500:
            current_app.logger.error(f'Completion of job {job_id} failed: {e.message}')
        return error_response(e)

    job = db.session.get(Job, job_id)
    return jsonify({
        'message': 'Job completed successfully and payment released',
        'job': job.to_dict(),
        'payment_details': result.to_dict(),
    }), 200
