"""Shared authentication utilities.

JWT bearer authentication for end users, plus the admin checks used by
operator endpoints and trusted internal callers.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
import hmac

from flask import request, jsonify, current_app
import jwt


def create_token(user_id, expires_in=None):
    """Issue a signed access token for ``user_id``."""
    expires_in = expires_in or current_app.config.get('JWT_ACCESS_TOKEN_EXPIRES', 2592000)
    payload = {
        'user_id': user_id,
        'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET_KEY'], algorithm='HS256')


def decode_token_user_id():
    """Return the user id from the Authorization header.

    Raises:
        jwt.InvalidTokenError: missing, expired or malformed token
    """
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        raise jwt.InvalidTokenError('Token is missing')

    # Support both "Bearer <token>" and raw token formats
    token = auth_header.split(' ')[1] if ' ' in auth_header else auth_header
    payload = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=['HS256'])
    return payload['user_id']


def token_required(f):
    """
    Decorator to require valid JWT token.
    
    Extracts user_id from JWT token and passes it as the first argument
    to the decorated function.
    
    Usage:
        @app.route('/protected')
        @token_required
        def protected_route(current_user_id):
            return jsonify({'user_id': current_user_id})
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if not request.headers.get('Authorization'):
            return jsonify({'error': 'Token is missing'}), 401
        
        try:
            current_user_id = decode_token_user_id()
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'Token has expired'}), 401
        except (jwt.InvalidTokenError, KeyError):
            return jsonify({'error': 'Token is invalid'}), 401
        
        return f(current_user_id, *args, **kwargs)
    return decorated


def check_admin_secret():
    """Check if request has valid admin secret via header only.
    
    Uses hmac.compare_digest for timing-safe comparison. When ADMIN_SECRET is
    not configured, secret-based access is disabled.
    """
    admin_secret = current_app.config.get('ADMIN_SECRET')
    if not admin_secret:
        return False
    secret = request.headers.get('X-Admin-Secret', '')
    return hmac.compare_digest(secret, admin_secret)


def check_admin_user(current_user_id):
    """Check if user is admin (by field or email whitelist)."""
    from handyhire import db
    from handyhire.models import User

    user = db.session.get(User, current_user_id)
    if not user:
        return False
    if user.is_admin:
        return True
    return user.email in current_app.config.get('ADMIN_EMAILS', [])


def admin_required(f):
    """Decorator that combines token_required + admin check."""
    @wraps(f)
    @token_required
    def decorated(current_user_id, *args, **kwargs):
        if not check_admin_user(current_user_id):
            return jsonify({'error': 'Admin access required'}), 403
        return f(current_user_id, *args, **kwargs)
    return decorated
