"""Shared utilities for the escrow backend."""

from handyhire.utils.auth import (
    token_required,
    admin_required,
    check_admin_secret,
    check_admin_user,
    create_token,
    decode_token_user_id,
)
from handyhire.utils.responses import error_response, parse_body

__all__ = [
    'token_required',
    'admin_required',
    'check_admin_secret',
    'check_admin_user',
    'create_token',
    'decode_token_user_id',
    'error_response',
    'parse_body',
]
