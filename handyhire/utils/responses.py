"""Request parsing and error response helpers shared by the blueprints."""

from flask import request, jsonify
from pydantic import ValidationError as SchemaValidationError

from handyhire.services.errors import ValidationError


def parse_body(schema):
    """Validate the JSON body against a pydantic schema.

    Raises:
        ValidationError: body missing or invalid; ``details`` lists the
            offending fields
    """
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    try:
        return schema.model_validate(data)
    except SchemaValidationError as e:
        details = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        raise ValidationError('Invalid request data', details=details)


def error_response(error):
    """JSON response for an EscrowError."""
    return jsonify(error.to_dict()), error.status_code
