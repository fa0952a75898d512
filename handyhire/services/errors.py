"""Error types raised by the escrow services.

Routes translate these into JSON error responses using ``status_code`` and
``to_dict()``. None of them are raised after a partial mutation: services
validate before they write.
"""


class EscrowError(Exception):
    """Base class for escrow/payment lifecycle errors."""

    status_code = 400

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        payload = {'error': self.message}
        payload.update(self.context)
        return payload


class ValidationError(EscrowError):
    status_code = 400


class NotFoundError(EscrowError):
    status_code = 404


class NotAuthorizedError(EscrowError):
    status_code = 403


class StateConflictError(EscrowError):
    status_code = 409


class InvalidStateError(StateConflictError):
    """The job or transaction is not in a state that allows the transition."""


class DuplicateEscrowError(StateConflictError):
    """Escrow was already started (or released) for this transaction."""


class EscrowNotElapsedError(StateConflictError):
    """The buyer tried to complete the job before the escrow period ended."""

    def __init__(self, seconds_remaining):
        super().__init__(
            f'Please wait {seconds_remaining} seconds before marking the job as completed',
            seconds_remaining=seconds_remaining,
        )
        self.seconds_remaining = seconds_remaining


class InsufficientFundsError(EscrowError):
    status_code = 400


class GatewayError(EscrowError):
    """The payment gateway failed, timed out or rejected the call."""

    status_code = 502


class ReleaseFailedError(EscrowError):
    """Storage failure while releasing escrowed funds."""

    status_code = 500
