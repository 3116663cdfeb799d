"""Error kinds raised by the billing core.

None of them is retried by the core. The caller decides whether to surface
the message, retry with corrected input, or ask the user.
"""


class BillingError(Exception):
    """Base class for every refusal raised by a billing operation."""

    status_code = 400
    error = "billing_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Malformed or out-of-range input."""

    status_code = 400
    error = "validation_error"


class NotFoundError(BillingError):
    """A referenced entity does not exist."""

    status_code = 404
    error = "not_found"


class InvalidStateError(BillingError):
    """The entity's current state does not permit the operation."""

    status_code = 409
    error = "invalid_state"


class ConflictError(BillingError):
    """The operation would break a uniqueness or one-per-parent rule."""

    status_code = 409
    error = "conflict"
