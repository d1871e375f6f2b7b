"""
Error taxonomy shared by every service.

Each error carries a stable ``code`` that the API reports verbatim, plus
the HTTP status it maps to.  Nothing here is fatal to the process: every
error is scoped to the request that raised it.
"""


class CarpoolError(Exception):
    code = "error"
    http_status = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class NotFound(CarpoolError):
    """Raised when a ride, booking or location sample does not exist."""

    code = "not_found"
    http_status = 404


class Forbidden(CarpoolError):
    """Raised when the principal may not act on the resource."""

    code = "forbidden"
    http_status = 403


class InvalidOperation(CarpoolError):
    """Raised on a business-rule violation, e.g. a driver booking their own ride."""

    code = "invalid_operation"
    http_status = 400


class InsufficientCapacity(CarpoolError):
    code = "insufficient_capacity"
    http_status = 409


class DuplicateBooking(CarpoolError):
    code = "duplicate_booking"
    http_status = 409


class InvalidState(CarpoolError):
    """Raised when the resource is in the wrong lifecycle phase for the action."""

    code = "invalid_state"
    http_status = 409


class Unavailable(CarpoolError):
    """Transient store failure; the transaction was rolled back and is safe to retry."""

    code = "unavailable"
    http_status = 503
