"""
Domain errors raised by the trade lifecycle and dispute services.

Routes never translate these by hand: the application registers a single
exception handler that maps each class to its HTTP status and error_type.
"""


class TradeError(ValueError):
    """Base exception for trade lifecycle errors."""

    status_code = 400
    error_type = "trade_error"


class NotFoundError(TradeError):
    """Referenced trade, issue, item or user does not exist."""

    status_code = 404
    error_type = "not_found"


class PermissionDeniedError(TradeError):
    """Caller lacks the role or relationship required for the operation."""

    status_code = 403
    error_type = "forbidden"


class InvalidStateError(TradeError):
    """Operation is not legal from the record's current status."""

    status_code = 409
    error_type = "invalid_state"
