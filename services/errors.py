"""
Error kinds returned by the booking engine.

Public service operations return ``(result, error)`` pairs. These classes
subclass ``Exception`` so private helpers can raise them, but they are
caught at each public operation and handed back as values.
"""


class BookingError(Exception):
    code = "booking_error"
    http_status = 400

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(BookingError):
    code = "validation_error"
    http_status = 400


class IncompleteMinimumBlock(BookingError):
    code = "incomplete_minimum_block"
    http_status = 422


class CapacityExceededError(BookingError):
    code = "capacity_exceeded"
    http_status = 409


class NotAuthorizedError(BookingError):
    code = "not_authorized"
    http_status = 403


class DuplicatePendingRequest(BookingError):
    code = "duplicate_pending_request"
    http_status = 409


class NotFoundError(BookingError):
    code = "not_found"
    http_status = 404


class PartialSuccess(BookingError):
    """The main effect happened but a follow-up step (usually a refund) did not."""
    code = "partial_success"
    http_status = 207


class DependencyError(BookingError):
    code = "dependency_error"
    http_status = 503
