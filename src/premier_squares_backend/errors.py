"""
Domain exceptions for the Premier Squares service.

Every failure the service reports to a client is one of the classes below.
Each class knows its HTTP status, its machine-readable category and the
extra payload fields a client needs to recover, so the API layer maps all of
them through a single handler (see ``main.squares_error_handler``).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SquaresError(Exception):
    """Base class for all errors reported to API clients."""

    status_code = 500
    category = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def payload(self) -> Dict[str, Any]:
        return {}

    def headers(self) -> Dict[str, str]:
        """Extra HTTP headers for the error response."""
        return {}

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.category,
            "message": self.message,
            **self.payload(),
        }


class RequestValidationFailed(SquaresError):
    """Malformed or missing input; carries field-level details."""

    status_code = 400
    category = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.details = details or []

    def payload(self) -> Dict[str, Any]:
        return {"details": self.details}


class InvalidContestState(SquaresError):
    """Operation not permitted in the contest's current lifecycle state."""

    status_code = 400
    category = "INVALID_STATE"

    def __init__(self, current_status: str, allowed_status: str = "new") -> None:
        self.current_status = current_status
        super().__init__(
            f"Contest cannot be updated in '{current_status}' state. "
            f"Only contests in '{allowed_status}' state can be updated."
        )

    def payload(self) -> Dict[str, Any]:
        return {"currentStatus": self.current_status}


class ContestValidationFailed(SquaresError):
    """Aggregate precondition failure when starting a contest."""

    status_code = 400
    category = "VALIDATION_FAILED"

    def __init__(self, validation_errors: List[str], contest_data: Dict[str, Any]) -> None:
        self.validation_errors = validation_errors
        self.contest_data = contest_data
        super().__init__("Contest cannot start due to missing or invalid data")

    def payload(self) -> Dict[str, Any]:
        return {
            "validationErrors": self.validation_errors,
            "contestData": self.contest_data,
        }


class ContestNotFound(SquaresError):
    status_code = 404
    category = "NOT_FOUND_ERROR"

    def __init__(self, contest_id: str) -> None:
        self.contest_id = contest_id
        super().__init__("Contest not found")


class WinnerAlreadyExists(SquaresError):
    """A bag builder winner is already recorded; it is never replaced."""

    # Reported as a client error, matching what existing clients expect.
    status_code = 400
    category = "ALREADY_EXISTS"

    def __init__(self, existing_winner: Dict[str, Any]) -> None:
        self.existing_winner = existing_winner
        super().__init__("A winner has already been set and cannot be changed")

    def payload(self) -> Dict[str, Any]:
        return {"existingWinner": self.existing_winner}


class ServiceUnavailable(SquaresError):
    """The document store is not configured or cannot be reached."""

    status_code = 503
    category = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Document store is not configured") -> None:
        super().__init__(message)


class RateLimitExceeded(SquaresError):
    status_code = 429
    category = "RATE_LIMIT_ERROR"

    def __init__(self, message: str, retry_after: int, limit: Optional[int] = None) -> None:
        self.retry_after = retry_after
        self.limit = limit
        super().__init__(message)

    def payload(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["RateLimit-Limit"] = str(self.limit)
            headers["RateLimit-Remaining"] = "0"
            headers["RateLimit-Reset"] = str(self.retry_after)
        return headers


class ClientBlocked(SquaresError):
    """The client tripped flood protection and is refused until the block expires."""

    status_code = 403
    category = "ACCESS_DENIED"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__("Your IP has been temporarily blocked due to suspicious activity.")

    def payload(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class PayloadTooLarge(SquaresError):
    status_code = 413
    category = "PAYLOAD_TOO_LARGE"

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        super().__init__("Request body too large")

    def payload(self) -> Dict[str, Any]:
        return {"maxBytes": self.max_bytes}
