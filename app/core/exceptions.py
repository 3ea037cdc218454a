"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Raised when a request carries no authenticated clinic context."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class SchedulingStateError(AppException):
    """Scheduling operation was driven through an illegal state transition."""

    def __init__(self, message: str = "Invalid scheduling state transition"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class PersistenceException(AppException):
    """Storage failure surfaced unchanged to the caller."""

    def __init__(self, message: str = "Persistence error"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
