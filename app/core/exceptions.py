"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    retryable: bool = False

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


class SlotNotFoundException(NotFoundException):
    """No configured slot covers the requested interval."""

    def __init__(self, message: str = "No configured slot covers the requested time"):
        """Initialize with 404 status code."""
        super().__init__(message)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class InvalidInputException(BadRequestException):
    """Malformed interval or missing required field."""

    def __init__(self, message: str = "Invalid input"):
        """Initialize with 400 status code."""
        super().__init__(message)


class InvalidStateException(BadRequestException):
    """Requested status transition is not allowed from the current state."""

    def __init__(self, message: str = "Invalid appointment state"):
        """Initialize with 400 status code."""
        super().__init__(message)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class SlotConflictException(ConflictException):
    """The requested interval overlaps an active appointment.

    The caller may retry with a different slot.
    """

    retryable = True

    def __init__(self, message: str = "The selected time slot is not available"):
        """Initialize with 409 status code."""
        super().__init__(message)


class SlotUnavailableException(ConflictException):
    """The covering slot is already booked."""

    retryable = True

    def __init__(self, message: str = "The selected time slot is already booked"):
        """Initialize with 409 status code."""
        super().__init__(message)
