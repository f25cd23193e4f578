class AppException(Exception):
    """Base application exception."""

    pass


class NotFoundError(AppException):
    """Resource not found exception."""

    pass


class ValidationError(AppException):
    """Validation error exception."""

    pass


class ExternalServiceError(AppException):
    """External service call failed."""

    pass


class ConflictError(AppException):
    """Concurrent update conflict exception."""

    pass
