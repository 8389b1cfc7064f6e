"""
Custom exceptions for CampusMarket.

Each exception carries the HTTP status the API answers with; the handlers
registered in main.py turn them into the standard response envelope.
"""


class CampusMarketException(Exception):
    """Base exception for every CampusMarket error."""

    status_code = 500

    def __init__(self, message: str = "Application error"):
        self.message = message
        super().__init__(self.message)


class NotFoundException(CampusMarketException):
    """A resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class UnauthorizedException(CampusMarketException):
    """The caller is not authenticated."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class ForbiddenException(CampusMarketException):
    """The caller lacks permission for the action."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class BadRequestException(CampusMarketException):
    """The request is invalid for the current state."""

    status_code = 400

    def __init__(self, message: str = "Bad request"):
        super().__init__(message)


class ConflictException(CampusMarketException):
    """A concurrent change made the operation impossible."""

    status_code = 409

    def __init__(self, message: str = "Conflict with the current state of the resource"):
        super().__init__(message)


class TooManyRequestsException(CampusMarketException):
    """A per-user rate limit was exceeded."""

    status_code = 429

    def __init__(self, message: str = "Too many requests"):
        super().__init__(message)


class ExternalServiceException(CampusMarketException):
    """A third-party dependency (payment gateway, object storage) failed."""

    status_code = 500

    def __init__(self, message: str = "External service error"):
        super().__init__(message)
