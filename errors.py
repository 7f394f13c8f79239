"""
Exception types shared by the store, the OCR engine and the HTTP layer.
Each PortfolioError carries the HTTP status code it is reported with.
"""


class PortfolioError(Exception):
    """Base class for errors reported to API clients."""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(PortfolioError):
    status_code = 400


class AuthenticationError(PortfolioError):
    status_code = 401


class PermissionDeniedError(PortfolioError):
    status_code = 403


class NotFoundError(PortfolioError):
    status_code = 404


class ConflictError(PortfolioError):
    status_code = 409


class OCRError(Exception):
    """Raised when an image could not be turned into text."""
