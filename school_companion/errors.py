class ServiceError(Exception):
    """Base class for errors reported back to the user."""


class ValidationError(ServiceError):
    """Raised when user input is missing or out of range."""


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""


class StoreError(ServiceError):
    """Raised when the record store cannot read or write."""


class ImportFormatError(ServiceError):
    """Raised when a backup file is malformed. Nothing is imported."""
