"""Exceptions raised by the portal domain modules."""


class PortalError(Exception):
    """Base class for portal errors that map to an HTTP status."""
    status = 500


class ImportValidationError(PortalError):
    """The uploaded data cannot be imported as submitted."""
    status = 400


class NotFoundError(PortalError):
    status = 404


class ConflictError(PortalError):
    status = 409


class PayloadTooLargeError(ImportValidationError):
    status = 413
