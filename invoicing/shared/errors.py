"""Error taxonomy shared by all invoicing services.

Every error carries the HTTP status it maps to, so the API layer can turn
any of them into a JSON response with a single exception handler.
"""


class InvoicingError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(InvoicingError):
    """Client input is missing or malformed."""

    status_code = 400


class StorageError(InvoicingError):
    """Insert or update against the record store failed."""

    status_code = 500


class DuplicateDocumentError(StorageError):
    """A document with the same number already exists and may not be overwritten."""

    status_code = 409


class DocumentNotFoundError(StorageError):
    status_code = 404


class RenderError(InvoicingError):
    """Template rendering or PDF conversion failed."""

    status_code = 500


class AuthRequired(InvoicingError):
    """No authorized mail identity is available for this session."""

    status_code = 401


class Unauthorized(InvoicingError):
    """The mail provider rejected the stored credentials."""

    status_code = 401


class AuthError(InvoicingError):
    """OAuth code exchange or user lookup failed."""

    status_code = 500


class SendFailed(InvoicingError):
    """The mail provider refused to send the message."""

    status_code = 500


class ConfigError(InvoicingError):
    """Required configuration is absent."""

    status_code = 500
