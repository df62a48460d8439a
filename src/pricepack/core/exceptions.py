"""Custom exception hierarchy for pricepack."""

from typing import Any


class PricePackError(Exception):
    """Base exception for all pricepack errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PricePackError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class IngestionError(PricePackError):
    """The uploaded archive could not be turned into price records.

    Policy: reject the whole upload before touching the store (HTTP 400).
    """


class UnsupportedFormatError(IngestionError):
    """Archive type is neither 'zip' nor 'tar'.

    Context keys:
        format: str — the requested archive type
    """


class PayloadNotFoundError(IngestionError):
    """No entry ending in '.csv' exists inside the archive.

    Context keys:
        format: str — the archive type that was scanned
        entries: int — number of entries inspected
    """


class ArchiveCorruptError(IngestionError):
    """The container structure is unreadable (bad header, truncated member).

    Context keys:
        format: str — the archive type being read
        reason: str — the underlying library error
    """


class MalformedCSVError(IngestionError):
    """CSV syntax error (bad quoting) or undecodable payload.

    Unlike semantic row defects, this aborts the whole parse.

    Context keys:
        line: int | None — the reader line number where parsing stopped
        reason: str — the underlying csv/codec error
    """


class MissingUploadError(IngestionError):
    """The request carries no multipart 'file' field.

    Context keys:
        field: str — the expected form field name
    """


class UploadTooLargeError(IngestionError):
    """Upload exceeds the configured size limit.

    Context keys:
        limit: int — configured maximum in bytes
    """


class StorageError(PricePackError):
    """Database operation failed.

    Policy: roll back and raise immediately. No partial rows are persisted.

    Context keys:
        operation: str — "insert", "query", "initialize", etc.
        table: str — the table involved
    """


class DuplicateRecordError(StorageError):
    """A caller-supplied id collides with an existing row.

    Only possible with the 'source' identity policy.

    Context keys:
        id: int — the conflicting identity
    """
