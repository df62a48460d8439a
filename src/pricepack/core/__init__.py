"""pricepack.core — Foundation types, config, and exceptions."""

from pricepack.core.config import (
    APIConfig,
    IngestConfig,
    PricePackConfig,
    StorageConfig,
    load_config,
)
from pricepack.core.exceptions import (
    ArchiveCorruptError,
    ConfigError,
    DuplicateRecordError,
    IngestionError,
    MalformedCSVError,
    MissingUploadError,
    PayloadNotFoundError,
    PricePackError,
    StorageError,
    UnsupportedFormatError,
    UploadTooLargeError,
)
from pricepack.core.models import (
    ArchiveFormat,
    BatchTag,
    IdentityPolicy,
    PriceRecord,
    RecordId,
    StatsDelta,
    StorageBackend,
    StoredRecord,
)

__all__ = [
    # Type aliases
    "RecordId",
    "BatchTag",
    # Enums
    "ArchiveFormat",
    "IdentityPolicy",
    "StorageBackend",
    # Models
    "PriceRecord",
    "StoredRecord",
    "StatsDelta",
    # Config
    "PricePackConfig",
    "StorageConfig",
    "IngestConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "PricePackError",
    "ConfigError",
    "IngestionError",
    "UnsupportedFormatError",
    "PayloadNotFoundError",
    "ArchiveCorruptError",
    "MalformedCSVError",
    "MissingUploadError",
    "UploadTooLargeError",
    "StorageError",
    "DuplicateRecordError",
]
