"""Services package."""

from stashway.services.blob import (
    BlobNotFoundError,
    BlobStorageError,
    BlobStorageInterface,
    CloudinaryBlobStorage,
    InMemoryBlobStorage,
)
from stashway.services.extraction import (
    ExtractionError,
    ExtractionFormatError,
    ExtractionServiceError,
    GeminiScreenshotExtractor,
)
from stashway.services.storage import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Blob storage
    "BlobNotFoundError",
    "BlobStorageError",
    "BlobStorageInterface",
    "CloudinaryBlobStorage",
    "InMemoryBlobStorage",
    # Extraction
    "ExtractionError",
    "ExtractionFormatError",
    "ExtractionServiceError",
    "GeminiScreenshotExtractor",
    # Storage errors
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
]
