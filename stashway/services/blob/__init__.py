"""Screenshot blob storage package."""

from stashway.services.blob.interface import (
    BlobNotFoundError,
    BlobStorageError,
    BlobStorageInterface,
    build_screenshot_path,
    path_belongs_to,
)
from stashway.services.blob.cloudinary_storage import CloudinaryBlobStorage
from stashway.services.blob.memory import InMemoryBlobStorage

__all__ = [
    "BlobNotFoundError",
    "BlobStorageError",
    "BlobStorageInterface",
    "CloudinaryBlobStorage",
    "InMemoryBlobStorage",
    "build_screenshot_path",
    "path_belongs_to",
]
