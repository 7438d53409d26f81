"""
Abstract Blob Storage Interface

Screenshots are private. They are written once, read back by the
extraction step, and shared with admins only through time-limited
signed links.

Paths follow {request_id}/{kind}/{timestamp_ms}.{ext} so every upload
attempt for a request is kept.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from stashway.models.payment import ExtractionKind, utc_now


def build_screenshot_path(
    request_id: UUID,
    kind: ExtractionKind,
    extension: str,
    uploaded_at: Optional[datetime] = None,
) -> str:
    """Storage path for one screenshot upload."""
    moment = uploaded_at or utc_now()
    timestamp_ms = int(moment.timestamp() * 1000)
    return f"{request_id}/{kind.value}/{timestamp_ms}.{extension}"


def path_belongs_to(path: str, request_id: UUID, kind: ExtractionKind) -> bool:
    """True if path sits in the folder for this request and kind."""
    return path.startswith(f"{request_id}/{kind.value}/") and ".." not in path


class BlobStorageInterface(ABC):
    """Abstract interface for screenshot blob storage."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store bytes at path.

        Returns:
            The stored path

        Raises:
            BlobStorageError: If the upload fails
        """
        pass

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """
        Fetch the bytes stored at path.

        Raises:
            BlobNotFoundError: If nothing is stored there
            BlobStorageError: If the download fails
        """
        pass

    @abstractmethod
    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        """
        A link to the blob that stops working after ttl_seconds.
        """
        pass


class BlobStorageError(Exception):
    """Base exception for blob storage operations."""
    pass


class BlobNotFoundError(BlobStorageError):
    """No blob stored at the given path."""
    pass
