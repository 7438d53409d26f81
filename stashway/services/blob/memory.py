"""In-memory blob storage for tests and local runs."""

from typing import Optional

from stashway.services.blob.interface import (
    BlobNotFoundError,
    BlobStorageInterface,
)


class InMemoryBlobStorage(BlobStorageInterface):

    def __init__(self, base_url: str = "memory://screenshots"):
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self._base_url = base_url

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        self._blobs[path] = (bytes(data), content_type)
        return path

    async def download(self, path: str) -> bytes:
        try:
            return self._blobs[path][0]
        except KeyError:
            raise BlobNotFoundError(f"Screenshot not found: {path}")

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        if path not in self._blobs:
            raise BlobNotFoundError(f"Screenshot not found: {path}")
        return f"{self._base_url}/{path}?expires_in={ttl_seconds}"

    def content_type(self, path: str) -> Optional[str]:
        stored = self._blobs.get(path)
        return stored[1] if stored else None

    @property
    def paths(self) -> list[str]:
        return list(self._blobs)
