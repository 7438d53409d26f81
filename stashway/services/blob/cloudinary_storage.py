"""
Screenshot Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Reliable cloud infrastructure
2. Simple API
3. Authenticated delivery with signed, expiring download links
4. Free tier sufficient for the payment volume

Screenshots are uploaded with type="authenticated", so they are never
reachable through a public URL. Admin emails carry a private download
link that expires after the configured TTL.

CRITICAL: Screenshots are evidence. We never transform or overwrite them.
"""

import time
from pathlib import PurePosixPath
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from stashway.config import get_settings
from stashway.config.settings import CloudinarySettings
from stashway.services.blob.interface import (
    BlobNotFoundError,
    BlobStorageError,
    BlobStorageInterface,
)


logger = structlog.get_logger(__name__)


class CloudinaryBlobStorage(BlobStorageInterface):
    """
    Private screenshot storage on Cloudinary.

    A storage path "{request_id}/{kind}/{ts}.png" maps to the public id
    "{folder}/{request_id}/{kind}/{ts}" with format "png".
    """

    def __init__(self, settings: Optional[CloudinarySettings] = None):
        self._settings = settings or get_settings().cloudinary
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _split_path(self, path: str) -> tuple[str, str]:
        """Storage path -> (public_id, format)."""
        pure = PurePosixPath(path)
        fmt = pure.suffix.lstrip(".")
        if not fmt:
            raise BlobStorageError(f"Storage path has no extension: {path}")
        public_id = f"{self._settings.folder}/{pure.with_suffix('')}"
        return public_id, fmt

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        self._configure()
        public_id, fmt = self._split_path(path)

        try:
            result = cloudinary.uploader.upload(
                data,
                public_id=public_id,
                resource_type="image",
                type="authenticated",
                format=fmt,
                overwrite=False,
            )
        except cloudinary.exceptions.Error as e:
            raise BlobStorageError(f"Cloudinary error: {e}")
        except Exception as e:
            raise BlobStorageError(f"Failed to upload screenshot: {e}")

        if not result.get("public_id"):
            raise BlobStorageError("No public id returned from Cloudinary")

        logger.info(
            "screenshot_uploaded",
            path=path,
            content_type=content_type,
            bytes=result.get("bytes", len(data)),
        )
        return path

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        self._configure()
        public_id, fmt = self._split_path(path)
        return cloudinary.utils.private_download_url(
            public_id,
            fmt,
            resource_type="image",
            type="authenticated",
            expires_at=int(time.time()) + ttl_seconds,
        )

    async def download(self, path: str) -> bytes:
        # Short-lived link, used immediately
        url = await self.create_signed_url(path, ttl_seconds=60)

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    url,
                    timeout=self._settings.download_timeout_seconds,
                    follow_redirects=True,
                )
        except httpx.HTTPError as e:
            raise BlobStorageError(f"Failed to download screenshot: {e}")

        if resp.status_code == 404:
            raise BlobNotFoundError(f"Screenshot not found: {path}")
        if resp.status_code != 200:
            raise BlobStorageError(
                f"Failed to download screenshot: HTTP {resp.status_code}"
            )
        return resp.content
