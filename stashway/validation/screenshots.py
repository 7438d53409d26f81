"""
Screenshot upload validation.

Runs at the boundary, before anything is stored or sent to the model:
- the upload is not empty
- it fits the size limit
- Pillow can open it as one of the accepted formats

IMPORTANT: We never re-encode or resize the screenshot. It is evidence
and is stored exactly as uploaded.
"""

from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from stashway.config import get_settings
from stashway.config.settings import PaymentSettings
from stashway.models.payment import ScreenshotUpload


class InvalidUploadError(Exception):
    """Base exception for rejected screenshot uploads."""
    pass


class MissingScreenshotError(InvalidUploadError):
    pass


class ScreenshotTooLargeError(InvalidUploadError):
    pass


class UnsupportedScreenshotError(InvalidUploadError):
    pass


class ScreenshotValidator:

    def __init__(self, settings: Optional[PaymentSettings] = None):
        self._settings = settings or get_settings().payments

    def validate(self, image_bytes: Optional[bytes], filename: str) -> ScreenshotUpload:
        """
        Check an upload and describe it.

        Raises:
            MissingScreenshotError: No bytes
            ScreenshotTooLargeError: Over the configured limit
            UnsupportedScreenshotError: Not a readable PNG, JPEG or WEBP image
        """
        if not image_bytes:
            raise MissingScreenshotError("Please choose a screenshot to upload")

        size = len(image_bytes)
        if size > self._settings.max_upload_size_bytes:
            raise ScreenshotTooLargeError(
                f"Screenshot is {size / (1024 * 1024):.1f} MB; "
                f"the limit is {self._settings.max_upload_size_mb} MB"
            )

        try:
            img = Image.open(BytesIO(image_bytes))
            image_format = (img.format or "").lower()
            width, height = img.size
            img.verify()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
            raise UnsupportedScreenshotError(f"Could not read the screenshot as an image: {e}")

        allowed = self._settings.supported_formats_list
        if image_format not in allowed:
            raise UnsupportedScreenshotError(
                f"Unsupported image format: {image_format or 'unknown'}. "
                f"Allowed: {', '.join(allowed)}"
            )

        return ScreenshotUpload(
            original_filename=filename or "screenshot",
            file_size_bytes=size,
            image_format=image_format,
            width=width,
            height=height,
        )
