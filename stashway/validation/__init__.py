"""Validation package: upload checks and payment reconciliation."""

from stashway.validation.reconciliation import ReconciliationEngine
from stashway.validation.screenshots import (
    InvalidUploadError,
    MissingScreenshotError,
    ScreenshotTooLargeError,
    ScreenshotValidator,
    UnsupportedScreenshotError,
)

__all__ = [
    "InvalidUploadError",
    "MissingScreenshotError",
    "ReconciliationEngine",
    "ScreenshotTooLargeError",
    "ScreenshotValidator",
    "UnsupportedScreenshotError",
]
