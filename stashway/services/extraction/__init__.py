"""Screenshot extraction services package."""

from stashway.services.extraction.gemini_extractor import (
    ExtractionError,
    ExtractionFormatError,
    ExtractionServiceError,
    ExtractorResult,
    GeminiScreenshotExtractor,
    find_json_object,
)

__all__ = [
    "ExtractionError",
    "ExtractionFormatError",
    "ExtractionServiceError",
    "ExtractorResult",
    "GeminiScreenshotExtractor",
    "find_json_object",
]
