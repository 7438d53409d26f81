"""Configuration package."""

from stashway.config.settings import (
    AppSettings,
    CloudinarySettings,
    GeminiSettings,
    GoogleSheetsSettings,
    PaymentSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "PaymentSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
