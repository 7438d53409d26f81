"""
Configuration Management for Stashway MMG Payments

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

Business constants of the verification workflow (plan prices, amount
tolerance, time windows) live in PaymentSettings so they can be tuned
and tested independently of the code that uses them.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary screenshot storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="mmg_payments",
        description="Folder that holds every payment screenshot"
    )
    download_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout for fetching a stored screenshot"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet names within the spreadsheet (one per table)
    requests_sheet_name: str = Field(default="PaymentRequests")
    extractions_sheet_name: str = Field(default="PaymentExtractions")
    events_sheet_name: str = Field(default="PaymentEvents")
    subscriptions_sheet_name: str = Field(default="UserSubscriptions")
    notifications_sheet_name: str = Field(default="UserNotifications")
    celebrations_sheet_name: str = Field(default="UserCelebrations")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini vision model configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.0-flash",
        description="Vision-capable Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Upper bound for a single extraction call"
    )


class PaymentSettings(BaseSettings):
    """
    MMG payment workflow configuration.

    Prices are in GYD and are copied onto each request at creation time.
    A request never re-reads them afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="PAYMENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    plan_prices: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "personal": Decimal("1881"),  # $9 USD at 209 GYD/USD
            "pro": Decimal("3762"),       # $18 USD
            "pro_max": Decimal("9405"),   # $45 USD
        },
        description="Fixed price per paid plan"
    )
    currency: str = Field(default="GYD")
    payee_identifier: str = Field(
        default="6335874",
        description="MMG number the payer sends money to"
    )

    request_lifetime_hours: int = Field(
        default=48,
        ge=1,
        description="How long a payment request stays open"
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Absolute tolerance (currency units) for extracted amounts"
    )
    timestamp_window_hours: int = Field(
        default=48,
        ge=1,
        description="Max distance between the payer's transaction time and request creation"
    )
    reference_code_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How many codes to try when the store reports a collision"
    )
    min_secret_length: int = Field(default=32, ge=32)

    admin_emails: str = Field(
        default="",
        description="Comma-separated list of admin email addresses"
    )
    site_url: str = Field(
        default="https://stashway.app",
        description="Base URL used in admin verification links"
    )
    signed_url_ttl_seconds: int = Field(
        default=3600,
        ge=60,
        description="Lifetime of screenshot links sent to admins"
    )

    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum screenshot size in MB"
    )
    supported_image_formats: str = Field(
        default="png,jpeg,webp",
        description="Comma-separated list of accepted image formats"
    )

    @property
    def admin_email_list(self) -> list[str]:
        """Get admin emails as a normalized list."""
        return [
            email.strip().lower()
            for email in self.admin_emails.split(",")
            if email.strip()
        ]

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    storage_backend: str = Field(
        default="google_sheets",
        pattern="^(google_sheets|memory)$",
        description="Which storage implementation to wire up"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def payments(self) -> PaymentSettings:
        return PaymentSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "gemini", "payments", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
