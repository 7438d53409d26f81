"""
Core Data Models for MMG Payment Verification

These models define the strict schemas for all data flowing through the
payment workflow. They are designed to:
1. Enforce type safety at runtime
2. Validate untrusted AI output at the boundary, immediately
3. Be serializable for storage and logging
4. Keep the reference secret out of every serialized form

DESIGN DECISION: Extracted fields are PROPOSED data.
A field that looks wrong is turned into None here, so later code
never has to guess whether a value was partially trusted.
"""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    computed_field,
    field_validator,
)


REFERENCE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No I, O, 0, 1
REFERENCE_CODE_LENGTH = 24
REFERENCE_SECRET_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
)
PAYMENT_MESSAGE_TEMPLATE = "STASHWAY {plan} PAYMENT - REF:{code}"

_NON_CODE_CHARS = re.compile(r"[^A-Z0-9]")
_NON_AMOUNT_CHARS = re.compile(r"[^0-9.\-]")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def clean_reference_code(value: Any) -> Optional[str]:
    """
    Normalize an extracted reference code.

    Strips everything outside [A-Z0-9] (lowercase letters included),
    upper-cases, and discards the result unless exactly 24 characters
    remain.
    """
    if value is None:
        return None
    cleaned = _NON_CODE_CHARS.sub("", str(value)).upper()
    if len(cleaned) != REFERENCE_CODE_LENGTH:
        return None
    return cleaned


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SubscriptionPlan(str, Enum):
    """Subscription tiers. Only the paid ones can be bought."""
    NONE = "none"
    PERSONAL = "personal"
    PRO = "pro"
    PRO_MAX = "pro_max"

    @property
    def is_paid(self) -> bool:
        return self is not SubscriptionPlan.NONE


class PaymentRequestStatus(str, Enum):
    """
    Payment request lifecycle.

    generated -> user_uploaded -> ai_parsed -> admin_uploaded -> verified | rejected

    expired is reachable from any pre-verified state.
    verified, rejected and expired are terminal.
    """
    GENERATED = "generated"
    USER_UPLOADED = "user_uploaded"
    AI_PARSED = "ai_parsed"
    ADMIN_UPLOADED = "admin_uploaded"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position along the pipeline. Terminal states rank last."""
        if self in PIPELINE_ORDER:
            return PIPELINE_ORDER.index(self)
        return len(PIPELINE_ORDER)


PIPELINE_ORDER = (
    PaymentRequestStatus.GENERATED,
    PaymentRequestStatus.USER_UPLOADED,
    PaymentRequestStatus.AI_PARSED,
    PaymentRequestStatus.ADMIN_UPLOADED,
)

TERMINAL_STATUSES = frozenset({
    PaymentRequestStatus.VERIFIED,
    PaymentRequestStatus.REJECTED,
    PaymentRequestStatus.EXPIRED,
})


class ExtractionKind(str, Enum):
    """Which side of the transfer a screenshot comes from."""
    USER_SUCCESS = "user_success"      # Payer's "payment sent" screen
    ADMIN_RECEIVED = "admin_received"  # Payee's "funds received" notification


class ActorRole(str, Enum):
    """Who caused a payment event."""
    PAYER = "payer"
    ADMIN = "admin"
    SYSTEM = "system"


# =============================================================================
# PAYMENT REQUEST
# =============================================================================

class PaymentRequest(BaseModel):
    """
    A server-issued intent to receive a fixed amount for a plan.

    CRITICAL: reference_secret is excluded from model_dump() and
    model_dump_json(). Storage backends read it explicitly.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    plan: SubscriptionPlan
    amount_expected: Decimal = Field(..., ge=0)
    currency: str = Field(default="GYD", max_length=8)

    reference_code: str = Field(..., max_length=64)
    reference_secret: SecretStr = Field(
        default=SecretStr(""),
        exclude=True,
        repr=False,
    )
    generated_message: str

    status: PaymentRequestStatus = PaymentRequestStatus.GENERATED

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    user_uploaded_at: Optional[datetime] = None
    admin_uploaded_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    last_error: Optional[str] = None

    @field_validator(
        "created_at",
        "updated_at",
        "expires_at",
        "user_uploaded_at",
        "admin_uploaded_at",
        "verified_at",
        "rejected_at",
        "expired_at",
    )
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A request is expired once now is strictly past expires_at."""
        return (now or utc_now()) > self.expires_at

    def to_receipt(self, payee_identifier: str) -> "PaymentRequestReceipt":
        """What the payer gets back after creating a request."""
        return PaymentRequestReceipt(
            request_id=self.id,
            generated_message=self.generated_message,
            reference_code=self.reference_code,
            amount_expected=self.amount_expected,
            currency=self.currency,
            payee_identifier=payee_identifier,
            expires_at=self.expires_at,
        )


class PaymentRequestReceipt(BaseModel):
    """Client-facing response of create_payment_request. Never carries the secret."""

    request_id: UUID
    generated_message: str
    reference_code: str
    amount_expected: Decimal
    currency: str
    payee_identifier: str
    expires_at: datetime


def build_payment_message(plan: SubscriptionPlan, reference_code: str) -> str:
    return PAYMENT_MESSAGE_TEMPLATE.format(
        plan=plan.value.upper(),
        code=reference_code,
    )


def default_expiry(created_at: datetime, lifetime_hours: int) -> datetime:
    return created_at + timedelta(hours=lifetime_hours)


# =============================================================================
# EXTRACTION
# =============================================================================

class ExtractionFields(BaseModel):
    """
    The six fields read off a payment screenshot.

    All fields are optional because the model might miss any of them.
    Values that cannot be coerced to their type become None.
    """
    model_config = ConfigDict(extra="ignore")

    extracted_amount: Optional[Decimal] = None
    extracted_transaction_id: Optional[str] = Field(default=None, max_length=200)
    extracted_reference_code: Optional[str] = None
    extracted_datetime: Optional[datetime] = None
    extracted_sender: Optional[str] = Field(default=None, max_length=200)
    extracted_receiver: Optional[str] = Field(default=None, max_length=200)

    @field_validator("extracted_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Optional[Decimal]:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, Decimal):
            amount = v
        elif isinstance(v, (int, float)):
            amount = Decimal(str(v))
        elif isinstance(v, str):
            # "GYD 3,762.00" -> "3762.00"
            digits = _NON_AMOUNT_CHARS.sub("", v.replace(",", ""))
            if not digits:
                return None
            try:
                amount = Decimal(digits)
            except InvalidOperation:
                return None
        else:
            return None
        if not amount.is_finite():
            return None
        return amount

    @field_validator("extracted_reference_code", mode="before")
    @classmethod
    def normalize_reference_code(cls, v: Any) -> Optional[str]:
        return clean_reference_code(v)

    @field_validator("extracted_datetime", mode="before")
    @classmethod
    def parse_datetime(cls, v: Any) -> Optional[datetime]:
        if v is None:
            return None
        if isinstance(v, datetime):
            return ensure_aware(v)
        if isinstance(v, str) and v.strip():
            text = v.strip()
            if text[-1] in "Zz":
                # fromisoformat only accepts Z from 3.11 on
                text = text[:-1] + "+00:00"
            try:
                return ensure_aware(datetime.fromisoformat(text))
            except ValueError:
                return None
        return None

    @field_validator(
        "extracted_transaction_id",
        "extracted_sender",
        "extracted_receiver",
        mode="before",
    )
    @classmethod
    def clean_text(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, (dict, list, bool)):
            return None
        text = str(v).strip()
        return text[:200] or None

    def to_display_dict(self) -> dict[str, str]:
        """Human-readable values for emails and admin views."""
        return {
            "Amount": str(self.extracted_amount) if self.extracted_amount is not None else "N/A",
            "Transaction ID": self.extracted_transaction_id or "N/A",
            "Reference Code": self.extracted_reference_code or "N/A",
            "Date/Time": self.extracted_datetime.isoformat() if self.extracted_datetime else "N/A",
            "Sender": self.extracted_sender or "N/A",
            "Receiver": self.extracted_receiver or "N/A",
        }


class PaymentExtraction(BaseModel):
    """
    One stored extraction attempt.

    Created once per successfully parsed screenshot; never updated.
    The raw model output is kept verbatim for manual audit.
    """

    id: UUID = Field(default_factory=uuid4)
    request_id: UUID
    kind: ExtractionKind
    fields: ExtractionFields = Field(default_factory=ExtractionFields)
    raw_response: str = ""
    storage_path: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# =============================================================================
# RECONCILIATION
# =============================================================================

class ReconciliationIssue(BaseModel):
    """A single failed reconciliation check."""

    check: str = Field(
        ...,
        pattern="^(reference_code|amount|transaction_id|timestamp|expiry|status|secret)$",
        description="Which rule failed"
    )
    side: Optional[str] = Field(
        default=None,
        pattern="^(payer|admin|request)$",
        description="Which evidence the failure is about"
    )
    message: str


class VerificationResult(BaseModel):
    """
    Outcome of reconciling a request against both extractions.

    A failed match is a normal result, not an exception.
    """

    request_id: UUID
    verified: bool
    issues: list[ReconciliationIssue] = Field(default_factory=list)
    decided_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]

    def issues_for(self, check: str) -> list[ReconciliationIssue]:
        return [issue for issue in self.issues if issue.check == check]


# =============================================================================
# UPLOADS
# =============================================================================

class ScreenshotUpload(BaseModel):
    """Validated screenshot metadata, produced before anything is stored."""

    upload_id: UUID = Field(default_factory=uuid4)
    uploaded_at: datetime = Field(default_factory=utc_now)
    original_filename: str
    file_size_bytes: int = Field(gt=0)
    image_format: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @field_validator("image_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        allowed = {"png", "jpeg", "webp"}
        if v.lower() not in allowed:
            raise ValueError(f"Unsupported image format: {v}. Allowed: {allowed}")
        return v.lower()

    @property
    def mime_type(self) -> str:
        return f"image/{self.image_format}"

    @property
    def extension(self) -> str:
        return "jpg" if self.image_format == "jpeg" else self.image_format
