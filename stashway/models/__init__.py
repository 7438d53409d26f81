"""
Data Models Package

This package contains all Pydantic models used in the MMG payment workflow.
All data flowing through the system must conform to these schemas.
"""

from stashway.models.payment import (
    PAYMENT_MESSAGE_TEMPLATE,
    REFERENCE_CODE_ALPHABET,
    REFERENCE_CODE_LENGTH,
    REFERENCE_SECRET_ALPHABET,
    ActorRole,
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestReceipt,
    PaymentRequestStatus,
    ReconciliationIssue,
    ScreenshotUpload,
    SubscriptionPlan,
    VerificationResult,
    clean_reference_code,
    utc_now,
)
from stashway.models.account import (
    PLAN_PAID_NOTIFICATION,
    SubscriptionStatus,
    UserCelebration,
    UserIdentity,
    UserNotification,
    UserSubscription,
)
from stashway.models.audit import (
    AuditSeverity,
    PaymentEvent,
    PaymentEventBuilder,
    PaymentEventType,
)

__all__ = [
    # Payment models
    "PAYMENT_MESSAGE_TEMPLATE",
    "REFERENCE_CODE_ALPHABET",
    "REFERENCE_CODE_LENGTH",
    "REFERENCE_SECRET_ALPHABET",
    "ActorRole",
    "ExtractionFields",
    "ExtractionKind",
    "PaymentExtraction",
    "PaymentRequest",
    "PaymentRequestReceipt",
    "PaymentRequestStatus",
    "ReconciliationIssue",
    "ScreenshotUpload",
    "SubscriptionPlan",
    "VerificationResult",
    "clean_reference_code",
    "utc_now",
    # Account models
    "PLAN_PAID_NOTIFICATION",
    "SubscriptionStatus",
    "UserCelebration",
    "UserIdentity",
    "UserNotification",
    "UserSubscription",
    # Audit models
    "AuditSeverity",
    "PaymentEvent",
    "PaymentEventBuilder",
    "PaymentEventType",
]
