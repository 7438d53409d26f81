"""
Payment Event Models

Every significant transition of a payment request is recorded.
This provides:
1. Complete traceability of who did what to which request
2. The full rejection reasons for admins deciding on manual overrides
3. Debugging information when an extraction goes wrong
4. Ability to reconstruct history

DESIGN DECISION: Payment events are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from stashway.models.payment import (
    ActorRole,
    ExtractionKind,
    ExtractionFields,
    PaymentRequest,
    VerificationResult,
    utc_now,
)


class PaymentEventType(str, Enum):
    """Types of events recorded against a payment request."""
    REQUEST_CREATED = "REQUEST_CREATED"
    USER_UPLOADED = "USER_UPLOADED"
    ADMIN_UPLOADED = "ADMIN_UPLOADED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    ADMIN_EMAIL_SENT = "ADMIN_EMAIL_SENT"
    ADMIN_VERIFIED = "ADMIN_VERIFIED"
    ADMIN_REJECTED = "ADMIN_REJECTED"
    PLAN_UPGRADED = "PLAN_UPGRADED"
    PLAN_ACTIVATION_FAILED = "PLAN_ACTIVATION_FAILED"
    REQUEST_EXPIRED = "REQUEST_EXPIRED"


class AuditSeverity(str, Enum):
    """Severity level for payment events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PaymentEvent(BaseModel):
    """
    A single payment event.

    This is the core unit of the payment audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Which request and who
    request_id: UUID
    actor_id: Optional[str] = Field(
        default=None,
        description="User id of the actor, None for unattended system steps"
    )
    actor_role: ActorRole

    # Event classification
    event_type: PaymentEventType
    severity: AuditSeverity = AuditSeverity.INFO

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific structured payload"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "request_id": str(self.request_id),
            "actor_id": self.actor_id,
            "actor_role": self.actor_role.value,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "details": self.details,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, request_id, actor_id, actor_role,
         event_type, severity, description, details_json]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            str(self.request_id),
            self.actor_id or "",
            self.actor_role.value,
            self.event_type.value,
            self.severity.value,
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
        ]


def _fields_payload(fields: ExtractionFields) -> dict:
    return fields.model_dump(mode="json")


class PaymentEventBuilder:
    """
    Helper class to build payment events with common patterns.

    Usage:
        event = PaymentEventBuilder.request_created(request)
        event = PaymentEventBuilder.admin_rejected(request, admin_id, result)
    """

    @staticmethod
    def request_created(request: PaymentRequest) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=request.user_id,
            actor_role=ActorRole.PAYER,
            event_type=PaymentEventType.REQUEST_CREATED,
            description=f"Payment request created for {request.plan.value} plan",
            details={
                "plan": request.plan.value,
                "amount_expected": str(request.amount_expected),
                "currency": request.currency,
            },
        )

    @staticmethod
    def user_uploaded(
        request: PaymentRequest,
        fields: ExtractionFields,
        storage_path: str,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=request.user_id,
            actor_role=ActorRole.PAYER,
            event_type=PaymentEventType.USER_UPLOADED,
            description="Payer screenshot uploaded and parsed",
            details={
                "storage_path": storage_path,
                "extraction": _fields_payload(fields),
            },
        )

    @staticmethod
    def admin_uploaded(
        request: PaymentRequest,
        admin_id: str,
        fields: ExtractionFields,
        storage_path: str,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=admin_id,
            actor_role=ActorRole.ADMIN,
            event_type=PaymentEventType.ADMIN_UPLOADED,
            description="Admin counter-screenshot uploaded and parsed",
            details={
                "storage_path": storage_path,
                "extraction": _fields_payload(fields),
            },
        )

    @staticmethod
    def extraction_failed(
        request_id: UUID,
        actor_id: Optional[str],
        actor_role: ActorRole,
        kind: ExtractionKind,
        error_message: str,
        raw_response: Optional[str],
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request_id,
            actor_id=actor_id,
            actor_role=actor_role,
            event_type=PaymentEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"Screenshot extraction failed ({kind.value})",
            details={
                "kind": kind.value,
                "error": error_message,
                "raw_response": raw_response,
            },
        )

    @staticmethod
    def admin_email_sent(
        request_id: UUID,
        recipients: list[str],
        fields: ExtractionFields,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request_id,
            actor_role=ActorRole.SYSTEM,
            event_type=PaymentEventType.ADMIN_EMAIL_SENT,
            description=f"Verification email sent to {len(recipients)} admin(s)",
            details={
                "admin_emails": recipients,
                "extraction": _fields_payload(fields),
            },
        )

    @staticmethod
    def admin_verified(
        request: PaymentRequest,
        admin_id: str,
        result: VerificationResult,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=admin_id,
            actor_role=ActorRole.ADMIN,
            event_type=PaymentEventType.ADMIN_VERIFIED,
            description="Payment verified against both screenshots",
            details={"verification": result.model_dump(mode="json")},
        )

    @staticmethod
    def admin_rejected(
        request: PaymentRequest,
        admin_id: str,
        result: VerificationResult,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=admin_id,
            actor_role=ActorRole.ADMIN,
            event_type=PaymentEventType.ADMIN_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"Payment rejected with {len(result.issues)} issue(s)",
            details={
                "errors": result.errors,
                "issues": [issue.model_dump() for issue in result.issues],
            },
        )

    @staticmethod
    def plan_upgraded(request: PaymentRequest) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=request.user_id,
            actor_role=ActorRole.SYSTEM,
            event_type=PaymentEventType.PLAN_UPGRADED,
            description=f"Plan upgraded to {request.plan.value}",
            details={"plan": request.plan.value},
        )

    @staticmethod
    def plan_activation_failed(
        request: PaymentRequest,
        error_message: str,
    ) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_id=request.user_id,
            actor_role=ActorRole.SYSTEM,
            event_type=PaymentEventType.PLAN_ACTIVATION_FAILED,
            severity=AuditSeverity.CRITICAL,
            description="Payment verified but plan activation failed",
            details={
                "plan": request.plan.value,
                "error": error_message,
            },
        )

    @staticmethod
    def request_expired(request: PaymentRequest) -> PaymentEvent:
        return PaymentEvent(
            request_id=request.id,
            actor_role=ActorRole.SYSTEM,
            event_type=PaymentEventType.REQUEST_EXPIRED,
            description="Payment request expired",
            details={"expires_at": request.expires_at.isoformat()},
        )
