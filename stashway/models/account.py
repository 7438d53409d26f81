"""
Account-side records touched by a verified payment.

These are owned by the wider Stashway app; the payment workflow
only reads identities and writes subscriptions, notifications
and celebrations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stashway.models.payment import SubscriptionPlan, ensure_aware, utc_now


PLAN_PAID_NOTIFICATION = "plan_paid_success"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"


class UserIdentity(BaseModel):
    """An authenticated caller as reported by the identity service."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    email: Optional[str] = None


class UserSubscription(BaseModel):
    """
    A user's plan record.

    plan_ends_at stays None: no billing cycle is modeled.
    """

    user_id: str
    plan: SubscriptionPlan = SubscriptionPlan.NONE
    status: SubscriptionStatus = SubscriptionStatus.TRIALING
    plan_started_at: Optional[datetime] = None
    plan_ends_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("plan_started_at", "plan_ends_at", "updated_at")
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None


class UserNotification(BaseModel):
    """A user-visible notification record."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    type: str = Field(..., min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class UserCelebration(BaseModel):
    """A badge-style celebration shown to the user once."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    badge_name: str = Field(..., max_length=120)
    message: str = Field(..., max_length=500)
    shown: bool = False
    created_at: datetime = Field(default_factory=utc_now)
