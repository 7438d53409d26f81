"""
Payment Request Store

Owns the lifecycle of a payment request row:

    generated -> user_uploaded -> ai_parsed -> admin_uploaded -> verified | rejected

expired is reachable from any non-terminal state once now > expires_at.

CRITICAL: Every status write goes through _transition(), which writes
only if the stored status still equals the status the decision was
based on. A lost race raises StatusConflictError; nothing is silently
overwritten.

Marking a request with a status it already has (or has passed, short
of a terminal state) is a no-op. Terminal requests refuse all moves.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import SecretStr

from stashway.audit import AuditLogger
from stashway.config import get_settings
from stashway.config.settings import PaymentSettings
from stashway.models.audit import PaymentEventBuilder
from stashway.models.payment import (
    PaymentRequest,
    PaymentRequestStatus,
    SubscriptionPlan,
    build_payment_message,
    default_expiry,
    utc_now,
)
from stashway.payments.errors import (
    InvalidPlanError,
    InvalidStatusTransitionError,
    PaymentError,
    PaymentRequestNotFoundError,
    PricingConfigError,
    RequestFinalizedError,
    StatusConflictError,
)
from stashway.payments.reference import (
    generate_reference_code,
    generate_reference_secret,
)
from stashway.services.storage import (
    DuplicateError,
    PaymentRequestStorageInterface,
)


logger = structlog.get_logger(__name__)

Status = PaymentRequestStatus

ALLOWED_SOURCES: dict[PaymentRequestStatus, frozenset] = {
    Status.USER_UPLOADED: frozenset({Status.GENERATED}),
    Status.AI_PARSED: frozenset({Status.USER_UPLOADED}),
    Status.ADMIN_UPLOADED: frozenset({Status.AI_PARSED}),
    Status.VERIFIED: frozenset({Status.ADMIN_UPLOADED}),
    Status.REJECTED: frozenset({Status.ADMIN_UPLOADED}),
    Status.EXPIRED: frozenset({
        Status.GENERATED,
        Status.USER_UPLOADED,
        Status.AI_PARSED,
        Status.ADMIN_UPLOADED,
    }),
}

# Timestamp field stamped by each transition
_STAMP_FIELDS = {
    Status.USER_UPLOADED: "user_uploaded_at",
    Status.ADMIN_UPLOADED: "admin_uploaded_at",
    Status.VERIFIED: "verified_at",
    Status.REJECTED: "rejected_at",
    Status.EXPIRED: "expired_at",
}


class PaymentRequestStore:
    """
    Creates payment requests and performs guarded status transitions.
    """

    def __init__(
        self,
        storage: PaymentRequestStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[PaymentSettings] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().payments

    @property
    def settings(self) -> PaymentSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Creation and lookup
    # -------------------------------------------------------------------------

    def price_for(self, plan: Union[str, SubscriptionPlan]) -> tuple[SubscriptionPlan, Decimal]:
        """
        Validate a plan and look up its price.

        Raises:
            InvalidPlanError: Unknown plan or the free tier
            PricingConfigError: Paid plan without a configured price
        """
        try:
            plan = SubscriptionPlan(plan)
        except ValueError:
            raise InvalidPlanError(f"Unknown plan: {plan}")

        if not plan.is_paid:
            raise InvalidPlanError("The free plan cannot be purchased")

        price = self._settings.plan_prices.get(plan.value)
        if price is None:
            raise PricingConfigError(f"No price configured for plan: {plan.value}")

        return plan, price

    async def create_request(
        self,
        user_id: str,
        plan: Union[str, SubscriptionPlan],
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """
        Create and persist a new payment request.

        The reference code is regenerated if storage reports a collision.
        """
        plan, price = self.price_for(plan)
        created_at = now or utc_now()

        for attempt in range(1, self._settings.reference_code_attempts + 1):
            code = generate_reference_code()
            request = PaymentRequest(
                user_id=user_id,
                plan=plan,
                amount_expected=price,
                currency=self._settings.currency,
                reference_code=code,
                reference_secret=SecretStr(generate_reference_secret()),
                generated_message=build_payment_message(plan, code),
                status=Status.GENERATED,
                created_at=created_at,
                updated_at=created_at,
                expires_at=default_expiry(created_at, self._settings.request_lifetime_hours),
            )
            try:
                await self._storage.save_request(request)
            except DuplicateError:
                logger.warning("reference_code_collision", attempt=attempt)
                continue

            await self._audit.log(PaymentEventBuilder.request_created(request))
            return request

        raise PaymentError("Could not allocate a unique reference code")

    async def get_request(self, request_id: UUID) -> Optional[PaymentRequest]:
        return await self._storage.get_request(request_id)

    async def require_request(self, request_id: UUID) -> PaymentRequest:
        request = await self._storage.get_request(request_id)
        if request is None:
            raise PaymentRequestNotFoundError(f"Payment request not found: {request_id}")
        return request

    async def list_requests_for_user(self, user_id: str) -> list[PaymentRequest]:
        return await self._storage.list_requests_for_user(user_id)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        request_id: UUID,
        target: PaymentRequestStatus,
        now: Optional[datetime] = None,
        expected: Optional[PaymentRequestStatus] = None,
        **changes: Any,
    ) -> PaymentRequest:
        """
        Move a request to target if allowed, writing conditionally.

        expected pins the status the caller based its decision on.
        """
        request = await self.require_request(request_id)
        current = request.status

        if expected is not None and current != expected:
            raise StatusConflictError(
                f"Payment request {request_id} changed from {expected.value} to {current.value}"
            )

        if current.is_terminal:
            raise RequestFinalizedError(current.value, target.value)

        if not target.is_terminal and target.rank <= current.rank:
            return request

        if current not in ALLOWED_SOURCES[target]:
            raise InvalidStatusTransitionError(current.value, target.value)

        moment = now or utc_now()
        update = {"status": target, "updated_at": moment, **changes}
        if target in _STAMP_FIELDS:
            update[_STAMP_FIELDS[target]] = moment
        updated = request.model_copy(update=update)

        written = await self._storage.update_request_if_status(updated, current)
        if not written:
            raise StatusConflictError(
                f"Payment request {request_id} changed while moving to {target.value}"
            )

        logger.info(
            "payment_request_transition",
            request_id=str(request_id),
            from_status=current.value,
            to_status=target.value,
        )
        return updated

    async def mark_user_uploaded(
        self,
        request_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        return await self._transition(request_id, Status.USER_UPLOADED, now, last_error=None)

    async def mark_ai_parsed(
        self,
        request_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        return await self._transition(request_id, Status.AI_PARSED, now, last_error=None)

    async def mark_admin_uploaded(
        self,
        request_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        return await self._transition(request_id, Status.ADMIN_UPLOADED, now)

    async def mark_verified(
        self,
        request_id: UUID,
        now: Optional[datetime] = None,
        expected: Optional[PaymentRequestStatus] = None,
    ) -> PaymentRequest:
        return await self._transition(
            request_id, Status.VERIFIED, now, expected=expected, last_error=None
        )

    async def mark_rejected(
        self,
        request_id: UUID,
        reason: str,
        now: Optional[datetime] = None,
        expected: Optional[PaymentRequestStatus] = None,
    ) -> PaymentRequest:
        return await self._transition(
            request_id, Status.REJECTED, now, expected=expected, last_error=reason
        )

    async def mark_expired(
        self,
        request_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """
        Expire a request that is past expires_at.

        Raises:
            InvalidStatusTransitionError: The request is not due yet
        """
        moment = now or utc_now()
        request = await self.require_request(request_id)
        if not request.is_terminal and not request.is_expired(moment):
            raise InvalidStatusTransitionError(request.status.value, Status.EXPIRED.value)

        expired = await self._transition(
            request_id,
            Status.EXPIRED,
            moment,
            expected=request.status,
            last_error="Payment request has expired",
        )
        await self._audit.log(PaymentEventBuilder.request_expired(expired))
        return expired

    async def expire_if_due(
        self,
        request: PaymentRequest,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """Lazily expire a non-terminal request; otherwise return it unchanged."""
        moment = now or utc_now()
        if request.is_terminal or not request.is_expired(moment):
            return request
        return await self.mark_expired(request.id, moment)

    async def record_error(
        self,
        request_id: UUID,
        message: str,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """
        Set last_error without touching status.

        Retried once if the status moves underneath us.
        """
        for _ in range(2):
            request = await self.require_request(request_id)
            updated = request.model_copy(update={
                "last_error": message[:1000],
                "updated_at": now or utc_now(),
            })
            if await self._storage.update_request_if_status(updated, request.status):
                return updated

        raise StatusConflictError(
            f"Payment request {request_id} kept changing while recording an error"
        )
