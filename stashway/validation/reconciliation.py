"""
Payment Reconciliation

DESIGN DECISION: Reconciliation happens in two distinct steps:

STEP 1 - DECISION (verify):
- Pure function of the request, both extractions and "now"
- Every check runs; failures are accumulated, never short-circuited,
  so the rejection reason is complete
- A failed match is a normal result, NOT an exception

STEP 2 - COMMIT (reconcile):
- Re-reads the request and writes verified/rejected only if the status
  is still the one the decision was computed from
- A verified write is followed by plan activation; if activation fails
  the payment stays verified and the inconsistency is surfaced loudly
- Notifications run last and can never undo anything

CHECKS:
1. Reference code on both screenshots equals the request's code
2. Both amounts within the configured tolerance of amount_expected
3. Transaction ids agree (skipped if either side is missing)
4. Payer's transaction time within the window of request creation
5. Request not past expires_at
6. Request not already finalized
7. Stored reference secret present and long enough

IMPORTANT: The model's output is only ever compared against values the
server generated. Nothing extracted is trusted on its own.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from stashway.audit import AuditLogger
from stashway.config.settings import PaymentSettings
from stashway.models.audit import PaymentEventBuilder
from stashway.models.payment import (
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestStatus,
    ReconciliationIssue,
    VerificationResult,
    utc_now,
)
from stashway.payments.errors import (
    FulfillmentInconsistencyError,
    InvalidStatusTransitionError,
)
from stashway.payments.extractions import ExtractionStore
from stashway.payments.requests import PaymentRequestStore
from stashway.services.notifications import NotificationSink
from stashway.services.subscription import SubscriptionActivator


logger = structlog.get_logger(__name__)

_SIDE_LABELS = {"payer": "Payer", "admin": "Admin"}


def _fields(extraction: Optional[PaymentExtraction]) -> ExtractionFields:
    return extraction.fields if extraction is not None else ExtractionFields()


class ReconciliationEngine:
    """
    Decides and commits the outcome of a payment request.

    verify() has no side effects and can be called freely.
    reconcile() performs the guarded terminal write.
    """

    def __init__(
        self,
        request_store: PaymentRequestStore,
        extraction_store: ExtractionStore,
        audit_logger: AuditLogger,
        activator: SubscriptionActivator,
        notifications: Optional[NotificationSink] = None,
        settings: Optional[PaymentSettings] = None,
    ):
        self._requests = request_store
        self._extractions = extraction_store
        self._audit = audit_logger
        self._activator = activator
        self._notifications = notifications
        self._settings = settings or request_store.settings

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def _check_reference_codes(
        self,
        request: PaymentRequest,
        sides: dict[str, ExtractionFields],
    ) -> list[ReconciliationIssue]:
        issues = []
        for side, fields in sides.items():
            label = _SIDE_LABELS[side]
            code = fields.extracted_reference_code
            if code is None:
                issues.append(ReconciliationIssue(
                    check="reference_code",
                    side=side,
                    message=f"{label} reference code missing from screenshot",
                ))
            elif code != request.reference_code:
                issues.append(ReconciliationIssue(
                    check="reference_code",
                    side=side,
                    message=(
                        f"{label} reference code mismatch: "
                        f"expected {request.reference_code}, got {code}"
                    ),
                ))
        return issues

    def _check_amounts(
        self,
        request: PaymentRequest,
        sides: dict[str, ExtractionFields],
    ) -> list[ReconciliationIssue]:
        issues = []
        tolerance = self._settings.amount_tolerance
        for side, fields in sides.items():
            label = _SIDE_LABELS[side]
            amount = fields.extracted_amount
            if amount is None:
                issues.append(ReconciliationIssue(
                    check="amount",
                    side=side,
                    message=f"{label} amount missing from screenshot",
                ))
            elif abs(amount - request.amount_expected) > tolerance:
                issues.append(ReconciliationIssue(
                    check="amount",
                    side=side,
                    message=(
                        f"{label} amount mismatch: "
                        f"expected {request.amount_expected}, got {amount}"
                    ),
                ))
        return issues

    def _check_transaction_ids(
        self,
        payer: ExtractionFields,
        admin: ExtractionFields,
    ) -> list[ReconciliationIssue]:
        payer_id = payer.extracted_transaction_id
        admin_id = admin.extracted_transaction_id
        # Corroboration only: some MMG screens omit the id
        if payer_id is None or admin_id is None:
            return []
        if payer_id != admin_id:
            return [ReconciliationIssue(
                check="transaction_id",
                message="Transaction ID mismatch between payer and admin screenshots",
            )]
        return []

    def _check_timestamp(
        self,
        request: PaymentRequest,
        payer: ExtractionFields,
    ) -> list[ReconciliationIssue]:
        moment = payer.extracted_datetime
        if moment is None:
            return []
        window = self._settings.timestamp_window_hours
        hours = abs((moment - request.created_at).total_seconds()) / 3600
        if hours > window:
            return [ReconciliationIssue(
                check="timestamp",
                side="payer",
                message=(
                    f"Transaction date/time is more than {window} hours "
                    f"from request creation ({hours:.0f} hours)"
                ),
            )]
        return []

    def verify(
        self,
        request: PaymentRequest,
        payer: Optional[PaymentExtraction],
        admin: Optional[PaymentExtraction],
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """
        Run every check and collect every failure.

        Missing extractions are treated as extractions with no fields.
        """
        moment = now or utc_now()
        payer_fields = _fields(payer)
        admin_fields = _fields(admin)
        sides = {"payer": payer_fields, "admin": admin_fields}

        issues: list[ReconciliationIssue] = []
        issues += self._check_reference_codes(request, sides)
        issues += self._check_amounts(request, sides)
        issues += self._check_transaction_ids(payer_fields, admin_fields)
        issues += self._check_timestamp(request, payer_fields)

        if request.is_expired(moment):
            issues.append(ReconciliationIssue(
                check="expiry",
                side="request",
                message="Payment request has expired",
            ))

        if request.is_terminal:
            issues.append(ReconciliationIssue(
                check="status",
                side="request",
                message=f"Payment request has already been {request.status.value}",
            ))

        secret = request.reference_secret.get_secret_value()
        if len(secret) < self._settings.min_secret_length:
            issues.append(ReconciliationIssue(
                check="secret",
                side="request",
                message="Invalid reference secret (server-side validation failed)",
            ))

        return VerificationResult(
            request_id=request.id,
            verified=not issues,
            issues=issues,
            decided_at=moment,
        )

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    async def reconcile(
        self,
        request_id: UUID,
        admin_id: str,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """
        Decide on a request in admin_uploaded and persist the outcome.

        A request that is already final gets a status-guard result and
        no writes at all.

        Raises:
            InvalidStatusTransitionError: Request has not reached admin_uploaded
            StatusConflictError: Another reconciliation committed first
            FulfillmentInconsistencyError: Verified, but plan activation failed
        """
        moment = now or utc_now()
        snapshot = await self._requests.require_request(request_id)

        payer = await self._extractions.get_latest_extraction(
            request_id, ExtractionKind.USER_SUCCESS
        )
        admin = await self._extractions.get_latest_extraction(
            request_id, ExtractionKind.ADMIN_RECEIVED
        )
        result = self.verify(snapshot, payer, admin, moment)

        if snapshot.is_terminal:
            logger.warning(
                "reconciliation_on_final_request",
                request_id=str(request_id),
                status=snapshot.status.value,
            )
            return result

        if snapshot.status != PaymentRequestStatus.ADMIN_UPLOADED:
            raise InvalidStatusTransitionError(
                snapshot.status.value,
                PaymentRequestStatus.VERIFIED.value,
            )

        if result.verified:
            await self._commit_verified(snapshot, admin_id, result, moment)
        else:
            await self._commit_rejected(snapshot, admin_id, result, moment)

        return result

    async def _commit_verified(
        self,
        snapshot: PaymentRequest,
        admin_id: str,
        result: VerificationResult,
        now: datetime,
    ) -> None:
        verified = await self._requests.mark_verified(
            snapshot.id,
            now,
            expected=snapshot.status,
        )
        await self._audit.log(PaymentEventBuilder.admin_verified(verified, admin_id, result))

        try:
            await self._activator.activate(verified, now)
        except Exception as e:
            await self._audit.log(
                PaymentEventBuilder.plan_activation_failed(verified, str(e))
            )
            raise FulfillmentInconsistencyError(verified.id, e) from e

        await self._audit.log(PaymentEventBuilder.plan_upgraded(verified))

        if self._notifications:
            await self._notifications.notify_plan_activated(verified)

    async def _commit_rejected(
        self,
        snapshot: PaymentRequest,
        admin_id: str,
        result: VerificationResult,
        now: datetime,
    ) -> None:
        rejected = await self._requests.mark_rejected(
            snapshot.id,
            "; ".join(result.errors),
            now,
            expected=snapshot.status,
        )
        await self._audit.log(PaymentEventBuilder.admin_rejected(rejected, admin_id, result))
