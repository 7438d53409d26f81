"""
Tests for the reconciliation engine.

The decision (verify) is tested directly against hand-built requests;
the commit (reconcile) against the in-memory stores of the harness.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import SecretStr

from stashway.models.account import SubscriptionStatus
from stashway.models.audit import PaymentEventType
from stashway.models.payment import (
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestStatus,
    SubscriptionPlan,
    build_payment_message,
)
from stashway.payments import (
    FulfillmentInconsistencyError,
    InvalidStatusTransitionError,
    PaymentRequestStore,
    StatusConflictError,
)
from stashway.services.notifications import NotificationSink
from stashway.services.subscription import SubscriptionActivator
from stashway.validation import ReconciliationEngine
from tests.conftest import FailingStorage


REF = "ABCD1234EFGH5678IJKL9999"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_request(**overrides) -> PaymentRequest:
    data = dict(
        user_id="user-1",
        plan=SubscriptionPlan.PRO,
        amount_expected=Decimal("3762"),
        reference_code=REF,
        reference_secret=SecretStr("s" * 32),
        generated_message=build_payment_message(SubscriptionPlan.PRO, REF),
        status=PaymentRequestStatus.ADMIN_UPLOADED,
        created_at=NOW - timedelta(hours=1),
        updated_at=NOW - timedelta(hours=1),
        expires_at=NOW + timedelta(hours=47),
    )
    data.update(overrides)
    return PaymentRequest(**data)


def make_extraction(request, kind, **fields) -> PaymentExtraction:
    values = dict(
        extracted_amount=Decimal("3762"),
        extracted_transaction_id="TX123456",
        extracted_reference_code=REF,
        extracted_datetime=NOW - timedelta(minutes=50),
    )
    values.update(fields)
    return PaymentExtraction(
        request_id=request.id,
        kind=kind,
        fields=ExtractionFields(**values),
        raw_response="{}",
    )


def payer(request, **fields):
    return make_extraction(request, ExtractionKind.USER_SUCCESS, **fields)


def admin(request, **fields):
    return make_extraction(request, ExtractionKind.ADMIN_RECEIVED, **fields)


async def seed(harness, request=None, payer_fields=None, admin_fields=None) -> PaymentRequest:
    """Store a request plus one extraction per side."""
    request = request or make_request()
    await harness.request_storage.save_request(request)
    for kind, fields in (
        (ExtractionKind.USER_SUCCESS, payer_fields or {}),
        (ExtractionKind.ADMIN_RECEIVED, admin_fields or {}),
    ):
        extraction = make_extraction(request, kind, **fields)
        await harness.extraction_store.save_extraction(
            request.id, kind, extraction.fields, raw_response="{}"
        )
    return request


class YieldingStorage:
    """Request storage that hands control to the event loop on every read."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def get_request(self, request_id):
        await asyncio.sleep(0)
        return await self._inner.get_request(request_id)


async def event_types(harness, request_id) -> list[PaymentEventType]:
    return [e.event_type for e in await harness.event_storage.get_events_for_request(request_id)]


class TestVerifyDecision:
    """verify() is pure: every check runs and every failure is reported."""

    def test_matching_screenshots_verify(self, harness):
        """Test a clean match passes with no issues."""
        request = make_request()
        result = harness.engine.verify(request, payer(request), admin(request), NOW)
        assert result.verified
        assert result.errors == []

    def test_admin_reference_off_by_one_char(self, harness):
        """Test a single wrong character on the admin side gives exactly one issue."""
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request),
            admin(request, extracted_reference_code="ABCD1234EFGH5678IJKL9998"),
            NOW,
        )
        assert not result.verified
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.check == "reference_code"
        assert issue.side == "admin"
        assert "expected ABCD1234EFGH5678IJKL9999, got ABCD1234EFGH5678IJKL9998" in issue.message

    @pytest.mark.parametrize("amount,verified", [
        ("3762", True),
        ("3763", True),
        ("3761", True),
        ("3760", False),
        ("3759", False),
        ("3764", False),
    ])
    def test_amount_tolerance(self, harness, amount, verified):
        """Test amounts within one currency unit are accepted."""
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request, extracted_amount=Decimal(amount)),
            admin(request),
            NOW,
        )
        assert result.verified is verified
        if not verified:
            assert result.issues_for("amount")[0].message == (
                f"Payer amount mismatch: expected 3762, got {amount}"
            )

    def test_missing_fields_reported_per_side(self, harness):
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request, extracted_reference_code=None),
            admin(request, extracted_amount=None),
            NOW,
        )
        assert result.errors == [
            "Payer reference code missing from screenshot",
            "Admin amount missing from screenshot",
        ]

    def test_missing_extraction_treated_as_empty(self, harness):
        request = make_request()
        result = harness.engine.verify(request, payer(request), None, NOW)
        assert {issue.side for issue in result.issues} == {"admin"}
        assert len(result.issues) == 2

    def test_transaction_id_skipped_when_missing(self, harness):
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request, extracted_transaction_id=None),
            admin(request, extracted_transaction_id="TX999"),
            NOW,
        )
        assert result.verified

    def test_transaction_id_mismatch(self, harness):
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request),
            admin(request, extracted_transaction_id="TX999"),
            NOW,
        )
        assert result.errors == ["Transaction ID mismatch between payer and admin screenshots"]

    def test_transaction_far_from_creation(self, harness):
        request = make_request()
        result = harness.engine.verify(
            request,
            payer(request, extracted_datetime=request.created_at - timedelta(hours=72)),
            admin(request),
            NOW,
        )
        assert result.errors == [
            "Transaction date/time is more than 48 hours from request creation (72 hours)"
        ]

    def test_missing_transaction_time_is_not_an_issue(self, harness):
        request = make_request()
        result = harness.engine.verify(request, payer(request, extracted_datetime=None), admin(request), NOW)
        assert result.verified

    def test_expired_request(self, harness):
        request = make_request(expires_at=NOW - timedelta(seconds=1))
        result = harness.engine.verify(request, payer(request), admin(request), NOW)
        assert result.errors == ["Payment request has expired"]

    def test_open_exactly_at_expiry(self, harness):
        request = make_request(expires_at=NOW)
        assert harness.engine.verify(request, payer(request), admin(request), NOW).verified

    def test_already_verified_request(self, harness):
        request = make_request(status=PaymentRequestStatus.VERIFIED)
        result = harness.engine.verify(request, payer(request), admin(request), NOW)
        assert result.errors == ["Payment request has already been verified"]

    @pytest.mark.parametrize("secret", ["", "short-secret"])
    def test_weak_secret(self, harness, secret):
        request = make_request(reference_secret=SecretStr(secret))
        result = harness.engine.verify(request, payer(request), admin(request), NOW)
        assert result.errors == ["Invalid reference secret (server-side validation failed)"]

    def test_failures_accumulate(self, harness):
        """Test every failing check shows up, in check order."""
        request = make_request(expires_at=NOW - timedelta(hours=1))
        result = harness.engine.verify(
            request,
            payer(request, extracted_amount=Decimal("100")),
            admin(request, extracted_reference_code=None, extracted_transaction_id="TX999"),
            NOW,
        )
        assert [issue.check for issue in result.issues] == [
            "reference_code",
            "amount",
            "transaction_id",
            "expiry",
        ]

    def test_verify_has_no_side_effects(self, harness):
        request = make_request()
        harness.engine.verify(request, payer(request), admin(request, extracted_amount=None), NOW)
        assert harness.event_storage._events == []


class TestReconcileCommit:

    @pytest.mark.asyncio
    async def test_verified_activates_plan(self, harness):
        """Test a match marks verified, upgrades the plan and celebrates."""
        request = await seed(harness)
        result = await harness.engine.reconcile(request.id, "admin-1", NOW)

        assert result.verified
        stored = await harness.request_store.get_request(request.id)
        assert stored.status == PaymentRequestStatus.VERIFIED
        assert stored.verified_at == NOW

        subscription = await harness.activator.get("user-1")
        assert subscription.plan == SubscriptionPlan.PRO
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.plan_started_at == NOW
        assert subscription.plan_ends_at is None

        assert await event_types(harness, request.id) == [
            PaymentEventType.ADMIN_VERIFIED,
            PaymentEventType.PLAN_UPGRADED,
        ]

        notifications = await harness.notification_storage.list_notifications("user-1")
        assert notifications[0].type == "plan_paid_success"
        assert notifications[0].payload == {"plan": "pro", "request_id": str(request.id)}
        celebrations = await harness.notification_storage.list_celebrations("user-1")
        assert celebrations[0].badge_name == "PRO Plan Activated"

    @pytest.mark.asyncio
    async def test_rejected_records_every_reason(self, harness):
        request = await seed(
            harness,
            request=make_request(expires_at=NOW - timedelta(seconds=1)),
            admin_fields={"extracted_amount": Decimal("3759")},
        )
        result = await harness.engine.reconcile(request.id, "admin-1", NOW)

        assert not result.verified
        stored = await harness.request_store.get_request(request.id)
        assert stored.status == PaymentRequestStatus.REJECTED
        assert stored.last_error == (
            "Admin amount mismatch: expected 3762, got 3759; Payment request has expired"
        )
        assert await event_types(harness, request.id) == [PaymentEventType.ADMIN_REJECTED]
        assert await harness.activator.get("user-1") is None

    @pytest.mark.asyncio
    async def test_latest_extraction_wins(self, harness):
        """Test a re-upload supersedes the earlier admin extraction."""
        request = await seed(harness, admin_fields={"extracted_amount": Decimal("10")})
        await harness.extraction_store.save_extraction(
            request.id,
            ExtractionKind.ADMIN_RECEIVED,
            ExtractionFields(extracted_amount=3762, extracted_reference_code=REF),
            raw_response="{}",
        )
        result = await harness.engine.reconcile(request.id, "admin-1", NOW)
        assert result.verified

    @pytest.mark.asyncio
    async def test_final_request_is_not_written(self, harness):
        """Test an already-verified request gets a status-guard result only."""
        request = await seed(harness, request=make_request(status=PaymentRequestStatus.VERIFIED))
        result = await harness.engine.reconcile(request.id, "admin-1", NOW)

        assert not result.verified
        assert result.errors == ["Payment request has already been verified"]
        stored = await harness.request_store.get_request(request.id)
        assert stored.status == PaymentRequestStatus.VERIFIED
        assert stored.updated_at == request.updated_at
        assert await event_types(harness, request.id) == []
        assert await harness.activator.get("user-1") is None

    @pytest.mark.asyncio
    async def test_not_ready_for_reconciliation(self, harness):
        request = await seed(harness, request=make_request(status=PaymentRequestStatus.AI_PARSED))
        with pytest.raises(InvalidStatusTransitionError):
            await harness.engine.reconcile(request.id, "admin-1", NOW)

    @pytest.mark.asyncio
    async def test_activation_failure_keeps_payment_verified(self, harness):
        engine = ReconciliationEngine(
            harness.request_store,
            harness.extraction_store,
            harness.audit_logger,
            SubscriptionActivator(FailingStorage(harness.subscription_storage, "upsert_subscription")),
            harness.notifications,
            harness.settings,
        )
        request = await seed(harness)

        with pytest.raises(FulfillmentInconsistencyError) as exc_info:
            await engine.reconcile(request.id, "admin-1", NOW)

        assert exc_info.value.request_id == request.id
        stored = await harness.request_store.get_request(request.id)
        assert stored.status == PaymentRequestStatus.VERIFIED
        assert await event_types(harness, request.id) == [
            PaymentEventType.ADMIN_VERIFIED,
            PaymentEventType.PLAN_ACTIVATION_FAILED,
        ]
        assert await harness.notification_storage.list_notifications("user-1") == []

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_undo_verification(self, harness):
        notifications = NotificationSink(
            FailingStorage(harness.notification_storage, "add_notification"),
            harness.email,
            harness.blobs,
            harness.audit_logger,
            harness.settings,
        )
        engine = ReconciliationEngine(
            harness.request_store,
            harness.extraction_store,
            harness.audit_logger,
            harness.activator,
            notifications,
            harness.settings,
        )
        request = await seed(harness)

        result = await engine.reconcile(request.id, "admin-1", NOW)

        assert result.verified
        assert (await harness.activator.get("user-1")).plan == SubscriptionPlan.PRO
        assert await harness.notification_storage.list_notifications("user-1") == []
        assert len(await harness.notification_storage.list_celebrations("user-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_reconciliations_commit_once(self, harness):
        """Test two reconciliations racing from the same snapshot produce a single verified write."""
        requests = PaymentRequestStore(
            YieldingStorage(harness.request_storage),
            harness.audit_logger,
            harness.settings,
        )
        engine = ReconciliationEngine(
            requests,
            harness.extraction_store,
            harness.audit_logger,
            harness.activator,
            harness.notifications,
            harness.settings,
        )
        request = await seed(harness)

        outcomes = await asyncio.gather(
            engine.reconcile(request.id, "admin-1", NOW),
            engine.reconcile(request.id, "admin-1", NOW),
            return_exceptions=True,
        )

        conflicts = [o for o in outcomes if isinstance(o, StatusConflictError)]
        verified = [o for o in outcomes if not isinstance(o, Exception) and o.verified]
        assert len(conflicts) == 1
        assert len(verified) == 1
        assert (await harness.request_store.get_request(request.id)).status == PaymentRequestStatus.VERIFIED

        types = await event_types(harness, request.id)
        assert types.count(PaymentEventType.ADMIN_VERIFIED) == 1
        assert types.count(PaymentEventType.PLAN_UPGRADED) == 1
        assert len(await harness.notification_storage.list_celebrations("user-1")) == 1
