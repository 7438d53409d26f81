"""
Tests for Stashway MMG Payments

Test strategy:
1. Unit tests for individual components (models, generators, checks)
2. Integration tests for flows (in-memory storage, fake Gemini model)
3. No real API calls in tests
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import SecretStr

from stashway.models.account import UserSubscription, SubscriptionStatus
from stashway.models.audit import (
    AuditSeverity,
    PaymentEvent,
    PaymentEventBuilder,
    PaymentEventType,
)
from stashway.models.payment import (
    ActorRole,
    ExtractionFields,
    PaymentRequest,
    PaymentRequestStatus,
    ReconciliationIssue,
    ScreenshotUpload,
    SubscriptionPlan,
    VerificationResult,
    build_payment_message,
    clean_reference_code,
)


SECRET = "S" * 40
CODE = "ABCDEFGHJKLMNPQRSTUVWXYZ"


def make_request(**overrides) -> PaymentRequest:
    created = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    data = dict(
        user_id="user-1",
        plan=SubscriptionPlan.PRO,
        amount_expected=Decimal("3762"),
        reference_code=CODE,
        reference_secret=SecretStr(SECRET),
        generated_message=build_payment_message(SubscriptionPlan.PRO, CODE),
        created_at=created,
        expires_at=created + timedelta(hours=48),
    )
    data.update(overrides)
    return PaymentRequest(**data)


class TestPaymentRequestModel:
    """Tests for the PaymentRequest model."""

    def test_secret_excluded_from_dump(self):
        """The reference secret never appears in serialized output."""
        request = make_request()
        assert "reference_secret" not in request.model_dump()
        assert SECRET not in request.model_dump_json()
        assert SECRET not in repr(request)
        assert request.reference_secret.get_secret_value() == SECRET

    def test_receipt_has_no_secret(self):
        """The client receipt carries the code but not the secret."""
        receipt = make_request().to_receipt("6335874")
        dumped = receipt.model_dump_json()
        assert SECRET not in dumped
        assert receipt.reference_code == CODE
        assert receipt.payee_identifier == "6335874"

    def test_message_template(self):
        """Test the human-readable payment message."""
        assert build_payment_message(SubscriptionPlan.PRO_MAX, CODE) == (
            f"STASHWAY PRO_MAX PAYMENT - REF:{CODE}"
        )

    def test_is_expired_is_strict(self):
        """A request is still open at exactly expires_at."""
        request = make_request()
        assert not request.is_expired(request.expires_at)
        assert request.is_expired(request.expires_at + timedelta(seconds=1))

    def test_naive_datetimes_become_utc(self):
        request = make_request(
            created_at=datetime(2025, 3, 1, 12, 0),
            expires_at=datetime(2025, 3, 3, 12, 0),
        )
        assert request.created_at.tzinfo is not None
        assert request.expires_at.utcoffset() == timedelta(0)

    def test_status_order(self):
        """Terminal statuses rank after every pipeline status."""
        assert PaymentRequestStatus.GENERATED.rank < PaymentRequestStatus.AI_PARSED.rank
        assert PaymentRequestStatus.VERIFIED.is_terminal
        assert PaymentRequestStatus.EXPIRED.is_terminal
        assert not PaymentRequestStatus.ADMIN_UPLOADED.is_terminal
        assert PaymentRequestStatus.REJECTED.rank > PaymentRequestStatus.ADMIN_UPLOADED.rank


class TestExtractionFields:
    """Boundary validation of model output."""

    def test_reference_code_is_cleaned(self):
        fields = ExtractionFields(extracted_reference_code="ABCD-EFGH JKLM NPQR STUV WXYZ")
        assert fields.extracted_reference_code == CODE

    def test_lowercase_label_is_stripped(self):
        fields = ExtractionFields(extracted_reference_code="ref:" + CODE)
        assert fields.extracted_reference_code == CODE

    def test_lowercase_code_is_discarded(self):
        """Lowercase letters are stripped, so a lowercased code is too short."""
        assert clean_reference_code(CODE.lower()) is None
        fields = ExtractionFields(extracted_reference_code=CODE.lower())
        assert fields.extracted_reference_code is None

    def test_reference_code_wrong_length_discarded(self):
        """A code that looks wrong is treated as absent."""
        assert clean_reference_code("ABC123") is None
        fields = ExtractionFields(extracted_reference_code=CODE + "A")
        assert fields.extracted_reference_code is None

    @pytest.mark.parametrize("raw,expected", [
        (3762, Decimal("3762")),
        (3762.0, Decimal("3762.0")),
        ("3762", Decimal("3762")),
        ("GYD 3,762.00", Decimal("3762.00")),
        ("$ 1,881", Decimal("1881")),
    ])
    def test_amount_coercion(self, raw, expected):
        assert ExtractionFields(extracted_amount=raw).extracted_amount == expected

    @pytest.mark.parametrize("raw", [None, "", "N/A", True, [], {"value": 1}, "1.2.3", float("nan")])
    def test_unusable_amount_becomes_none(self, raw):
        assert ExtractionFields(extracted_amount=raw).extracted_amount is None

    def test_datetime_parsing(self):
        fields = ExtractionFields(extracted_datetime="2025-03-01T14:30:00")
        assert fields.extracted_datetime == datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)

        offset = ExtractionFields(extracted_datetime="2025-03-01T10:30:00-04:00")
        assert offset.extracted_datetime == datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", ["2025-03-01T14:30:00Z", "2025-03-01T14:30:00.000Z", "2025-03-01T14:30:00z"])
    def test_zulu_suffix(self, raw):
        fields = ExtractionFields(extracted_datetime=raw)
        assert fields.extracted_datetime == datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)

    def test_unparseable_datetime_becomes_none(self):
        assert ExtractionFields(extracted_datetime="yesterday afternoon").extracted_datetime is None

    def test_text_fields_trimmed(self):
        fields = ExtractionFields(
            extracted_transaction_id="  TX99  ",
            extracted_sender="",
            extracted_receiver="x" * 500,
        )
        assert fields.extracted_transaction_id == "TX99"
        assert fields.extracted_sender is None
        assert len(fields.extracted_receiver) == 200

    def test_unknown_keys_ignored(self):
        fields = ExtractionFields.model_validate({"extracted_amount": 5, "confidence": 0.9})
        assert fields.extracted_amount == Decimal("5")

    def test_display_dict_uses_na(self):
        display = ExtractionFields().to_display_dict()
        assert set(display.values()) == {"N/A"}


class TestVerificationResult:

    def test_errors_follow_issues(self):
        result = VerificationResult(
            request_id=uuid4(),
            verified=False,
            issues=[
                ReconciliationIssue(check="amount", side="payer", message="a"),
                ReconciliationIssue(check="expiry", side="request", message="b"),
            ],
        )
        assert result.errors == ["a", "b"]
        assert len(result.issues_for("amount")) == 1
        assert "errors" in result.model_dump()

    def test_unknown_check_rejected(self):
        with pytest.raises(ValueError):
            ReconciliationIssue(check="vibes", message="nope")


class TestPaymentEvents:
    """Tests for payment event models."""

    def test_event_to_sheets_row(self):
        """Test conversion to a Sheets row."""
        event = PaymentEvent(
            request_id=uuid4(),
            actor_id="user-1",
            actor_role=ActorRole.PAYER,
            event_type=PaymentEventType.USER_UPLOADED,
            description="uploaded",
            details={"amount": Decimal("3762")},
        )
        row = event.to_sheets_row()
        assert len(row) == 9
        assert row[4] == "payer"
        assert row[5] == "USER_UPLOADED"
        assert json.loads(row[8]) == {"amount": "3762"}

    def test_builder_request_created(self):
        request = make_request()
        event = PaymentEventBuilder.request_created(request)
        assert event.event_type == PaymentEventType.REQUEST_CREATED
        assert event.actor_id == "user-1"
        assert event.details["amount_expected"] == "3762"
        assert SECRET not in json.dumps(event.to_log_dict())

    def test_builder_admin_rejected_carries_all_errors(self):
        request = make_request()
        result = VerificationResult(
            request_id=request.id,
            verified=False,
            issues=[
                ReconciliationIssue(check="amount", side="admin", message="Admin amount mismatch"),
                ReconciliationIssue(check="expiry", side="request", message="Payment request has expired"),
            ],
        )
        event = PaymentEventBuilder.admin_rejected(request, "admin-1", result)
        assert event.severity == AuditSeverity.WARNING
        assert event.details["errors"] == ["Admin amount mismatch", "Payment request has expired"]

    def test_builder_activation_failure_is_critical(self):
        event = PaymentEventBuilder.plan_activation_failed(make_request(), "sheet down")
        assert event.severity == AuditSeverity.CRITICAL
        assert event.details["error"] == "sheet down"


class TestUploadAndAccountModels:

    def test_screenshot_upload_extension(self):
        upload = ScreenshotUpload(
            original_filename="proof.jpg",
            file_size_bytes=10,
            image_format="JPEG",
            width=10,
            height=10,
        )
        assert upload.image_format == "jpeg"
        assert upload.extension == "jpg"
        assert upload.mime_type == "image/jpeg"

    def test_screenshot_upload_rejects_gif(self):
        with pytest.raises(ValueError):
            ScreenshotUpload(
                original_filename="a.gif",
                file_size_bytes=10,
                image_format="gif",
                width=10,
                height=10,
            )

    def test_subscription_defaults(self):
        subscription = UserSubscription(user_id="user-1")
        assert subscription.plan == SubscriptionPlan.NONE
        assert subscription.status == SubscriptionStatus.TRIALING
        assert not SubscriptionPlan.NONE.is_paid
