"""
Shared fixtures.

Everything runs against in-memory storage and a fake Gemini model.
No real API calls in tests.
"""

import asyncio
import json
from decimal import Decimal
from io import BytesIO
from types import SimpleNamespace
from typing import Optional

import pytest
from PIL import Image

from stashway.audit import AuditLogger
from stashway.config.settings import GeminiSettings, PaymentSettings
from stashway.models.account import UserIdentity
from stashway.orchestrator import PaymentWorkflow
from stashway.payments import ExtractionStore, PaymentRequestStore
from stashway.services.blob import InMemoryBlobStorage
from stashway.services.extraction import GeminiScreenshotExtractor
from stashway.services.identity import EmailAllowlistPolicy, InMemoryIdentityService
from stashway.services.notifications import LoggingEmailSender, NotificationSink
from stashway.services.storage import (
    InMemoryExtractionStorage,
    InMemoryNotificationStorage,
    InMemoryPaymentEventStorage,
    InMemoryPaymentRequestStorage,
    InMemorySubscriptionStorage,
)
from stashway.services.subscription import SubscriptionActivator
from stashway.validation import ReconciliationEngine


ADMIN_EMAIL = "admin@stashway.app"
PAYER_TOKEN = "payer-token"
OTHER_TOKEN = "other-token"
ADMIN_TOKEN = "admin-token"


def make_png(width: int = 400, height: int = 800) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


def extraction_json(
    reference_code: Optional[str],
    amount=3762,
    transaction_id: Optional[str] = "TX123456",
    when: Optional[str] = None,
) -> str:
    """A model answer wrapped in the kind of prose Gemini adds."""
    payload = {
        "extracted_amount": amount,
        "extracted_transaction_id": transaction_id,
        "extracted_reference_code": reference_code,
        "extracted_datetime": when,
        "extracted_sender": "592-600-0000",
        "extracted_receiver": "6335874",
    }
    return "Here is the data:\n```json\n" + json.dumps(payload) + "\n```"


class FakeGeminiModel:
    """
    Stands in for genai.GenerativeModel.

    Each queued item is a response text, an exception to raise,
    or a callable taking the prompt parts.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list = []
        self.delay = 0.0

    def queue(self, *responses):
        self.responses.extend(responses)

    async def generate_content_async(self, parts):
        self.calls.append(parts)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(parts)
        return SimpleNamespace(text=item)


class RecordingEmailSender(LoggingEmailSender):
    """Logs like the real sender and keeps every email for assertions."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, recipients, subject, body):
        self.sent.append({"recipients": recipients, "subject": subject, "body": body})
        await super().send(recipients, subject, body)


class FailingStorage:
    """Wraps a storage object and fails the named methods."""

    def __init__(self, inner, *failing: str):
        self._inner = inner
        self._failing = set(failing)

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if name in self._failing:
            async def fail(*args, **kwargs):
                raise RuntimeError(f"{name} unavailable")
            return fail
        return attr


@pytest.fixture
def payment_settings() -> PaymentSettings:
    return PaymentSettings(
        admin_emails=ADMIN_EMAIL,
        site_url="https://stashway.test",
        plan_prices={
            "personal": Decimal("1881"),
            "pro": Decimal("3762"),
            "pro_max": Decimal("9405"),
        },
    )


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key", request_timeout_seconds=5)


@pytest.fixture
def fake_model() -> FakeGeminiModel:
    return FakeGeminiModel()


@pytest.fixture
def harness(payment_settings, gemini_settings, fake_model):
    """A fully wired in-memory workflow plus handles on every store."""
    identity = InMemoryIdentityService()
    identity.register(PAYER_TOKEN, UserIdentity(id="user-1", email="payer@example.com"))
    identity.register(OTHER_TOKEN, UserIdentity(id="user-2", email="other@example.com"))
    identity.register(ADMIN_TOKEN, UserIdentity(id="admin-1", email=ADMIN_EMAIL.upper()))

    request_storage = InMemoryPaymentRequestStorage()
    extraction_storage = InMemoryExtractionStorage()
    event_storage = InMemoryPaymentEventStorage()
    subscription_storage = InMemorySubscriptionStorage()
    notification_storage = InMemoryNotificationStorage()
    blobs = InMemoryBlobStorage()
    email = RecordingEmailSender()

    audit_logger = AuditLogger(event_storage)
    request_store = PaymentRequestStore(request_storage, audit_logger, payment_settings)
    extraction_store = ExtractionStore(extraction_storage)
    notifications = NotificationSink(
        notification_storage,
        email,
        blobs,
        audit_logger,
        payment_settings,
    )
    activator = SubscriptionActivator(subscription_storage)
    engine = ReconciliationEngine(
        request_store,
        extraction_store,
        audit_logger,
        activator,
        notifications,
        payment_settings,
    )
    extractor = GeminiScreenshotExtractor(
        settings=gemini_settings,
        payee_identifier=payment_settings.payee_identifier,
        model=fake_model,
    )
    workflow = PaymentWorkflow(
        identity=identity,
        request_store=request_store,
        extraction_store=extraction_store,
        extractor=extractor,
        blob_storage=blobs,
        engine=engine,
        notifications=notifications,
        audit_logger=audit_logger,
        admin_policy=EmailAllowlistPolicy(payment_settings.admin_email_list),
        settings=payment_settings,
    )

    return SimpleNamespace(
        workflow=workflow,
        identity=identity,
        model=fake_model,
        settings=payment_settings,
        request_storage=request_storage,
        extraction_storage=extraction_storage,
        event_storage=event_storage,
        subscription_storage=subscription_storage,
        notification_storage=notification_storage,
        blobs=blobs,
        email=email,
        audit_logger=audit_logger,
        request_store=request_store,
        extraction_store=extraction_store,
        notifications=notifications,
        activator=activator,
        engine=engine,
    )
