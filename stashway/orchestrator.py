"""
Main Orchestrator for Stashway MMG Payments

This module ties together all the components and defines the
end-to-end flows for:
1. Request (plan -> reference code + message to paste into MMG)
2. Payer upload (screenshot -> stored -> extracted -> admins emailed)
3. Admin upload (counter-screenshot -> extracted -> reconciled -> plan activated)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Identity is checked before anything else, admin rights before any admin write
- Uploads are validated before anything is stored
- Extraction failures are recorded on the request, never lost
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from stashway.audit import AuditLogger
from stashway.config import get_settings
from stashway.config.settings import PaymentSettings
from stashway.models.account import UserIdentity
from stashway.models.audit import PaymentEvent, PaymentEventBuilder
from stashway.models.payment import (
    ActorRole,
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestReceipt,
    PaymentRequestStatus,
    ScreenshotUpload,
    VerificationResult,
    utc_now,
)
from stashway.payments import (
    AuthenticationError,
    AuthorizationError,
    ExtractionStore,
    InvalidStatusTransitionError,
    PaymentRequestNotFoundError,
    PaymentRequestStore,
    RequestExpiredError,
    RequestFinalizedError,
)
from stashway.services.blob import (
    BlobStorageInterface,
    CloudinaryBlobStorage,
    InMemoryBlobStorage,
    build_screenshot_path,
    path_belongs_to,
)
from stashway.services.extraction import ExtractionError, GeminiScreenshotExtractor
from stashway.services.identity import (
    AdminPolicy,
    EmailAllowlistPolicy,
    IdentityInterface,
)
from stashway.services.notifications import (
    EmailSender,
    LoggingEmailSender,
    NotificationSink,
)
from stashway.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsExtractionStorage,
    GoogleSheetsNotificationStorage,
    GoogleSheetsPaymentEventStorage,
    GoogleSheetsPaymentRequestStorage,
    GoogleSheetsSubscriptionStorage,
    InMemoryExtractionStorage,
    InMemoryNotificationStorage,
    InMemoryPaymentEventStorage,
    InMemoryPaymentRequestStorage,
    InMemorySubscriptionStorage,
)
from stashway.services.subscription import SubscriptionActivator
from stashway.validation import (
    InvalidUploadError,
    ReconciliationEngine,
    ScreenshotValidator,
)


logger = structlog.get_logger(__name__)

# Statuses in which the payer may (re)submit a screenshot
PAYER_UPLOAD_STATUSES = frozenset({
    PaymentRequestStatus.GENERATED,
    PaymentRequestStatus.USER_UPLOADED,
    PaymentRequestStatus.AI_PARSED,
})

# Statuses in which an admin may submit the counter-screenshot
ADMIN_UPLOAD_STATUSES = frozenset({
    PaymentRequestStatus.AI_PARSED,
    PaymentRequestStatus.ADMIN_UPLOADED,
})


class PaymentWorkflow:
    """
    Client-facing surface of the MMG payment workflow.

    Flow:
    1. Payer creates a request and sends money with the generated message
    2. Payer uploads the "payment sent" screenshot -> extracted, admins emailed
    3. Admin uploads the "funds received" screenshot -> extracted
    4. Both extractions are reconciled against the request
    5. Verified -> plan activated, user notified; otherwise rejected with reasons

    Payers only ever see their own requests. A request belonging to
    someone else is reported as not found.
    """

    def __init__(
        self,
        identity: IdentityInterface,
        request_store: PaymentRequestStore,
        extraction_store: ExtractionStore,
        extractor: GeminiScreenshotExtractor,
        blob_storage: BlobStorageInterface,
        engine: ReconciliationEngine,
        notifications: NotificationSink,
        audit_logger: AuditLogger,
        admin_policy: AdminPolicy,
        validator: Optional[ScreenshotValidator] = None,
        settings: Optional[PaymentSettings] = None,
    ):
        self._identity = identity
        self._requests = request_store
        self._extractions = extraction_store
        self._extractor = extractor
        self._blobs = blob_storage
        self._engine = engine
        self._notifications = notifications
        self._audit_logger = audit_logger
        self._is_admin = admin_policy
        self._settings = settings or request_store.settings
        self._validator = validator or ScreenshotValidator(self._settings)

    # -------------------------------------------------------------------------
    # Access checks
    # -------------------------------------------------------------------------

    async def _authenticate(self, access_token: Optional[str]) -> UserIdentity:
        user = await self._identity.get_current_user(access_token)
        if user is None:
            raise AuthenticationError("Not signed in")
        return user

    async def _authenticate_admin(self, access_token: Optional[str]) -> UserIdentity:
        user = await self._authenticate(access_token)
        if not self._is_admin(user):
            logger.warning("admin_access_denied", user_id=user.id)
            raise AuthorizationError("Admin access required")
        return user

    async def _owned_request(self, user: UserIdentity, request_id: UUID) -> PaymentRequest:
        request = await self._requests.get_request(request_id)
        if request is None or request.user_id != user.id:
            raise PaymentRequestNotFoundError(f"Payment request not found: {request_id}")
        return request

    async def _open_for_payer(
        self,
        request: PaymentRequest,
        now: datetime,
    ) -> PaymentRequest:
        """Lazily expire, then make sure the payer may still upload."""
        request = await self._requests.expire_if_due(request, now)
        if request.status == PaymentRequestStatus.EXPIRED:
            raise RequestExpiredError("Payment request has expired")
        if request.is_terminal:
            raise RequestFinalizedError(
                request.status.value,
                PaymentRequestStatus.USER_UPLOADED.value,
            )
        if request.status not in PAYER_UPLOAD_STATUSES:
            raise InvalidStatusTransitionError(
                request.status.value,
                PaymentRequestStatus.USER_UPLOADED.value,
            )
        return request

    # -------------------------------------------------------------------------
    # Payer operations
    # -------------------------------------------------------------------------

    async def create_payment_request(
        self,
        access_token: Optional[str],
        plan: str,
        now: Optional[datetime] = None,
    ) -> PaymentRequestReceipt:
        """
        Start a payment for a paid plan.

        Returns the message to paste into the MMG transfer. The reference
        secret stays on the server.
        """
        user = await self._authenticate(access_token)
        request = await self._requests.create_request(user.id, plan, now)
        return request.to_receipt(self._settings.payee_identifier)

    async def upload_payment_screenshot(
        self,
        access_token: Optional[str],
        request_id: UUID,
        image_bytes: Optional[bytes],
        filename: str,
        now: Optional[datetime] = None,
    ) -> ExtractionFields:
        """
        Store the payer's screenshot and extract it.

        Raises:
            InvalidUploadError: Empty, oversized or unreadable screenshot
            RequestExpiredError: The request passed its expiry time
            ExtractionError: The screenshot is stored and the request is
                user_uploaded, but extraction failed; re-upload to retry
        """
        moment = now or utc_now()
        user = await self._authenticate(access_token)
        upload = self._validator.validate(image_bytes, filename)

        request = await self._owned_request(user, request_id)
        request = await self._open_for_payer(request, moment)

        path = build_screenshot_path(request.id, ExtractionKind.USER_SUCCESS, upload.extension, moment)
        await self._blobs.upload(path, image_bytes, upload.mime_type)
        request = await self._requests.mark_user_uploaded(request.id, moment)

        return await self._extract_payer_screenshot(user, request, path, image_bytes, upload, moment)

    async def process_payment_screenshot(
        self,
        access_token: Optional[str],
        request_id: UUID,
        storage_path: str,
        now: Optional[datetime] = None,
    ) -> ExtractionFields:
        """
        Extract a payer screenshot that is already in blob storage.

        Used when the client uploads straight to storage and then asks
        the server to process the stored file.
        """
        moment = now or utc_now()
        user = await self._authenticate(access_token)
        request = await self._owned_request(user, request_id)

        if not path_belongs_to(storage_path, request.id, ExtractionKind.USER_SUCCESS):
            raise InvalidUploadError("Screenshot does not belong to this payment request")

        request = await self._open_for_payer(request, moment)

        image_bytes = await self._blobs.download(storage_path)
        upload = self._validator.validate(image_bytes, storage_path.rsplit("/", 1)[-1])
        request = await self._requests.mark_user_uploaded(request.id, moment)

        return await self._extract_payer_screenshot(
            user, request, storage_path, image_bytes, upload, moment
        )

    async def _extract_payer_screenshot(
        self,
        user: UserIdentity,
        request: PaymentRequest,
        path: str,
        image_bytes: bytes,
        upload: ScreenshotUpload,
        now: datetime,
    ) -> ExtractionFields:
        try:
            result = await self._extractor.extract(
                image_bytes,
                ExtractionKind.USER_SUCCESS,
                upload.mime_type,
            )
        except ExtractionError as e:
            await self._record_extraction_failure(
                request.id, user.id, ActorRole.PAYER, ExtractionKind.USER_SUCCESS, e, now
            )
            raise

        await self._extractions.save_extraction(
            request.id,
            ExtractionKind.USER_SUCCESS,
            result.fields,
            result.raw_response,
            path,
        )
        parsed = await self._requests.mark_ai_parsed(request.id, now)
        await self._audit_logger.log(PaymentEventBuilder.user_uploaded(parsed, result.fields, path))

        # Post-commit, never raises
        await self._notifications.email_admins_for_review(parsed, user, result.fields, path)

        return result.fields

    async def _record_extraction_failure(
        self,
        request_id: UUID,
        actor_id: str,
        actor_role: ActorRole,
        kind: ExtractionKind,
        error: ExtractionError,
        now: datetime,
    ) -> None:
        await self._requests.record_error(request_id, str(error), now)
        await self._audit_logger.log(
            PaymentEventBuilder.extraction_failed(
                request_id,
                actor_id,
                actor_role,
                kind,
                str(error),
                error.raw_response,
            )
        )

    async def get_payment_request(
        self,
        access_token: Optional[str],
        request_id: UUID,
    ) -> Optional[PaymentRequest]:
        """The caller's own request (any request for admins), or None."""
        user = await self._authenticate(access_token)
        request = await self._requests.get_request(request_id)
        if request is None:
            return None
        if request.user_id != user.id and not self._is_admin(user):
            return None
        return request

    async def list_payment_requests(
        self,
        access_token: Optional[str],
    ) -> list[PaymentRequest]:
        """The caller's requests, newest first."""
        user = await self._authenticate(access_token)
        return await self._requests.list_requests_for_user(user.id)

    # -------------------------------------------------------------------------
    # Admin operations
    # -------------------------------------------------------------------------

    async def admin_upload_counter_screenshot(
        self,
        access_token: Optional[str],
        request_id: UUID,
        image_bytes: Optional[bytes],
        filename: str,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """
        Store and extract the admin's "funds received" screenshot, then reconcile.

        A request that is already final is not touched: the result carries
        a status-guard error instead.

        Raises:
            AuthorizationError: Caller is not an admin
            InvalidUploadError: Empty, oversized or unreadable screenshot
            InvalidStatusTransitionError: Payer screenshot not parsed yet
            ExtractionError: Screenshot stored, extraction failed; re-upload to retry
            StatusConflictError: Another reconciliation committed first
            FulfillmentInconsistencyError: Verified, but plan activation failed
        """
        moment = now or utc_now()
        admin = await self._authenticate_admin(access_token)
        upload = self._validator.validate(image_bytes, filename)

        request = await self._requests.require_request(request_id)

        if request.is_terminal:
            return await self._engine.reconcile(request.id, admin.id, moment)

        if request.status not in ADMIN_UPLOAD_STATUSES:
            raise InvalidStatusTransitionError(
                request.status.value,
                PaymentRequestStatus.ADMIN_UPLOADED.value,
            )

        path = build_screenshot_path(request.id, ExtractionKind.ADMIN_RECEIVED, upload.extension, moment)
        await self._blobs.upload(path, image_bytes, upload.mime_type)
        request = await self._requests.mark_admin_uploaded(request.id, moment)

        try:
            result = await self._extractor.extract(
                image_bytes,
                ExtractionKind.ADMIN_RECEIVED,
                upload.mime_type,
            )
        except ExtractionError as e:
            await self._record_extraction_failure(
                request.id, admin.id, ActorRole.ADMIN, ExtractionKind.ADMIN_RECEIVED, e, moment
            )
            raise

        await self._extractions.save_extraction(
            request.id,
            ExtractionKind.ADMIN_RECEIVED,
            result.fields,
            result.raw_response,
            path,
        )
        await self._audit_logger.log(
            PaymentEventBuilder.admin_uploaded(request, admin.id, result.fields, path)
        )

        return await self._engine.reconcile(request.id, admin.id, moment)

    async def get_payment_events(
        self,
        access_token: Optional[str],
        request_id: UUID,
    ) -> list[PaymentEvent]:
        """Full event history of a request, oldest first."""
        await self._authenticate_admin(access_token)
        await self._requests.require_request(request_id)
        return await self._audit_logger.events_for(request_id)

    async def get_payment_extractions(
        self,
        access_token: Optional[str],
        request_id: UUID,
    ) -> list[PaymentExtraction]:
        """Every stored extraction of a request, including superseded ones."""
        await self._authenticate_admin(access_token)
        await self._requests.require_request(request_id)
        return await self._extractions.list_extractions(request_id)


def create_app_components(
    identity: IdentityInterface,
    storage_backend: Optional[str] = None,
    extractor: Optional[GeminiScreenshotExtractor] = None,
    email_sender: Optional[EmailSender] = None,
    admin_policy: Optional[AdminPolicy] = None,
) -> PaymentWorkflow:
    """
    Factory function to create all application components.

    Args:
        identity: The hosting platform's identity service
        storage_backend: "google_sheets" or "memory"; defaults to STORAGE_BACKEND
        extractor: Override the Gemini extractor (tests pass a fake model)
        email_sender: Defaults to logging the emails
        admin_policy: Defaults to the PAYMENTS_ADMIN_EMAILS allowlist

    Returns:
        A fully wired PaymentWorkflow
    """
    settings = get_settings()
    payment_settings = settings.payments
    backend = storage_backend or settings.app.storage_backend

    if backend == "memory":
        request_storage = InMemoryPaymentRequestStorage()
        extraction_storage = InMemoryExtractionStorage()
        event_storage = InMemoryPaymentEventStorage()
        subscription_storage = InMemorySubscriptionStorage()
        notification_storage = InMemoryNotificationStorage()
        blob_storage = InMemoryBlobStorage()
    else:
        sheets_client = GoogleSheetsClient()
        request_storage = GoogleSheetsPaymentRequestStorage(sheets_client)
        extraction_storage = GoogleSheetsExtractionStorage(sheets_client)
        event_storage = GoogleSheetsPaymentEventStorage(sheets_client)
        subscription_storage = GoogleSheetsSubscriptionStorage(sheets_client)
        notification_storage = GoogleSheetsNotificationStorage(sheets_client)
        blob_storage = CloudinaryBlobStorage()

    logger.info("payment_workflow_configured", storage_backend=backend)

    audit_logger = AuditLogger(event_storage)
    request_store = PaymentRequestStore(request_storage, audit_logger, payment_settings)
    extraction_store = ExtractionStore(extraction_storage)
    notifications = NotificationSink(
        notification_storage,
        email_sender or LoggingEmailSender(),
        blob_storage,
        audit_logger,
        payment_settings,
    )
    engine = ReconciliationEngine(
        request_store,
        extraction_store,
        audit_logger,
        SubscriptionActivator(subscription_storage),
        notifications,
        payment_settings,
    )

    return PaymentWorkflow(
        identity=identity,
        request_store=request_store,
        extraction_store=extraction_store,
        extractor=extractor or GeminiScreenshotExtractor(
            payee_identifier=payment_settings.payee_identifier,
        ),
        blob_storage=blob_storage,
        engine=engine,
        notifications=notifications,
        audit_logger=audit_logger,
        admin_policy=admin_policy or EmailAllowlistPolicy(payment_settings.admin_email_list),
        settings=payment_settings,
    )
