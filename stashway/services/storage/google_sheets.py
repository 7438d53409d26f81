"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Admins can inspect payment requests and the event log directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (a handful of payments a day is fine)
- No transactions: a conditional status write re-reads the row and compares
  the stored status immediately before writing. Two writers racing inside
  that window are not excluded; the workflow re-checks status again before
  every terminal write.
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL later without changing workflow logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import SecretStr
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stashway.config import get_settings
from stashway.config.settings import GoogleSheetsSettings
from stashway.models.account import (
    SubscriptionStatus,
    UserCelebration,
    UserNotification,
    UserSubscription,
)
from stashway.models.audit import (
    AuditSeverity,
    PaymentEvent,
    PaymentEventType,
)
from stashway.models.payment import (
    ActorRole,
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestStatus,
    SubscriptionPlan,
)
from stashway.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    ExtractionStorageInterface,
    NotFoundError,
    NotificationStorageInterface,
    PaymentEventStorageInterface,
    PaymentRequestStorageInterface,
    StorageError,
    SubscriptionStorageInterface,
)


logger = structlog.get_logger(__name__)


REQUEST_COLUMNS = [
    "id",
    "user_id",
    "plan",
    "amount_expected",
    "currency",
    "reference_code",
    "reference_secret",
    "generated_message",
    "status",
    "created_at",
    "updated_at",
    "expires_at",
    "user_uploaded_at",
    "admin_uploaded_at",
    "verified_at",
    "rejected_at",
    "expired_at",
    "last_error",
]

EXTRACTION_COLUMNS = [
    "id",
    "request_id",
    "kind",
    "created_at",
    "storage_path",
    "fields_json",
    "raw_response",
]

EVENT_COLUMNS = [
    "event_id",
    "timestamp",
    "request_id",
    "actor_id",
    "actor_role",
    "event_type",
    "severity",
    "description",
    "details_json",
]

SUBSCRIPTION_COLUMNS = [
    "user_id",
    "plan",
    "status",
    "plan_started_at",
    "plan_ends_at",
    "updated_at",
]

NOTIFICATION_COLUMNS = [
    "id",
    "user_id",
    "type",
    "payload_json",
    "is_read",
    "created_at",
]

CELEBRATION_COLUMNS = [
    "id",
    "user_id",
    "badge_name",
    "message",
    "shown",
    "created_at",
]

_STATUS_COLUMN = REQUEST_COLUMNS.index("status")

# Retry transient API failures, but never a duplicate or a missing row
_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Handle missing columns gracefully."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _parse_dt(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and lazily creates worksheets with headers.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def data_rows(self, title: str, columns: list[str]) -> list[list[str]]:
        """All non-empty rows of a worksheet, header excluded."""
        rows = self.get_worksheet(title, columns).get_all_values()[1:]
        return [row for row in rows if row and row[0]]


class GoogleSheetsPaymentRequestStorage(PaymentRequestStorageInterface):
    """
    Payment requests stored one per row.

    The reference secret is stored in its own column and only ever
    read back into the model's SecretStr field.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.requests_sheet_name, REQUEST_COLUMNS
        )

    def _request_to_row(self, request: PaymentRequest) -> list:
        return [
            str(request.id),
            request.user_id,
            request.plan.value,
            str(request.amount_expected),
            request.currency,
            request.reference_code,
            request.reference_secret.get_secret_value(),
            request.generated_message,
            request.status.value,
            _iso(request.created_at),
            _iso(request.updated_at),
            _iso(request.expires_at),
            _iso(request.user_uploaded_at),
            _iso(request.admin_uploaded_at),
            _iso(request.verified_at),
            _iso(request.rejected_at),
            _iso(request.expired_at),
            request.last_error or "",
        ]

    def _row_to_request(self, row: list) -> PaymentRequest:
        return PaymentRequest(
            id=UUID(_safe_get(row, 0)),
            user_id=_safe_get(row, 1),
            plan=SubscriptionPlan(_safe_get(row, 2)),
            amount_expected=Decimal(_safe_get(row, 3, "0")),
            currency=_safe_get(row, 4, "GYD"),
            reference_code=_safe_get(row, 5),
            reference_secret=SecretStr(_safe_get(row, 6)),
            generated_message=_safe_get(row, 7),
            status=PaymentRequestStatus(_safe_get(row, 8)),
            created_at=_parse_dt(_safe_get(row, 9)),
            updated_at=_parse_dt(_safe_get(row, 10)),
            expires_at=_parse_dt(_safe_get(row, 11)),
            user_uploaded_at=_parse_dt(_safe_get(row, 12)),
            admin_uploaded_at=_parse_dt(_safe_get(row, 13)),
            verified_at=_parse_dt(_safe_get(row, 14)),
            rejected_at=_parse_dt(_safe_get(row, 15)),
            expired_at=_parse_dt(_safe_get(row, 16)),
            last_error=_safe_get(row, 17) or None,
        )

    @_retry_transient
    async def save_request(self, request: PaymentRequest) -> bool:
        """Append a new request row, refusing duplicate ids or codes."""
        try:
            sheet = self._sheet()
            for row in sheet.get_all_values()[1:]:
                if not row:
                    continue
                if _safe_get(row, 0) == str(request.id):
                    raise DuplicateError(f"Payment request already exists: {request.id}")
                if _safe_get(row, 5) == request.reference_code:
                    raise DuplicateError("Reference code already in use")
            sheet.append_row(self._request_to_row(request), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save payment request: {e}")

    async def get_request(self, request_id: UUID) -> Optional[PaymentRequest]:
        try:
            rows = self._client.data_rows(
                self._client.settings.requests_sheet_name, REQUEST_COLUMNS
            )
            for row in rows:
                if row[0] == str(request_id):
                    return self._row_to_request(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get payment request: {e}")

    async def list_requests_for_user(self, user_id: str) -> list[PaymentRequest]:
        try:
            rows = self._client.data_rows(
                self._client.settings.requests_sheet_name, REQUEST_COLUMNS
            )
            requests = []
            for row in rows:
                if _safe_get(row, 1) != user_id:
                    continue
                try:
                    requests.append(self._row_to_request(row))
                except Exception as e:
                    logger.warning("malformed_request_row", request_id=row[0], error=str(e))

            # Newest first
            requests.sort(key=lambda r: r.created_at, reverse=True)
            return requests
        except Exception as e:
            raise StorageError(f"Failed to list payment requests: {e}")

    @_retry_transient
    async def update_request_if_status(
        self,
        request: PaymentRequest,
        expected_status: PaymentRequestStatus,
    ) -> bool:
        """Re-read the row, compare its status, then write the full row."""
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()

            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(request.id):
                    if _safe_get(row, _STATUS_COLUMN) != expected_status.value:
                        return False
                    sheet.update(
                        range_name=f"A{idx}",
                        values=[self._request_to_row(request)],
                        value_input_option="RAW",
                    )
                    return True

            raise NotFoundError(f"Payment request not found: {request.id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update payment request: {e}")


class GoogleSheetsExtractionStorage(ExtractionStorageInterface):
    """Extraction attempts, append-only."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _extraction_to_row(self, extraction: PaymentExtraction) -> list:
        return [
            str(extraction.id),
            str(extraction.request_id),
            extraction.kind.value,
            _iso(extraction.created_at),
            extraction.storage_path or "",
            extraction.fields.model_dump_json(),
            extraction.raw_response,
        ]

    def _row_to_extraction(self, row: list) -> PaymentExtraction:
        fields_json = _safe_get(row, 5)
        return PaymentExtraction(
            id=UUID(_safe_get(row, 0)),
            request_id=UUID(_safe_get(row, 1)),
            kind=ExtractionKind(_safe_get(row, 2)),
            created_at=_parse_dt(_safe_get(row, 3)),
            storage_path=_safe_get(row, 4) or None,
            fields=(
                ExtractionFields.model_validate_json(fields_json)
                if fields_json
                else ExtractionFields()
            ),
            raw_response=_safe_get(row, 6),
        )

    @_retry_transient
    async def save_extraction(self, extraction: PaymentExtraction) -> bool:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.extractions_sheet_name, EXTRACTION_COLUMNS
            )
            sheet.append_row(self._extraction_to_row(extraction), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save extraction: {e}")

    async def list_extractions(self, request_id: UUID) -> list[PaymentExtraction]:
        try:
            rows = self._client.data_rows(
                self._client.settings.extractions_sheet_name, EXTRACTION_COLUMNS
            )
            extractions = []
            for row in rows:
                if _safe_get(row, 1) != str(request_id):
                    continue
                try:
                    extractions.append(self._row_to_extraction(row))
                except Exception as e:
                    logger.warning("malformed_extraction_row", extraction_id=row[0], error=str(e))

            # Stable sort keeps sheet order for equal timestamps
            extractions.sort(key=lambda x: x.created_at)
            return extractions
        except Exception as e:
            raise StorageError(f"Failed to list extractions: {e}")

    async def get_latest_extraction(
        self,
        request_id: UUID,
        kind: ExtractionKind,
    ) -> Optional[PaymentExtraction]:
        matching = [
            extraction
            for extraction in await self.list_extractions(request_id)
            if extraction.kind == kind
        ]
        return matching[-1] if matching else None


class GoogleSheetsPaymentEventStorage(PaymentEventStorageInterface):
    """
    Google Sheets implementation of the payment event log.

    Events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> PaymentEvent:
        details_json = _safe_get(row, 8)
        return PaymentEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            request_id=UUID(_safe_get(row, 2)),
            actor_id=_safe_get(row, 3) or None,
            actor_role=ActorRole(_safe_get(row, 4)),
            event_type=PaymentEventType(_safe_get(row, 5)),
            severity=AuditSeverity(_safe_get(row, 6, "info")),
            description=_safe_get(row, 7),
            details=json.loads(details_json) if details_json else {},
        )

    @_retry_transient
    async def append_event(self, event: PaymentEvent) -> bool:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.events_sheet_name, EVENT_COLUMNS
            )
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append payment event: {e}")

    async def get_events_for_request(self, request_id: UUID) -> list[PaymentEvent]:
        try:
            rows = self._client.data_rows(
                self._client.settings.events_sheet_name, EVENT_COLUMNS
            )
            events = []
            for row in rows:
                if _safe_get(row, 2) != str(request_id):
                    continue
                try:
                    events.append(self._row_to_event(row))
                except Exception as e:
                    logger.warning("malformed_event_row", event_id=row[0], error=str(e))

            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get payment events: {e}")


class GoogleSheetsSubscriptionStorage(SubscriptionStorageInterface):
    """One subscription row per user."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _subscription_to_row(self, subscription: UserSubscription) -> list:
        return [
            subscription.user_id,
            subscription.plan.value,
            subscription.status.value,
            _iso(subscription.plan_started_at),
            _iso(subscription.plan_ends_at),
            _iso(subscription.updated_at),
        ]

    def _row_to_subscription(self, row: list) -> UserSubscription:
        return UserSubscription(
            user_id=_safe_get(row, 0),
            plan=SubscriptionPlan(_safe_get(row, 1, "none")),
            status=SubscriptionStatus(_safe_get(row, 2, "trialing")),
            plan_started_at=_parse_dt(_safe_get(row, 3)),
            plan_ends_at=_parse_dt(_safe_get(row, 4)),
            updated_at=_parse_dt(_safe_get(row, 5)),
        )

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        try:
            rows = self._client.data_rows(
                self._client.settings.subscriptions_sheet_name, SUBSCRIPTION_COLUMNS
            )
            for row in rows:
                if row[0] == user_id:
                    return self._row_to_subscription(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get subscription: {e}")

    @_retry_transient
    async def upsert_subscription(self, subscription: UserSubscription) -> bool:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.subscriptions_sheet_name, SUBSCRIPTION_COLUMNS
            )
            new_row = self._subscription_to_row(subscription)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == subscription.user_id:
                    sheet.update(
                        range_name=f"A{idx}",
                        values=[new_row],
                        value_input_option="RAW",
                    )
                    return True
            sheet.append_row(new_row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save subscription: {e}")


class GoogleSheetsNotificationStorage(NotificationStorageInterface):
    """User notifications and celebrations, one worksheet each."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @_retry_transient
    async def add_notification(self, notification: UserNotification) -> bool:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.notifications_sheet_name, NOTIFICATION_COLUMNS
            )
            sheet.append_row(
                [
                    str(notification.id),
                    notification.user_id,
                    notification.type,
                    json.dumps(notification.payload, default=str),
                    str(notification.is_read),
                    _iso(notification.created_at),
                ],
                value_input_option="RAW",
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save notification: {e}")

    @_retry_transient
    async def add_celebration(self, celebration: UserCelebration) -> bool:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.celebrations_sheet_name, CELEBRATION_COLUMNS
            )
            sheet.append_row(
                [
                    str(celebration.id),
                    celebration.user_id,
                    celebration.badge_name,
                    celebration.message,
                    str(celebration.shown),
                    _iso(celebration.created_at),
                ],
                value_input_option="RAW",
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save celebration: {e}")

    async def list_notifications(self, user_id: str) -> list[UserNotification]:
        try:
            rows = self._client.data_rows(
                self._client.settings.notifications_sheet_name, NOTIFICATION_COLUMNS
            )
            notifications = [
                UserNotification(
                    id=UUID(row[0]),
                    user_id=_safe_get(row, 1),
                    type=_safe_get(row, 2),
                    payload=json.loads(_safe_get(row, 3, "{}")),
                    is_read=_safe_get(row, 4).lower() == "true",
                    created_at=_parse_dt(_safe_get(row, 5)),
                )
                for row in rows
                if _safe_get(row, 1) == user_id
            ]
            notifications.sort(key=lambda n: n.created_at, reverse=True)
            return notifications
        except Exception as e:
            raise StorageError(f"Failed to list notifications: {e}")

    async def list_celebrations(self, user_id: str) -> list[UserCelebration]:
        try:
            rows = self._client.data_rows(
                self._client.settings.celebrations_sheet_name, CELEBRATION_COLUMNS
            )
            celebrations = [
                UserCelebration(
                    id=UUID(row[0]),
                    user_id=_safe_get(row, 1),
                    badge_name=_safe_get(row, 2),
                    message=_safe_get(row, 3),
                    shown=_safe_get(row, 4).lower() == "true",
                    created_at=_parse_dt(_safe_get(row, 5)),
                )
                for row in rows
                if _safe_get(row, 1) == user_id
            ]
            celebrations.sort(key=lambda c: c.created_at, reverse=True)
            return celebrations
        except Exception as e:
            raise StorageError(f"Failed to list celebrations: {e}")
