"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep workflow logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the payment workflow needs.

CONCURRENCY: The payment request row is the only mutable record.
update_request_if_status() is the single write path for it and must
refuse the write when the stored status differs from the expected one.
Extractions and events are append-only.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from stashway.models.account import (
    UserCelebration,
    UserNotification,
    UserSubscription,
)
from stashway.models.audit import PaymentEvent
from stashway.models.payment import (
    ExtractionKind,
    PaymentExtraction,
    PaymentRequest,
    PaymentRequestStatus,
)


class PaymentRequestStorageInterface(ABC):
    """
    Abstract interface for payment request storage.

    Requests are never hard-deleted.
    """

    @abstractmethod
    async def save_request(self, request: PaymentRequest) -> bool:
        """
        Insert a new payment request.

        Raises:
            DuplicateError: If the id or reference code already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_request(self, request_id: UUID) -> Optional[PaymentRequest]:
        """
        Retrieve a request by id.

        Returns:
            The request if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_requests_for_user(self, user_id: str) -> list[PaymentRequest]:
        """
        List a user's requests, newest first.
        """
        pass

    @abstractmethod
    async def update_request_if_status(
        self,
        request: PaymentRequest,
        expected_status: PaymentRequestStatus,
    ) -> bool:
        """
        Overwrite a stored request only if its status is still expected_status.

        Returns:
            True if written, False if the stored status had changed

        Raises:
            NotFoundError: If the request doesn't exist
            StorageError: If the write fails
        """
        pass


class ExtractionStorageInterface(ABC):
    """
    Abstract interface for extraction storage.

    Append-only: every upload attempt is preserved.
    """

    @abstractmethod
    async def save_extraction(self, extraction: PaymentExtraction) -> bool:
        pass

    @abstractmethod
    async def get_latest_extraction(
        self,
        request_id: UUID,
        kind: ExtractionKind,
    ) -> Optional[PaymentExtraction]:
        """
        Most recent extraction of the given kind, or None.
        """
        pass

    @abstractmethod
    async def list_extractions(self, request_id: UUID) -> list[PaymentExtraction]:
        """
        All extractions for a request in chronological order.
        """
        pass


class PaymentEventStorageInterface(ABC):
    """
    Abstract interface for payment event storage.

    Events are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: PaymentEvent) -> bool:
        """
        Append an event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_for_request(self, request_id: UUID) -> list[PaymentEvent]:
        """
        All events for a request in chronological order.
        """
        pass


class SubscriptionStorageInterface(ABC):
    """Abstract interface for user subscription records."""

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        pass

    @abstractmethod
    async def upsert_subscription(self, subscription: UserSubscription) -> bool:
        """
        Insert or replace the subscription row for subscription.user_id.
        """
        pass


class NotificationStorageInterface(ABC):
    """Abstract interface for user notifications and celebrations."""

    @abstractmethod
    async def add_notification(self, notification: UserNotification) -> bool:
        pass

    @abstractmethod
    async def add_celebration(self, celebration: UserCelebration) -> bool:
        pass

    @abstractmethod
    async def list_notifications(self, user_id: str) -> list[UserNotification]:
        """
        A user's notifications, newest first.
        """
        pass

    @abstractmethod
    async def list_celebrations(self, user_id: str) -> list[UserCelebration]:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
