"""
In-memory storage backend.

Used by the test suite and by local runs with STORAGE_BACKEND=memory.
Models are copied on the way in and out so callers can never mutate
stored state by accident.
"""

import asyncio
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
from stashway.services.storage.interface import (
    DuplicateError,
    ExtractionStorageInterface,
    NotFoundError,
    NotificationStorageInterface,
    PaymentEventStorageInterface,
    PaymentRequestStorageInterface,
    SubscriptionStorageInterface,
)


class InMemoryPaymentRequestStorage(PaymentRequestStorageInterface):
    """Requests keyed by id, with a true compare-and-swap on status."""

    def __init__(self):
        self._requests: dict[UUID, PaymentRequest] = {}
        self._lock = asyncio.Lock()

    async def save_request(self, request: PaymentRequest) -> bool:
        async with self._lock:
            if request.id in self._requests:
                raise DuplicateError(f"Payment request already exists: {request.id}")
            if any(r.reference_code == request.reference_code for r in self._requests.values()):
                raise DuplicateError("Reference code already in use")
            self._requests[request.id] = request.model_copy(deep=True)
            return True

    async def get_request(self, request_id: UUID) -> Optional[PaymentRequest]:
        stored = self._requests.get(request_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_requests_for_user(self, user_id: str) -> list[PaymentRequest]:
        requests = [
            r.model_copy(deep=True)
            for r in self._requests.values()
            if r.user_id == user_id
        ]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests

    async def update_request_if_status(
        self,
        request: PaymentRequest,
        expected_status: PaymentRequestStatus,
    ) -> bool:
        async with self._lock:
            stored = self._requests.get(request.id)
            if stored is None:
                raise NotFoundError(f"Payment request not found: {request.id}")
            if stored.status != expected_status:
                return False
            self._requests[request.id] = request.model_copy(deep=True)
            return True


class InMemoryExtractionStorage(ExtractionStorageInterface):

    def __init__(self):
        self._extractions: list[PaymentExtraction] = []

    async def save_extraction(self, extraction: PaymentExtraction) -> bool:
        self._extractions.append(extraction.model_copy(deep=True))
        return True

    async def list_extractions(self, request_id: UUID) -> list[PaymentExtraction]:
        return [
            e.model_copy(deep=True)
            for e in self._extractions
            if e.request_id == request_id
        ]

    async def get_latest_extraction(
        self,
        request_id: UUID,
        kind: ExtractionKind,
    ) -> Optional[PaymentExtraction]:
        # Insertion order is chronological
        for extraction in reversed(self._extractions):
            if extraction.request_id == request_id and extraction.kind == kind:
                return extraction.model_copy(deep=True)
        return None


class InMemoryPaymentEventStorage(PaymentEventStorageInterface):

    def __init__(self):
        self._events: list[PaymentEvent] = []

    async def append_event(self, event: PaymentEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_for_request(self, request_id: UUID) -> list[PaymentEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events
            if e.request_id == request_id
        ]


class InMemorySubscriptionStorage(SubscriptionStorageInterface):

    def __init__(self):
        self._subscriptions: dict[str, UserSubscription] = {}

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        stored = self._subscriptions.get(user_id)
        return stored.model_copy(deep=True) if stored else None

    async def upsert_subscription(self, subscription: UserSubscription) -> bool:
        self._subscriptions[subscription.user_id] = subscription.model_copy(deep=True)
        return True


class InMemoryNotificationStorage(NotificationStorageInterface):

    def __init__(self):
        self._notifications: list[UserNotification] = []
        self._celebrations: list[UserCelebration] = []

    async def add_notification(self, notification: UserNotification) -> bool:
        self._notifications.append(notification.model_copy(deep=True))
        return True

    async def add_celebration(self, celebration: UserCelebration) -> bool:
        self._celebrations.append(celebration.model_copy(deep=True))
        return True

    async def list_notifications(self, user_id: str) -> list[UserNotification]:
        return [
            n.model_copy(deep=True)
            for n in reversed(self._notifications)
            if n.user_id == user_id
        ]

    async def list_celebrations(self, user_id: str) -> list[UserCelebration]:
        return [
            c.model_copy(deep=True)
            for c in reversed(self._celebrations)
            if c.user_id == user_id
        ]
