"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves tests
and local runs.
"""

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
from stashway.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsExtractionStorage,
    GoogleSheetsNotificationStorage,
    GoogleSheetsPaymentEventStorage,
    GoogleSheetsPaymentRequestStorage,
    GoogleSheetsSubscriptionStorage,
)
from stashway.services.storage.memory import (
    InMemoryExtractionStorage,
    InMemoryNotificationStorage,
    InMemoryPaymentEventStorage,
    InMemoryPaymentRequestStorage,
    InMemorySubscriptionStorage,
)

__all__ = [
    # Interfaces
    "ExtractionStorageInterface",
    "NotificationStorageInterface",
    "PaymentEventStorageInterface",
    "PaymentRequestStorageInterface",
    "SubscriptionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsClient",
    "GoogleSheetsExtractionStorage",
    "GoogleSheetsNotificationStorage",
    "GoogleSheetsPaymentEventStorage",
    "GoogleSheetsPaymentRequestStorage",
    "GoogleSheetsSubscriptionStorage",
    # In-memory implementation
    "InMemoryExtractionStorage",
    "InMemoryNotificationStorage",
    "InMemoryPaymentEventStorage",
    "InMemoryPaymentRequestStorage",
    "InMemorySubscriptionStorage",
]
