"""
Audit Logger

DESIGN DECISION: Every transition of a payment request is logged.
This provides:
1. Complete traceability
2. The evidence admins need for manual overrides
3. Debugging capability when an extraction goes wrong

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the workflow if logging fails)
- Keys every event by the payment request it belongs to
"""

from typing import Optional
from uuid import UUID

import structlog

from stashway.models.audit import AuditSeverity, PaymentEvent
from stashway.services.storage import PaymentEventStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central payment event logger.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Event storage (the payment_events table)
    """

    def __init__(
        self,
        storage: Optional[PaymentEventStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("stashway.audit")

    async def log(self, event: PaymentEvent) -> bool:
        """
        Log a payment event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("payment_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("payment_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("payment_event", **log_dict)
        else:
            self._logger.info("payment_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "payment_event_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                    request_id=str(event.request_id),
                    event_type=event.event_type.value,
                )
                return False

        return True

    async def events_for(self, request_id: UUID) -> list[PaymentEvent]:
        """Stored history of one request, oldest first."""
        if not self._storage:
            return []
        return await self._storage.get_events_for_request(request_id)
