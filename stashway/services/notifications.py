"""
Post-commit notifications.

DESIGN DECISION: Everything here runs AFTER the core write it reports on
has succeeded, and nothing here ever raises. A failed notification or
email is logged and skipped, so it can never be mistaken for a failed
verification.

Two kinds of side effect:
1. Verified payment -> user notification + celebration badge
2. Parsed payer screenshot -> email to the admins with a signed screenshot link
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from stashway.audit import AuditLogger
from stashway.config.settings import PaymentSettings
from stashway.models.account import (
    PLAN_PAID_NOTIFICATION,
    UserCelebration,
    UserIdentity,
    UserNotification,
)
from stashway.models.audit import PaymentEventBuilder
from stashway.models.payment import ExtractionFields, PaymentRequest
from stashway.services.blob import BlobStorageInterface
from stashway.services.storage import NotificationStorageInterface


logger = structlog.get_logger(__name__)


class EmailSender(ABC):
    """Fire-and-forget email dispatch."""

    @abstractmethod
    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        pass


class LoggingEmailSender(EmailSender):
    """
    Writes emails to the structured log instead of sending them.

    Stands in until an email provider is wired up.
    """

    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        logger.info(
            "email_dispatched",
            recipients=recipients,
            subject=subject,
            body=body,
        )


def celebration_for(request: PaymentRequest) -> UserCelebration:
    plan = request.plan.value.upper()
    return UserCelebration(
        user_id=request.user_id,
        badge_name=f"{plan} Plan Activated",
        message=(
            f"Congratulations! Your {plan} plan has been activated. "
            "Enjoy all the premium features!"
        ),
    )


def notification_for(request: PaymentRequest) -> UserNotification:
    return UserNotification(
        user_id=request.user_id,
        type=PLAN_PAID_NOTIFICATION,
        payload={
            "plan": request.plan.value,
            "request_id": str(request.id),
        },
    )


def build_admin_email(
    request: PaymentRequest,
    payer: Optional[UserIdentity],
    fields: ExtractionFields,
    screenshot_url: str,
    site_url: str,
) -> tuple[str, str]:
    """Subject and plain-text body of the "please verify" email."""
    verify_url = f"{site_url.rstrip('/')}/admin/mmg/verify?request_id={request.id}"
    extracted = "\n".join(
        f"- {label}: {value}" for label, value in fields.to_display_dict().items()
    )
    subject = f"MMG payment to verify: {request.plan.value.upper()} ({request.reference_code})"
    body = (
        "A user has uploaded a payment screenshot for verification.\n\n"
        f"User: {(payer.email if payer and payer.email else 'unknown')}\n"
        f"Plan: {request.plan.value.upper()}\n"
        f"Amount Expected: {request.currency} {request.amount_expected}\n"
        f"Reference Code: {request.reference_code}\n\n"
        "Extracted Information:\n"
        f"{extracted}\n\n"
        f"Screenshot: {screenshot_url}\n\n"
        "Please verify this payment by clicking the link below:\n"
        f"{verify_url}\n"
    )
    return subject, body


class NotificationSink:
    """
    Isolated, log-and-continue side effects.

    Every public method returns True on success and False on failure.
    """

    def __init__(
        self,
        storage: NotificationStorageInterface,
        email_sender: EmailSender,
        blob_storage: BlobStorageInterface,
        audit_logger: AuditLogger,
        settings: PaymentSettings,
        admin_recipients: Optional[list[str]] = None,
    ):
        self._storage = storage
        self._email = email_sender
        self._blobs = blob_storage
        self._audit = audit_logger
        self._settings = settings
        self._admin_recipients = (
            admin_recipients if admin_recipients is not None else settings.admin_email_list
        )

    async def notify_plan_activated(self, request: PaymentRequest) -> bool:
        """Notification plus celebration. Each write is tried independently."""
        ok = True

        try:
            await self._storage.add_notification(notification_for(request))
        except Exception as e:
            ok = False
            logger.error(
                "notification_failed",
                request_id=str(request.id),
                user_id=request.user_id,
                error=str(e),
            )

        try:
            await self._storage.add_celebration(celebration_for(request))
        except Exception as e:
            ok = False
            logger.error(
                "celebration_failed",
                request_id=str(request.id),
                user_id=request.user_id,
                error=str(e),
            )

        return ok

    async def email_admins_for_review(
        self,
        request: PaymentRequest,
        payer: Optional[UserIdentity],
        fields: ExtractionFields,
        storage_path: str,
    ) -> bool:
        """Tell the admins a payer screenshot is ready, then record ADMIN_EMAIL_SENT."""
        if not self._admin_recipients:
            logger.warning("admin_email_skipped", request_id=str(request.id), reason="no recipients")
            return False

        try:
            screenshot_url = await self._blobs.create_signed_url(
                storage_path,
                self._settings.signed_url_ttl_seconds,
            )
            subject, body = build_admin_email(
                request,
                payer,
                fields,
                screenshot_url,
                self._settings.site_url,
            )
            await self._email.send(self._admin_recipients, subject, body)
        except Exception as e:
            logger.error(
                "admin_email_failed",
                request_id=str(request.id),
                error=str(e),
            )
            return False

        await self._audit.log(
            PaymentEventBuilder.admin_email_sent(request.id, self._admin_recipients, fields)
        )
        return True
