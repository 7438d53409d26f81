"""Plan activation after a verified payment."""

from datetime import datetime
from typing import Optional

from stashway.models.account import SubscriptionStatus, UserSubscription
from stashway.models.payment import PaymentRequest, utc_now
from stashway.services.storage import SubscriptionStorageInterface


class SubscriptionActivator:
    """
    Sets the payer's plan to the request's plan.

    No billing cycle is modeled: plan_ends_at is always cleared.
    Errors propagate; the caller turns them into a fulfillment inconsistency.
    """

    def __init__(self, storage: SubscriptionStorageInterface):
        self._storage = storage

    async def activate(
        self,
        request: PaymentRequest,
        now: Optional[datetime] = None,
    ) -> UserSubscription:
        moment = now or utc_now()
        subscription = UserSubscription(
            user_id=request.user_id,
            plan=request.plan,
            status=SubscriptionStatus.ACTIVE,
            plan_started_at=moment,
            plan_ends_at=None,
            updated_at=moment,
        )
        await self._storage.upsert_subscription(subscription)
        return subscription

    async def get(self, user_id: str) -> Optional[UserSubscription]:
        return await self._storage.get_subscription(user_id)
