"""
Identity and admin authorization.

The hosting platform owns authentication. The workflow only needs to
turn an access token into a UserIdentity and to ask whether that user
is an admin.

DESIGN DECISION: Admin rights are decided by an injected AdminPolicy
callable, not a hard-coded list. The default policy is an email
allowlist read from PAYMENTS_ADMIN_EMAILS.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

from stashway.models.account import UserIdentity


AdminPolicy = Callable[[UserIdentity], bool]


class IdentityInterface(ABC):
    """Abstract interface for the identity service."""

    @abstractmethod
    async def get_current_user(self, access_token: Optional[str]) -> Optional[UserIdentity]:
        """
        Resolve the caller behind an access token.

        Returns:
            The identity, or None if the token is missing or invalid
        """
        pass

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[UserIdentity]:
        pass


class InMemoryIdentityService(IdentityInterface):
    """Token -> identity map for tests and local runs."""

    def __init__(self):
        self._tokens: dict[str, UserIdentity] = {}
        self._users: dict[str, UserIdentity] = {}

    def register(self, token: str, user: UserIdentity) -> UserIdentity:
        self._tokens[token] = user
        self._users[user.id] = user
        return user

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    async def get_current_user(self, access_token: Optional[str]) -> Optional[UserIdentity]:
        if not access_token:
            return None
        return self._tokens.get(access_token)

    async def get_user_by_id(self, user_id: str) -> Optional[UserIdentity]:
        return self._users.get(user_id)


class EmailAllowlistPolicy:
    """Admin if the user's email is on the allowlist (case-insensitive)."""

    def __init__(self, emails: Iterable[str]):
        self._emails = frozenset(e.strip().lower() for e in emails if e.strip())

    @property
    def emails(self) -> list[str]:
        return sorted(self._emails)

    def __call__(self, user: UserIdentity) -> bool:
        return bool(user.email) and user.email.strip().lower() in self._emails
