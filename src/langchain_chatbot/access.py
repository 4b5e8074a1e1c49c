"""
Per-user access gate.

Decides which API key a request runs with:

1. The user's own key, always honored (tier ``custom_key``)
2. Premium users get the operator's shared key
3. Everyone else is on trial: the shared key until their lifetime token
   usage reaches the trial ceiling, then no key at all (``trial_ended``)

The user record is synced from the inbound identity and upserted on every
call, and any tier change is persisted before the key is handed back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from .errors import AccessDenied

logger = logging.getLogger(__name__)


class UsageTier(str, Enum):
    CUSTOM_KEY = "custom_key"
    PREMIUM = "premium"
    TRIAL_ACTIVE = "trial_active"
    TRIAL_ENDED = "trial_ended"


@dataclass(frozen=True)
class UserIdentity:
    """Who is talking, as reported by the transport layer."""

    user_id: Optional[int]
    username: Optional[str] = None
    language_code: Optional[str] = None


@dataclass
class UserAccessState:
    """A user record plus the key resolved for the current request."""

    user_id: int
    username: Optional[str] = None
    language_code: Optional[str] = None
    default_language_code: Optional[str] = None
    api_key: Optional[str] = None  # user-supplied key, persisted
    usage_tier: Optional[UsageTier] = None
    tokens_consumed_lifetime: int = 0

    # Resolved per request, never persisted
    credential: Optional[str] = field(default=None, compare=False)

    def require_credential(self, max_trial_tokens: int = 0) -> str:
        """Return the resolved key or raise ``AccessDenied``."""
        if not self.credential:
            raise AccessDenied(
                self.user_id, self.tokens_consumed_lifetime, max_trial_tokens
            )
        return self.credential


class UserStore(Protocol):
    async def get(self, user_id: int) -> Optional[UserAccessState]: ...

    async def upsert(self, user: UserAccessState) -> None: ...


class UsageLedger(Protocol):
    async def lifetime_tokens_used(self, user_id: int) -> int: ...

    async def record_usage(
        self,
        user_id: int,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
    ) -> None: ...


class AccessGate:
    """
    Resolves the API key for a user.

    Usage:
        gate = AccessGate(store, ledger, shared_api_key="sk-...", max_trial_tokens=30000)
        user = await gate.authorize(identity)   # raises AccessDenied
        llm = make_model(user.credential)
    """

    def __init__(
        self,
        store: UserStore,
        ledger: UsageLedger,
        shared_api_key: Optional[str] = None,
        max_trial_tokens: int = 30_000,
    ):
        self.store = store
        self.ledger = ledger
        self.shared_api_key = shared_api_key
        self.max_trial_tokens = max_trial_tokens

    async def authorize(self, identity: UserIdentity) -> UserAccessState:
        """Resolve access and fail with ``AccessDenied`` if no key was granted."""
        user = await self.resolve(identity)
        user.require_credential(self.max_trial_tokens)
        return user

    async def resolve(self, identity: UserIdentity) -> UserAccessState:
        """
        Sync the user record and resolve the key for this request.

        A user whose trial has ended comes back with tier ``trial_ended`` and
        no credential.
        """
        user = await self._sync_user(identity)

        if user.api_key:
            user.credential = user.api_key
            await self._set_tier(user, UsageTier.CUSTOM_KEY)
            logger.info("[ACCESS GRANTED] user %s has a custom API key", user.user_id)
            return user

        if user.usage_tier == UsageTier.PREMIUM:
            user.credential = self.shared_api_key
            logger.info(
                "[ACCESS GRANTED] user %s is premium, using the shared API key",
                user.user_id,
            )
            return user

        used_tokens = await self.ledger.lifetime_tokens_used(user.user_id)
        user.tokens_consumed_lifetime = used_tokens
        if used_tokens < self.max_trial_tokens:
            await self._set_tier(user, UsageTier.TRIAL_ACTIVE)
            user.credential = self.shared_api_key
            logger.info(
                "[ACCESS GRANTED] user %s is on trial, used %d of %d tokens",
                user.user_id, used_tokens, self.max_trial_tokens,
            )
        else:
            await self._set_tier(user, UsageTier.TRIAL_ENDED)
            user.credential = None
            logger.info(
                "[ACCESS DENIED] user %s has no API key, is not premium and "
                "used %d of %d trial tokens",
                user.user_id, used_tokens, self.max_trial_tokens,
            )
        return user

    async def _sync_user(self, identity: UserIdentity) -> UserAccessState:
        """Create the user record or refresh its profile fields, then upsert it."""
        if identity.user_id is None:
            raise ValueError("identity has no user id")

        user = await self.store.get(identity.user_id)
        if user is None:
            user = UserAccessState(
                user_id=identity.user_id,
                username=identity.username,
                language_code=identity.language_code,
                default_language_code=identity.language_code,
            )
            await self.store.upsert(user)
            logger.info("User %s created in the database", user.user_id)
        else:
            user.username = identity.username or user.username
            user.default_language_code = (
                identity.language_code or user.default_language_code
            )
            user.language_code = identity.language_code or user.language_code
            await self.store.upsert(user)
            logger.info("User %s data updated in the database", user.user_id)
        return user

    async def _set_tier(self, user: UserAccessState, tier: UsageTier):
        if user.usage_tier == tier:
            return
        user.usage_tier = tier
        await self.store.upsert(user)
