"""
Tests for the per-user access gate.
"""

import pytest

from langchain_chatbot.access import (
    AccessGate,
    UsageTier,
    UserAccessState,
    UserIdentity,
)
from langchain_chatbot.errors import AccessDenied

from fakes import FakeLedger, FakeUserStore

SHARED_KEY = "sk-shared"
MAX_TRIAL_TOKENS = 1000


def _gate(store, ledger) -> AccessGate:
    return AccessGate(
        store, ledger, shared_api_key=SHARED_KEY, max_trial_tokens=MAX_TRIAL_TOKENS
    )


IDENTITY = UserIdentity(user_id=42, username="alice", language_code="ru")


class TestAccessGate:
    @pytest.mark.asyncio
    async def test_new_user_created_with_locale(self):
        store = FakeUserStore()
        user = await _gate(store, FakeLedger()).resolve(IDENTITY)

        stored = store.users[42]
        assert stored.username == "alice"
        assert stored.language_code == "ru"
        assert stored.default_language_code == "ru"
        assert user.usage_tier == UsageTier.TRIAL_ACTIVE
        assert user.credential == SHARED_KEY

    @pytest.mark.asyncio
    async def test_new_trial_user_writes_record_then_tier(self):
        store = FakeUserStore()
        await _gate(store, FakeLedger()).resolve(IDENTITY)
        assert len(store.writes) == 2
        assert store.writes[0].usage_tier is None
        assert store.writes[1].usage_tier == UsageTier.TRIAL_ACTIVE

    @pytest.mark.asyncio
    async def test_shared_key_never_persisted(self):
        store = FakeUserStore()
        await _gate(store, FakeLedger()).resolve(IDENTITY)
        assert all(w.api_key is None for w in store.writes)

    @pytest.mark.asyncio
    async def test_existing_user_profile_refreshed(self):
        store = FakeUserStore(UserAccessState(
            user_id=42, username="old", language_code="en",
            default_language_code="en", usage_tier=UsageTier.TRIAL_ACTIVE,
        ))
        await _gate(store, FakeLedger()).resolve(IDENTITY)
        stored = store.users[42]
        assert stored.username == "alice"
        assert stored.language_code == "ru"
        assert stored.default_language_code == "ru"
        # Tier unchanged, so the sync write is the only one
        assert len(store.writes) == 1

    @pytest.mark.asyncio
    async def test_missing_identity_fields_keep_stored_values(self):
        store = FakeUserStore(UserAccessState(
            user_id=42, username="old", language_code="en", default_language_code="en",
        ))
        await _gate(store, FakeLedger()).resolve(UserIdentity(user_id=42))
        stored = store.users[42]
        assert stored.username == "old"
        assert stored.language_code == "en"

    @pytest.mark.asyncio
    async def test_custom_key_always_honored(self):
        store = FakeUserStore(UserAccessState(
            user_id=42, api_key="sk-own", usage_tier=UsageTier.TRIAL_ENDED,
        ))
        ledger = FakeLedger(used=10 * MAX_TRIAL_TOKENS)
        user = await _gate(store, ledger).authorize(IDENTITY)
        assert user.credential == "sk-own"
        assert user.usage_tier == UsageTier.CUSTOM_KEY
        assert store.users[42].usage_tier == UsageTier.CUSTOM_KEY
        assert ledger.lookups == 0

    @pytest.mark.asyncio
    async def test_premium_uses_shared_key(self):
        store = FakeUserStore(UserAccessState(user_id=42, usage_tier=UsageTier.PREMIUM))
        ledger = FakeLedger(used=10 * MAX_TRIAL_TOKENS)
        user = await _gate(store, ledger).authorize(IDENTITY)
        assert user.credential == SHARED_KEY
        assert user.usage_tier == UsageTier.PREMIUM
        assert ledger.lookups == 0

    @pytest.mark.asyncio
    async def test_one_token_below_ceiling_is_active(self):
        store = FakeUserStore()
        user = await _gate(store, FakeLedger(used=MAX_TRIAL_TOKENS - 1)).authorize(IDENTITY)
        assert user.usage_tier == UsageTier.TRIAL_ACTIVE
        assert user.credential == SHARED_KEY
        assert user.tokens_consumed_lifetime == MAX_TRIAL_TOKENS - 1

    @pytest.mark.asyncio
    async def test_at_ceiling_trial_ends(self):
        store = FakeUserStore()
        user = await _gate(store, FakeLedger(used=MAX_TRIAL_TOKENS)).resolve(IDENTITY)
        assert user.usage_tier == UsageTier.TRIAL_ENDED
        assert user.credential is None
        assert store.users[42].usage_tier == UsageTier.TRIAL_ENDED

    @pytest.mark.asyncio
    async def test_at_ceiling_authorize_denies(self):
        store = FakeUserStore(UserAccessState(user_id=42, usage_tier=UsageTier.TRIAL_ACTIVE))
        with pytest.raises(AccessDenied) as exc:
            await _gate(store, FakeLedger(used=MAX_TRIAL_TOKENS + 5)).authorize(IDENTITY)
        assert exc.value.user_id == 42
        assert exc.value.used_tokens == MAX_TRIAL_TOKENS + 5
        assert exc.value.max_tokens == MAX_TRIAL_TOKENS
        # Tier change persisted before the denial
        assert store.users[42].usage_tier == UsageTier.TRIAL_ENDED

    @pytest.mark.asyncio
    async def test_no_shared_key_denies_trial(self):
        gate = AccessGate(FakeUserStore(), FakeLedger(), shared_api_key=None)
        with pytest.raises(AccessDenied):
            await gate.authorize(IDENTITY)

    @pytest.mark.asyncio
    async def test_missing_user_id(self):
        with pytest.raises(ValueError):
            await _gate(FakeUserStore(), FakeLedger()).resolve(UserIdentity(user_id=None))


class TestUserAccessState:
    def test_require_credential(self):
        assert UserAccessState(user_id=1, credential="sk").require_credential() == "sk"

    def test_require_credential_denied(self):
        with pytest.raises(AccessDenied):
            UserAccessState(user_id=1).require_credential()

    def test_credential_not_part_of_equality(self):
        assert UserAccessState(user_id=1, credential="sk") == UserAccessState(user_id=1)
