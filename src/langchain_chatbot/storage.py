"""
PostgreSQL persistence for user records and token usage.

Both classes take a psycopg ``AsyncConnection`` opened with
``autocommit=True`` (``row_factory=dict_row`` is supported but not
required). Call ``setup()`` once to create the tables.
"""

import logging
from typing import Optional

from .access import UsageTier, UserAccessState

logger = logging.getLogger(__name__)

_USER_COLUMNS = (
    "user_id, username, language_code, default_language_code, api_key, usage_type"
)


class PostgresUserStore:
    """User records keyed by user id, written with one idempotent upsert."""

    def __init__(self, pg_conn):
        self._pg_conn = pg_conn

    async def setup(self):
        """Create the users table."""
        async with self._pg_conn.cursor() as cur:
            await cur.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id BIGINT PRIMARY KEY,
                    username TEXT,
                    language_code TEXT,
                    default_language_code TEXT,
                    api_key TEXT,
                    usage_type TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

    async def get(self, user_id: int) -> Optional[UserAccessState]:
        async with self._pg_conn.cursor() as cur:
            await cur.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = %s",
                (user_id,),
            )
            row = await cur.fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    async def upsert(self, user: UserAccessState) -> None:
        tier = user.usage_tier.value if user.usage_tier else None
        async with self._pg_conn.cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO users ({_USER_COLUMNS}, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, now())
                ON CONFLICT (user_id) DO UPDATE SET
                    username = EXCLUDED.username,
                    language_code = EXCLUDED.language_code,
                    default_language_code = EXCLUDED.default_language_code,
                    api_key = EXCLUDED.api_key,
                    usage_type = EXCLUDED.usage_type,
                    updated_at = now()
                """,
                (
                    user.user_id,
                    user.username,
                    user.language_code,
                    user.default_language_code,
                    user.api_key,
                    tier,
                ),
            )

    @staticmethod
    def _row_to_user(row) -> UserAccessState:
        """Convert a DB row (dict or tuple) to a user record."""
        if isinstance(row, dict):
            values = [
                row["user_id"],
                row.get("username"),
                row.get("language_code"),
                row.get("default_language_code"),
                row.get("api_key"),
                row.get("usage_type"),
            ]
        else:
            values = list(row)
        user_id, username, language_code, default_language_code, api_key, tier = values
        return UserAccessState(
            user_id=user_id,
            username=username,
            language_code=language_code,
            default_language_code=default_language_code,
            api_key=api_key,
            usage_tier=UsageTier(tier) if tier else None,
        )


class PostgresUsageLedger:
    """Append-only log of tokens spent per completion."""

    def __init__(self, pg_conn):
        self._pg_conn = pg_conn

    async def setup(self):
        """Create the usage table."""
        async with self._pg_conn.cursor() as cur:
            await cur.execute("""
                CREATE TABLE IF NOT EXISTS usage (
                    id BIGSERIAL PRIMARY KEY,
                    user_id BIGINT NOT NULL,
                    prompt_tokens INT NOT NULL DEFAULT 0,
                    completion_tokens INT NOT NULL DEFAULT 0,
                    total_tokens INT NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            await cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_usage_user
                ON usage (user_id)
            """)

    async def record_usage(
        self,
        user_id: int,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
    ) -> None:
        async with self._pg_conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO usage (user_id, prompt_tokens, completion_tokens, total_tokens)
                VALUES (%s, %s, %s, %s)
                """,
                (user_id, prompt_tokens, completion_tokens, total_tokens),
            )

    async def lifetime_tokens_used(self, user_id: int) -> int:
        async with self._pg_conn.cursor() as cur:
            await cur.execute(
                "SELECT COALESCE(SUM(total_tokens), 0) AS used FROM usage WHERE user_id = %s",
                (user_id,),
            )
            row = await cur.fetchone()
        if not row:
            return 0
        return int(row["used"] if isinstance(row, dict) else row[0])
