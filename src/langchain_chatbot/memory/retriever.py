"""
Vector index for long-term memory using pgvector.

Stores document fragments as embeddings in PostgreSQL and returns the
fragments nearest to a query vector.

Architecture:
  - Documents → split into overlapping chunks → embedded → stored in memory_vectors
  - Memory augmenter → query embedding → cosine similarity search → matched chunks

Chunking strategy:
  - Texts up to MAX_CHUNK_CHARS are stored as one chunk
  - Longer texts are split into MAX_CHUNK_CHARS windows overlapping by CHUNK_OVERLAP
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

# A document larger than this gets split into several chunks
MAX_CHUNK_CHARS = 1200
CHUNK_OVERLAP = 150

DEFAULT_EMBEDDING_DIMENSIONS = 1536  # text-embedding-ada-002


@dataclass(frozen=True)
class Match:
    """One search hit: the stored text and its similarity score."""

    score: float
    text: str
    source: str = ""


class VectorIndex(Protocol):
    async def query(self, vector: Sequence[float], top_k: int) -> list[Match]: ...


def _split_long_text(
    text: str,
    max_chars: int = MAX_CHUNK_CHARS,
    overlap: int = CHUNK_OVERLAP,
) -> list[str]:
    """Split a long text block into overlapping segments."""
    if len(text) <= max_chars:
        return [text] if text.strip() else []
    chunks = []
    start = 0
    while start < len(text):
        end = start + max_chars
        chunk = text[start:end]
        if chunk.strip():
            chunks.append(chunk)
        if end >= len(text):
            break
        start = end - overlap
    return chunks


class PgVectorIndex:
    """
    Stores and searches document chunks in a pgvector table.

    Expects a psycopg ``AsyncConnection`` opened with ``autocommit=True``.
    Call ``setup()`` once before use.
    """

    def __init__(
        self,
        pg_conn,
        embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
    ):
        self._pg_conn = pg_conn
        self._embedding_dimensions = embedding_dimensions

    async def setup(self):
        """Create memory_vectors table with pgvector extension."""
        async with self._pg_conn.cursor() as cur:
            await cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
            await cur.execute(f"""
                CREATE TABLE IF NOT EXISTS memory_vectors (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    chunk TEXT NOT NULL,
                    embedding vector({int(self._embedding_dimensions)}) NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            await cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_memory_vectors_source
                ON memory_vectors (source)
            """)

    @staticmethod
    def _make_id(source: str, chunk: str) -> str:
        """Deterministic ID for deduplication."""
        h = hashlib.sha256(f"{source}:{chunk}".encode()).hexdigest()[:16]
        return f"mem-{h}"

    async def store_document(
        self,
        source: str,
        text: str,
        embeddings: Embeddings,
    ) -> int:
        """
        Split a document into chunks, embed them and store them.

        Chunks already stored for the same source are skipped. Returns the
        number of chunks written.
        """
        chunks = _split_long_text(text)
        if not chunks:
            return 0

        vectors = await embeddings.aembed_documents(chunks)

        stored = 0
        async with self._pg_conn.cursor() as cur:
            for chunk, vector in zip(chunks, vectors):
                await cur.execute(
                    """
                    INSERT INTO memory_vectors (id, source, chunk, embedding)
                    VALUES (%s, %s, %s, %s::vector)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (self._make_id(source, chunk), source, chunk, list(vector)),
                )
                stored += max(cur.rowcount, 0)

        logger.info(
            "Stored %d of %d chunks for source %s", stored, len(chunks), source
        )
        return stored

    async def query(self, vector: Sequence[float], top_k: int) -> list[Match]:
        """Return the ``top_k`` chunks nearest to ``vector`` by cosine similarity."""
        embedding = list(vector)
        async with self._pg_conn.cursor() as cur:
            await cur.execute(
                """
                SELECT chunk, source,
                       1 - (embedding <=> %s::vector) AS score
                FROM memory_vectors
                ORDER BY embedding <=> %s::vector
                LIMIT %s
                """,
                (embedding, embedding, top_k),
            )
            return self._rows_to_matches(await cur.fetchall())

    @staticmethod
    def _rows_to_matches(rows) -> list[Match]:
        """Convert DB rows (dict or tuple) to matches."""
        matches = []
        for row in rows:
            if isinstance(row, dict):
                matches.append(Match(
                    text=row["chunk"],
                    source=row.get("source", ""),
                    score=float(row.get("score", 0)),
                ))
            else:
                matches.append(Match(
                    text=row[0],
                    source=row[1] if len(row) > 1 else "",
                    score=float(row[2]) if len(row) > 2 else 0.0,
                ))
        return matches

    async def delete_source(self, source: str) -> int:
        """Delete all chunks stored for a source. Returns rows deleted."""
        async with self._pg_conn.cursor() as cur:
            await cur.execute("DELETE FROM memory_vectors WHERE source = %s", (source,))
            deleted = cur.rowcount
        logger.info("Deleted %d chunks for source %s", deleted, source)
        return deleted
