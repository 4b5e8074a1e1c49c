"""
Token-bounded conversation memory with long-term recall.

Fits an unbounded conversation into the model's token ceiling:

- History budget: newest-first reduction of the conversation, cutting only
  the single boundary message
- Reference memory: related document chunks found in a pgvector index,
  injected as one assistant message ahead of the history
- Fixed content (default prompt + reference message) is charged against the
  ceiling before the history is reduced
"""

from .augmenter import MemoryAugmenter, reconcile_budget
from .config import MemoryConfig
from .messages import (
    ASSISTANT,
    USER,
    ConversationMessage,
    ContentPart,
    ImagePart,
    TextPart,
    assistant_message,
    from_openai_dict,
    message_text,
    to_langchain_message,
    user_message,
)
from .retriever import Match, PgVectorIndex, VectorIndex
from .token_budget import HistoryBudgeter, calculate_request_ceiling
from .tokenizer import TiktokenTokenizer, Tokenizer

__all__ = [
    "ASSISTANT",
    "USER",
    "ConversationMessage",
    "ContentPart",
    "HistoryBudgeter",
    "ImagePart",
    "Match",
    "MemoryAugmenter",
    "MemoryConfig",
    "PgVectorIndex",
    "TextPart",
    "TiktokenTokenizer",
    "Tokenizer",
    "VectorIndex",
    "assistant_message",
    "calculate_request_ceiling",
    "from_openai_dict",
    "message_text",
    "reconcile_budget",
    "to_langchain_message",
    "user_message",
]
