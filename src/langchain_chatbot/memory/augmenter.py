"""
Long-term memory augmentation.

Embeds the recent user turns, looks up related document chunks in the
vector index and wraps them in one assistant-authored reference message.
The reference message and the default prompt are fixed content: their
tokens come off the request ceiling before the history is reduced.
"""

import logging
from typing import Optional, Sequence

from langchain_core.embeddings import Embeddings

from ..errors import BudgetExceededByFixedContent
from .config import MemoryConfig
from .messages import USER, ConversationMessage, assistant_message, message_text
from .retriever import VectorIndex
from .token_budget import HistoryBudgeter

logger = logging.getLogger(__name__)


def reconcile_budget(
    budgeter: HistoryBudgeter,
    max_request_tokens: int,
    fixed_messages: Sequence[Optional[ConversationMessage]],
) -> int:
    """
    Tokens left for history once the fixed messages are paid for.

    ``None`` entries are skipped. Raises ``BudgetExceededByFixedContent``
    when nothing is left.
    """
    fixed_tokens = sum(
        budgeter.count_message_tokens(m) for m in fixed_messages if m is not None
    )
    remaining = max_request_tokens - fixed_tokens
    if remaining <= 0:
        raise BudgetExceededByFixedContent(max_request_tokens, fixed_tokens)
    return remaining


class MemoryAugmenter:
    """
    Builds the reference message and the history budget for one request.

    Usage:
        augmenter = MemoryAugmenter(budgeter, config, max_request_tokens, index=index)
        reference, budget = await augmenter.augment(messages, embeddings)
    """

    def __init__(
        self,
        budgeter: HistoryBudgeter,
        config: MemoryConfig,
        max_request_tokens: int,
        index: Optional[VectorIndex] = None,
        default_prompt: Optional[ConversationMessage] = None,
    ):
        self.budgeter = budgeter
        self.config = config
        self.max_request_tokens = max_request_tokens
        self.index = index
        self.default_prompt = default_prompt

    async def augment(
        self,
        messages: Sequence[ConversationMessage],
        embeddings: Optional[Embeddings] = None,
    ) -> tuple[Optional[ConversationMessage], int]:
        """
        Return ``(reference_message, history_budget)``.

        Without a vector index there is no reference message and only the
        default prompt is charged against the ceiling.
        """
        reference = None
        if self.index is not None:
            if embeddings is None:
                raise ValueError("embeddings are required when a vector index is configured")
            reference = await self.build_reference_message(messages, embeddings)

        budget = reconcile_budget(
            self.budgeter,
            self.max_request_tokens,
            [self.default_prompt, reference],
        )
        return reference, budget

    def embedding_input(self, messages: Sequence[ConversationMessage]) -> str:
        """Newest user turns that fit the embedding model's input, one per line."""
        user_msgs = [m for m in messages if m.role == USER]
        # One token per message is kept back for the joining newlines
        max_tokens = max(self.config.embedding_input_tokens - len(user_msgs), 0)
        kept = self.budgeter.reduce(user_msgs, max_tokens)
        return "\n".join(message_text(m) for m in kept)

    async def build_reference_message(
        self,
        messages: Sequence[ConversationMessage],
        embeddings: Embeddings,
    ) -> Optional[ConversationMessage]:
        query_text = self.embedding_input(messages)
        if not query_text.strip():
            logger.debug("No user text to embed, skipping memory lookup")
            return None

        vector = await embeddings.aembed_query(query_text)
        matches = await self.index.query(vector, self.config.recall_top_k)
        if not matches:
            logger.info("Memory lookup returned no matches")
            return None

        reference_text = (
            self.config.reference_label + "\n"
            + "\n".join(match.text for match in matches)
        )
        logger.info(
            "Reference message added with %d matches and %d characters",
            len(matches), len(reference_text),
        )
        return assistant_message(reference_text)
