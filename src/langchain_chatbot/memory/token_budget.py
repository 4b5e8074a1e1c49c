"""
Token budget for conversation history.

Counts message tokens with the configured tokenizer and reduces a history
to a token ceiling. Reduction walks newest-first, so the latest turns always
survive; only the single message at the boundary may be cut, and within it
only one text part is truncated. Image parts cost a fixed weight and are
never cut.
"""

import logging
from typing import Optional, Sequence

from .config import MemoryConfig
from .messages import ConversationMessage, ContentPart, ImagePart, TextPart
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


class HistoryBudgeter:
    """
    Fits conversation history into a token ceiling.

    Usage:
        budgeter = HistoryBudgeter(tokenizer)
        kept = budgeter.reduce(messages, max_tokens=4000)
    """

    def __init__(self, tokenizer: Tokenizer, image_tokens: int = 800):
        self.tokenizer = tokenizer
        self.image_tokens = image_tokens

    def count_text_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text))

    def count_part_tokens(self, part: ContentPart) -> int:
        match part:
            case TextPart(text=text):
                return self.count_text_tokens(text)
            case ImagePart():
                return self.image_tokens
        raise TypeError(f"Unsupported content part: {part!r}")

    def count_message_tokens(self, msg: ConversationMessage) -> int:
        if isinstance(msg.content, str):
            return self.count_text_tokens(msg.content)
        return sum(self.count_part_tokens(part) for part in msg.content)

    def count_total_tokens(self, messages: Sequence[ConversationMessage]) -> int:
        return sum(self.count_message_tokens(m) for m in messages)

    def reduce(
        self,
        messages: Sequence[ConversationMessage],
        max_tokens: int,
    ) -> list[ConversationMessage]:
        """
        Keep the newest messages whose total cost fits ``max_tokens``.

        Messages are visited from the end. Each one either fits whole, is
        dropped whole when none of its newest parts fit, or is the boundary:
        the boundary message keeps whatever of its newest parts still fit
        (the boundary text part truncated to the tokens left), and every
        older message is dropped. Returns a new list in original order; the
        input is not modified.
        """
        if max_tokens < 0:
            raise ValueError(f"max_tokens must be non-negative, got {max_tokens}")

        kept: list[ConversationMessage] = []  # newest first
        remaining = max_tokens

        for msg in reversed(messages):
            msg_tokens = self.count_message_tokens(msg)
            if msg_tokens <= remaining:
                kept.append(msg)
                remaining -= msg_tokens
                continue

            partial = self._truncate_message(msg, remaining)
            if partial is None:
                if remaining == 0:
                    break
                # Nothing of it fits (e.g. a lone image); older messages still may
                continue

            kept.append(partial)
            logger.debug(
                "Boundary message truncated to %d tokens (was %d)",
                remaining, msg_tokens,
            )
            break

        kept.reverse()
        return kept

    def _truncate_message(
        self, msg: ConversationMessage, available: int
    ) -> Optional[ConversationMessage]:
        """Cut the boundary message down to ``available`` tokens, or None if nothing is left."""
        if isinstance(msg.content, str):
            text = self._truncate_text(msg.content, available)
            return msg.replace_content(text) if text else None

        kept_parts: list[ContentPart] = []  # newest first
        for part in reversed(msg.content):
            part_tokens = self.count_part_tokens(part)
            if part_tokens <= available:
                kept_parts.append(part)
                available -= part_tokens
                continue

            match part:
                case TextPart(text=text):
                    truncated = self._truncate_text(text, available)
                    if truncated:
                        kept_parts.append(TextPart(truncated))
                case ImagePart():
                    pass  # images are kept whole or not at all
            break

        if not kept_parts:
            return None
        kept_parts.reverse()
        return msg.replace_content(tuple(kept_parts))

    def _truncate_text(self, text: str, available: int) -> str:
        """
        Decode the first ``available`` tokens of ``text``.

        Decoding a token prefix can split a multi-byte character, and the
        decoded text may then re-encode to more tokens than were taken, so
        the prefix shrinks until the re-encoded length fits.
        """
        if available <= 0:
            return ""
        tokens = list(self.tokenizer.encode(text))
        n = min(available, len(tokens))
        while n > 0:
            candidate = self.tokenizer.decode(tokens[:n])
            if self.count_text_tokens(candidate) <= available:
                return candidate
            n -= 1
        return ""


def calculate_request_ceiling(config: MemoryConfig, model_name: str) -> int:
    """
    Token ceiling for a whole outbound request.

    An explicit ``max_request_tokens`` wins. Otherwise:
    ceiling = context_window * (1 - safety_margin) - output_reserve
    """
    if config.max_request_tokens > 0:
        return config.max_request_tokens

    context_window = config.get_context_window(model_name)

    # Reserve space for safety margin and output (20% for output, capped at 16k)
    usable = int(context_window * (1 - config.safety_margin))
    output_reserve = min(int(context_window * 0.2), 16000)
    return max(usable - output_reserve, 0)
