"""
Tokenizer adapter.

The budgeter only needs ``encode`` and ``decode``; any object providing both
satisfies ``Tokenizer``. ``TiktokenTokenizer`` is the production adapter.
"""

import logging
from typing import Protocol, Sequence

import tiktoken

logger = logging.getLogger(__name__)

FALLBACK_ENCODING = "cl100k_base"


class Tokenizer(Protocol):
    def encode(self, text: str) -> Sequence[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenTokenizer:
    """Tokenizer backed by the tiktoken encoding of a model."""

    def __init__(self, model: str = "gpt-4o"):
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.info(
                "No tiktoken encoding registered for model '%s', using %s",
                model, FALLBACK_ENCODING,
            )
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    def encode(self, text: str) -> list[int]:
        # Special-token text inside user content is encoded as ordinary text
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self._encoding.decode(list(tokens))
