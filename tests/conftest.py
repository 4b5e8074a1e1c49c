"""
Shared pytest setup.

Puts ``src`` on the module search path so the tests import the package
without installing it, and provides a character-level tokenizer: one token
per character, so token counts in tests equal string lengths.
"""

import sys
from pathlib import Path

import pytest

# Add the src directory to the import path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from langchain_chatbot.memory.token_budget import HistoryBudgeter  # noqa: E402


class CharTokenizer:
    """One token per character."""

    def encode(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens) -> str:
        return "".join(chr(t) for t in tokens)


@pytest.fixture
def tokenizer():
    return CharTokenizer()


@pytest.fixture
def budgeter(tokenizer):
    return HistoryBudgeter(tokenizer, image_tokens=800)
