"""
Error taxonomy for the chat pipeline.

``AccessDenied`` and ``BudgetExceededByFixedContent`` are terminal.
``CompletionTimeout`` and ``ApiRejection`` are raised by the completion
caller once its retries are exhausted; any other provider exception is
re-raised unchanged.
"""

import asyncio
from enum import Enum
from typing import Optional

import openai


class ChatbotError(Exception):
    """Base class for errors raised by the chat pipeline."""


class AccessDenied(ChatbotError):
    """The user has no usable credential (no own key, not premium, trial used up)."""

    def __init__(self, user_id: int, used_tokens: int = 0, max_tokens: int = 0):
        self.user_id = user_id
        self.used_tokens = used_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"User {user_id} has no API key: trial ended "
            f"({used_tokens} of {max_tokens} tokens used)"
        )


class BudgetExceededByFixedContent(ChatbotError):
    """The default prompt and reference message leave no room for history."""

    def __init__(self, max_tokens: int, fixed_tokens: int):
        self.max_tokens = max_tokens
        self.fixed_tokens = fixed_tokens
        super().__init__(
            f"Token threshold exceeded by default prompt and reference message: "
            f"{fixed_tokens} fixed tokens, ceiling {max_tokens}"
        )


class CompletionTimeout(ChatbotError, TimeoutError):
    """The completion call did not finish within its deadline."""

    def __init__(self, timeout: float, attempts: int):
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Chat completion timed out after {timeout}s ({attempts} attempts)"
        )


class ApiRejection(ChatbotError):
    """The provider answered with a structured error."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        type: Optional[str] = None,
    ):
        self.message = message
        self.status = status
        self.code = code
        self.type = type
        super().__init__(f"[{status} {code} {type}] {message}")

    @classmethod
    def from_api_error(cls, error: openai.APIStatusError) -> "ApiRejection":
        return cls(
            message=error.message,
            status=error.status_code,
            code=error.code,
            type=error.type,
        )


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    API_REJECTION = "api_rejection"
    UNKNOWN = "unknown"


def classify_failure(error: BaseException) -> FailureKind:
    """Map an exception raised by a completion attempt to its failure kind."""
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, openai.APITimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(error, (openai.APIStatusError, ApiRejection)):
        return FailureKind.API_REJECTION
    return FailureKind.UNKNOWN
