"""
Token-bounded, memory-augmented chat completions for chat bots.
"""

from .access import AccessGate, UsageTier, UserAccessState, UserIdentity
from .agent import ChatReply, LangChainChatAgent
from .completion import create_chat_completion_with_retry, transcribe_with_retry
from .config import ChatConfig
from .errors import (
    AccessDenied,
    ApiRejection,
    BudgetExceededByFixedContent,
    ChatbotError,
    CompletionTimeout,
    FailureKind,
    classify_failure,
)
from .storage import PostgresUsageLedger, PostgresUserStore

__all__ = [
    "AccessDenied",
    "AccessGate",
    "ApiRejection",
    "BudgetExceededByFixedContent",
    "ChatConfig",
    "ChatReply",
    "ChatbotError",
    "CompletionTimeout",
    "FailureKind",
    "LangChainChatAgent",
    "PostgresUsageLedger",
    "PostgresUserStore",
    "UsageTier",
    "UserAccessState",
    "UserIdentity",
    "classify_failure",
    "create_chat_completion_with_retry",
    "transcribe_with_retry",
]
