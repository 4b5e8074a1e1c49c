"""
Chat agent: one reply per inbound conversation.

Pipeline for every request:
- Access gate resolves the API key (own key / premium / trial) or denies
- Memory augmenter looks up related document chunks and works out how many
  tokens are left for history after the default prompt and reference message
- History budgeter reduces the conversation to that budget, newest first
- Request = [default prompt, reference message, ...reduced history]
- The chat model is called with a per-attempt timeout and retries

The agent keeps no conversation state between requests; the history comes
in with every call.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import openai
from dotenv import load_dotenv
from langchain.chat_models import init_chat_model
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_openai import OpenAIEmbeddings

from .access import AccessGate, UserAccessState, UserIdentity
from .completion import create_chat_completion_with_retry, transcribe_with_retry
from .config import ChatConfig
from .memory import (
    ConversationMessage,
    HistoryBudgeter,
    MemoryAugmenter,
    MemoryConfig,
    TiktokenTokenizer,
    Tokenizer,
    VectorIndex,
    assistant_message,
    calculate_request_ceiling,
    to_langchain_message,
)

logger = logging.getLogger(__name__)


# Load .env (override=True so the file wins over the process environment)
load_dotenv(override=True)


@dataclass
class ChatReply:
    """The model's answer and how the request was built."""

    text: str
    message: AIMessage
    user: UserAccessState
    final_messages: list[ConversationMessage]
    usage: dict = field(default_factory=dict)


def _answer_text(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LangChainChatAgent:
    """
    Token-bounded chat agent with long-term memory.

    Usage:
        agent = LangChainChatAgent(access_gate, vector_index=index)
        reply = await agent.reply(identity, messages)
        print(reply.text)
    """

    def __init__(
        self,
        access_gate: AccessGate,
        config: Optional[ChatConfig] = None,
        memory_config: Optional[MemoryConfig] = None,
        tokenizer: Optional[Tokenizer] = None,
        vector_index: Optional[VectorIndex] = None,
        model_factory: Optional[Callable[[str], BaseChatModel]] = None,
        embeddings_factory: Optional[Callable[[str], Embeddings]] = None,
    ):
        """
        Args:
            access_gate: Resolves the API key for each user.
            config: Model and retry settings, default from environment.
            memory_config: Token ceilings and recall settings, default from environment.
            tokenizer: Token counter, default tiktoken for the configured model.
            vector_index: Long-term memory; None disables the reference message.
            model_factory: Builds a chat model for an API key.
            embeddings_factory: Builds an embedding model for an API key.
        """
        self.access_gate = access_gate
        self.config = config or ChatConfig.from_env()
        self.memory_config = memory_config or MemoryConfig.from_env()
        self.tokenizer = tokenizer or TiktokenTokenizer(self.config.model)
        self.vector_index = vector_index

        self.default_prompt = (
            assistant_message(self.config.default_prompt)
            if self.config.default_prompt
            else None
        )
        if self.default_prompt is None:
            logger.info("Default prompt message not configured")

        self.max_request_tokens = calculate_request_ceiling(
            self.memory_config, self.config.model
        )
        self.budgeter = HistoryBudgeter(
            self.tokenizer, image_tokens=self.memory_config.image_tokens
        )
        self.augmenter = MemoryAugmenter(
            self.budgeter,
            self.memory_config,
            self.max_request_tokens,
            index=vector_index,
            default_prompt=self.default_prompt,
        )

        self._model_factory = model_factory or self._create_model
        self._embeddings_factory = embeddings_factory or self._create_embeddings

    def _create_model(self, api_key: str) -> BaseChatModel:
        """Chat model bound to the user's key."""
        init_kwargs = {
            "temperature": self.config.temperature,
            "api_key": api_key,
        }
        if self.config.base_url:
            init_kwargs["base_url"] = self.config.base_url
        return init_chat_model(
            self.config.model,
            model_provider="openai",
            **init_kwargs,
        )

    def _create_embeddings(self, api_key: str) -> Embeddings:
        """Embedding model bound to the user's key."""
        embed_kwargs = {"api_key": api_key}
        if self.config.base_url:
            embed_kwargs["base_url"] = self.config.base_url
        return OpenAIEmbeddings(
            model=self.memory_config.embedding_model,
            **embed_kwargs,
        )

    async def build_request(
        self,
        messages: Sequence[ConversationMessage],
        embeddings: Optional[Embeddings] = None,
    ) -> list[ConversationMessage]:
        """
        Assemble the outbound messages without calling the model.

        Returns ``[default prompt, reference message, ...reduced history]``,
        leaving out whichever of the first two is absent.
        """
        reference, history_budget = await self.augmenter.augment(messages, embeddings)
        history = self.budgeter.reduce(messages, history_budget)

        prompt_tokens = (
            self.budgeter.count_message_tokens(self.default_prompt)
            if self.default_prompt else 0
        )
        reference_tokens = (
            self.budgeter.count_message_tokens(reference) if reference else 0
        )
        history_tokens = self.budgeter.count_total_tokens(history)
        logger.info(
            "Request tokens: default prompt %d, reference %d, history %d "
            "(%d of %d messages), total %d of %d",
            prompt_tokens, reference_tokens, history_tokens,
            len(history), len(messages),
            prompt_tokens + reference_tokens + history_tokens,
            self.max_request_tokens,
        )

        final_messages = [m for m in (self.default_prompt, reference) if m is not None]
        final_messages.extend(history)
        return final_messages

    async def reply(
        self,
        identity: UserIdentity,
        messages: Sequence[ConversationMessage],
    ) -> ChatReply:
        """
        Answer the conversation for this user.

        Raises ``AccessDenied`` when the user has no key, and
        ``BudgetExceededByFixedContent`` when the fixed content alone fills
        the ceiling. Completion failures surface after the last retry.
        """
        user = await self.access_gate.authorize(identity)

        embeddings = None
        if self.vector_index is not None:
            embeddings = self._embeddings_factory(user.credential)

        final_messages = await self.build_request(messages, embeddings)

        llm = self._model_factory(user.credential)
        answer = await create_chat_completion_with_retry(
            [to_langchain_message(m) for m in final_messages],
            llm,
            retries=self.config.retries,
            timeout=self.config.timeout_seconds,
        )

        usage = dict(answer.usage_metadata or {})
        await self._record_usage(user, usage)

        return ChatReply(
            text=_answer_text(answer),
            message=answer,
            user=user,
            final_messages=final_messages,
            usage=usage,
        )

    async def _record_usage(self, user: UserAccessState, usage: dict):
        """Add the completion's tokens to the user's lifetime usage."""
        total_tokens = usage.get("total_tokens", 0)
        if not total_tokens:
            return
        await self.access_gate.ledger.record_usage(
            user.user_id,
            usage.get("input_tokens", 0),
            usage.get("output_tokens", 0),
            total_tokens,
        )
        logger.info("Recorded %d tokens for user %s", total_tokens, user.user_id)

    async def transcribe(self, identity: UserIdentity, file) -> str:
        """Transcribe an audio message with the user's key."""
        user = await self.access_gate.authorize(identity)
        client_kwargs = {"api_key": user.credential}
        if self.config.base_url:
            client_kwargs["base_url"] = self.config.base_url
        client = openai.AsyncOpenAI(**client_kwargs)
        return await transcribe_with_retry(
            file,
            client,
            model=self.config.transcription_model,
            retries=self.config.transcription_retries,
        )
