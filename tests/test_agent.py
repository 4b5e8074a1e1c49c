"""
End-to-end tests for the chat agent with fake collaborators.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from langchain_core.messages import AIMessage, HumanMessage

from langchain_chatbot import agent as agent_module
from langchain_chatbot.access import AccessGate, UsageTier, UserAccessState, UserIdentity
from langchain_chatbot.agent import LangChainChatAgent
from langchain_chatbot.config import ChatConfig
from langchain_chatbot.errors import AccessDenied, BudgetExceededByFixedContent
from langchain_chatbot.memory import (
    ImagePart,
    Match,
    MemoryConfig,
    TextPart,
    assistant_message,
    user_message,
)

from fakes import FakeLedger, FakeUserStore

PROMPT = "You are a helpful assistant."
IDENTITY = UserIdentity(user_id=42, username="alice", language_code="en")


def _answer(text="Hi! How can I help?", total_tokens=30) -> AIMessage:
    return AIMessage(
        content=text,
        usage_metadata={
            "input_tokens": total_tokens - 10,
            "output_tokens": 10,
            "total_tokens": total_tokens,
        },
    )


class TestLangChainChatAgent:
    def _make_agent(
        self,
        tokenizer,
        used_tokens=0,
        max_request_tokens=10_000,
        default_prompt=PROMPT,
        vector_index=None,
        answer=None,
    ):
        self.store = FakeUserStore()
        self.ledger = FakeLedger(used=used_tokens)
        self.llm = MagicMock()
        self.llm.ainvoke = AsyncMock(return_value=answer or _answer())
        self.model_factory = MagicMock(return_value=self.llm)
        self.embeddings = MagicMock()
        self.embeddings.aembed_query = AsyncMock(return_value=[0.1, 0.2])
        self.embeddings_factory = MagicMock(return_value=self.embeddings)

        gate = AccessGate(
            self.store, self.ledger, shared_api_key="sk-shared", max_trial_tokens=1000
        )
        return LangChainChatAgent(
            gate,
            config=ChatConfig(default_prompt=default_prompt, retries=3, timeout_seconds=5),
            memory_config=MemoryConfig(max_request_tokens=max_request_tokens),
            tokenizer=tokenizer,
            vector_index=vector_index,
            model_factory=self.model_factory,
            embeddings_factory=self.embeddings_factory,
        )

    @pytest.mark.asyncio
    async def test_hello_without_memory(self, tokenizer):
        agent = self._make_agent(tokenizer)
        reply = await agent.reply(IDENTITY, [user_message("hello")])

        assert reply.final_messages == [assistant_message(PROMPT), user_message("hello")]
        assert reply.text == "Hi! How can I help?"
        self.model_factory.assert_called_once_with("sk-shared")
        self.embeddings_factory.assert_not_called()
        sent = self.llm.ainvoke.call_args.args[0]
        assert sent == [AIMessage(content=PROMPT), HumanMessage(content="hello")]

    @pytest.mark.asyncio
    async def test_usage_recorded(self, tokenizer):
        agent = self._make_agent(tokenizer)
        reply = await agent.reply(IDENTITY, [user_message("hello")])
        assert self.ledger.recorded == [(42, 20, 10, 30)]
        assert reply.usage["total_tokens"] == 30

    @pytest.mark.asyncio
    async def test_missing_usage_not_recorded(self, tokenizer):
        agent = self._make_agent(tokenizer, answer=AIMessage(content="ok"))
        await agent.reply(IDENTITY, [user_message("hello")])
        assert self.ledger.recorded == []

    @pytest.mark.asyncio
    async def test_reference_message_injected_after_prompt(self, tokenizer):
        index = MagicMock()
        index.query = AsyncMock(return_value=[Match(0.9, "Paris is the capital of France.")])
        agent = self._make_agent(tokenizer, vector_index=index)

        reply = await agent.reply(IDENTITY, [user_message("capital of France?")])

        reference = assistant_message(
            "Related to this conversation document parts:\n"
            "Paris is the capital of France."
        )
        assert reply.final_messages == [
            assistant_message(PROMPT),
            reference,
            user_message("capital of France?"),
        ]
        self.embeddings_factory.assert_called_once_with("sk-shared")
        self.embeddings.aembed_query.assert_awaited_once_with("capital of France?")

    @pytest.mark.asyncio
    async def test_history_reduced_to_remaining_budget(self, tokenizer):
        agent = self._make_agent(tokenizer, max_request_tokens=len(PROMPT) + 10)
        messages = [
            user_message("old question"),
            assistant_message("old answer"),
            user_message("new one"),
        ]
        final = await agent.build_request(messages)
        # 10 tokens left: "new one" (7) + the first 3 of the boundary message
        assert final == [
            assistant_message(PROMPT),
            assistant_message("old"),
            user_message("new one"),
        ]

    @pytest.mark.asyncio
    async def test_images_sent_as_image_url_blocks(self, tokenizer):
        agent = self._make_agent(tokenizer)
        msg = user_message((TextPart("what is this?"), ImagePart("https://x/cat.png")))
        await agent.reply(IDENTITY, [msg])
        sent = self.llm.ainvoke.call_args.args[0]
        assert sent[-1].content[1] == {
            "type": "image_url", "image_url": {"url": "https://x/cat.png"},
        }

    @pytest.mark.asyncio
    async def test_no_default_prompt(self, tokenizer):
        agent = self._make_agent(tokenizer, default_prompt="")
        reply = await agent.reply(IDENTITY, [user_message("hello")])
        assert reply.final_messages == [user_message("hello")]

    @pytest.mark.asyncio
    async def test_access_denied_stops_pipeline(self, tokenizer):
        agent = self._make_agent(tokenizer, used_tokens=1000)
        with pytest.raises(AccessDenied):
            await agent.reply(IDENTITY, [user_message("hello")])
        self.model_factory.assert_not_called()
        assert self.store.users[42].usage_tier == UsageTier.TRIAL_ENDED

    @pytest.mark.asyncio
    async def test_custom_key_used_for_model(self, tokenizer):
        agent = self._make_agent(tokenizer, used_tokens=5000)
        self.store.users[42] = UserAccessState(user_id=42, api_key="sk-own")
        await agent.reply(IDENTITY, [user_message("hello")])
        self.model_factory.assert_called_once_with("sk-own")

    @pytest.mark.asyncio
    async def test_fixed_content_over_budget(self, tokenizer):
        agent = self._make_agent(tokenizer, max_request_tokens=len(PROMPT))
        with pytest.raises(BudgetExceededByFixedContent):
            await agent.reply(IDENTITY, [user_message("hello")])
        self.llm.ainvoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transcribe_uses_user_key(self, tokenizer, monkeypatch):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(
            return_value=MagicMock(text="hello there")
        )
        client_cls = MagicMock(return_value=client)
        monkeypatch.setattr(agent_module.openai, "AsyncOpenAI", client_cls)

        agent = self._make_agent(tokenizer)
        text = await agent.transcribe(IDENTITY, b"ogg bytes")

        assert text == "hello there"
        client_cls.assert_called_once_with(api_key="sk-shared")


class TestChatConfig:
    def test_defaults(self):
        config = ChatConfig()
        assert config.model == "gpt-4o"
        assert config.temperature == 0.7
        assert config.retries == 5
        assert config.transcription_retries == 3
        assert config.max_trial_tokens == 30_000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GPT_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("MODEL_TEMPERATURE", "0.2")
        monkeypatch.setenv("COMPLETION_RETRIES", "2")
        monkeypatch.setenv("MAX_TRIAL_TOKENS", "500")
        monkeypatch.setenv("DEFAULT_PROMPT_MESSAGE", PROMPT)
        monkeypatch.setenv("OPENAI_API_KEY", "")
        config = ChatConfig.from_env()
        assert config.model == "gpt-4o-mini"
        assert config.temperature == 0.2
        assert config.retries == 2
        assert config.max_trial_tokens == 500
        assert config.default_prompt == PROMPT
        assert config.openai_api_key is None
