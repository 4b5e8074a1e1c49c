"""
Chat completion and transcription calls with retries.

Each completion attempt is raced against a timeout. Timeouts, API
rejections and other errors are all retried immediately, one attempt at a
time; when the last attempt fails its error is raised to the caller
(timeouts as ``CompletionTimeout``, rejections as ``ApiRejection``, anything
else unchanged).
"""

import asyncio
import logging
from typing import Sequence

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from .config import DEFAULT_TIMEOUT_SECONDS
from .errors import ApiRejection, CompletionTimeout

logger = logging.getLogger(__name__)


async def create_chat_completion_with_retry(
    messages: Sequence[BaseMessage],
    llm: BaseChatModel,
    retries: int = 5,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> AIMessage:
    """
    Invoke the chat model, retrying up to ``retries`` attempts in total.

    Args:
        messages: Final request messages.
        llm: Chat model already bound to model name, key and temperature.
        retries: Total number of attempts (at least 1).
        timeout: Seconds allowed for each attempt.

    Raises:
        CompletionTimeout: the last attempt timed out.
        ApiRejection: the last attempt was rejected by the provider. The
            provider exception (e.g. ``openai.RateLimitError``) is its
            ``__cause__``; catch ``ApiRejection``, not the openai class.
        Exception: any other error from the last attempt, unchanged.
    """
    if retries < 1:
        raise ValueError(f"retries must be at least 1, got {retries}")

    for attempt in range(1, retries + 1):
        retries_left = retries - attempt
        try:
            return await asyncio.wait_for(llm.ainvoke(list(messages)), timeout)
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            logger.warning(
                "Chat completion timed out after %ss. Retries left: %d",
                timeout, retries_left,
            )
            if not retries_left:
                raise CompletionTimeout(timeout, attempt) from e
        except openai.APIStatusError as e:
            logger.warning(
                "Chat completion failed. Retries left: %d. "
                "status=%s code=%s type=%s message=%s",
                retries_left, e.status_code, e.code, e.type, e.message,
            )
            if not retries_left:
                raise ApiRejection.from_api_error(e) from e
        except Exception as e:
            logger.warning(
                "Chat completion failed with %s: %s. Retries left: %d",
                type(e).__name__, e, retries_left,
            )
            if not retries_left:
                raise

    raise AssertionError("unreachable")


async def transcribe_with_retry(
    file,
    client: openai.AsyncOpenAI,
    model: str = "whisper-1",
    retries: int = 3,
) -> str:
    """
    Transcribe an audio file, retrying on any failure up to ``retries`` attempts.

    ``file`` is anything the OpenAI client accepts as an upload. Seekable
    file objects are rewound before every attempt.
    """
    if retries < 1:
        raise ValueError(f"retries must be at least 1, got {retries}")

    for attempt in range(1, retries + 1):
        if hasattr(file, "seek"):
            file.seek(0)
        try:
            transcription = await client.audio.transcriptions.create(
                model=model, file=file
            )
            return transcription.text
        except Exception as e:
            retries_left = retries - attempt
            if not retries_left:
                raise
            logger.warning(
                "Transcription failed with %s: %s. Retries left: %d",
                type(e).__name__, e, retries_left,
            )

    raise AssertionError("unreachable")
