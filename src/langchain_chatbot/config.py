"""
Chat pipeline configuration.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_RETRIES = 5
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_TRIAL_TOKENS = 30_000


@dataclass(frozen=True)
class ChatConfig:
    """Model, retry and access settings for the chat pipeline."""

    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE

    # Completion retry policy
    retries: int = DEFAULT_RETRIES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    # Audio transcription
    transcription_model: str = "whisper-1"
    transcription_retries: int = 3

    # Lifetime tokens a trial user may spend on the shared key
    max_trial_tokens: int = DEFAULT_MAX_TRIAL_TOKENS

    # Sent first in every request (empty = no prompt message)
    default_prompt: str = ""

    # Operator's shared credential
    openai_api_key: Optional[str] = None
    base_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """Load configuration from environment variables."""
        return cls(
            model=os.getenv("GPT_MODEL", DEFAULT_MODEL),
            temperature=float(
                os.getenv("MODEL_TEMPERATURE", str(DEFAULT_TEMPERATURE))
            ),
            retries=int(os.getenv("COMPLETION_RETRIES", str(DEFAULT_RETRIES))),
            timeout_seconds=float(
                os.getenv("COMPLETION_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
            ),
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1"),
            transcription_retries=int(os.getenv("TRANSCRIPTION_RETRIES", "3")),
            max_trial_tokens=int(
                os.getenv("MAX_TRIAL_TOKENS", str(DEFAULT_MAX_TRIAL_TOKENS))
            ),
            default_prompt=os.getenv("DEFAULT_PROMPT_MESSAGE", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
        )
