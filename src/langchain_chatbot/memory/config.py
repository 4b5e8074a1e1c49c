"""
Memory configuration and model context window mappings.
"""

import os
from dataclasses import dataclass

# Model → context window size (tokens)
MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4-vision-preview": 128_000,
    "gpt-4-32k": 32_768,
    "gpt-4": 8_192,
    "gpt-3.5-turbo-16k": 16_385,
    "gpt-3.5-turbo": 16_385,
}

DEFAULT_CONTEXT_WINDOW = 128_000

DEFAULT_REFERENCE_LABEL = "Related to this conversation document parts:"


@dataclass
class MemoryConfig:
    """Token ceilings and long-term memory settings."""

    # Ceiling for the whole outbound request (0 = derive from model name)
    max_request_tokens: int = 0

    # Fixed weight of one image part, whatever its real size
    image_tokens: int = 800

    # Ceiling for the text sent to the embedding model
    embedding_input_tokens: int = 8192

    # Long-term memory recall
    embedding_model: str = "text-embedding-ada-002"
    recall_top_k: int = 50
    reference_label: str = DEFAULT_REFERENCE_LABEL

    # Safety margin (reserve this fraction of the context window)
    safety_margin: float = 0.10

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            max_request_tokens=int(os.getenv("MEMORY_MAX_REQUEST_TOKENS", "0")),
            image_tokens=int(os.getenv("MEMORY_IMAGE_TOKENS", "800")),
            embedding_input_tokens=int(
                os.getenv("MEMORY_EMBEDDING_INPUT_TOKENS", "8192")
            ),
            embedding_model=os.getenv(
                "MEMORY_EMBEDDING_MODEL", "text-embedding-ada-002"
            ),
            recall_top_k=int(os.getenv("MEMORY_RECALL_TOP_K", "50")),
            reference_label=os.getenv(
                "MEMORY_REFERENCE_LABEL", DEFAULT_REFERENCE_LABEL
            ),
            safety_margin=float(os.getenv("MEMORY_SAFETY_MARGIN", "0.10")),
        )

    def get_context_window(self, model_name: str) -> int:
        """Resolve context window size from the model name."""
        # Try exact match first, then longest prefix match
        if model_name in MODEL_CONTEXT_WINDOWS:
            return MODEL_CONTEXT_WINDOWS[model_name]
        for key in sorted(MODEL_CONTEXT_WINDOWS, key=len, reverse=True):
            if model_name.startswith(key):
                return MODEL_CONTEXT_WINDOWS[key]
        return DEFAULT_CONTEXT_WINDOW
