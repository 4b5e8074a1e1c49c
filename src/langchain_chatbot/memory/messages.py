"""
Conversation message model.

A message's content is either plain text or an ordered tuple of parts,
where each part is a ``TextPart`` or an ``ImagePart``. Transport layers hand
messages over as OpenAI-style dicts; ``from_openai_dict`` turns them into
this model and ``to_langchain_message`` turns them back into what the chat
model consumes.
"""

from dataclasses import dataclass, replace
from typing import Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    ref: str  # URL or provider file id


ContentPart = Union[TextPart, ImagePart]
Content = Union[str, tuple[ContentPart, ...]]


@dataclass(frozen=True)
class ConversationMessage:
    """One dialogue turn."""

    role: str
    content: Content

    def replace_content(self, content: Content) -> "ConversationMessage":
        return replace(self, content=content)

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        """Content as parts; plain text becomes a single ``TextPart``."""
        if isinstance(self.content, str):
            return (TextPart(self.content),)
        return self.content


def user_message(content: Content) -> ConversationMessage:
    return ConversationMessage(role=USER, content=content)


def assistant_message(content: Content) -> ConversationMessage:
    return ConversationMessage(role=ASSISTANT, content=content)


def message_text(msg: ConversationMessage) -> str:
    """Join the text parts of a message with newlines, skipping images."""
    if isinstance(msg.content, str):
        return msg.content
    return "\n".join(
        part.text for part in msg.content if isinstance(part, TextPart)
    )


def from_openai_dict(data: dict) -> ConversationMessage:
    """
    Build a message from an OpenAI chat-format dict.

    Accepts ``{"role": ..., "content": "text"}`` or a content list of
    ``{"type": "text", "text": ...}`` / ``{"type": "image_url", "image_url": ...}``
    blocks. ``image_url`` may be a string or ``{"url": ...}``.
    """
    role = data.get("role", USER)
    content = data.get("content", "")
    if isinstance(content, str):
        return ConversationMessage(role=role, content=content)

    parts: list[ContentPart] = []
    for block in content:
        btype = block.get("type", "")
        if btype == "text":
            parts.append(TextPart(block.get("text", "")))
        elif btype == "image_url":
            image = block.get("image_url", "")
            ref = image.get("url", "") if isinstance(image, dict) else image
            parts.append(ImagePart(ref))
        else:
            raise ValueError(f"Unsupported content block type: {btype!r}")
    return ConversationMessage(role=role, content=tuple(parts))


def to_openai_content(content: Content):
    """Render content in the OpenAI chat format."""
    if isinstance(content, str):
        return content
    blocks = []
    for part in content:
        match part:
            case TextPart(text=text):
                blocks.append({"type": "text", "text": text})
            case ImagePart(ref=ref):
                blocks.append({"type": "image_url", "image_url": {"url": ref}})
    return blocks


def to_langchain_message(msg: ConversationMessage) -> BaseMessage:
    """Convert to the LangChain message the chat model expects."""
    content = to_openai_content(msg.content)
    if msg.role == USER:
        return HumanMessage(content=content)
    if msg.role == ASSISTANT:
        return AIMessage(content=content)
    raise ValueError(f"Unsupported message role: {msg.role!r}")
