"""
Request and response types for chat-template boundary calls.

These are the typed values callers build and receive:

- ChatMessage: One role/content turn
- RenderRequest / RenderResponse: Render a conversation through a chat template
- FetchTemplateRequest / FetchTemplateResponse: Resolve a model's chat template

Opaque structured values (tool definitions, documents, template kwargs) are
plain JSON values: ``None``, ``bool``, ``int``, ``float``, ``str``, lists and
string-keyed dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

__all__ = [
    "JSONValue",
    "ChatMessage",
    "RenderRequest",
    "RenderResponse",
    "FetchTemplateRequest",
    "FetchTemplateResponse",
]

JSONValue = Union[None, bool, int, float, str, list[Any], dict[str, Any]]


@dataclass(frozen=True)
class ChatMessage:
    """A single message in a conversation."""

    role: str
    content: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        """Build from a ``{"role": ..., "content": ...}`` dict."""
        return cls(role=data["role"], content=data["content"])

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class RenderRequest:
    """
    Request to render a conversation through a chat template.

    Message order is significant and is preserved end-to-end.

    Attributes
    ----------
        messages: Conversation turns, in order.
        tools: Tool definitions made available to the template.
        documents: Documents made available to the template (RAG).
        chat_template: Template text overriding the model default.
        return_assistant_tokens_mask: Ask for generation index ranges of
            assistant turns in the response.
        continue_final_message: Leave the final message open for continuation.
        add_generation_prompt: Append the assistant turn header.
        chat_template_kwargs: Extra variables passed to the template.

    Example:
        >>> request = RenderRequest(
        ...     messages=[ChatMessage("user", "hi")],
        ...     add_generation_prompt=True,
        ... )
    """

    messages: list[ChatMessage] = field(default_factory=list)
    tools: list[JSONValue] | None = None
    documents: list[JSONValue] | None = None
    chat_template: str | None = None
    return_assistant_tokens_mask: bool = False
    continue_final_message: bool = False
    add_generation_prompt: bool = False
    chat_template_kwargs: dict[str, JSONValue] | None = None

    def deep_copy(self) -> RenderRequest:
        """
        Return a copy that shares no mutable storage with this request.

        The copy is produced by a full encode/decode round trip, so it is also
        a check that the request is serializable.

        Raises
        ------
            EncodingError: If the request cannot be serialized.
            DecodingError: If the serialized form does not parse back.
        """
        from ._codec import decode_render_request, encode_render_request

        return decode_render_request(encode_render_request(self))


@dataclass
class RenderResponse:
    """
    Result of rendering.

    ``rendered_chats`` holds one string per rendered conversation.
    ``generation_indices`` holds, per rendered chat, the ``[start, end]``
    ranges produced by assistant turns. It is only populated when
    ``return_assistant_tokens_mask`` was requested.
    """

    rendered_chats: list[str] = field(default_factory=list)
    generation_indices: list[list[list[int]]] = field(default_factory=list)


@dataclass
class FetchTemplateRequest:
    """
    Request to resolve the chat template for a model.

    ``token`` is an access credential. It is excluded from ``repr`` and is
    never logged or attached to errors.
    """

    model: str
    chat_template: str | None = None
    tools: list[JSONValue] | None = None
    revision: str | None = None
    token: str | None = field(default=None, repr=False)
    is_local_path: bool = False

    @property
    def has_token(self) -> bool:
        return bool(self.token)


@dataclass
class FetchTemplateResponse:
    """Resolved template text and the kwargs the template expects at render time."""

    chat_template: str | None = None
    chat_template_kwargs: dict[str, JSONValue] | None = None
