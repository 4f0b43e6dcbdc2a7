"""
Interchange codec for boundary calls.

Converts typed requests and responses to and from UTF-8 JSON. Optional
fields are omitted when they hold their default (``None`` or ``False``), so
the foreign side sees exactly the fields the caller set.

Encoding failures raise EncodingError; decoding failures raise DecodingError
with the operation name and byte length. Neither error carries the payload.
"""

import json
import math
from collections.abc import Mapping
from typing import Any

from .exceptions import DecodingError, EncodingError
from .types import (
    ChatMessage,
    FetchTemplateRequest,
    FetchTemplateResponse,
    RenderRequest,
    RenderResponse,
)

__all__ = [
    "encode_render_request",
    "decode_render_request",
    "decode_render_response",
    "encode_fetch_request",
    "decode_fetch_response",
]


# =============================================================================
# Encoding
# =============================================================================


def _check_json_value(value: Any, path: str, operation: str, seen: set[int]) -> None:
    """
    Reject values that would not survive a JSON round trip unchanged.

    Tuples are rejected because they decode back as lists. ``seen`` holds the
    ids of the containers on the current path, so a cycle is reported instead
    of recursing forever.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(
                f"{path}: non-finite float is not a JSON value",
                details={"operation": operation, "path": path},
            )
        return
    if not isinstance(value, (list, Mapping)):
        raise EncodingError(
            f"{path}: {type(value).__name__} is not a JSON value",
            details={"operation": operation, "path": path},
        )
    if id(value) in seen:
        raise EncodingError(
            f"{path}: circular reference",
            details={"operation": operation, "path": path},
        )
    seen.add(id(value))
    if isinstance(value, list):
        for i, item in enumerate(value):
            _check_json_value(item, f"{path}[{i}]", operation, seen)
    else:
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingError(
                    f"{path}: mapping keys must be strings, got {type(key).__name__}",
                    details={"operation": operation, "path": path},
                )
            _check_json_value(item, f"{path}.{key}", operation, seen)
    seen.discard(id(value))


def _dump(payload: dict[str, Any], operation: str) -> bytes:
    try:
        _check_json_value(payload, "$", operation, set())
    except RecursionError as e:
        raise EncodingError(
            f"failed to encode {operation} request: nesting too deep",
            details={"operation": operation},
        ) from e
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError, RecursionError) as e:
        # UnicodeEncodeError (lone surrogates) is a ValueError
        raise EncodingError(
            f"failed to encode {operation} request: {type(e).__name__}",
            details={"operation": operation},
        ) from e


def encode_render_request(request: RenderRequest) -> bytes:
    """Serialize a RenderRequest to UTF-8 JSON."""
    if not isinstance(request.messages, list):
        raise EncodingError(
            f"messages: expected list, got {type(request.messages).__name__}",
            details={"operation": "render", "path": "$.messages"},
        )
    messages = []
    for i, message in enumerate(request.messages):
        if not isinstance(message, ChatMessage):
            raise EncodingError(
                f"messages[{i}]: expected ChatMessage, got {type(message).__name__}",
                details={"operation": "render", "path": f"$.messages[{i}]"},
            )
        messages.append({"role": message.role, "content": message.content})
    payload: dict[str, Any] = {"messages": messages}
    if request.tools is not None:
        payload["tools"] = request.tools
    if request.documents is not None:
        payload["documents"] = request.documents
    if request.chat_template is not None:
        payload["chat_template"] = request.chat_template
    if request.return_assistant_tokens_mask:
        payload["return_assistant_tokens_mask"] = True
    if request.continue_final_message:
        payload["continue_final_message"] = True
    if request.add_generation_prompt:
        payload["add_generation_prompt"] = True
    if request.chat_template_kwargs is not None:
        payload["chat_template_kwargs"] = request.chat_template_kwargs
    return _dump(payload, "render")


def encode_fetch_request(request: FetchTemplateRequest) -> bytes:
    """Serialize a FetchTemplateRequest to UTF-8 JSON."""
    payload: dict[str, Any] = {"model": request.model}
    if request.chat_template is not None:
        payload["chat_template"] = request.chat_template
    if request.tools is not None:
        payload["tools"] = request.tools
    if request.revision is not None:
        payload["revision"] = request.revision
    if request.token is not None:
        payload["token"] = request.token
    if request.is_local_path:
        payload["is_local_path"] = True
    return _dump(payload, "fetch")


# =============================================================================
# Decoding
# =============================================================================


class _Reader:
    """Field accessor that reports shape errors as DecodingError."""

    def __init__(self, obj: dict[str, Any], operation: str, length: int):
        self._obj = obj
        self._operation = operation
        self._length = length

    def fail(self, message: str) -> DecodingError:
        return DecodingError(
            f"malformed {self._operation} payload ({self._length} bytes): {message}",
            details={"operation": self._operation, "length": self._length},
        )

    def optional(self, key: str, kind: type | tuple[type, ...]) -> Any:
        value = self._obj.get(key)
        if value is None:
            return None
        if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
            raise self.fail(f"{key}: expected {_kind_name(kind)}, got {type(value).__name__}")
        return value

    def flag(self, key: str) -> bool:
        return bool(self.optional(key, bool))

    def string_list(self, key: str) -> list[str]:
        items = self.optional(key, list) or []
        for i, item in enumerate(items):
            if not isinstance(item, str):
                raise self.fail(f"{key}[{i}]: expected string, got {type(item).__name__}")
        return items

    def index_ranges(self, key: str) -> list[list[list[int]]]:
        chats = self.optional(key, list) or []
        for i, ranges in enumerate(chats):
            if not isinstance(ranges, list):
                raise self.fail(f"{key}[{i}]: expected list, got {type(ranges).__name__}")
            for j, span in enumerate(ranges):
                if not isinstance(span, list):
                    raise self.fail(f"{key}[{i}][{j}]: expected list, got {type(span).__name__}")
                for k, index in enumerate(span):
                    if not isinstance(index, int) or isinstance(index, bool):
                        raise self.fail(
                            f"{key}[{i}][{j}][{k}]: expected int, got {type(index).__name__}"
                        )
        return chats

    def kwargs(self, key: str) -> dict[str, Any] | None:
        return self.optional(key, dict)


def _kind_name(kind: type | tuple[type, ...]) -> str:
    names = {str: "string", bool: "bool", list: "list", dict: "object", int: "int"}
    if isinstance(kind, tuple):
        return " or ".join(names.get(k, k.__name__) for k in kind)
    return names.get(kind, kind.__name__)


def _load(data: bytes | str, operation: str) -> _Reader:
    """Parse bytes into a top-level JSON object."""
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    length = len(raw)
    try:
        obj = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise DecodingError(
            f"{operation} result is not valid UTF-8 ({length} bytes)",
            details={"operation": operation, "length": length},
        ) from e
    except json.JSONDecodeError as e:
        raise DecodingError(
            f"{operation} result is not valid JSON ({length} bytes): "
            f"{e.msg} at position {e.pos}",
            details={"operation": operation, "length": length},
        ) from e
    except RecursionError as e:
        raise DecodingError(
            f"{operation} result is nested too deeply ({length} bytes)",
            details={"operation": operation, "length": length},
        ) from e
    if not isinstance(obj, dict):
        raise DecodingError(
            f"{operation} result must be a JSON object, got {type(obj).__name__} "
            f"({length} bytes)",
            details={"operation": operation, "length": length},
        )
    return _Reader(obj, operation, length)


def decode_render_response(data: bytes | str) -> RenderResponse:
    """Parse a render result into a RenderResponse."""
    reader = _load(data, "render")
    return RenderResponse(
        rendered_chats=reader.string_list("rendered_chats"),
        generation_indices=reader.index_ranges("generation_indices"),
    )


def decode_fetch_response(data: bytes | str) -> FetchTemplateResponse:
    """Parse a fetch-template result into a FetchTemplateResponse."""
    reader = _load(data, "fetch")
    return FetchTemplateResponse(
        chat_template=reader.optional("chat_template", str),
        chat_template_kwargs=reader.kwargs("chat_template_kwargs"),
    )


def decode_render_request(data: bytes | str) -> RenderRequest:
    """Parse an encoded RenderRequest (inverse of encode_render_request)."""
    reader = _load(data, "render")
    messages: list[ChatMessage] = []
    for i, item in enumerate(reader.optional("messages", list) or []):
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("role"), str)
            or not isinstance(item.get("content"), str)
        ):
            raise reader.fail(f"messages[{i}]: expected {{role, content}} strings")
        messages.append(ChatMessage(role=item["role"], content=item["content"]))
    return RenderRequest(
        messages=messages,
        tools=reader.optional("tools", list),
        documents=reader.optional("documents", list),
        chat_template=reader.optional("chat_template", str),
        return_assistant_tokens_mask=reader.flag("return_assistant_tokens_mask"),
        continue_final_message=reader.flag("continue_final_message"),
        add_generation_prompt=reader.flag("add_generation_prompt"),
        chat_template_kwargs=reader.kwargs("chat_template_kwargs"),
    )
