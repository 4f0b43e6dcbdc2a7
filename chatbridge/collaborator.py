"""
Chat-template collaborator module.

The template-side half of the bridge: JSON text in, JSON text out. Rendering
and template resolution are delegated to ``transformers``; this module only
adapts the wire format and caches resolved templates.

Loaded by InProcessRuntime, or embedded by a native collaborator library that
exposes the ``ct_*`` C entry points.

Requires the ``transformers`` extra::

    pip install chatbridge[transformers]
"""

from __future__ import annotations

import hashlib
import json
import threading
from typing import Any

from ._logging import scoped_logger

logger = scoped_logger("collaborator")

__all__ = [
    "init_module",
    "render_jinja_template",
    "get_model_chat_template",
    "clear_caches",
    "cleanup_module",
]

# Special tokens exposed to templates as kwargs
_TEMPLATE_TOKEN_ATTRS = (
    "bos_token",
    "eos_token",
    "eot_token",
    "pad_token",
    "unk_token",
    "sep_token",
    "additional_special_tokens",
)

_template_cache: dict[str, dict[str, Any]] = {}
_cache_lock = threading.Lock()


def init_module() -> int:
    """Import the template stack. Returns 0 on success, 1 if unavailable."""
    try:
        from transformers import AutoTokenizer  # noqa: F401
        from transformers.utils.chat_template_utils import render_jinja_template  # noqa: F401
    except ImportError as e:
        logger.error("transformers is not importable", extra={"error": str(e)})
        return 1
    logger.debug("Collaborator module initialized")
    return 0


def cleanup_module() -> None:
    """Drop cached state."""
    clear_caches()


def clear_caches() -> str:
    """Clear the template cache. Intended for tests and maintenance."""
    with _cache_lock:
        cleared = len(_template_cache)
        _template_cache.clear()
    return json.dumps({"cleared": cleared})


def render_jinja_template(request_json: str) -> str:
    """
    Render one conversation through a chat template.

    Args:
        request_json: Render request (``messages``, ``tools``, ``documents``,
            ``chat_template``, the three flags, ``chat_template_kwargs``).

    Returns
    -------
        JSON with ``rendered_chats`` and ``generation_indices``.
    """
    from transformers.utils.chat_template_utils import render_jinja_template as render

    request = json.loads(request_json)
    kwargs = request.pop("chat_template_kwargs", None) or {}
    messages = request.pop("messages", [])

    rendered_chats, generation_indices = render(
        conversations=[messages],
        tools=request.get("tools"),
        documents=request.get("documents"),
        chat_template=request.get("chat_template"),
        return_assistant_tokens_mask=request.get("return_assistant_tokens_mask", False),
        continue_final_message=request.get("continue_final_message", False),
        add_generation_prompt=request.get("add_generation_prompt", False),
        **kwargs,
    )
    return json.dumps(
        {
            "rendered_chats": rendered_chats,
            "generation_indices": generation_indices or [],
        }
    )


def _cache_key(model: str, revision: str | None, token: str | None) -> str:
    # Token identifies the cache entry by digest only.
    token_digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16] if token else "none"
    return f"{model}:{revision or 'main'}:{token_digest}"


def _collect_template_kwargs(tokenizer: Any) -> dict[str, Any]:
    """Collect special tokens from a tokenizer for template variables."""
    template_kwargs = {}
    for attr in _TEMPLATE_TOKEN_ATTRS:
        value = getattr(tokenizer, attr, None)
        if value is not None:
            template_kwargs[attr] = value
    return template_kwargs


def get_model_chat_template(request_json: str) -> str:
    """
    Resolve the chat template for a model.

    Args:
        request_json: Fetch request (``model``, ``chat_template``, ``tools``,
            ``revision``, ``token``, ``is_local_path``).

    Returns
    -------
        JSON with ``chat_template`` and ``chat_template_kwargs``.
    """
    request = json.loads(request_json)
    model = request.get("model")
    if not model:
        raise ValueError("model is required in request")

    chat_template = request.get("chat_template")
    tools = request.get("tools")
    revision = request.get("revision")
    token = request.get("token")
    key = _cache_key(model, revision, token)

    with _cache_lock:
        cached = _template_cache.get(key)
    if cached is None:
        from transformers import AutoTokenizer

        tokenizer = AutoTokenizer.from_pretrained(
            model,
            revision=revision,
            token=token,
            local_files_only=bool(request.get("is_local_path")),
        )
        cached = {
            "tokenizer": tokenizer,
            "chat_template_kwargs": _collect_template_kwargs(tokenizer),
        }
        with _cache_lock:
            _template_cache[key] = cached
        logger.debug("Loaded tokenizer", extra={"model": model, "revision": revision})

    template = cached["tokenizer"].get_chat_template(chat_template, tools)
    return json.dumps(
        {
            "chat_template": template,
            "chat_template_kwargs": dict(cached["chat_template_kwargs"]),
        }
    )
