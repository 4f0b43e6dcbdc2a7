"""
chatbridge - Chat-template calls across a foreign-function boundary.

chatbridge serializes chat-template requests to JSON, hands them to a
template collaborator running behind a C ABI, and turns the results (or the
failure sentinel) back into typed values and typed errors.

Quick Start
-----------

    >>> from chatbridge import ChatMessage, ChatTemplatingProcessor, InProcessRuntime, RenderRequest
    >>>
    >>> with ChatTemplatingProcessor(InProcessRuntime()) as processor:
    ...     response = processor.render_chat_template(
    ...         RenderRequest(
    ...             messages=[ChatMessage("user", "Hello!")],
    ...             chat_template="{% for m in messages %}{{ m.content }}{% endfor %}",
    ...         )
    ...     )
    ...     print(response.rendered_chats[0])
    Hello!

Resolving a model's template:

    >>> with ChatTemplatingProcessor(InProcessRuntime()) as processor:
    ...     template, kwargs = processor.fetch_chat_template(
    ...         FetchTemplateRequest(model="Qwen/Qwen3-0.6B")
    ...     )


Runtimes
--------

- `NativeRuntime` - The collaborator shared library, loaded with ctypes.
  Default when no runtime is passed. Set ``config.library_path`` or
  ``CHATBRIDGE_LIBRARY``.
- `InProcessRuntime` - The transformers-backed collaborator in this
  interpreter (``pip install chatbridge[transformers]``).


Lifecycle
---------

One processor holds the process-wide runtime at a time:

    >>> processor = ChatTemplatingProcessor()
    >>> processor.initialize()
    >>> ...
    >>> processor.finalize()

If module initialization fails, ``initialize()`` raises ModuleInitError
and the interpreter keeps running until ``finalize()`` is called. The
context manager form finalizes on its own.


Async Support
-------------

    >>> async with AsyncChatTemplatingProcessor(InProcessRuntime()) as processor:
    ...     response = await processor.render_chat_template(request)
"""

from chatbridge._logging import parse_level as _parse_level
from chatbridge._logging import setup_logging as setup_logging
from chatbridge._version import __version__ as __version__

# Runtimes
from chatbridge._bindings import NativeRuntime
from chatbridge.async_ import AsyncChatTemplatingProcessor

# Configuration
from chatbridge.config import config

# Exceptions (commonly-used exceptions at root; all via chatbridge.exceptions)
from chatbridge.exceptions import (
    BridgeError,
    CacheClearError,
    DecodingError,
    EncodingError,
    ForeignCallError,
    InvalidInputError,
    LibraryLoadError,
    ModuleInitError,
    NotInitializedError,
    StateError,
)

# Processor
from chatbridge.processor import ChatTemplatingProcessor, LifecycleState
from chatbridge.runtime import ForeignRuntime, InProcessRuntime

# Types
from chatbridge.types import (
    ChatMessage,
    FetchTemplateRequest,
    FetchTemplateResponse,
    RenderRequest,
    RenderResponse,
)


def set_log_level(level: str) -> None:
    """Set logging verbosity level.

    Args:
        level: One of 'trace', 'debug', 'info', 'warn', 'error', 'off'.
               Default is 'warn' (silent operation).

    Example:
        >>> import chatbridge
        >>> chatbridge.set_log_level('trace')  # Boundary calls and memory stats
        >>> chatbridge.set_log_level('warn')   # Back to silent (default)
    """
    from chatbridge._logging import logger

    logger.setLevel(_parse_level(level))


# =============================================================================
# Public API
# =============================================================================
#
# Other symbols remain importable via submodules
# (e.g., from chatbridge._bindings import resolve_library_path).
#
__all__ = [
    # Processor
    "ChatTemplatingProcessor",
    "AsyncChatTemplatingProcessor",
    "LifecycleState",
    # Runtimes
    "ForeignRuntime",
    "NativeRuntime",
    "InProcessRuntime",
    # Types
    "ChatMessage",
    "RenderRequest",
    "RenderResponse",
    "FetchTemplateRequest",
    "FetchTemplateResponse",
    # Configuration
    "config",
    "set_log_level",
    "setup_logging",
    # Exceptions
    "BridgeError",
    "InvalidInputError",
    "EncodingError",
    "DecodingError",
    "ForeignCallError",
    "CacheClearError",
    "ModuleInitError",
    "StateError",
    "NotInitializedError",
    "LibraryLoadError",
]
