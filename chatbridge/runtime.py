"""
Foreign runtimes.

A ForeignRuntime is the set of entry points a ChatTemplatingProcessor calls
across the boundary. Two implementations ship with chatbridge:

- NativeRuntime (``chatbridge._bindings``): the collaborator shared library,
  loaded with ctypes.
- InProcessRuntime: the collaborator module running in this interpreter,
  behind the same buffer contract. Results live in the runtime's own arena
  and must be returned through ``free_result``.
"""

from __future__ import annotations

import ctypes
import threading
from types import ModuleType
from typing import Any, Callable, Protocol, runtime_checkable

from ._logging import scoped_logger
from .exceptions import StateError

logger = scoped_logger("boundary.runtime")

__all__ = ["ForeignRuntime", "InProcessRuntime"]


@runtime_checkable
class ForeignRuntime(Protocol):
    """
    Entry points exposed by a chat-template collaborator.

    Render, fetch and clear-caches return the address of a NUL-terminated
    result owned by the runtime, or None (the failure sentinel). Every
    returned address must be passed to ``free_result`` exactly once.
    """

    def start_interpreter(self) -> None: ...

    def init_module(self) -> int: ...

    def render_chat_template(self, request: ctypes.c_char_p) -> int | None: ...

    def fetch_chat_template(self, request: ctypes.c_char_p) -> int | None: ...

    def clear_caches(self) -> int | None: ...

    def cleanup_module(self) -> None: ...

    def stop_interpreter(self) -> None: ...

    def free_result(self, address: int) -> None: ...


class InProcessRuntime:
    """
    ForeignRuntime that runs the collaborator module in this interpreter.

    Requests are read from the host buffer, handed to the module as JSON
    text, and the JSON reply is copied into a buffer owned by this runtime.
    Exceptions raised by the module are logged and reported as the failure
    sentinel, the same way the native library reports them.

    Args:
        module: Object exposing ``init_module``, ``render_jinja_template``,
            ``get_model_chat_template``, ``clear_caches`` and
            ``cleanup_module``. Defaults to ``chatbridge.collaborator``.

    Example:
        >>> with ChatTemplatingProcessor(InProcessRuntime()) as processor:
        ...     response = processor.render_chat_template(request)
    """

    def __init__(self, module: ModuleType | Any | None = None):
        if module is None:
            from . import collaborator as module
        self._module = module
        self._arena: dict[int, ctypes.Array] = {}
        self._lock = threading.Lock()
        self.results_allocated = 0
        self.results_freed = 0

    @property
    def outstanding(self) -> int:
        """Number of result buffers not yet freed."""
        with self._lock:
            return len(self._arena)

    def start_interpreter(self) -> None:
        logger.debug("Interpreter already running in-process")

    def init_module(self) -> int:
        try:
            return int(self._module.init_module())
        except Exception as e:
            logger.error(
                "Collaborator module init raised",
                extra={"operation": "init", "error_type": type(e).__name__},
            )
            return 1

    def render_chat_template(self, request: ctypes.c_char_p) -> int | None:
        return self._invoke("render", self._module.render_jinja_template, request)

    def fetch_chat_template(self, request: ctypes.c_char_p) -> int | None:
        return self._invoke("fetch", self._module.get_model_chat_template, request)

    def clear_caches(self) -> int | None:
        return self._invoke("clear_caches", self._module.clear_caches, None)

    def cleanup_module(self) -> None:
        self._module.cleanup_module()

    def stop_interpreter(self) -> None:
        logger.debug("In-process interpreter stays running")

    def free_result(self, address: int) -> None:
        with self._lock:
            storage = self._arena.pop(address, None)
            if storage is None:
                raise StateError(
                    f"free of unknown result buffer 0x{address:x}",
                    code="INVALID_FREE",
                    details={"address": address},
                )
            self.results_freed += 1

    def _invoke(
        self,
        operation: str,
        entry_point: Callable[..., str | None],
        request: ctypes.c_char_p | None,
    ) -> int | None:
        try:
            if request is None:
                reply = entry_point()
            else:
                raw = request.value
                reply = entry_point((raw or b"").decode("utf-8"))
            payload = reply.encode("utf-8") if reply is not None else None
        except Exception as e:
            # Fetch errors may echo request fields; only the type is logged there.
            extra: dict[str, Any] = {"operation": operation, "error_type": type(e).__name__}
            if operation != "fetch":
                extra["error"] = str(e)
            logger.error("Collaborator raised", extra=extra)
            return None
        if payload is None:
            return None
        return self._allocate(payload)

    def _allocate(self, data: bytes) -> int:
        storage = ctypes.create_string_buffer(data, len(data) + 1)
        address = ctypes.addressof(storage)
        with self._lock:
            self._arena[address] = storage
            self.results_allocated += 1
        return address

    def __repr__(self) -> str:
        name = getattr(self._module, "__name__", type(self._module).__name__)
        return f"InProcessRuntime({name!r})"
