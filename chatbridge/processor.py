"""
Chat-template processor: lifecycle and boundary calls.

ChatTemplatingProcessor owns one foreign runtime for its lifetime:

    NEW --initialize()--> STARTING --> READY --finalize()--> FINALIZING --> FINALIZED
                                  \\--module init fails--> FAILED --finalize()--> ...

Boundary calls run only in READY. Each call encodes its request, lends a
host buffer to the runtime, copies the runtime's result buffer back, and
releases both buffers before decoding.

Concurrency: the runtime serializes execution internally. The processor
holds its state lock only to check readiness and count in-flight calls,
never across a boundary call. ``finalize()`` waits for in-flight calls to
drain before tearing the runtime down.
"""

from __future__ import annotations

import enum
import threading
from typing import Any, Callable

from ._buffers import ForeignBuffer, HostAllocator
from ._codec import (
    decode_fetch_response,
    decode_render_response,
    encode_fetch_request,
    encode_render_request,
)
from ._diagnostics import log_memory_stats
from ._logging import scoped_logger
from .exceptions import (
    BridgeError,
    CacheClearError,
    DecodingError,
    ForeignCallError,
    InvalidInputError,
    ModuleInitError,
    NotInitializedError,
    StateError,
)
from .runtime import ForeignRuntime
from .types import ChatMessage, FetchTemplateRequest, RenderRequest, RenderResponse

logger = scoped_logger("processor")

__all__ = ["LifecycleState", "ChatTemplatingProcessor", "active_processor"]


class LifecycleState(enum.Enum):
    NEW = "new"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


# The foreign interpreter is process-wide: one initialized processor at a time.
_active: ChatTemplatingProcessor | None = None
_active_lock = threading.Lock()


def active_processor() -> ChatTemplatingProcessor | None:
    """Return the processor currently holding the runtime, if any."""
    with _active_lock:
        return _active


class ChatTemplatingProcessor:
    """
    Renders chat templates through a foreign runtime.

    The processor is the handle to the runtime: ``initialize()`` acquires
    it, ``finalize()`` releases it, and every boundary call checks that the
    handle is ready. A finalized processor cannot be reused; create a new
    one for a fresh lifecycle.

    Args:
        runtime: Foreign runtime to drive. Defaults to NativeRuntime loaded
            from ``config.library_path`` at ``initialize()``.
        allocator: Host allocator for request buffers.

    Example:
        >>> with ChatTemplatingProcessor(InProcessRuntime()) as processor:
        ...     response = processor.render_chat_template(
        ...         RenderRequest(messages=[ChatMessage("user", "hi")])
        ...     )
        ...     print(response.rendered_chats[0])
    """

    def __init__(
        self,
        runtime: ForeignRuntime | None = None,
        *,
        allocator: HostAllocator | None = None,
    ):
        self._runtime = runtime
        self._allocator = allocator or HostAllocator()
        self._state = LifecycleState.NEW
        self._cond = threading.Condition()
        self._inflight = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> LifecycleState:
        with self._cond:
            return self._state

    @property
    def ready(self) -> bool:
        return self.state is LifecycleState.READY

    @property
    def runtime(self) -> ForeignRuntime | None:
        return self._runtime

    @property
    def allocator(self) -> HostAllocator:
        return self._allocator

    def _set_state(self, state: LifecycleState) -> None:
        with self._cond:
            self._state = state
            self._cond.notify_all()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """
        Start the interpreter, then initialize the template module.

        Raises
        ------
            StateError: If already initialized, or another processor holds
                the process-wide runtime.
            LibraryLoadError: If no runtime was given and the collaborator
                library cannot be loaded.
            ModuleInitError: If module initialization fails. The interpreter
                is left running and the processor refuses all calls; the
                caller must still call ``finalize()``.
        """
        global _active
        with self._cond:
            if self._state is not LifecycleState.NEW:
                raise StateError(
                    f"initialize() called in state {self._state.value!r}; "
                    "create a new ChatTemplatingProcessor",
                    code="STATE_ALREADY_INITIALIZED",
                    details={"state": self._state.value},
                )
            self._state = LifecycleState.STARTING

        with _active_lock:
            holder = _active
            if holder is None:
                _active = self
        if holder is not None:
            self._set_state(LifecycleState.NEW)
            raise StateError(
                "another ChatTemplatingProcessor holds the process-wide runtime; "
                "finalize it first",
                code="RUNTIME_ALREADY_ACTIVE",
            )

        logger.debug("Initializing foreign runtime", extra={"operation": "initialize"})
        log_memory_stats("Before initialize")
        try:
            if self._runtime is None:
                from ._bindings import NativeRuntime

                self._runtime = NativeRuntime.load()
            self._runtime.start_interpreter()
        except Exception:
            # Nothing is running yet; give the slot back.
            self._release_slot()
            self._set_state(LifecycleState.NEW)
            raise

        try:
            status = self._runtime.init_module()
        except Exception as e:
            raise self._module_init_failed(None) from e
        if status != 0:
            raise self._module_init_failed(status)

        self._set_state(LifecycleState.READY)
        log_memory_stats("After initialize")
        logger.debug("Foreign runtime initialized", extra={"operation": "initialize"})

    def _module_init_failed(self, status: int | None) -> ModuleInitError:
        self._set_state(LifecycleState.FAILED)
        logger.error(
            "Failed to initialize chat template module",
            extra={"operation": "initialize", "status": status},
        )
        return ModuleInitError(
            "failed to initialize chat template module; "
            "the interpreter is still running, call finalize()",
            details={"operation": "initialize", "interpreter_running": True},
            original_code=status,
        )

    def finalize(self) -> None:
        """
        Tear down the module cache, then stop the interpreter.

        New calls are refused from the moment this is entered; in-flight
        calls are allowed to finish first. Teardown failures are logged,
        never raised. Safe to call multiple times, and a no-op before
        ``initialize()``.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._state is not LifecycleState.STARTING)
            if self._state in (LifecycleState.NEW, LifecycleState.FINALIZED):
                return
            if self._state is LifecycleState.FINALIZING:
                # Another thread is tearing down.
                self._cond.wait_for(lambda: self._state is LifecycleState.FINALIZED)
                return
            self._state = LifecycleState.FINALIZING
            self._cond.wait_for(lambda: self._inflight == 0)

        logger.debug("Finalizing foreign runtime", extra={"operation": "finalize"})
        log_memory_stats("Before finalize")
        runtime = self._runtime
        if runtime is not None:
            self._teardown_step("cleanup_module", runtime.cleanup_module)
            self._teardown_step("stop_interpreter", runtime.stop_interpreter)

        self._set_state(LifecycleState.FINALIZED)
        self._release_slot()
        log_memory_stats("After finalize")
        logger.debug("Foreign runtime finalized", extra={"operation": "finalize"})

    def _teardown_step(self, name: str, step: Callable[[], None]) -> None:
        try:
            step()
        except Exception as e:
            logger.error(
                "Teardown step failed",
                extra={"operation": "finalize", "step": name, "error_type": type(e).__name__},
            )

    def _release_slot(self) -> None:
        global _active
        with _active_lock:
            if _active is self:
                _active = None

    def __enter__(self) -> ChatTemplatingProcessor:
        """Initialize; on ModuleInitError the interpreter is finalized before re-raising."""
        try:
            self.initialize()
        except ModuleInitError:
            self.finalize()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.finalize()

    def __repr__(self) -> str:
        return f"ChatTemplatingProcessor(runtime={self._runtime!r}, state={self.state.value})"

    # =========================================================================
    # Readiness guard
    # =========================================================================

    def _enter_call(self, operation: str) -> ForeignRuntime:
        with self._cond:
            if self._state is not LifecycleState.READY or self._runtime is None:
                raise NotInitializedError(
                    f"{operation} called while processor is {self._state.value!r}",
                    details={"operation": operation, "state": self._state.value},
                )
            self._inflight += 1
            return self._runtime

    def _exit_call(self) -> None:
        with self._cond:
            self._inflight -= 1
            if self._inflight == 0:
                self._cond.notify_all()

    # =========================================================================
    # Boundary calls
    # =========================================================================

    def _cross(
        self,
        operation: str,
        entry_point: Callable[..., int | None],
        payload: bytes | None,
        runtime: ForeignRuntime,
        failure: type[ForeignCallError] = ForeignCallError,
    ) -> bytes:
        """
        Run one boundary call and return a host-owned copy of the result.

        Both buffers are released before this returns or raises.
        """
        log_memory_stats(f"Before {operation}")
        host_buffer = self._allocator.allocate(payload) if payload is not None else None
        try:
            try:
                if host_buffer is None:
                    address = entry_point()
                else:
                    address = entry_point(host_buffer.pointer)
            except BridgeError:
                raise
            except Exception as e:
                logger.error(
                    "Foreign entry point raised",
                    extra={"operation": operation, "error_type": type(e).__name__},
                )
                raise failure(
                    f"{operation} boundary call raised {type(e).__name__}",
                    details={"operation": operation},
                ) from e

            if not address:
                logger.error("Foreign entry point returned null", extra={"operation": operation})
                raise failure(
                    f"{operation} boundary call failed (null result)",
                    details={"operation": operation},
                )

            with ForeignBuffer(address, runtime.free_result) as result:
                data = result.read()
        finally:
            if host_buffer is not None:
                host_buffer.release()
            log_memory_stats(f"After {operation}")

        logger.trace("Received result", extra={"operation": operation, "bytes": len(data)})
        return data

    def render_chat_template(self, request: RenderRequest) -> RenderResponse:
        """
        Render a conversation through the chat template.

        Args:
            request: Messages, optional tools/documents/template override,
                rendering flags and template kwargs.

        Returns
        -------
            RenderResponse with the rendered chat(s) and, when
            ``return_assistant_tokens_mask`` was set, generation indices.

        Raises
        ------
            NotInitializedError: If the processor is not ready.
            InvalidInputError: If request is None or malformed.
            EncodingError: If the request cannot be serialized.
            ForeignCallError: If nothing was rendered.
            DecodingError: If a result was rendered but is malformed.
        """
        operation = "render"
        runtime = self._enter_call(operation)
        try:
            _validate_render_request(request)
            logger.debug(
                "RenderChatTemplate called",
                extra={"operation": operation, "messages": len(request.messages)},
            )
            payload = encode_render_request(request)
            data = self._cross(operation, runtime.render_chat_template, payload, runtime)
        finally:
            self._exit_call()

        response = decode_render_response(data)
        if request.return_assistant_tokens_mask and len(response.generation_indices) != len(
            response.rendered_chats
        ):
            raise DecodingError(
                f"render result has {len(response.generation_indices)} generation index "
                f"lists for {len(response.rendered_chats)} rendered chats ({len(data)} bytes)",
                details={"operation": operation, "length": len(data)},
            )
        return response

    def fetch_chat_template(
        self, request: FetchTemplateRequest
    ) -> tuple[str | None, dict[str, Any] | None]:
        """
        Resolve the chat template for a model.

        Args:
            request: Model identifier (registry name or local path) with
                optional template override, tools, revision and access token.

        Returns
        -------
            ``(template_text, template_kwargs)``.

        Raises
        ------
            NotInitializedError: If the processor is not ready.
            InvalidInputError: If request is None or has no model.
            EncodingError: If the request cannot be serialized.
            ForeignCallError: If the template could not be fetched.
            DecodingError: If the result is malformed.
        """
        operation = "fetch"
        runtime = self._enter_call(operation)
        try:
            _validate_fetch_request(request)
            logger.debug(
                "FetchChatTemplate called",
                extra={
                    "operation": operation,
                    "model": request.model,
                    "revision": request.revision,
                    "is_local_path": request.is_local_path,
                    "has_token": request.has_token,
                },
            )
            payload = encode_fetch_request(request)
            data = self._cross(operation, runtime.fetch_chat_template, payload, runtime)
        finally:
            self._exit_call()

        response = decode_fetch_response(data)
        return response.chat_template, response.chat_template_kwargs

    def clear_caches(self) -> None:
        """
        Clear the runtime's template caches (tests and maintenance).

        Raises
        ------
            NotInitializedError: If the processor is not ready.
            CacheClearError: If the runtime reports failure.
        """
        operation = "clear_caches"
        runtime = self._enter_call(operation)
        try:
            self._cross(operation, runtime.clear_caches, None, runtime, failure=CacheClearError)
        finally:
            self._exit_call()
        logger.debug("Caches cleared", extra={"operation": operation})


def _validate_render_request(request: Any) -> None:
    if request is None:
        raise InvalidInputError("received nil render request", details={"operation": "render"})
    if not isinstance(request, RenderRequest):
        raise InvalidInputError(
            f"expected RenderRequest, got {type(request).__name__}",
            details={"operation": "render"},
        )
    if not isinstance(request.messages, list):
        raise InvalidInputError(
            f"messages must be a list, got {type(request.messages).__name__}",
            details={"operation": "render", "field": "messages"},
        )
    _check_field_kind(request.tools, list, "tools", "render")
    _check_field_kind(request.documents, list, "documents", "render")
    _check_field_kind(request.chat_template, str, "chat_template", "render")
    _check_field_kind(request.chat_template_kwargs, dict, "chat_template_kwargs", "render")
    for i, message in enumerate(request.messages):
        if (
            not isinstance(message, ChatMessage)
            or not isinstance(message.role, str)
            or not isinstance(message.content, str)
        ):
            raise InvalidInputError(
                f"messages[{i}] must be a ChatMessage with string role and content",
                details={"operation": "render", "index": i},
            )


def _validate_fetch_request(request: Any) -> None:
    if request is None:
        raise InvalidInputError("received nil fetch request", details={"operation": "fetch"})
    if not isinstance(request, FetchTemplateRequest):
        raise InvalidInputError(
            f"expected FetchTemplateRequest, got {type(request).__name__}",
            details={"operation": "fetch"},
        )
    if not isinstance(request.model, str) or not request.model:
        raise InvalidInputError("model must be a non-empty string", details={"operation": "fetch"})
    _check_field_kind(request.chat_template, str, "chat_template", "fetch")
    _check_field_kind(request.tools, list, "tools", "fetch")
    _check_field_kind(request.revision, str, "revision", "fetch")
    _check_field_kind(request.token, str, "token", "fetch")


def _check_field_kind(value: Any, kind: type, name: str, operation: str) -> None:
    """Optional fields are either None or an instance of ``kind``."""
    if value is not None and not isinstance(value, kind):
        raise InvalidInputError(
            f"{name} must be {kind.__name__} or None, got {type(value).__name__}",
            details={"operation": operation, "field": name},
        )
