"""
Async facade over ChatTemplatingProcessor.

Boundary calls block until the foreign runtime returns, so each one runs in
the event loop's default executor. ``asyncio.wait_for`` may be used around
any call; a timeout abandons the await, not the foreign call, which still
runs to completion and releases its buffers.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, TypeVar

from .exceptions import InvalidInputError
from .processor import ChatTemplatingProcessor, LifecycleState
from .runtime import ForeignRuntime
from .types import FetchTemplateRequest, RenderRequest, RenderResponse

__all__ = ["AsyncChatTemplatingProcessor"]

T = TypeVar("T")


class AsyncChatTemplatingProcessor:
    """
    Async equivalent of ChatTemplatingProcessor.

    Concurrency:
        Safe to share across asyncio tasks. Calls from several tasks run
        concurrently in executor threads; the foreign runtime serializes
        them.

    Args:
        runtime: Foreign runtime to drive (see ChatTemplatingProcessor).
        processor: Existing processor to wrap instead of creating one.

    Example:
        >>> async with AsyncChatTemplatingProcessor(InProcessRuntime()) as processor:
        ...     response = await processor.render_chat_template(request)
    """

    def __init__(
        self,
        runtime: ForeignRuntime | None = None,
        *,
        processor: ChatTemplatingProcessor | None = None,
    ):
        if processor is not None and runtime is not None:
            raise InvalidInputError("pass either runtime or processor, not both")
        self._processor = processor or ChatTemplatingProcessor(runtime)

    @property
    def processor(self) -> ChatTemplatingProcessor:
        """The wrapped synchronous processor."""
        return self._processor

    @property
    def state(self) -> LifecycleState:
        return self._processor.state

    @property
    def ready(self) -> bool:
        return self._processor.ready

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def initialize(self) -> None:
        """Initialize the runtime without blocking the event loop."""
        await self._run(self._processor.initialize)

    async def finalize(self) -> None:
        """Finalize the runtime. Waits for in-flight calls. Safe to call multiple times."""
        await self._run(self._processor.finalize)

    async def render_chat_template(self, request: RenderRequest) -> RenderResponse:
        return await self._run(self._processor.render_chat_template, request)

    async def fetch_chat_template(
        self, request: FetchTemplateRequest
    ) -> tuple[str | None, dict[str, Any] | None]:
        return await self._run(self._processor.fetch_chat_template, request)

    async def clear_caches(self) -> None:
        await self._run(self._processor.clear_caches)

    async def __aenter__(self) -> AsyncChatTemplatingProcessor:
        """Async context manager entry; finalizes before re-raising a module init failure."""
        await self._run(self._processor.__enter__)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.finalize()

    def __repr__(self) -> str:
        return f"AsyncChatTemplatingProcessor(state={self.state.value})"
