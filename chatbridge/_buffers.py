"""
Buffer ownership across the foreign boundary.

Two allocator families meet at every boundary call, and their buffers are
not interchangeable:

- HostBuffer: allocated by the host (HostAllocator) and lent to the foreign
  runtime for the duration of one call. The host always releases it.
- ForeignBuffer: allocated by the foreign runtime and handed to the host.
  The host copies it out and releases it through the runtime's own free
  function, never through host deallocation.

Both are context managers with idempotent ``release()``, so every exit path
(success, foreign failure, decode failure) releases each buffer exactly once.
"""

import ctypes
import threading
from collections.abc import Callable

from ._logging import scoped_logger
from .exceptions import StateError

logger = scoped_logger("boundary.buffers")

__all__ = ["HostAllocator", "HostBuffer", "ForeignBuffer"]


class HostAllocator:
    """
    Host-side allocator for request buffers.

    Buffers are NUL-terminated copies of the encoded request. Counters are
    plain integers read by diagnostics and tests; ``outstanding`` is zero
    whenever no boundary call is in flight.
    """

    def __init__(self) -> None:
        self.allocated = 0
        self.released = 0
        self._lock = threading.Lock()

    @property
    def outstanding(self) -> int:
        return self.allocated - self.released

    def allocate(self, data: bytes) -> "HostBuffer":
        """Copy ``data`` into a new NUL-terminated host buffer."""
        storage = ctypes.create_string_buffer(data, len(data) + 1)
        with self._lock:
            self.allocated += 1
        logger.trace("Allocated host buffer", extra={"bytes": len(data)})
        return HostBuffer(self, storage, len(data))

    def _release(self, storage: ctypes.Array) -> None:
        # Request buffers may carry access tokens; scrub before dropping.
        ctypes.memset(ctypes.addressof(storage), 0, ctypes.sizeof(storage))
        with self._lock:
            self.released += 1
        logger.trace("Freed host buffer")


class HostBuffer:
    """
    Request bytes owned by the host, lent to the foreign runtime.

    Example:
        >>> with allocator.allocate(payload) as buf:
        ...     address = runtime.render_chat_template(buf.pointer)
    """

    __slots__ = ("_allocator", "_storage", "_size")

    def __init__(self, allocator: HostAllocator, storage: ctypes.Array, size: int):
        self._allocator = allocator
        self._storage: ctypes.Array | None = storage
        self._size = size

    @property
    def pointer(self) -> ctypes.c_char_p:
        """``char *`` view of the buffer for passing across the boundary."""
        if self._storage is None:
            raise StateError("host buffer used after release", code="BUFFER_RELEASED")
        return ctypes.cast(self._storage, ctypes.c_char_p)

    @property
    def released(self) -> bool:
        return self._storage is None

    def __len__(self) -> int:
        return self._size

    def release(self) -> None:
        """Return the buffer to the host allocator. Safe to call multiple times."""
        if self._storage is None:
            return
        storage, self._storage = self._storage, None
        self._allocator._release(storage)

    def __enter__(self) -> "HostBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class ForeignBuffer:
    """
    Result bytes owned by the foreign runtime.

    ``free`` is the runtime's designated free function. It is called exactly
    once, on ``release()`` or context exit, whichever comes first.
    """

    __slots__ = ("_address", "_free")

    def __init__(self, address: int, free: Callable[[int], None]):
        self._address: int | None = address
        self._free = free

    @property
    def released(self) -> bool:
        return self._address is None

    def read(self) -> bytes:
        """Copy the NUL-terminated contents into host memory."""
        if self._address is None:
            raise StateError("foreign buffer read after release", code="BUFFER_RELEASED")
        return ctypes.string_at(self._address)

    def release(self) -> None:
        """Free through the foreign runtime. Safe to call multiple times."""
        if self._address is None:
            return
        address, self._address = self._address, None
        self._free(address)
        logger.trace("Freed foreign result buffer")

    def __enter__(self) -> "ForeignBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
