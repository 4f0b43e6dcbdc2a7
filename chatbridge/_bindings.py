"""
FFI bindings for the chat-template collaborator library.

Justification: Locates and loads the collaborator shared library, declares
argtypes/restype for every entry point, and exposes them as a ForeignRuntime.
Result pointers are declared ``c_void_p`` rather than ``c_char_p`` so ctypes
never converts (and silently leaks) them; they are copied out and released
through ``ct_free``, the library's own free function.

C ABI::

    void  ct_runtime_start(void);
    int   ct_module_init(void);               /* 0 = success */
    char *ct_render(const char *request);     /* NULL on failure */
    char *ct_fetch_template(const char *request);
    char *ct_clear_caches(void);
    void  ct_module_cleanup(void);
    void  ct_runtime_stop(void);
    void  ct_free(char *result);
"""

import ctypes
import ctypes.util
import sys
import threading
from pathlib import Path

from ._logging import scoped_logger
from .config import LIBRARY_ENV_VAR, config
from .exceptions import LibraryLoadError

logger = scoped_logger("boundary.bindings")

__all__ = ["SIGNATURES", "NativeRuntime", "configure_signatures", "get_lib", "resolve_library_path"]

_LIB_BASENAME = "chattemplate"

# symbol -> (argtypes, restype)
SIGNATURES: dict[str, tuple[list[type], type | None]] = {
    "ct_runtime_start": ([], None),
    "ct_module_init": ([], ctypes.c_int),
    "ct_render": ([ctypes.c_char_p], ctypes.c_void_p),
    "ct_fetch_template": ([ctypes.c_char_p], ctypes.c_void_p),
    "ct_clear_caches": ([], ctypes.c_void_p),
    "ct_module_cleanup": ([], None),
    "ct_runtime_stop": ([], None),
    "ct_free": ([ctypes.c_void_p], None),
}

_lib_cache: dict[str, ctypes.CDLL] = {}
_lib_lock = threading.Lock()


def _get_lib_name() -> str:
    """Get platform-specific library name."""
    if sys.platform == "darwin":
        return f"lib{_LIB_BASENAME}.dylib"
    elif sys.platform == "win32":
        return f"{_LIB_BASENAME}.dll"
    else:
        return f"lib{_LIB_BASENAME}.so"


def resolve_library_path(path: str | None = None) -> str:
    """
    Resolve the collaborator library location.

    Resolution order:
    1. Explicit ``path`` argument
    2. ``config.library_path`` (which falls back to CHATBRIDGE_LIBRARY)
    3. Library file shipped next to this package
    4. System search path (``ctypes.util.find_library``)

    Raises
    ------
        LibraryLoadError: If no candidate is found.
    """
    if path is not None:
        return path
    configured = config.library_path
    if configured is not None:
        return configured

    bundled = Path(__file__).parent / _get_lib_name()
    if bundled.exists():
        return str(bundled)

    found = ctypes.util.find_library(_LIB_BASENAME)
    if found:
        return found

    raise LibraryLoadError(
        f"Unable to locate {_get_lib_name()}. "
        f"Set chatbridge.config.library_path or {LIBRARY_ENV_VAR}.",
        details={"library": _get_lib_name()},
    )


def configure_signatures(lib: ctypes.CDLL) -> None:
    """Set argtypes/restype on every entry point.

    Raises
    ------
        LibraryLoadError: If the library does not export a required symbol.
    """
    for symbol, (argtypes, restype) in SIGNATURES.items():
        try:
            fn = getattr(lib, symbol)
        except AttributeError as e:
            raise LibraryLoadError(
                f"collaborator library is missing symbol {symbol!r}",
                code="LIBRARY_SYMBOL_MISSING",
                details={"symbol": symbol},
            ) from e
        fn.argtypes = argtypes
        fn.restype = restype


def get_lib(path: str | None = None) -> ctypes.CDLL:
    """Load (once per path) and return the configured collaborator library."""
    resolved = resolve_library_path(path)
    with _lib_lock:
        lib = _lib_cache.get(resolved)
        if lib is not None:
            return lib
        try:
            lib = ctypes.CDLL(resolved)
        except OSError as e:
            raise LibraryLoadError(
                f"Cannot load collaborator library {resolved!r}: {e}",
                details={"path": resolved},
            ) from e
        configure_signatures(lib)
        _lib_cache[resolved] = lib
        logger.debug("Loaded collaborator library", extra={"path": resolved})
        return lib


class NativeRuntime:
    """
    ForeignRuntime backed by the collaborator shared library.

    Example:
        >>> runtime = NativeRuntime.load("/opt/lib/libchattemplate.so")
        >>> processor = ChatTemplatingProcessor(runtime)
    """

    def __init__(self, lib: ctypes.CDLL):
        self._lib = lib

    @classmethod
    def load(cls, path: str | None = None) -> "NativeRuntime":
        return cls(get_lib(path))

    def start_interpreter(self) -> None:
        self._lib.ct_runtime_start()

    def init_module(self) -> int:
        return self._lib.ct_module_init()

    def render_chat_template(self, request: ctypes.c_char_p) -> int | None:
        return self._lib.ct_render(request)

    def fetch_chat_template(self, request: ctypes.c_char_p) -> int | None:
        return self._lib.ct_fetch_template(request)

    def clear_caches(self) -> int | None:
        return self._lib.ct_clear_caches()

    def cleanup_module(self) -> None:
        self._lib.ct_module_cleanup()

    def stop_interpreter(self) -> None:
        self._lib.ct_runtime_stop()

    def free_result(self, address: int) -> None:
        self._lib.ct_free(address)

    def __repr__(self) -> str:
        return f"NativeRuntime({getattr(self._lib, '_name', None)!r})"
