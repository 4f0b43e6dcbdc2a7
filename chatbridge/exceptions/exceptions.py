"""
chatbridge exceptions.

This module defines the exception hierarchy for chatbridge:

    BridgeError (base)
    ├── InvalidInputError - Request missing or malformed before encoding
    ├── EncodingError - Request could not be serialized
    ├── DecodingError - Foreign result did not parse into the expected shape
    ├── ForeignCallError - Boundary call returned the failure sentinel
    │   └── CacheClearError - Cache-clear entry point failed
    ├── ModuleInitError - Template module failed to initialize
    ├── StateError - Invalid processor state
    │   └── NotInitializedError - Call outside the ready window
    └── LibraryLoadError - Shared library could not be loaded

Usage:
    try:
        response = processor.render_chat_template(request)
    except chatbridge.ForeignCallError:
        print("Nothing was rendered")
    except chatbridge.DecodingError as e:
        print(f"Rendered, but malformed ({e.details['length']} bytes)")
    except chatbridge.BridgeError as e:
        print(f"Error {e.code}: {e}")
"""

from typing import Any

__all__ = [
    # Base
    "BridgeError",
    # Request / response
    "InvalidInputError",
    "EncodingError",
    "DecodingError",
    # Boundary
    "ForeignCallError",
    "CacheClearError",
    # Lifecycle
    "ModuleInitError",
    "StateError",
    "NotInitializedError",
    "LibraryLoadError",
]


class BridgeError(Exception):
    """
    Base exception for all chatbridge errors.

    Attributes
    ----------
    message : str
        Human-readable error description.
    code : str
        Stable, string-based error code (e.g., "FOREIGN_CALL_FAILED").
        Use this for programmatic error handling.
    details : dict[str, Any]
        Structured context (e.g., {"operation": "render", "length": 12}).
        Never contains request payloads or access tokens.
    original_code : int | None
        Status code reported by the foreign runtime, when there is one.

    Example
    -------
    >>> try:
    ...     processor.render_chat_template(None)
    ... except chatbridge.BridgeError as e:
    ...     print(f"Error code: {e.code}")
    Error code: INVALID_INPUT
    """

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_code = original_code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.args[0]!r}, code={self.code!r})"


# =============================================================================
# Request / Response Errors
# =============================================================================


class InvalidInputError(BridgeError, ValueError):
    """
    Request is missing or malformed.

    Raised before anything is serialized. Common causes:
    - ``None`` passed as the request
    - Request of the wrong type
    - Fetch request with an empty model identifier
    - Invalid configuration value
    """

    def __init__(
        self,
        message: str,
        code: str = "INVALID_INPUT",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class EncodingError(BridgeError, ValueError):
    """
    Request could not be serialized to the interchange format.

    Common causes:
    - Opaque values (tools, documents, kwargs) that are not JSON values
    - NaN or infinite floats
    - Strings with lone surrogates (not encodable as UTF-8)
    """

    def __init__(
        self,
        message: str,
        code: str = "ENCODING_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class DecodingError(BridgeError, ValueError):
    """
    Foreign result did not parse into the expected shape.

    A result was produced but it is unusable: invalid UTF-8, invalid JSON,
    or fields of the wrong type. ``details["length"]`` holds the number of
    bytes received. The payload itself is never attached.
    """

    def __init__(
        self,
        message: str,
        code: str = "DECODING_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# Boundary Errors
# =============================================================================


class ForeignCallError(BridgeError, RuntimeError):
    """
    Boundary call returned the failure sentinel.

    Nothing was rendered. The foreign runtime reported an error (or raised
    one that was converted at the boundary). The call is not retried; the
    next call may still succeed.
    """

    def __init__(
        self,
        message: str,
        code: str = "FOREIGN_CALL_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class CacheClearError(ForeignCallError):
    """Cache-clear entry point returned the failure sentinel."""

    def __init__(
        self,
        message: str,
        code: str = "CACHE_CLEAR_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# Lifecycle Errors
# =============================================================================


class ModuleInitError(BridgeError, RuntimeError):
    """
    Template module failed to initialize.

    The interpreter was started before module initialization ran and is
    still running (``details["interpreter_running"]``). The caller must
    still call ``finalize()`` to stop it. The processor refuses all
    boundary calls until then.
    """

    def __init__(
        self,
        message: str,
        code: str = "MODULE_INIT_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class StateError(BridgeError, RuntimeError):
    """
    Invalid processor state.

    Raised when a lifecycle operation does not fit the current state:
    - ``initialize()`` called twice
    - Another processor already owns the process-wide runtime
    - A foreign buffer freed twice
    """

    def __init__(
        self,
        message: str,
        code: str = "STATE_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class NotInitializedError(StateError):
    """
    Boundary call attempted outside the ready window.

    Raised before ``initialize()`` has completed, after it failed, or once
    ``finalize()`` has begun. No boundary call is made.
    """

    def __init__(
        self,
        message: str,
        code: str = "NOT_INITIALIZED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


class LibraryLoadError(BridgeError, OSError):
    """
    Shared library could not be located or loaded.

    Set ``chatbridge.config.library_path`` or the ``CHATBRIDGE_LIBRARY``
    environment variable to the collaborator library.
    """

    def __init__(
        self,
        message: str,
        code: str = "LIBRARY_LOAD_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)
