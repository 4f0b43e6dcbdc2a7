"""
Tests for the chatbridge exception hierarchy.

Tests that:
1. Every error is importable from chatbridge and chatbridge.exceptions
2. Error codes are stable strings
3. Errors remain catchable as the matching builtin exception
"""

import pytest

import chatbridge
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


class TestErrorTypes:
    """Tests for error type hierarchy and accessibility."""

    def test_base_error_importable(self):
        """BridgeError is importable from chatbridge."""
        assert chatbridge.BridgeError is BridgeError
        assert issubclass(BridgeError, Exception)

    @pytest.mark.parametrize(
        "cls",
        [
            InvalidInputError,
            EncodingError,
            DecodingError,
            ForeignCallError,
            CacheClearError,
            ModuleInitError,
            StateError,
            NotInitializedError,
            LibraryLoadError,
        ],
    )
    def test_subclasses_of_bridge_error(self, cls):
        """Every chatbridge error derives from BridgeError."""
        assert issubclass(cls, BridgeError)
        assert getattr(chatbridge, cls.__name__) is cls

    def test_error_inheritance_chain(self):
        """Errors are catchable as the closest builtin exception."""
        assert issubclass(InvalidInputError, ValueError)
        assert issubclass(EncodingError, ValueError)
        assert issubclass(DecodingError, ValueError)
        assert issubclass(ForeignCallError, RuntimeError)
        assert issubclass(ModuleInitError, RuntimeError)
        assert issubclass(StateError, RuntimeError)
        assert issubclass(LibraryLoadError, OSError)

    def test_specialized_errors(self):
        """Specialized errors are caught by their parent."""
        assert issubclass(CacheClearError, ForeignCallError)
        assert issubclass(NotInitializedError, StateError)


class TestErrorCodes:
    """Tests for default error codes."""

    @pytest.mark.parametrize(
        ("cls", "code"),
        [
            (BridgeError, "INTERNAL_ERROR"),
            (InvalidInputError, "INVALID_INPUT"),
            (EncodingError, "ENCODING_FAILED"),
            (DecodingError, "DECODING_FAILED"),
            (ForeignCallError, "FOREIGN_CALL_FAILED"),
            (CacheClearError, "CACHE_CLEAR_FAILED"),
            (ModuleInitError, "MODULE_INIT_FAILED"),
            (StateError, "STATE_ERROR"),
            (NotInitializedError, "NOT_INITIALIZED"),
            (LibraryLoadError, "LIBRARY_LOAD_FAILED"),
        ],
    )
    def test_default_code(self, cls, code):
        """Each error class carries its default code."""
        assert cls("message").code == code

    def test_code_override(self):
        """Explicit code replaces the default."""
        err = StateError("buffer used", code="BUFFER_RELEASED")
        assert err.code == "BUFFER_RELEASED"


class TestErrorAttributes:
    """Tests for message, details and original_code."""

    def test_message_is_str(self):
        """str(error) is the message."""
        assert str(ForeignCallError("render failed")) == "render failed"

    def test_details_default_empty(self):
        """details defaults to an empty dict, never None."""
        assert DecodingError("bad").details == {}

    def test_details_preserved(self):
        """details are kept as given."""
        err = DecodingError("bad", details={"operation": "render", "length": 12})
        assert err.details == {"operation": "render", "length": 12}

    def test_original_code(self):
        """original_code carries the foreign status code."""
        err = ModuleInitError("init failed", original_code=1)
        assert err.original_code == 1
        assert ForeignCallError("x").original_code is None

    def test_repr(self):
        """repr shows class, message and code."""
        err = NotInitializedError("render called while processor is 'new'")
        assert repr(err) == (
            "NotInitializedError(\"render called while processor is 'new'\", "
            "code='NOT_INITIALIZED')"
        )

    def test_catch_as_base(self):
        """Specific errors can be handled through BridgeError."""
        with pytest.raises(BridgeError) as exc_info:
            raise CacheClearError("clear failed")
        assert exc_info.value.code == "CACHE_CLEAR_FAILED"
