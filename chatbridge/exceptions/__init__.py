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
"""

from .exceptions import (
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

# =============================================================================
# Public API - See chatbridge/__init__.py for documentation mapping guidelines
# =============================================================================
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
