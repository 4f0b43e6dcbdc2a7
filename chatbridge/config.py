"""
Process-wide configuration.

Settings can be modified programmatically without environment variables.

Example:
    >>> from chatbridge import config
    >>> config.library_path = "/opt/chatbridge/libchattemplate.so"
    >>> config.memory_stats = False  # Skip memory snapshots even at TRACE
"""

import os

from .exceptions import InvalidInputError

LIBRARY_ENV_VAR = "CHATBRIDGE_LIBRARY"


class _BridgeConfig:
    """
    Singleton configuration for chatbridge settings.

    This is a singleton - import and modify `config` directly:

        from chatbridge import config
        config.library_path = "./libchattemplate.so"

    Attributes
    ----------
        library_path: Path to the collaborator shared library. When unset,
            ``CHATBRIDGE_LIBRARY`` is consulted, then the package directory,
            then the system library search path.
        memory_stats: When True (default), host memory statistics are logged
            at TRACE level around every boundary call.
    """

    __slots__ = ("_library_path", "_memory_stats")

    def __init__(self) -> None:
        self._library_path: str | None = None
        self._memory_stats = True

    @property
    def library_path(self) -> str | None:
        """Explicit collaborator library path, falling back to the environment."""
        if self._library_path is not None:
            return self._library_path
        return os.environ.get(LIBRARY_ENV_VAR) or None

    @library_path.setter
    def library_path(self, value: str | os.PathLike | None) -> None:
        if value is not None and not isinstance(value, (str, os.PathLike)):
            raise InvalidInputError(
                f"library_path must be str, PathLike or None, got {type(value).__name__}",
                details={"param": "library_path", "type": type(value).__name__},
            )
        self._library_path = os.fspath(value) if value is not None else None

    @property
    def memory_stats(self) -> bool:
        """Log host memory statistics around boundary calls."""
        return self._memory_stats

    @memory_stats.setter
    def memory_stats(self, value: bool) -> None:
        if not isinstance(value, bool):
            raise InvalidInputError(
                f"memory_stats must be bool, got {type(value).__name__}",
                details={"param": "memory_stats", "type": type(value).__name__},
            )
        self._memory_stats = value

    def reset(self) -> None:
        """Restore defaults."""
        self._library_path = None
        self._memory_stats = True

    def __repr__(self) -> str:
        return f"BridgeConfig(library_path={self.library_path!r}, memory_stats={self._memory_stats})"


# Module-level singleton
config = _BridgeConfig()
