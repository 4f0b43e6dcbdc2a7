"""
Host memory diagnostics around boundary calls.

Snapshots are taken before and after each boundary crossing and logged at
TRACE. They are observational only and skip all work unless TRACE is
enabled.
"""

from __future__ import annotations

import gc
import sys
import tracemalloc
from dataclasses import asdict, dataclass

from ._logging import TRACE, scoped_logger
from .config import config

try:
    import resource
except ImportError:  # pragma: no cover - Windows
    resource = None  # type: ignore[assignment]

logger = scoped_logger("diagnostics.memory")

__all__ = ["MemoryStats", "log_memory_stats"]


@dataclass(frozen=True)
class MemoryStats:
    """
    One reading of host allocator statistics.

    CPython has no single allocator report, so each figure maps onto the
    closest reading it does expose:

    ================  ===================  ==================================
    Figure            Field                Source
    ================  ===================  ==================================
    bytes allocated   traced_bytes         tracemalloc current (tracing only)
    cumulative        traced_peak_bytes    tracemalloc peak (tracing only)
    system reserved   max_rss_kb           getrusage ru_maxrss
    GC count          gc_collections       gc.get_stats() collections
    ================  ===================  ==================================

    CPython keeps no running total of bytes ever allocated; the tracemalloc
    peak is the high-water mark since tracing started. Without tracing, the
    two traced fields are 0 and ``allocated_blocks`` is the only live-heap
    figure.

    Attributes
    ----------
        allocated_blocks: Memory blocks currently held by the host allocator.
        traced_bytes: Bytes currently traced by tracemalloc (0 when not tracing).
        traced_peak_bytes: Peak traced bytes (0 when not tracing).
        max_rss_kb: Peak resident set size reserved from the OS (0 if unknown).
        gc_collections: Cumulative garbage-collection runs across generations.
    """

    allocated_blocks: int
    traced_bytes: int
    traced_peak_bytes: int
    max_rss_kb: int
    gc_collections: int

    @classmethod
    def snapshot(cls) -> MemoryStats:
        if tracemalloc.is_tracing():
            traced, peak = tracemalloc.get_traced_memory()
        else:
            traced, peak = 0, 0
        max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss if resource else 0
        return cls(
            allocated_blocks=sys.getallocatedblocks(),
            traced_bytes=traced,
            traced_peak_bytes=peak,
            max_rss_kb=max_rss,
            gc_collections=sum(gen["collections"] for gen in gc.get_stats()),
        )


def log_memory_stats(label: str) -> None:
    """Log a MemoryStats snapshot under ``label`` if TRACE is enabled."""
    if not config.memory_stats or not logger.isEnabledFor(TRACE):
        return
    logger.trace(label, extra=asdict(MemoryStats.snapshot()))
