"""Embedding layer: runtime lifecycle, root set and buffer bridge.

This module provides the pieces driver code needs to call into the numeric
runtime safely: an explicit init/teardown window, a stack of root frames
keeping runtime objects alive, zero-copy borrows of their storage, and a
scoped suspension of the garbage collector.
"""

from .lifecycle import (
    Runtime,
    RuntimeConfig,
    collector_is_suspended,
    collector_suspended,
    current,
    require_ready,
)
from .roots import RootScope, is_rooted, pop_roots, push_roots
from .bridge import Buffer, resolve_buffer, unwrap

__all__ = [
    "Runtime",
    "RuntimeConfig",
    "collector_is_suspended",
    "collector_suspended",
    "current",
    "require_ready",
    "RootScope",
    "is_rooted",
    "pop_roots",
    "push_roots",
    "Buffer",
    "resolve_buffer",
    "unwrap",
]
