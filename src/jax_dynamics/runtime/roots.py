"""Process-wide root set for runtime objects used by driver code.

A root frame is a fixed list of named slots holding strong references. While
a frame is on the stack nothing it references can be reclaimed, so buffers
borrowed from those objects stay backed by live storage. Frames nest and must
be popped in reverse order of pushing.

    with push_roots("mechanism", "state") as roots:
        roots["mechanism"] = load_urdf(path)
        roots["state"] = create_state(roots["mechanism"])
        ...
"""

import gc
import logging
import threading
from typing import Any, Callable, Dict, List, Tuple

from ..errors import RootScopeError

logger = logging.getLogger(__name__)

Observer = Callable[[str, Tuple[str, ...]], None]

_lock = threading.Lock()
_stack: List["RootScope"] = []
_observers: List[Observer] = []


class RootScope:
    """One frame of the root stack.

    Slots are declared when the frame is pushed and cannot be added later.
    Leaving the `with` block pops the frame and ends every buffer borrow
    registered on it.
    """

    def __init__(self, names: Tuple[str, ...], values: Dict[str, Any]):
        self._names = names
        self._slots: Dict[str, Any] = dict.fromkeys(names)
        self._slots.update(values)
        self._borrows: List[Any] = []
        self.active = False

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def __getitem__(self, name: str) -> Any:
        return self._slots[name]

    def __setitem__(self, name: str, value: Any) -> None:
        if name not in self._slots:
            raise KeyError(f"Root frame has no slot {name!r}; declared slots are {self._names}")
        if not self.active:
            raise RootScopeError("Cannot assign to a root frame that is not on the stack")
        self._slots[name] = value

    def holds(self, obj: Any) -> bool:
        return any(value is obj for value in self._slots.values())

    def register_borrow(self, borrow: Any) -> None:
        if not self.active:
            raise RootScopeError("Cannot borrow under a root frame that is not on the stack")
        self._borrows.append(borrow)

    def __enter__(self) -> "RootScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.active:
            pop_roots(self)

    def __repr__(self) -> str:
        return f"RootScope({', '.join(self._names)}, active={self.active})"


def push_roots(*names: str, **values: Any) -> RootScope:
    """Push a frame with slots `names` plus one slot per keyword argument.

    The frame is fully built before it becomes visible, and the collector
    is held off while it is linked in.
    """
    all_names = tuple(names) + tuple(n for n in values if n not in names)
    if len(set(all_names)) != len(all_names):
        raise RootScopeError(f"Duplicate root slot names: {all_names}")
    scope = RootScope(all_names, values)

    was_enabled = gc.isenabled()
    gc.disable()
    try:
        with _lock:
            _stack.append(scope)
            scope.active = True
    finally:
        if was_enabled:
            gc.enable()

    logger.debug("Pushed roots %s (depth %d)", all_names, len(_stack))
    _notify("push", all_names)
    return scope


def pop_roots(scope: RootScope) -> None:
    """Pop `scope`, which must be the most recently pushed frame."""
    with _lock:
        if not _stack or _stack[-1] is not scope:
            raise RootScopeError(
                f"Root frame {scope.names} is not on top of the stack; pops must reverse pushes")
        _stack.pop()
        scope.active = False
        borrows, scope._borrows = scope._borrows, []

    for borrow in reversed(borrows):
        borrow.release()
    scope._slots = dict.fromkeys(scope.names)

    logger.debug("Popped roots %s (depth %d)", scope.names, len(_stack))
    _notify("pop", scope.names)


def is_rooted(obj: Any) -> bool:
    with _lock:
        return any(scope.holds(obj) for scope in _stack)


def depth() -> int:
    return len(_stack)


def add_observer(observer: Observer) -> None:
    """Call `observer(event, names)` on every push and pop."""
    _observers.append(observer)


def remove_observer(observer: Observer) -> None:
    _observers.remove(observer)


def _notify(event: str, names: Tuple[str, ...]) -> None:
    for observer in list(_observers):
        observer(event, names)


def outlives(scope: RootScope, obj: Any) -> bool:
    """True when `obj` is held by `scope` or by a frame pushed before it.

    A borrow registered on `scope` ends no later than such a root does.
    """
    with _lock:
        if scope not in _stack:
            return False
        for frame in _stack[:_stack.index(scope) + 1]:
            if frame.holds(obj):
                return True
    return False
