"""Zero-copy access to runtime-owned numeric storage.

`resolve_buffer` turns a rooted container (a bare array or a wrapper such as
`SegmentedVector` or `Symmetric`) into a `Buffer`: the raw address, length
and element type of the flat backing array plus a writable flat view onto
the same memory. A buffer is a borrow. It is registered on a root scope and
ends when that scope is popped; any use after that raises `BorrowError`.
"""

import ctypes
import logging
from typing import Any

import numpy as np

from ..core.collections import parent
from ..core.mechanism import ScalarType
from ..errors import BorrowError, BufferResolutionError
from . import roots

logger = logging.getLogger(__name__)

_CTYPES = {
    ScalarType.FLOAT64: ctypes.c_double,
    ScalarType.FLOAT32: ctypes.c_float,
}


def unwrap(container: Any) -> np.ndarray:
    """Follow `parent` links down to the flat backing array."""
    current = container
    while not isinstance(current, np.ndarray):
        try:
            current = parent(current)
        except TypeError:
            raise BufferResolutionError(
                f"Cannot resolve {type(container).__name__} to array storage") from None
    return current


class Buffer:
    """A borrowed, directly addressable view of a flat numeric array.

    Attributes:
        address: Address of the first element.
        length: Number of elements.
        element_type: Scalar type of the elements.
    """

    def __init__(self, owner: Any, backing: np.ndarray, scope: "roots.RootScope"):
        self._owner = owner
        self._backing = backing
        self._view = backing.reshape(-1)
        self._scope = scope
        self._released = False
        self.address = backing.ctypes.data
        self.length = backing.size
        self.element_type = ScalarType.from_dtype(backing.dtype)

    @property
    def valid(self) -> bool:
        return (not self._released
                and self._scope.active
                and self._backing.ctypes.data == self.address)

    @property
    def owner(self) -> Any:
        self._check()
        return self._owner

    @property
    def array(self) -> np.ndarray:
        """Flat view sharing memory with the owner's storage."""
        self._check()
        return self._view

    def fill(self, value) -> None:
        self._check()
        self._view.fill(value)

    def write(self, values) -> None:
        self._check()
        values = np.asarray(values, dtype=self._view.dtype).reshape(-1)
        if values.shape[0] != self.length:
            raise ValueError(f"Expected {self.length} values, got {values.shape[0]}")
        self._view[...] = values

    def read(self) -> np.ndarray:
        """Copy the current contents out of the borrowed memory."""
        self._check()
        return self._view.copy()

    def as_ctypes(self) -> ctypes.Array:
        """ctypes array over the borrowed memory, for handing to C code."""
        self._check()
        return (_CTYPES[self.element_type] * self.length).from_address(self.address)

    def release(self) -> None:
        self._released = True
        self._view = None
        self._owner = None

    def __len__(self) -> int:
        return self.length

    def __getitem__(self, index):
        return self.array[index]

    def __setitem__(self, index, value):
        self.array[index] = value

    def _check(self) -> None:
        if self._released or not self._scope.active:
            raise BorrowError("Buffer used after its root scope was popped")
        if self._backing.ctypes.data != self.address:
            raise BorrowError("Backing storage moved while the buffer was borrowed")

    def __repr__(self) -> str:
        state = "valid" if self.valid else "released"
        return (f"Buffer(address=0x{self.address:x}, length={self.length}, "
                f"element_type={self.element_type.label}, {state})")


def resolve_buffer(container: Any, scope: "roots.RootScope") -> Buffer:
    """Borrow the flat storage behind `container` for the lifetime of `scope`.

    Args:
        container: A rooted array or array wrapper.
        scope: The active root frame the borrow is tied to. `container` must
               be held by this frame or by one pushed before it.

    Returns:
        Buffer aliasing the container's backing array.

    Raises:
        BufferResolutionError: if the container is not rooted, cannot be
            unwrapped, or its storage is not a contiguous float array.
    """
    if not roots.outlives(scope, container):
        raise BufferResolutionError(
            f"{type(container).__name__} is not rooted by an active frame at or below {scope}")

    backing = unwrap(container)
    if not backing.flags.c_contiguous:
        raise BufferResolutionError("Backing array is not contiguous")
    if not backing.flags.writeable:
        raise BufferResolutionError("Backing array is read-only")
    try:
        ScalarType.from_dtype(backing.dtype)
    except ValueError as e:
        raise BufferResolutionError(str(e)) from None

    buffer = Buffer(container, backing, scope)
    scope.register_borrow(buffer)
    logger.debug("Borrowed %r from %s", buffer, type(container).__name__)
    return buffer
