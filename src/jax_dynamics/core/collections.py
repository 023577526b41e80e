"""Typed views over flat runtime-owned arrays.

Quantities such as the configuration, velocity and mass matrix are not handed
out as bare arrays. They are wrappers that remember how the flat storage is
segmented (per joint) or which triangle of a square matrix is meaningful.
`parent` strips one wrapper layer and returns the backing array.
"""

from typing import Dict, Tuple

import numpy as np


class SegmentedVector:
    """A flat vector split into named per-joint segments.

    The wrapper never copies: indexing by joint name returns a view into the
    backing array, and the backing array itself is reachable through `parent`.
    """

    def __init__(self, data: np.ndarray, segments: Dict[str, Tuple[int, int]]):
        if data.ndim != 1:
            raise ValueError(f"SegmentedVector needs 1-D storage, got shape {data.shape}")
        self._data = data
        self._segments = dict(segments)

    @property
    def parent(self) -> np.ndarray:
        return self._data

    @property
    def segments(self) -> Dict[str, Tuple[int, int]]:
        return dict(self._segments)

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    def segment(self, name: str) -> np.ndarray:
        start, stop = self._segments[name]
        return self._data[start:stop]

    def __getitem__(self, key):
        if isinstance(key, str):
            return self.segment(key)
        return self._data[key]

    def __setitem__(self, key, value):
        if isinstance(key, str):
            self.segment(key)[...] = value
        else:
            self._data[key] = value

    def __len__(self) -> int:
        return self._data.shape[0]

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._data
        return self._data.astype(dtype)

    def __repr__(self) -> str:
        return f"SegmentedVector({self._data!r}, segments={list(self._segments)})"


class Symmetric:
    """A square matrix of which only one triangle is meaningful.

    Kernels only write the `uplo` triangle of the backing array; the other
    triangle holds whatever the storage contained before. Use `full` to get
    a symmetrized copy.
    """

    def __init__(self, data: np.ndarray, uplo: str = "L"):
        if data.ndim != 2 or data.shape[0] != data.shape[1]:
            raise ValueError(f"Symmetric needs square storage, got shape {data.shape}")
        if uplo not in ("L", "U"):
            raise ValueError(f"uplo must be 'L' or 'U', got {uplo!r}")
        self._data = data
        self.uplo = uplo

    @property
    def parent(self) -> np.ndarray:
        return self._data

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    def triangle_indices(self) -> Tuple[np.ndarray, np.ndarray]:
        n = self._data.shape[0]
        return np.tril_indices(n) if self.uplo == "L" else np.triu_indices(n)

    def full(self) -> np.ndarray:
        tri = np.tril(self._data) if self.uplo == "L" else np.triu(self._data)
        return tri + tri.T - np.diag(np.diag(tri))

    def __array__(self, dtype=None, copy=None):
        full = self.full()
        return full if dtype is None else full.astype(dtype)

    def __repr__(self) -> str:
        return f"Symmetric({self.full()!r}, uplo={self.uplo!r})"


def parent(x):
    """Return the storage one level below a wrapper.

    Raises:
        TypeError: if `x` is not a wrapper.
    """
    if isinstance(x, (SegmentedVector, Symmetric)):
        return x.parent
    raise TypeError(f"{type(x).__name__} has no parent array")
