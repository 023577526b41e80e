"""
JAX-based Lie group helpers used by the dynamics kernels.

This module provides JIT-compilable implementations of:
- SO(3) rotations (so3 module)
- SE(3) rigid body transforms and spatial algebra (se3 module)

All functions are pure, stateless, and designed for high-performance computation.
"""

from . import so3
from . import se3

__all__ = [
    "so3",
    "se3",
]
