"""Core data structures for the dynamics driver.

This module provides the immutable mechanism description, the segmented and
symmetric array wrappers the runtime hands out, and the state and result
objects the kernels read from and write into.
"""

from .mechanism import Mechanism, ScalarType
from .collections import SegmentedVector, Symmetric, parent
from .state import (
    DynamicsResult,
    MechanismState,
    configuration,
    create_dynamics_result,
    create_state,
    num_positions,
    num_velocities,
    similar,
    velocity,
)

__all__ = [
    "Mechanism",
    "ScalarType",
    "SegmentedVector",
    "Symmetric",
    "parent",
    "DynamicsResult",
    "MechanismState",
    "configuration",
    "create_dynamics_result",
    "create_state",
    "num_positions",
    "num_velocities",
    "similar",
    "velocity",
]
