"""Mechanism state and dynamics result containers.

Both containers are plain mutable Python objects owning `numpy` storage that
the kernels read from and write into in place. They are allocated once per
mechanism and reused; their contents start out uninitialized.
"""

from typing import Dict, Tuple, Union

import numpy as np

from ..runtime.lifecycle import require_ready
from .collections import SegmentedVector, Symmetric
from .mechanism import JOINT_DIMENSIONS, Mechanism


def _segments(mechanism: Mechanism, offsets, dim: int) -> Dict[str, Tuple[int, int]]:
    segments = {}
    for link, joint_type in enumerate(mechanism.joint_types):
        size = JOINT_DIMENSIONS[joint_type][dim]
        if size:
            name = mechanism.joint_names[len(segments)]
            segments[name] = (offsets[link], offsets[link] + size)
    return segments


class MechanismState:
    """Configuration and velocity of a mechanism.

    Attributes:
        mechanism: The mechanism this state belongs to.
        q: Configuration vector (length nq), segmented per joint.
        v: Velocity vector (length nv), segmented per joint.
    """

    def __init__(self, mechanism: Mechanism):
        dtype = mechanism.scalar_type.dtype
        self.mechanism = mechanism
        self.q = SegmentedVector(
            np.empty(mechanism.num_positions, dtype=dtype),
            _segments(mechanism, mechanism.q_offsets, 0),
        )
        self.v = SegmentedVector(
            np.empty(mechanism.num_velocities, dtype=dtype),
            _segments(mechanism, mechanism.v_offsets, 1),
        )

    def __repr__(self) -> str:
        return (f"MechanismState(nq={self.mechanism.num_positions}, "
                f"nv={self.mechanism.num_velocities})")


class DynamicsResult:
    """Pre-allocated outputs and work buffers for one mechanism.

    Attributes:
        mechanism: The mechanism the buffers are sized for.
        jointwrenches: (num_links, 6) wrench transmitted by each joint, world frame.
        accelerations: (num_links, 6) spatial acceleration of each link, world frame.
        massmatrix: (nv, nv) mass matrix; only the lower triangle is written.
        dynamicsbias: (nv,) Coriolis, centrifugal and gravity terms.
        vd: (nv,) joint accelerations solved by forward dynamics.
    """

    def __init__(self, mechanism: Mechanism):
        dtype = mechanism.scalar_type.dtype
        nv = mechanism.num_velocities
        v_segments = _segments(mechanism, mechanism.v_offsets, 1)
        self.mechanism = mechanism
        self.jointwrenches = np.empty((mechanism.num_links, 6), dtype=dtype)
        self.accelerations = np.empty((mechanism.num_links, 6), dtype=dtype)
        self.massmatrix = Symmetric(np.empty((nv, nv), dtype=dtype), uplo="L")
        self.dynamicsbias = SegmentedVector(np.empty(nv, dtype=dtype), v_segments)
        self.vd = SegmentedVector(np.empty(nv, dtype=dtype), v_segments)


def create_state(mechanism: Mechanism) -> MechanismState:
    require_ready()
    return MechanismState(mechanism)


def create_dynamics_result(mechanism: Mechanism) -> DynamicsResult:
    require_ready()
    return DynamicsResult(mechanism)


def configuration(state: MechanismState) -> SegmentedVector:
    return state.q


def velocity(state: MechanismState) -> SegmentedVector:
    return state.v


def similar(vector: SegmentedVector) -> SegmentedVector:
    """Allocate an uninitialized vector with the same segmentation and dtype."""
    require_ready()
    return SegmentedVector(np.empty_like(vector.parent), vector.segments)


def num_positions(x: Union[Mechanism, MechanismState]) -> int:
    mechanism = x.mechanism if isinstance(x, MechanismState) else x
    return mechanism.num_positions


def num_velocities(x: Union[Mechanism, MechanismState]) -> int:
    mechanism = x.mechanism if isinstance(x, MechanismState) else x
    return mechanism.num_velocities
