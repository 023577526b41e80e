"""Versioned entry points the pipeline uses to reach the model loader and the
dynamics kernels.

The driver never looks functions up by name at run time. It talks to a
`DynamicsLibrary`, whose methods are the complete, fixed set of operations
it needs. Alternative implementations (instrumented ones in tests, for
instance) subclass it and keep the same signatures.
"""

from typing import Tuple

import numpy as np

from . import dynamics as _dynamics
from .core import state as _state
from .core.collections import SegmentedVector, Symmetric
from .core.mechanism import Mechanism, ScalarType
from .core.state import DynamicsResult, MechanismState
from .io.urdf_parser import load_urdf

API_VERSION: Tuple[int, int] = (1, 0)


class DynamicsLibrary:
    """Model loading and dynamics operations with typed signatures."""

    version = API_VERSION

    def load_mechanism(self, path: str, floating: bool, scalar_type: ScalarType) -> Mechanism:
        return load_urdf(path, floating=floating, scalar_type=scalar_type)

    def create_state(self, mechanism: Mechanism) -> MechanismState:
        return _state.create_state(mechanism)

    def create_dynamics_result(self, mechanism: Mechanism) -> DynamicsResult:
        return _state.create_dynamics_result(mechanism)

    def num_positions(self, state: MechanismState) -> int:
        return _state.num_positions(state)

    def num_velocities(self, state: MechanismState) -> int:
        return _state.num_velocities(state)

    def configuration(self, state: MechanismState) -> SegmentedVector:
        return _state.configuration(state)

    def velocity(self, state: MechanismState) -> SegmentedVector:
        return _state.velocity(state)

    def similar(self, vector: SegmentedVector) -> SegmentedVector:
        return _state.similar(vector)

    def inverse_dynamics(self, torquesout: SegmentedVector, jointwrenches: np.ndarray,
                         accelerations: np.ndarray, state: MechanismState,
                         vd_desired: SegmentedVector) -> None:
        _dynamics.inverse_dynamics(torquesout, jointwrenches, accelerations, state, vd_desired)

    def mass_matrix(self, out: Symmetric, state: MechanismState) -> None:
        _dynamics.mass_matrix(out, state)

    def dynamics(self, result: DynamicsResult, state: MechanismState,
                 torques: SegmentedVector) -> None:
        _dynamics.dynamics(result, state, torques)
