"""Single-shot computation pipeline.

Loads a mechanism, allocates its state and result storage, borrows the
numeric buffers, fills the inputs and runs inverse dynamics, the mass matrix
and forward dynamics in that order. Forward dynamics runs with the garbage
collector suspended because the borrowed `vd` buffer must stay where it is
for the whole call.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Union

import numpy as np

from .api import API_VERSION, DynamicsLibrary
from .core.mechanism import ScalarType
from .errors import ConfigurationError, RuntimeStateError
from .runtime.bridge import Buffer, resolve_buffer
from .runtime.lifecycle import Runtime, RuntimeConfig, collector_suspended
from .runtime.roots import push_roots

logger = logging.getLogger(__name__)

Values = Union[float, Sequence[float], np.ndarray]


class Stage(enum.IntEnum):
    UNINITIALIZED = 0
    RUNTIME_READY = 1
    MECHANISM_LOADED = 2
    ALLOCATED = 3
    BUFFERS_BOUND = 4
    INPUTS_READY = 5
    INVERSE_DYNAMICS_DONE = 6
    MASS_MATRIX_DONE = 7
    FORWARD_DYNAMICS_DONE = 8
    TERMINATED = 9


@dataclass(frozen=True)
class Inputs:
    """Values written into the input buffers before the first kernel call.

    A scalar fills the whole buffer; a sequence must match its length.
    The defaults are the fixed synthetic inputs used when no data source
    is consumed.
    """
    q: Values = 1.0
    v: Values = 2.0
    vd_desired: Values = 3.0
    tau: Values = 4.0


@dataclass
class RunSummary:
    """Copies of the buffers taken just before the roots were popped."""
    scalar_type: ScalarType
    nq: int
    nv: int
    buffers: Dict[str, np.ndarray] = field(default_factory=dict)
    mass_matrix: Optional[np.ndarray] = None

    def __getitem__(self, name: str) -> np.ndarray:
        return self.buffers[name]


class Pipeline:
    """Drives the fixed sequence of dynamics computations for one model.

    Args:
        model_path: Path of the model description.
        floating: Give the mechanism a floating base.
        scalar_type: Element type of all numeric storage.
        library: Model loader and kernels to call.
        inputs: Input values; defaults to the synthetic constants.
        runtime_config: Settings for the runtime brought up by `run`.

    Raises:
        ConfigurationError: if `library` implements a different major API version.
    """

    def __init__(self, model_path: str, floating: bool = False,
                 scalar_type: ScalarType = ScalarType.FLOAT64,
                 library: Optional[DynamicsLibrary] = None,
                 inputs: Optional[Inputs] = None,
                 runtime_config: Optional[RuntimeConfig] = None):
        self.model_path = model_path
        self.floating = floating
        self.scalar_type = ScalarType(scalar_type)
        self.library = library if library is not None else DynamicsLibrary()
        if self.library.version[0] != API_VERSION[0]:
            raise ConfigurationError(
                f"Dynamics library implements API {self.library.version}, driver needs {API_VERSION[0]}.x")
        self.inputs = inputs if inputs is not None else Inputs()
        self.runtime_config = runtime_config if runtime_config is not None else RuntimeConfig()
        self.stage = Stage.UNINITIALIZED

    def run(self) -> RunSummary:
        """Execute every stage once. Errors propagate after runtime shutdown."""
        if self.stage is not Stage.UNINITIALIZED:
            raise RuntimeStateError(f"Pipeline already ran (stage {self.stage.name})")

        runtime = Runtime(self.runtime_config).initialize()
        self._advance(Stage.RUNTIME_READY)
        exit_code = 1
        try:
            summary = self._compute()
            exit_code = 0
        finally:
            runtime.shutdown(exit_code)
        self._advance(Stage.TERMINATED)
        return summary

    def _compute(self) -> RunSummary:
        lib = self.library
        with push_roots("mechanism", "state", "result", "vd_desired", "tau") as roots:
            roots["mechanism"] = lib.load_mechanism(self.model_path, self.floating, self.scalar_type)
            self._advance(Stage.MECHANISM_LOADED)

            roots["state"] = lib.create_state(roots["mechanism"])
            roots["result"] = lib.create_dynamics_result(roots["mechanism"])
            state, result = roots["state"], roots["result"]
            self._advance(Stage.ALLOCATED)

            nq = lib.num_positions(state)
            nv = lib.num_velocities(state)
            q = lib.configuration(state)
            v = lib.velocity(state)
            roots["vd_desired"] = lib.similar(v)
            roots["tau"] = lib.similar(v)

            with push_roots(q=q, v=v, vd=result.vd, M=result.massmatrix) as views:
                buffers = {
                    "q": resolve_buffer(q, views),
                    "v": resolve_buffer(v, views),
                    "vd_desired": resolve_buffer(roots["vd_desired"], views),
                    "tau": resolve_buffer(roots["tau"], views),
                    "vd": resolve_buffer(result.vd, views),
                    "M": resolve_buffer(result.massmatrix, views),
                }
                self._advance(Stage.BUFFERS_BOUND)

                self._populate(buffers)
                self._advance(Stage.INPUTS_READY)

                lib.inverse_dynamics(roots["tau"], result.jointwrenches, result.accelerations,
                                     state, roots["vd_desired"])
                self._advance(Stage.INVERSE_DYNAMICS_DONE)

                lib.mass_matrix(result.massmatrix, state)
                self._advance(Stage.MASS_MATRIX_DONE)

                with collector_suspended():
                    lib.dynamics(result, state, roots["tau"])
                self._advance(Stage.FORWARD_DYNAMICS_DONE)

                summary = RunSummary(
                    scalar_type=self.scalar_type, nq=nq, nv=nv,
                    buffers={name: buffer.read() for name, buffer in buffers.items()},
                    mass_matrix=result.massmatrix.full(),
                )

        logger.info("Computed dynamics for %s (nq=%d, nv=%d)", self.model_path, nq, nv)
        return summary

    def _populate(self, buffers: Dict[str, Buffer]) -> None:
        for name in ("q", "v", "vd_desired", "tau"):
            value = getattr(self.inputs, name)
            if np.ndim(value) == 0:
                buffers[name].fill(value)
            else:
                buffers[name].write(value)

    def _advance(self, stage: Stage) -> None:
        if stage != self.stage + 1:
            raise RuntimeStateError(f"Cannot move from {self.stage.name} to {stage.name}")
        self.stage = stage
        logger.debug("Pipeline stage: %s", stage.name)
