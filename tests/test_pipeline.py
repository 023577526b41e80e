"""End-to-end tests for the dynamics pipeline."""

import gc
from pathlib import Path

import numpy as np
import pytest

from jax_dynamics import DynamicsLibrary, Inputs, Pipeline, Stage
from jax_dynamics.core import ScalarType
from jax_dynamics.errors import ConfigurationError, DynamicsError, ModelLoadError, RuntimeStateError
from jax_dynamics.runtime import collector_is_suspended, current, roots

FIXTURES = Path(__file__).parent / "fixtures"
G = 9.81


class RecordingLibrary(DynamicsLibrary):
    """Records the order of kernel calls and the collector state during each."""

    def __init__(self, fail_dynamics=False):
        self.calls = []
        self.fail_dynamics = fail_dynamics

    def _record(self, name):
        self.calls.append((name, gc.isenabled(), collector_is_suspended()))

    def inverse_dynamics(self, *args):
        self._record("inverse_dynamics")
        super().inverse_dynamics(*args)

    def mass_matrix(self, *args):
        self._record("mass_matrix")
        super().mass_matrix(*args)

    def dynamics(self, *args):
        self._record("dynamics")
        if self.fail_dynamics:
            raise DynamicsError("solver failed")
        super().dynamics(*args)


@pytest.fixture
def events():
    recorded = []
    observer = lambda event, names: recorded.append((event, names))
    roots.add_observer(observer)
    yield recorded
    roots.remove_observer(observer)


def test_pendulum_scenario():
    """With q=1, v=2, vd=3 forward dynamics recovers vd from the computed torques."""
    pipeline = Pipeline(str(FIXTURES / "pendulum.urdf"))
    summary = pipeline.run()

    assert pipeline.stage is Stage.TERMINATED
    assert summary.nq == 1 and summary.nv == 1
    assert summary.scalar_type is ScalarType.FLOAT64

    np.testing.assert_allclose(summary["q"], [1.0])
    np.testing.assert_allclose(summary["v"], [2.0])
    np.testing.assert_allclose(summary["tau"], [1.0 + 0.5 * G * np.sin(1.0)], rtol=1e-10)
    np.testing.assert_allclose(summary.mass_matrix, [[1.0 / 3.0]], rtol=1e-10)
    np.testing.assert_allclose(summary["M"], [1.0 / 3.0], rtol=1e-10)
    np.testing.assert_allclose(summary["vd"], [3.0], rtol=1e-10)

    # The runtime is gone once the pipeline returns
    with pytest.raises(RuntimeStateError):
        current()


def test_kernel_order_and_collector_state():
    """Only forward dynamics runs with the collector suspended."""
    library = RecordingLibrary()
    Pipeline(str(FIXTURES / "cartpole.urdf"), library=library).run()

    assert library.calls == [
        ("inverse_dynamics", True, False),
        ("mass_matrix", True, False),
        ("dynamics", False, True),
    ]
    assert gc.isenabled()
    assert not collector_is_suspended()


def test_collector_reenabled_when_dynamics_fails():
    library = RecordingLibrary(fail_dynamics=True)
    pipeline = Pipeline(str(FIXTURES / "cartpole.urdf"), library=library)

    with pytest.raises(DynamicsError):
        pipeline.run()

    assert pipeline.stage is Stage.MASS_MATRIX_DONE
    assert gc.isenabled()
    assert not collector_is_suspended()
    with pytest.raises(RuntimeStateError):
        current()


def test_roots_pushed_and_popped_in_order(events):
    Pipeline(str(FIXTURES / "pendulum.urdf")).run()

    outer = ("mechanism", "state", "result", "vd_desired", "tau")
    inner = ("q", "v", "vd", "M")
    assert events == [
        ("push", outer),
        ("push", inner),
        ("pop", inner),
        ("pop", outer),
    ]


def test_floating_base_run():
    """A floating base adds six velocity and seven position coordinates."""
    summary = Pipeline(str(FIXTURES / "cartpole.urdf"), floating=True).run()

    assert summary.nq == 9 and summary.nv == 8
    assert summary["M"].shape == (64,)
    np.testing.assert_allclose(summary["vd"], np.full(8, 3.0), rtol=1e-8, atol=1e-8)
    np.testing.assert_allclose(summary.mass_matrix, summary.mass_matrix.T)


def test_float32_run():
    summary = Pipeline(str(FIXTURES / "pendulum.urdf"), scalar_type=ScalarType.FLOAT32).run()

    assert summary.scalar_type is ScalarType.FLOAT32
    for name in ("q", "v", "vd_desired", "tau", "vd", "M"):
        assert summary[name].dtype == np.float32
    np.testing.assert_allclose(summary["vd"], [3.0], rtol=1e-4)


def test_sequence_inputs():
    inputs = Inputs(q=[0.4, 0.3], v=[2.0, -1.0], vd_desired=[0.5, 3.0])
    summary = Pipeline(str(FIXTURES / "cartpole.urdf"), inputs=inputs).run()

    np.testing.assert_allclose(summary["q"], [0.4, 0.3])
    np.testing.assert_allclose(summary["vd"], [0.5, 3.0], rtol=1e-8, atol=1e-10)


def test_wrong_input_length():
    """Input sequences must match the buffer length."""
    pipeline = Pipeline(str(FIXTURES / "cartpole.urdf"), inputs=Inputs(q=[1.0, 2.0, 3.0]))
    with pytest.raises(ValueError):
        pipeline.run()
    assert pipeline.stage is Stage.BUFFERS_BOUND


def test_load_failure_shuts_runtime_down():
    pipeline = Pipeline(str(FIXTURES / "planar.urdf"))
    with pytest.raises(ModelLoadError):
        pipeline.run()

    assert pipeline.stage is Stage.RUNTIME_READY
    with pytest.raises(RuntimeStateError):
        current()


def test_pipeline_runs_once():
    pipeline = Pipeline(str(FIXTURES / "pendulum.urdf"))
    pipeline.run()
    with pytest.raises(RuntimeStateError):
        pipeline.run()


def test_zero_dof_model():
    """A rigidly fixed body yields empty buffers and still completes."""
    summary = Pipeline(str(FIXTURES / "free_body.urdf")).run()

    assert summary.nq == 0 and summary.nv == 0
    for name in ("q", "v", "vd_desired", "tau", "vd", "M"):
        assert summary[name].shape == (0,)


def test_singular_mass_matrix_fails_run():
    pipeline = Pipeline(str(FIXTURES / "massless_link.urdf"))
    with pytest.raises(DynamicsError):
        pipeline.run()

    assert pipeline.stage is Stage.MASS_MATRIX_DONE
    assert gc.isenabled()
    with pytest.raises(RuntimeStateError):
        current()


class FutureLibrary(DynamicsLibrary):
    version = (2, 0)


class NewerMinorLibrary(DynamicsLibrary):
    version = (1, 3)


def test_incompatible_library_rejected():
    """Libraries with another major API version are refused before anything runs."""
    with pytest.raises(ConfigurationError, match="API"):
        Pipeline(str(FIXTURES / "pendulum.urdf"), library=FutureLibrary())


def test_newer_minor_version_accepted():
    summary = Pipeline(str(FIXTURES / "pendulum.urdf"), library=NewerMinorLibrary()).run()
    np.testing.assert_allclose(summary["vd"], [3.0], rtol=1e-10)
