"""Tests for kinematics and the dynamics kernels."""

from pathlib import Path

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from jax_dynamics.core import (
    ScalarType,
    create_dynamics_result,
    create_state,
    parent,
    similar,
)
from jax_dynamics.dynamics import (
    dynamics,
    dynamics_bias,
    forward_kinematics,
    forward_kinematics_world,
    inverse_dynamics,
    mass_matrix,
)
from jax_dynamics.errors import DynamicsError, RuntimeStateError
from jax_dynamics.io import load_urdf

FIXTURES = Path(__file__).parent / "fixtures"
G = 9.81


def make(name, runtime, floating=False, scalar_type=ScalarType.FLOAT64):
    mechanism = load_urdf(str(FIXTURES / name), floating=floating, scalar_type=scalar_type)
    return create_state(mechanism), create_dynamics_result(mechanism)


def run_inverse_dynamics(state, result, vd_desired):
    vd = similar(state.v)
    parent(vd)[:] = vd_desired
    tau = similar(state.v)
    inverse_dynamics(tau, result.jointwrenches, result.accelerations, state, vd)
    return parent(tau).copy()


def test_fk_pendulum():
    """The arm rotates about y with the joint angle."""
    mechanism = load_urdf(str(FIXTURES / "pendulum.urdf"))
    poses = forward_kinematics(mechanism, jnp.array([jnp.pi / 2]))

    assert set(poses) == {"base_link", "arm"}
    np.testing.assert_allclose(poses["base_link"], np.eye(4), atol=1e-12)
    # Rotating by 90 degrees about y maps z onto x
    np.testing.assert_allclose(poses["arm"][:3, :3] @ np.array([0, 0, 1.0]), [1.0, 0, 0], atol=1e-12)


def test_fk_cartpole_tip():
    """The tip sits one meter up the pole, carried by the cart."""
    mechanism = load_urdf(str(FIXTURES / "cartpole.urdf"))
    x, theta = 0.4, 0.3
    transforms = forward_kinematics_world(mechanism, jnp.array([x, theta]))

    assert transforms.shape == (4, 4, 4)
    tip = transforms[mechanism.link_names.index("tip")]
    np.testing.assert_allclose(tip[:3, 3], [x + np.sin(theta), 0.0, np.cos(theta)], atol=1e-12)


def test_fk_floating_base():
    """The floating joint places the root at (quaternion, translation)."""
    mechanism = load_urdf(str(FIXTURES / "free_body.urdf"), floating=True)
    q = jnp.array([np.cos(0.25), 0.0, 0.0, np.sin(0.25), 1.0, 2.0, 3.0])
    T = forward_kinematics_world(mechanism, q)[0]

    np.testing.assert_allclose(T[:3, 3], [1.0, 2.0, 3.0], atol=1e-12)
    np.testing.assert_allclose(T[:3, :3] @ np.array([1.0, 0, 0]), [np.cos(0.5), np.sin(0.5), 0], atol=1e-12)


def test_fk_jit_compatibility():
    mechanism = load_urdf(str(FIXTURES / "two_link_arm.urdf"))
    q = jnp.array([0.1, -0.2, 0.3])
    jit_fk = jax.jit(forward_kinematics_world)
    np.testing.assert_allclose(jit_fk(mechanism, q), forward_kinematics_world(mechanism, q), atol=1e-12)


def test_pendulum_inverse_dynamics(runtime):
    """tau = I qdd + m g d sin(q) for a single revolute joint."""
    state, result = make("pendulum.urdf", runtime)
    state.q[:] = 1.0
    state.v[:] = 2.0

    tau = run_inverse_dynamics(state, result, [3.0])
    expected = 3.0 / 3.0 + 0.5 * G * np.sin(1.0)
    np.testing.assert_allclose(tau, [expected], rtol=1e-10)


def test_pendulum_mass_matrix(runtime):
    """M is the inertia about the joint axis, whatever the configuration."""
    state, result = make("pendulum.urdf", runtime)
    for angle in (0.0, 1.0, -2.5):
        state.q[:] = angle
        mass_matrix(result.massmatrix, state)
        np.testing.assert_allclose(result.massmatrix.full(), [[1.0 / 3.0]], rtol=1e-10)


def _cartpole_terms(x, theta, xd, thetad):
    mc, mp, l, Ip = 1.0, 0.5, 0.5, 0.02
    M = np.array([[mc + mp, mp * l * np.cos(theta)],
                  [mp * l * np.cos(theta), Ip + mp * l * l]])
    c = np.array([-mp * l * np.sin(theta) * thetad ** 2,
                  -mp * G * l * np.sin(theta)])
    return M, c


def test_cartpole_against_closed_form(runtime):
    state, result = make("cartpole.urdf", runtime)
    q, v, vd = np.array([0.4, 0.3]), np.array([2.0, -1.0]), np.array([0.5, 3.0])
    state.q[:] = q
    state.v[:] = v

    M_expected, c_expected = _cartpole_terms(*q, *v)

    mass_matrix(result.massmatrix, state)
    np.testing.assert_allclose(result.massmatrix.full(), M_expected, rtol=1e-10, atol=1e-12)

    dynamics_bias(result.dynamicsbias, state)
    np.testing.assert_allclose(parent(result.dynamicsbias), c_expected, rtol=1e-10, atol=1e-12)

    tau = run_inverse_dynamics(state, result, vd)
    np.testing.assert_allclose(tau, M_expected @ vd + c_expected, rtol=1e-10, atol=1e-12)


def test_mass_matrix_writes_lower_triangle_only(runtime):
    state, result = make("two_link_arm.urdf", runtime)
    state.q[:] = [0.3, -0.4, 0.9]
    storage = parent(result.massmatrix)
    storage[:] = -1.0

    mass_matrix(result.massmatrix, state)

    upper = np.triu_indices(3, k=1)
    np.testing.assert_array_equal(storage[upper], -1.0)
    assert np.all(np.diag(storage) > 0)


def test_mass_matrix_idempotent(runtime):
    """Recomputing on an unchanged state gives bit-identical results."""
    state, result = make("two_link_arm.urdf", runtime, floating=True)
    state.q[:] = 1.0
    mass_matrix(result.massmatrix, state)
    first = parent(result.massmatrix).copy()
    mass_matrix(result.massmatrix, state)
    np.testing.assert_array_equal(np.tril(parent(result.massmatrix)), np.tril(first))


def test_free_body_mass_matrix_is_body_inertia(runtime):
    """With body-frame velocities a free body's mass matrix is its spatial inertia."""
    state, result = make("free_body.urdf", runtime, floating=True)
    state.q[:] = [0.3, -0.2, 0.5, 0.1, 1.0, 2.0, 3.0]
    mass_matrix(result.massmatrix, state)
    np.testing.assert_allclose(result.massmatrix.full(), state.mechanism.inertias[0], atol=1e-12)


def test_free_fall(runtime):
    """Without applied forces a resting free body accelerates with gravity."""
    state, result = make("free_body.urdf", runtime, floating=True)
    state.q[:] = [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 10.0]
    state.v[:] = 0.0
    tau = similar(state.v)
    parent(tau)[:] = 0.0

    dynamics(result, state, tau)
    np.testing.assert_allclose(parent(result.vd), [0, 0, -G, 0, 0, 0], atol=1e-10)


@pytest.mark.parametrize("name, floating", [
    ("pendulum.urdf", False),
    ("cartpole.urdf", False),
    ("cartpole.urdf", True),
    ("two_link_arm.urdf", False),
    ("two_link_arm.urdf", True),
])
def test_inverse_forward_round_trip(runtime, name, floating):
    """Forward dynamics with inverse-dynamics torques recovers the acceleration."""
    state, result = make(name, runtime, floating=floating)
    state.q[:] = 1.0
    state.v[:] = 2.0
    vd_desired = np.full(len(state.v), 3.0)

    tau = similar(state.v)
    parent(tau)[:] = run_inverse_dynamics(state, result, vd_desired)
    dynamics(result, state, tau)

    np.testing.assert_allclose(parent(result.vd), vd_desired, rtol=1e-8, atol=1e-8)
    M = result.massmatrix.full()
    np.testing.assert_allclose(M, M.T)
    assert np.all(np.linalg.eigvalsh(M) > 0)


@given(st.lists(st.floats(min_value=-3.0, max_value=3.0), min_size=9, max_size=9))
@settings(deadline=None, max_examples=10)
def test_inverse_dynamics_is_affine_in_acceleration(values):
    """tau(vd) = M vd + c for arbitrary states of the two-link arm."""
    from jax_dynamics.runtime import Runtime

    with Runtime():
        state, result = make("two_link_arm.urdf", None)
        state.q[:] = values[0:3]
        state.v[:] = values[3:6]
        vd = np.array(values[6:9])

        mass_matrix(result.massmatrix, state)
        dynamics_bias(result.dynamicsbias, state)
        tau = run_inverse_dynamics(state, result, vd)

        expected = result.massmatrix.full() @ vd + parent(result.dynamicsbias)
        np.testing.assert_allclose(tau, expected, rtol=1e-9, atol=1e-9)


def test_float32_kernels(runtime):
    state, result = make("cartpole.urdf", runtime, scalar_type=ScalarType.FLOAT32)
    state.q[:] = 1.0
    state.v[:] = 2.0
    tau = similar(state.v)
    parent(tau)[:] = run_inverse_dynamics(state, result, [3.0, 3.0])
    dynamics(result, state, tau)

    assert parent(result.vd).dtype == np.float32
    np.testing.assert_allclose(parent(result.vd), [3.0, 3.0], rtol=1e-3)


def test_empty_mechanism(runtime):
    """A fixed single body has no degrees of freedom; every kernel still runs."""
    state, result = make("free_body.urdf", runtime)
    assert len(state.q) == 0 and len(state.v) == 0

    tau = similar(state.v)
    inverse_dynamics(tau, result.jointwrenches, result.accelerations, state, similar(state.v))
    mass_matrix(result.massmatrix, state)
    dynamics(result, state, tau)
    assert parent(result.vd).shape == (0,)
    # The world holds the body up against gravity
    np.testing.assert_allclose(result.jointwrenches[0][:3], [0, 0, 3.0 * G], rtol=1e-12)


def test_shape_mismatch_rejected(runtime):
    state, result = make("cartpole.urdf", runtime)
    other, _ = make("pendulum.urdf", runtime)
    with pytest.raises(DynamicsError):
        inverse_dynamics(similar(other.v), result.jointwrenches, result.accelerations,
                         state, similar(state.v))


def test_result_for_other_mechanism_rejected(runtime):
    state, _ = make("cartpole.urdf", runtime)
    _, other_result = make("cartpole.urdf", runtime)
    with pytest.raises(DynamicsError):
        dynamics(other_result, state, similar(state.v))


def test_kernels_require_runtime():
    from jax_dynamics.runtime import Runtime

    with Runtime():
        state, result = make("pendulum.urdf", None)
    with pytest.raises(RuntimeStateError):
        mass_matrix(result.massmatrix, state)


def test_singular_mass_matrix_rejected(runtime):
    """A moving link without inertia cannot be accelerated; the solve must fail loudly."""
    state, result = make("massless_link.urdf", runtime)
    state.q[:] = 0.5
    state.v[:] = 1.0
    tau = similar(state.v)
    parent(tau)[:] = 0.0
    parent(result.vd)[:] = 7.0

    with pytest.raises(DynamicsError, match="positive definite"):
        dynamics(result, state, tau)
    np.testing.assert_array_equal(parent(result.vd), [7.0])
