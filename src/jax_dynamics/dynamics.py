"""Rigid-body dynamics kernels: kinematics, inverse dynamics, mass matrix and
forward dynamics.

The numeric work is done by jit-compiled JAX functions that recurse over the
mechanism's tree. The tree structure is static, so each recursion is unrolled
at trace time. All spatial quantities are expressed in the world frame:
twists and accelerations as [v; w], wrenches as [f; n].

The public entry points (`inverse_dynamics`, `mass_matrix`, `dynamics_bias`,
`dynamics`) follow the in-place convention of the driver: they read the
state's storage and write their results into pre-allocated arrays.
"""

from typing import Dict, List, Tuple

import jax
import jax.numpy as jnp
import jax.scipy.linalg
import numpy as np
from jax import Array

from .core.collections import SegmentedVector, Symmetric, parent
from .core.mechanism import FLOATING, PRISMATIC, REVOLUTE, Mechanism
from .core.state import DynamicsResult, MechanismState
from .errors import DynamicsError
from .runtime.lifecycle import require_ready
from .transforms import se3, so3


def forward_kinematics(mechanism: Mechanism, q: Array) -> Dict[str, Array]:
    """Compute forward kinematics for all links in the mechanism.

    Args:
        mechanism: Mechanism containing the kinematic tree
        q: Configuration vector of shape (num_positions,)

    Returns:
        Dictionary mapping link names to their 4x4 SE(3) world poses
    """
    world_transforms = forward_kinematics_world(mechanism, q)
    return {name: world_transforms[i] for i, name in enumerate(mechanism.link_names)}


def forward_kinematics_world(mechanism: Mechanism, q: Array) -> Array:
    """Internal FK function returning array of world transforms.

    Args:
        mechanism: Mechanism containing the kinematic tree
        q: Configuration vector of shape (num_positions,)

    Returns:
        Array of shape (num_links, 4, 4) with world poses for all links
    """
    transforms: List[Array] = []
    for i in range(mechanism.num_links):
        T_parent_to_child = _joint_transform(mechanism, i, q)
        if i == 0:
            transforms.append(T_parent_to_child)
        else:
            transforms.append(transforms[mechanism.parent_indices[i]] @ T_parent_to_child)
    return jnp.stack(transforms)


def _joint_transform(mechanism: Mechanism, i: int, q: Array) -> Array:
    """Transform from link i's parent to link i at configuration q."""
    origin = mechanism.joint_transforms[i]
    joint_type = mechanism.joint_types[i]
    start = mechanism.q_offsets[i]
    if joint_type == FLOATING:
        R = so3.from_quaternion(q[start:start + 4])
        motion = se3.from_position_and_rotation(q[start + 4:start + 7], R)
    elif joint_type in (REVOLUTE, PRISMATIC):
        motion = se3.exp(mechanism.joint_axes[i] * q[start])
    else:
        return origin
    return origin @ motion


def _motion_subspace(mechanism: Mechanism, i: int, T_world: Array) -> Array:
    """World-frame motion subspace (6, dofs) of the joint above link i."""
    joint_type = mechanism.joint_types[i]
    dtype = mechanism.joint_axes.dtype
    if joint_type == FLOATING:
        local = jnp.eye(6, dtype=dtype)
    elif joint_type in (REVOLUTE, PRISMATIC):
        local = mechanism.joint_axes[i][:, None]
    else:
        return jnp.zeros((6, 0), dtype=dtype)
    return se3.adjoint(T_world) @ local


def _world_inertia(mechanism: Mechanism, i: int, T_world: Array) -> Array:
    X = se3.adjoint(se3.inverse(T_world))
    return X.T @ mechanism.inertias[i] @ X


def _velocity_slice(mechanism: Mechanism, i: int) -> slice:
    r = mechanism.velocity_range(i)
    return slice(r.start, r.stop)


@jax.jit
def _inverse_dynamics(mechanism: Mechanism, q: Array, v: Array, vd: Array) -> Tuple[Array, Array, Array]:
    """Recursive Newton-Euler algorithm.

    Returns:
        (tau, jointwrenches, accelerations): generalized forces (nv,), the
        wrench transmitted across each joint (num_links, 6) and the spatial
        acceleration of each link (num_links, 6).
    """
    transforms = forward_kinematics_world(mechanism, q)
    dtype = mechanism.inertias.dtype
    n = mechanism.num_links
    zero = jnp.zeros(6, dtype=dtype)

    subspaces, velocities, accelerations, wrenches = [], [], [], []
    for i in range(n):
        S = _motion_subspace(mechanism, i, transforms[i])
        dofs = _velocity_slice(mechanism, i)
        parent_link = mechanism.parent_indices[i]
        V_parent = zero if i == 0 else velocities[parent_link]
        A_parent = zero if i == 0 else accelerations[parent_link]

        V_joint = S @ v[dofs]
        V = V_parent + V_joint
        # d/dt of the world-frame subspace is ad(V) S
        A = A_parent + S @ vd[dofs] + se3.ad(V) @ V_joint

        G = _world_inertia(mechanism, i, transforms[i])
        # Gravity enters as a fictitious upward acceleration of every body
        f = G @ (A - mechanism.gravity) - se3.ad(V).T @ (G @ V)

        subspaces.append(S)
        velocities.append(V)
        accelerations.append(A)
        wrenches.append(f)

    for i in reversed(range(1, n)):
        p = mechanism.parent_indices[i]
        wrenches[p] = wrenches[p] + wrenches[i]

    taus = [S.T @ F for S, F in zip(subspaces, wrenches)]
    tau = jnp.concatenate(taus) if taus else jnp.zeros(0, dtype=dtype)
    return tau, jnp.stack(wrenches), jnp.stack(accelerations)


@jax.jit
def _mass_matrix(mechanism: Mechanism, q: Array) -> Array:
    """Composite-rigid-body algorithm. Returns the full (nv, nv) matrix."""
    transforms = forward_kinematics_world(mechanism, q)
    dtype = mechanism.inertias.dtype
    n = mechanism.num_links
    nv = mechanism.num_velocities

    composite = [_world_inertia(mechanism, i, transforms[i]) for i in range(n)]
    for i in reversed(range(1, n)):
        p = mechanism.parent_indices[i]
        composite[p] = composite[p] + composite[i]

    subspaces = [_motion_subspace(mechanism, i, transforms[i]) for i in range(n)]
    M = jnp.zeros((nv, nv), dtype=dtype)
    for i in range(n):
        rows_i = _velocity_slice(mechanism, i)
        if rows_i.start == rows_i.stop:
            continue
        F = composite[i] @ subspaces[i]
        for j in mechanism.ancestors(i):
            rows_j = _velocity_slice(mechanism, j)
            if rows_j.start == rows_j.stop:
                continue
            block = subspaces[j].T @ F
            M = M.at[rows_j, rows_i].set(block)
            M = M.at[rows_i, rows_j].set(block.T)
    return M


@jax.jit
def _forward_dynamics(mechanism: Mechanism, q: Array, v: Array, tau: Array):
    """Solve M(q) vd = tau - c(q, v).

    Returns:
        (vd, M, c, jointwrenches, accelerations)
    """
    M = _mass_matrix(mechanism, q)
    c, _, _ = _inverse_dynamics(mechanism, q, v, jnp.zeros_like(v))
    if mechanism.num_velocities == 0:
        vd = jnp.zeros_like(v)
    else:
        vd = jax.scipy.linalg.cho_solve(jax.scipy.linalg.cho_factor(M, lower=True), tau - c)
    _, wrenches, accelerations = _inverse_dynamics(mechanism, q, v, vd)
    return vd, M, c, wrenches, accelerations


def _storage(x, shape: Tuple[int, ...], dtype, what: str) -> np.ndarray:
    array = x if isinstance(x, np.ndarray) else parent(x)
    if array.shape != shape:
        raise DynamicsError(f"{what} has shape {array.shape}, expected {shape}")
    if array.dtype != dtype:
        raise DynamicsError(f"{what} has dtype {array.dtype}, expected {np.dtype(dtype)}")
    return array


def _state_arrays(state: MechanismState) -> Tuple[Array, Array]:
    m = state.mechanism
    dtype = m.scalar_type.dtype
    q = _storage(state.q, (m.num_positions,), dtype, "configuration")
    v = _storage(state.v, (m.num_velocities,), dtype, "velocity")
    return jnp.asarray(q), jnp.asarray(v)


def _write_lower(out: Symmetric, M: np.ndarray) -> None:
    storage = parent(out)
    rows, cols = out.triangle_indices()
    storage[rows, cols] = M[rows, cols]


def inverse_dynamics(torquesout: SegmentedVector, jointwrenches: np.ndarray,
                     accelerations: np.ndarray, state: MechanismState,
                     vd_desired: SegmentedVector) -> None:
    """Generalized forces realizing `vd_desired`, written into `torquesout`.

    `jointwrenches` and `accelerations` are work buffers of shape
    (num_links, 6); they receive the per-joint wrenches and per-link spatial
    accelerations.
    """
    require_ready()
    m = state.mechanism
    dtype = m.scalar_type.dtype
    nv, n = m.num_velocities, m.num_links
    tau_out = _storage(torquesout, (nv,), dtype, "torquesout")
    wrenches_out = _storage(jointwrenches, (n, 6), dtype, "jointwrenches")
    accels_out = _storage(accelerations, (n, 6), dtype, "accelerations")
    vd = jnp.asarray(_storage(vd_desired, (nv,), dtype, "vd_desired"))
    q, v = _state_arrays(state)

    tau, wrenches, accels = _inverse_dynamics(m, q, v, vd)
    np.copyto(tau_out, np.asarray(tau))
    np.copyto(wrenches_out, np.asarray(wrenches))
    np.copyto(accels_out, np.asarray(accels))


def mass_matrix(out: Symmetric, state: MechanismState) -> None:
    """Mass matrix at the state's configuration, lower triangle into `out`."""
    require_ready()
    m = state.mechanism
    nv = m.num_velocities
    if not isinstance(out, Symmetric):
        raise DynamicsError(f"mass matrix output must be Symmetric, got {type(out).__name__}")
    _storage(out, (nv, nv), m.scalar_type.dtype, "mass matrix")
    q, _ = _state_arrays(state)
    _write_lower(out, np.asarray(_mass_matrix(m, q)))


def dynamics_bias(out: SegmentedVector, state: MechanismState) -> None:
    """Coriolis, centrifugal and gravity terms c(q, v), written into `out`."""
    require_ready()
    m = state.mechanism
    storage = _storage(out, (m.num_velocities,), m.scalar_type.dtype, "dynamics bias")
    q, v = _state_arrays(state)
    c, _, _ = _inverse_dynamics(m, q, v, jnp.zeros_like(v))
    np.copyto(storage, np.asarray(c))


def dynamics(result: DynamicsResult, state: MechanismState, torques: SegmentedVector) -> None:
    """Joint accelerations produced by `torques`, written into `result.vd`.

    Also fills the result's mass matrix (lower triangle), dynamics bias,
    joint wrenches and link accelerations for the solved motion.

    Raises:
        DynamicsError: if the mass matrix cannot be factored, for example
            when a moving link carries no inertia. `result` is left untouched.
    """
    require_ready()
    m = state.mechanism
    if result.mechanism is not m:
        raise DynamicsError("DynamicsResult was created for a different mechanism")
    dtype = m.scalar_type.dtype
    tau = jnp.asarray(_storage(torques, (m.num_velocities,), dtype, "torques"))
    q, v = _state_arrays(state)

    vd, M, c, wrenches, accels = _forward_dynamics(m, q, v, tau)
    vd = np.asarray(vd)
    # cho_factor does not raise on a singular or indefinite matrix; it yields NaN
    if not np.all(np.isfinite(vd)):
        raise DynamicsError("Mass matrix is not positive definite; cannot solve for accelerations")
    np.copyto(parent(result.vd), vd)
    np.copyto(parent(result.dynamicsbias), np.asarray(c))
    np.copyto(result.jointwrenches, np.asarray(wrenches))
    np.copyto(result.accelerations, np.asarray(accels))
    _write_lower(result.massmatrix, np.asarray(M))
