"""SE(3) and se(3) Lie group operations in JAX.

This module implements SE(3) rigid body transforms using homogeneous matrices
and 6D twist vectors. All functions are pure, JIT-able, and operate on JAX arrays.
Twists and spatial accelerations use the [vx, vy, vz, wx, wy, wz] ordering;
wrenches use the matching [fx, fy, fz, nx, ny, nz] ordering.
"""


import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    # Ensure consistent batch shapes
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=p.dtype)
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def exp(twist: Array) -> Array:
    """
    SE(3) exponential map: convert twist to transformation matrix.

    This function is numerically stable, using Taylor series approximations
    for small angles to avoid division by zero.

    Args:
        twist: (..., 6) array of twists [vx, vy, vz, wx, wy, wz].
               The first 3 elements are linear velocity, last 3 are angular.

    Returns:
        (..., 4, 4) array of transformation matrices.
    """
    v, w = twist[..., :3], twist[..., 3:]
    angle = jnp.linalg.norm(w, axis=-1, keepdims=True)

    eps = jnp.finfo(twist.dtype).eps

    # Rotation part is just the SO(3) exponential map
    R = so3.exp(w)

    angle_sq = angle * angle
    is_small_angle = angle < 1e-6

    # Coefficient A = (1 - cos(theta)) / theta^2
    # Taylor expansion for small theta: A ≈ 1/2 - theta^2/24
    A = jnp.where(is_small_angle, 0.5 - angle_sq / 24.0, (1.0 - jnp.cos(angle)) / (angle_sq + eps))

    # Coefficient B = (theta - sin(theta)) / theta^3
    # Taylor expansion for small theta: B ≈ 1/6 - theta^2/120
    B = jnp.where(is_small_angle, 1.0 / 6.0 - angle_sq / 120.0, (angle - jnp.sin(angle)) / (angle_sq * angle + eps))

    K = so3.skew_symmetric(w)
    K_sq = jnp.matmul(K, K)

    I = jnp.eye(3, dtype=twist.dtype)
    I = jnp.broadcast_to(I, K.shape)

    # V = I + A*K + B*K^2
    V = I + A[..., None] * K + B[..., None] * K_sq

    t = jnp.einsum("...ij,...j->...i", V, v)

    return from_position_and_rotation(t, R)


def inverse(T: Array) -> Array:
    """
    Compute inverse of SE(3) transformation matrix.

    Uses the block structure for efficient computation:
    T^-1 = [[R^T, -R^T @ t], [0, 1]]

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 4, 4) inverse transformation matrix
    """
    R = T[..., :3, :3]
    t = T[..., :3, 3]

    R_inv = jnp.swapaxes(R, -1, -2)
    t_inv = -jnp.einsum("...ij,...j->...i", R_inv, t)

    return from_position_and_rotation(t_inv, R_inv)


def adjoint(T: Array) -> Array:
    """
    Compute the adjoint matrix of SE(3) transformation.

    The adjoint matrix is used to transform twists between coordinate frames.
    Its transpose maps wrenches the other way.

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 6, 6) adjoint matrix
    """
    R = T[..., :3, :3]
    t = T[..., :3, 3]

    t_skew = so3.skew_symmetric(t)
    zeros = jnp.zeros_like(R)

    # Adjoint matrix is [[R, [t]_x R], [0, R]]
    top = jnp.concatenate([R, jnp.matmul(t_skew, R)], axis=-1)
    bottom = jnp.concatenate([zeros, R], axis=-1)

    return jnp.concatenate([top, bottom], axis=-2)


def ad(twist: Array) -> Array:
    """
    Compute the small adjoint (Lie bracket matrix) of a twist.

    ad(V1) @ V2 is the spatial cross product of motion vectors, and
    -ad(V).T @ F the cross product of a motion vector with a wrench.

    Args:
        twist: (..., 6) array of twists [vx, vy, vz, wx, wy, wz]

    Returns:
        (..., 6, 6) matrix [[w^, v^], [0, w^]]
    """
    v_skew = so3.skew_symmetric(twist[..., :3])
    w_skew = so3.skew_symmetric(twist[..., 3:])
    zeros = jnp.zeros_like(w_skew)

    top = jnp.concatenate([w_skew, v_skew], axis=-1)
    bottom = jnp.concatenate([zeros, w_skew], axis=-1)

    return jnp.concatenate([top, bottom], axis=-2)


def spatial_inertia(mass: Array, com: Array, inertia: Array) -> Array:
    """
    Build a 6x6 spatial inertia about the frame origin.

    Args:
        mass: scalar mass
        com: (3,) center of mass expressed in the frame
        inertia: (3, 3) rotational inertia about the center of mass,
                 expressed in the frame axes

    Returns:
        (6, 6) matrix mapping twists to momenta:
        [[m I, -m c^], [m c^, I_c - m c^ c^]]
    """
    c = so3.skew_symmetric(com)
    eye = jnp.eye(3, dtype=inertia.dtype)
    top = jnp.concatenate([mass * eye, -mass * c], axis=-1)
    bottom = jnp.concatenate([mass * c, inertia - mass * jnp.matmul(c, c)], axis=-1)
    return jnp.concatenate([top, bottom], axis=-2)
