"""SO(3) and so(3) Lie group operations in JAX.

This module implements the rotation helpers the dynamics kernels and the
model loader need: Rodrigues' exponential map, skew-symmetric matrices and
conversions from quaternions and roll-pitch-yaw angles. All functions are
pure, JIT-able, and operate on JAX arrays.
"""

import jax
import jax.numpy as jnp

Array = jax.Array


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: convert axis-angle vector to rotation matrix.
    
    Implements Rodrigues' formula to convert a 3D axis-angle vector (so(3))
    to a rotation matrix (SO(3)). This is fundamental for applying joint motion.
    
    Args:
        log_r: (..., 3) array of axis-angle vectors
        
    Returns:
        (..., 3, 3) array of rotation matrices
    """
    # Compute angle (magnitude of axis-angle vector)
    angle = jnp.linalg.norm(log_r, axis=-1, keepdims=True)
    
    # Handle near-zero angles for numerical stability
    small_angle = angle < 1e-8
    
    # For small angles, use Taylor expansion
    # For larger angles, use full Rodrigues formula
    cos_angle = jnp.where(small_angle, 1.0 - 0.5 * angle**2, jnp.cos(angle))
    sin_angle = jnp.where(small_angle, angle - angle**3 / 6.0, jnp.sin(angle))
    
    # Normalized axis (handle zero angle case)
    axis = jnp.where(angle > 1e-8, log_r / jnp.where(angle > 1e-8, angle, 1.0), log_r)
    
    K = skew_symmetric(axis)
    
    # Rodrigues formula: R = I + sin(θ) * K + (1 - cos(θ)) * K²
    I = jnp.eye(3, dtype=log_r.dtype)
    I = jnp.broadcast_to(I, log_r.shape[:-1] + (3, 3))
    
    R = (I + 
         sin_angle[..., None] * K + 
         (1.0 - cos_angle)[..., None] * jnp.matmul(K, K))
    
    return R


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric matrix.
    
    Args:
        v: (..., 3) vector
        
    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)
    
    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def from_quaternion(quaternions: Array) -> Array:
    """
    Convert quaternions to rotation matrices.

    The quaternion does not need to be normalized; a floating base
    configuration filled with arbitrary values still maps to a rotation.
    
    Args:
        quaternions: (..., 4) array of quaternions in (w, x, y, z) format
        
    Returns:
        (..., 3, 3) array of rotation matrices
    """
    quaternions = quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)
    
    # Unpack quaternion components - preserving batch dimensions
    w, x, y, z = jnp.moveaxis(quaternions, -1, 0)
    
    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z
    
    matrix = jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)
    
    return matrix


def from_rpy(rpy: Array) -> Array:
    """
    Convert roll-pitch-yaw angles to a rotation matrix.

    Uses the URDF convention R = Rz(yaw) @ Ry(pitch) @ Rx(roll).

    Args:
        rpy: (..., 3) array of [roll, pitch, yaw] angles in radians

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    roll, pitch, yaw = rpy[..., 0:1], rpy[..., 1:2], rpy[..., 2:3]
    x = jnp.concatenate([roll, jnp.zeros_like(roll), jnp.zeros_like(roll)], axis=-1)
    y = jnp.concatenate([jnp.zeros_like(pitch), pitch, jnp.zeros_like(pitch)], axis=-1)
    z = jnp.concatenate([jnp.zeros_like(yaw), jnp.zeros_like(yaw), yaw], axis=-1)
    return jnp.matmul(exp(z), jnp.matmul(exp(y), exp(x)))
