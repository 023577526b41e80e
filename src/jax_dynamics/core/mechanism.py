"""Mechanism PyTree data structure for JAX-native rigid-body dynamics.

This module defines the immutable description of a kinematic tree together
with its inertial parameters. Structure (names, joint types, index offsets)
is static so that jit-compiled kernels can unroll the tree recursion; the
numeric parameters are JAX arrays in the mechanism's scalar type.
"""

import enum
from typing import Tuple

import jax.numpy as jnp
import numpy as np
from jax import Array
from flax import struct

FIXED = "fixed"
REVOLUTE = "revolute"
PRISMATIC = "prismatic"
FLOATING = "floating"

# (configuration, velocity) dimensions per joint type
JOINT_DIMENSIONS = {
    FIXED: (0, 0),
    REVOLUTE: (1, 1),
    PRISMATIC: (1, 1),
    FLOATING: (7, 6),
}


class ScalarType(enum.IntEnum):
    """Element type of every numeric array owned by a mechanism."""

    FLOAT64 = 1
    FLOAT32 = 2

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.float64 if self is ScalarType.FLOAT64 else np.float32)

    @property
    def label(self) -> str:
        return "Float64" if self is ScalarType.FLOAT64 else "Float32"

    @classmethod
    def from_dtype(cls, dtype) -> "ScalarType":
        dtype = np.dtype(dtype)
        if dtype == np.float64:
            return cls.FLOAT64
        if dtype == np.float32:
            return cls.FLOAT32
        raise ValueError(f"Unsupported scalar dtype: {dtype}")


@struct.dataclass
class Mechanism:
    """Immutable PyTree representation of a mechanism.
    
    Links are stored in tree order (every parent precedes its children) and
    link 0 is the root. The root's joint attaches it to the world and is
    either fixed or floating.
    
    Attributes:
        link_names: Tuple of all link names. Index corresponds to link ID.
        joint_names: Names of the joints carrying degrees of freedom, in
                     velocity-vector order.
        joint_types: Joint type of the joint above each link.
        parent_indices: parent_indices[i] is the parent link index of link i.
                        The root parents itself.
        q_offsets: Start of each link's joint in the configuration vector.
        v_offsets: Start of each link's joint in the velocity vector.
        num_positions: Length of the configuration vector (nq).
        num_velocities: Length of the velocity vector (nv).
        joint_transforms: Array of shape (num_links, 4, 4) with the fixed
                          transform from each link's parent to its joint frame.
        joint_axes: Array of shape (num_links, 6) with the se(3) twist of each
                    single-dof joint, [vx,vy,vz,wx,wy,wz]; zero otherwise.
        inertias: Array of shape (num_links, 6, 6) with each link's spatial
                  inertia about its own frame origin.
        gravity: Array of shape (6,) holding the spatial gravity acceleration.
    """
    link_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_types: Tuple[str, ...] = struct.field(pytree_node=False)
    parent_indices: Tuple[int, ...] = struct.field(pytree_node=False)
    q_offsets: Tuple[int, ...] = struct.field(pytree_node=False)
    v_offsets: Tuple[int, ...] = struct.field(pytree_node=False)
    num_positions: int = struct.field(pytree_node=False)
    num_velocities: int = struct.field(pytree_node=False)
    joint_transforms: Array
    joint_axes: Array
    inertias: Array
    gravity: Array

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def floating(self) -> bool:
        return self.joint_types[0] == FLOATING

    @property
    def scalar_type(self) -> ScalarType:
        return ScalarType.from_dtype(self.inertias.dtype)

    def velocity_range(self, link: int) -> range:
        """Indices of the velocity entries belonging to the joint above `link`."""
        nv = JOINT_DIMENSIONS[self.joint_types[link]][1]
        return range(self.v_offsets[link], self.v_offsets[link] + nv)

    def ancestors(self, link: int) -> Tuple[int, ...]:
        """Links on the path from `link` up to the root, `link` included."""
        path = [link]
        while path[-1] != self.parent_indices[path[-1]]:
            path.append(self.parent_indices[path[-1]])
        return tuple(path)


def world_gravity(dtype=jnp.float64) -> Array:
    """Spatial gravity for a uniform field of 9.81 m/s^2 along -z."""
    return jnp.array([0.0, 0.0, -9.81, 0.0, 0.0, 0.0], dtype=dtype)
