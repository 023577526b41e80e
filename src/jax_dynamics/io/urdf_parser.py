"""URDF parser for loading mechanisms into JAX-native data structures.

This module parses URDF files and converts them into Mechanism PyTree
structures, including the inertial parameters the dynamics kernels need.
Any structural problem in the file is reported as a ModelLoadError; no
partially built mechanism is ever returned.
"""

import logging
from collections import deque
from typing import Dict, List

import jax.numpy as jnp
import numpy as np
from lxml import etree

from jax_dynamics.core.mechanism import (
    FIXED,
    FLOATING,
    JOINT_DIMENSIONS,
    PRISMATIC,
    REVOLUTE,
    Mechanism,
    ScalarType,
    world_gravity,
)
from jax_dynamics.errors import ModelLoadError
from jax_dynamics.transforms import se3, so3

logger = logging.getLogger(__name__)

_JOINT_TYPES = {
    "fixed": FIXED,
    "revolute": REVOLUTE,
    "continuous": REVOLUTE,
    "prismatic": PRISMATIC,
    "floating": FLOATING,
}

FLOATING_BASE_JOINT = "floating_base"


def load_urdf(urdf_path: str, floating: bool = False,
              scalar_type: ScalarType = ScalarType.FLOAT64) -> Mechanism:
    """Load a URDF file and convert it to a Mechanism PyTree.

    Args:
        urdf_path: Path to the URDF file to load.
        floating: Attach the root link to the world with a floating joint
                  (six unconstrained degrees of freedom) instead of welding it.
        scalar_type: Element type of every numeric array in the mechanism.

    Returns:
        Mechanism: A JAX-native mechanism description.

    Raises:
        ModelLoadError: if the file is missing, malformed, or describes
            something other than a single kinematic tree.
    """
    scalar_type = ScalarType(scalar_type)
    try:
        tree = etree.parse(str(urdf_path))
    except OSError as e:
        raise ModelLoadError(f"Cannot read model file {urdf_path}: {e}") from e
    except etree.XMLSyntaxError as e:
        raise ModelLoadError(f"Malformed model file {urdf_path}: {e}") from e
    root = tree.getroot()
    if root.tag != "robot":
        raise ModelLoadError(f"Expected a <robot> element, found <{root.tag}>")

    try:
        mechanism = _build_mechanism(root, floating, scalar_type.dtype)
    except (TypeError, ValueError, KeyError) as e:
        if isinstance(e, ModelLoadError):
            raise
        raise ModelLoadError(f"Invalid model file {urdf_path}: {e}") from e

    logger.info("Loaded %s: %d links, nq=%d, nv=%d, %s base",
                root.get("name", urdf_path), mechanism.num_links,
                mechanism.num_positions, mechanism.num_velocities,
                "floating" if floating else "fixed")
    return mechanism


def _build_mechanism(root, floating: bool, dtype) -> Mechanism:
    # First pass: Build topology mappings
    links: Dict[str, object] = {}
    for link in root.findall('link'):
        name = link.get('name')
        if name is None:
            raise ModelLoadError("Link without a name")
        if name in links:
            raise ModelLoadError(f"Duplicate link {name!r}")
        links[name] = link
    if not links:
        raise ModelLoadError("Model has no links")

    joints_info: List[dict] = []
    joint_by_child: Dict[str, dict] = {}
    for joint in root.findall('joint'):
        joint_name = joint.get('name')
        joint_type = joint.get('type')
        parent_elem = joint.find('parent')
        child_elem = joint.find('child')
        if parent_elem is None or child_elem is None:
            raise ModelLoadError(f"Joint {joint_name!r} needs both <parent> and <child>")

        if joint_type not in _JOINT_TYPES:
            raise ModelLoadError(f"Joint {joint_name!r} has unsupported type {joint_type!r}")

        info = {
            'name': joint_name,
            'type': _JOINT_TYPES[joint_type],
            'parent': parent_elem.get('link'),
            'child': child_elem.get('link'),
            'joint_elem': joint,
        }
        for end in ('parent', 'child'):
            if info[end] not in links:
                raise ModelLoadError(f"Joint {joint_name!r} refers to unknown link {info[end]!r}")
        if info['child'] in joint_by_child:
            raise ModelLoadError(f"Link {info['child']!r} has more than one parent joint")
        joints_info.append(info)
        joint_by_child[info['child']] = info

    # Find root link (not a child of any joint)
    root_links = [name for name in links if name not in joint_by_child]
    if len(root_links) != 1:
        raise ModelLoadError(f"Expected exactly one root link, found: {root_links}")
    root_link = root_links[0]

    # Order links using breadth-first traversal from root
    ordered_links = []
    queue = deque([root_link])
    while queue:
        current_link = queue.popleft()
        ordered_links.append(current_link)
        for joint_info in joints_info:
            if joint_info['parent'] == current_link:
                queue.append(joint_info['child'])
    if len(ordered_links) != len(links):
        unreachable = sorted(set(links) - set(ordered_links))
        raise ModelLoadError(f"Links not connected to the root: {unreachable}")

    link_map = {name: i for i, name in enumerate(ordered_links)}

    # Second pass: Populate data arrays in link order
    joint_names, joint_types, parent_indices = [], [], []
    q_offsets, v_offsets = [], []
    joint_transforms, joint_axes, inertias = [], [], []
    nq = nv = 0

    for i, link_name in enumerate(ordered_links):
        if link_name == root_link:
            parent_indices.append(i)  # Root parents itself
            joint_type = FLOATING if floating else FIXED
            name = FLOATING_BASE_JOINT
            transform = np.eye(4)
            axis = np.zeros(6)
        else:
            joint_info = joint_by_child[link_name]
            parent_indices.append(link_map[joint_info['parent']])
            joint_type = joint_info['type']
            name = joint_info['name']
            transform = _parse_origin(joint_info['joint_elem'].find('origin'))
            axis = _parse_axis(joint_info['joint_elem'], joint_type)

        joint_types.append(joint_type)
        q_offsets.append(nq)
        v_offsets.append(nv)
        if joint_type != FIXED:
            joint_names.append(name)
        dq, dv = JOINT_DIMENSIONS[joint_type]
        nq += dq
        nv += dv

        joint_transforms.append(transform)
        joint_axes.append(axis)
        inertias.append(_parse_inertial(links[link_name].find('inertial')))

    return Mechanism(
        link_names=tuple(ordered_links),
        joint_names=tuple(joint_names),
        joint_types=tuple(joint_types),
        parent_indices=tuple(parent_indices),
        q_offsets=tuple(q_offsets),
        v_offsets=tuple(v_offsets),
        num_positions=nq,
        num_velocities=nv,
        joint_transforms=jnp.asarray(np.stack(joint_transforms), dtype=dtype),
        joint_axes=jnp.asarray(np.stack(joint_axes), dtype=dtype),
        inertias=jnp.asarray(np.stack(inertias), dtype=dtype),
        gravity=world_gravity(dtype),
    )


def _floats(text: str, count: int, what: str) -> np.ndarray:
    values = np.array([float(x) for x in text.split()])
    if values.shape != (count,):
        raise ModelLoadError(f"Expected {count} numbers for {what}, got {text!r}")
    return values


def _parse_origin(origin_elem) -> np.ndarray:
    """Parse an <origin xyz rpy> element into a 4x4 transform."""
    if origin_elem is None:
        return np.eye(4)
    xyz = _floats(origin_elem.get('xyz', '0 0 0'), 3, 'origin xyz')
    rpy = _floats(origin_elem.get('rpy', '0 0 0'), 3, 'origin rpy')
    R = so3.from_rpy(jnp.asarray(rpy))
    return np.asarray(se3.from_position_and_rotation(jnp.asarray(xyz), R))


def _parse_axis(joint_elem, joint_type: str) -> np.ndarray:
    if joint_type not in (REVOLUTE, PRISMATIC):
        return np.zeros(6)

    axis_elem = joint_elem.find('axis')
    if axis_elem is not None:
        axis_xyz = _floats(axis_elem.get('xyz', '1 0 0'), 3, 'axis xyz')
    else:
        axis_xyz = np.array([1.0, 0.0, 0.0])  # URDF default axis
    norm = np.linalg.norm(axis_xyz)
    if norm == 0.0:
        raise ModelLoadError(f"Joint {joint_elem.get('name')!r} has a zero axis")
    axis_xyz = axis_xyz / norm

    if joint_type == REVOLUTE:
        # Revolute: [0, 0, 0, wx, wy, wz]
        return np.concatenate([np.zeros(3), axis_xyz])
    # Prismatic: [vx, vy, vz, 0, 0, 0]
    return np.concatenate([axis_xyz, np.zeros(3)])


def _parse_inertial(inertial_elem) -> np.ndarray:
    """Spatial inertia of a link about its own frame origin."""
    if inertial_elem is None:
        return np.zeros((6, 6))

    mass_elem = inertial_elem.find('mass')
    mass = float(mass_elem.get('value')) if mass_elem is not None else 0.0
    if mass < 0.0:
        raise ModelLoadError(f"Negative mass {mass}")

    origin = _parse_origin(inertial_elem.find('origin'))
    com, R = origin[:3, 3], origin[:3, :3]

    inertia = np.zeros((3, 3))
    inertia_elem = inertial_elem.find('inertia')
    if inertia_elem is not None:
        get = lambda key: float(inertia_elem.get(key, '0'))
        inertia = np.array([
            [get('ixx'), get('ixy'), get('ixz')],
            [get('ixy'), get('iyy'), get('iyz')],
            [get('ixz'), get('iyz'), get('izz')],
        ])

    # Inertia is given in the inertial frame; rotate into the link frame
    inertia = R @ inertia @ R.T
    return np.asarray(se3.spatial_inertia(jnp.asarray(mass), jnp.asarray(com), jnp.asarray(inertia)))
