"""
JAX Dynamics: a driver that runs rigid-body dynamics kernels against
pre-allocated, zero-copy numeric buffers.

The package embeds a JAX numeric runtime behind an explicit lifecycle, keeps
runtime objects alive with a scoped root set, borrows their flat storage
without copying, and sequences inverse dynamics, mass matrix and forward
dynamics computations on a URDF mechanism.
"""

import jax
jax.config.update("jax_enable_x64", True)

from . import transforms
from . import core
from . import io
from . import runtime
from . import dynamics
from .api import API_VERSION, DynamicsLibrary
from .pipeline import Inputs, Pipeline, RunSummary, Stage

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "runtime",
    "dynamics",
    "API_VERSION",
    "DynamicsLibrary",
    "Inputs",
    "Pipeline",
    "RunSummary",
    "Stage",
]
