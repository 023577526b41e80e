"""Shared fixtures for the test suite."""

import gc
import os

import hypothesis
import pytest
from hypothesis import HealthCheck

from jax_dynamics.runtime import Runtime
from jax_dynamics.runtime import roots

# The autouse root-stack check below is function scoped; it is safe to share
# across hypothesis examples.
hypothesis.settings.register_profile(
    "dev", suppress_health_check=[HealthCheck.function_scoped_fixture])
hypothesis.settings.register_profile(
    "ci", max_examples=10, deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture])
hypothesis.settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


@pytest.fixture
def runtime():
    """An initialized runtime, shut down after the test."""
    rt = Runtime().initialize()
    yield rt
    rt.shutdown()


@pytest.fixture(autouse=True)
def clean_root_stack():
    """Every test must leave the root stack and the collector as it found them."""
    depth = roots.depth()
    yield
    assert roots.depth() == depth
    assert gc.isenabled()
