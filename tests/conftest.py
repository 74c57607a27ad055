"""
Pytest configuration and fixtures for Wasm Runner tests.
"""

import os

import pytest
from hypothesis import Verbosity, settings

from wasm_runner.sandbox import ModuleProfile, SandboxExecutor, SandboxLimits

# Configure hypothesis settings for property-based testing
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def limits():
    return SandboxLimits(timeout_seconds=10)


@pytest.fixture
def executor(limits):
    ex = SandboxExecutor(limits=limits, profile=ModuleProfile(), workers=4)
    yield ex
    ex.shutdown(grace_seconds=0)
