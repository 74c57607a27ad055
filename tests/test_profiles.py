"""Tests for binary classification and profile selection."""

import pytest

from wasm_runner.sandbox import (
    ComponentProfile,
    CompilationError,
    Failed,
    FailureStage,
    ModuleProfile,
    ProfileKind,
    get_profile,
    sandbox_execute,
)
from wasm_runner.sandbox.profiles import detect_binary_kind

from .guests import hello

COMPONENT_PREAMBLE = b"\0asm\x0d\x00\x01\x00"


def test_detect_core_module():
    assert detect_binary_kind(hello()) == ProfileKind.MODULE


def test_detect_component():
    assert detect_binary_kind(COMPONENT_PREAMBLE) == ProfileKind.COMPONENT


@pytest.mark.parametrize("payload", [
    b"",
    b"\0as",
    b"hello world, not wasm",
    b"(module)",
    b"\x7fELF\x02\x01\x01\x00",
])
def test_non_wasm_rejected(payload):
    with pytest.raises(CompilationError) as exc:
        detect_binary_kind(payload)
    assert "magic" in exc.value.message


def test_unknown_version_rejected():
    with pytest.raises(CompilationError) as exc:
        detect_binary_kind(b"\0asm\x02\x00\x00\x00")
    assert "version 2" in exc.value.message


def test_get_profile():
    assert isinstance(get_profile("module"), ModuleProfile)
    assert isinstance(get_profile(ProfileKind.COMPONENT), ComponentProfile)
    with pytest.raises(ValueError):
        get_profile("script")


def test_component_sent_to_module_profile_fails_compilation():
    outcome = sandbox_execute(COMPONENT_PREAMBLE + b"\x00" * 8)
    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.COMPILATION
    assert "component" in outcome.message


def test_module_sent_to_component_profile_fails_compilation():
    outcome = sandbox_execute(hello(), profile=ComponentProfile())
    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.COMPILATION
    assert "module" in outcome.message
