"""
Wasm Runner Sandbox - per-request WebAssembly execution core

Provides isolated execution of untrusted WebAssembly payloads with:
- Explicitly bounded memory reservations and guard regions
- Captured, size-limited stdout/stderr
- Module (WASI preview 1) or component (WASI command) profiles
- Fuel and epoch based interruption
- Deterministic outcome reporting
"""

from .capture import OutputBuffer
from .capabilities import CapabilitySet, CapturedStdio, build_capabilities
from .entry import EntryKind, EntryPoint
from .errors import (
    CancellationError,
    CompilationError,
    EntryPointNotFound,
    ExecutionTrap,
    FailureStage,
    InstantiationError,
    SandboxError,
)
from .executor import (
    Completed,
    Execution,
    ExecutionOutcome,
    ExecutionState,
    Failed,
    SandboxExecutor,
    Trapped,
    sandbox_execute,
)
from .limits import SandboxLimits
from .profiles import ComponentProfile, ModuleProfile, ProfileKind, get_profile
from .report import render_report, status_code

__all__ = [
    "CancellationError",
    "CapabilitySet",
    "CapturedStdio",
    "Completed",
    "CompilationError",
    "ComponentProfile",
    "EntryKind",
    "EntryPoint",
    "EntryPointNotFound",
    "Execution",
    "ExecutionOutcome",
    "ExecutionState",
    "ExecutionTrap",
    "Failed",
    "FailureStage",
    "InstantiationError",
    "ModuleProfile",
    "OutputBuffer",
    "ProfileKind",
    "SandboxError",
    "SandboxExecutor",
    "SandboxLimits",
    "Trapped",
    "build_capabilities",
    "get_profile",
    "render_report",
    "sandbox_execute",
    "status_code",
]
