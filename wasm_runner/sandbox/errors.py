"""
Wasm Runner Sandbox Errors

Every failure inside the sandbox core is one of these. The executor folds
them into an ExecutionOutcome, so none of them escape a request.
"""

from enum import Enum


class FailureStage(str, Enum):
    """Stage at which an execution stopped without running to completion."""
    COMPILATION = "compilation"
    LINKING = "linking"
    ENTRY_RESOLUTION = "entry_resolution"
    CANCELLATION = "cancellation"


class SandboxError(Exception):
    """Base class for failures that prevent a guest from finishing."""

    stage: FailureStage = FailureStage.COMPILATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CompilationError(SandboxError):
    """Payload bytes are malformed or not the expected binary kind."""
    stage = FailureStage.COMPILATION


class InstantiationError(SandboxError):
    """Payload imports something outside the configured capability set."""
    stage = FailureStage.LINKING


class EntryPointNotFound(SandboxError):
    """No export matched the active profile's entry convention."""
    stage = FailureStage.ENTRY_RESOLUTION


class CancellationError(SandboxError):
    """Execution was aborted from outside or ran out of its budget."""
    stage = FailureStage.CANCELLATION


class ExecutionTrap(Exception):
    """Guest code faulted. Reported as a program outcome, not a service error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GuestExit(Exception):
    """Raised from the proc_exit capability to unwind the guest."""

    def __init__(self, code: int):
        super().__init__(f"guest exited with code {code}")
        self.code = code
