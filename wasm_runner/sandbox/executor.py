"""
Wasm Runner Sandbox Executor - wasmtime-based isolated payload execution

Compiles, links, instantiates and runs one untrusted WebAssembly payload per
request, and turns whatever happens into exactly one ExecutionOutcome.

State machine:

    configured -> compiled -> instantiated -> running -> completed
                                                      -> trapped
                                                      -> failed

Every execution gets its own Engine, Store, capabilities and output buffers.
The only thing shared between concurrent executions is the frozen
SandboxLimits.

Guest compute is interrupted cooperatively through epoch interruption (cancel
and timeout) and, when configured, fuel metering. Both are checked by
wasmtime inside compiled code, so a guest spinning in a loop without calling
back into the host is still stopped.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Optional, Union

from wasmtime import Engine, Store, Trap, WasmtimeError

from .capabilities import CapabilitySet, build_capabilities
from .capture import DEFAULT_CAPACITY
from .entry import EntryKind, EntryPoint
from .errors import (
    CancellationError,
    ExecutionTrap,
    FailureStage,
    GuestExit,
    SandboxError,
)
from .limits import SandboxLimits
from .profiles import ModuleProfile, Profile

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


class ExecutionState(str, Enum):
    CONFIGURED = "configured"
    COMPILED = "compiled"
    INSTANTIATED = "instantiated"
    RUNNING = "running"
    COMPLETED = "completed"
    TRAPPED = "trapped"
    FAILED = "failed"


# =============================================================================
# Outcomes
# =============================================================================

@dataclass(frozen=True)
class Completed:
    """Entry point returned normally (or the guest called proc_exit)."""
    stdout: bytes
    stderr: bytes
    exit_code: int = 0
    entry: Optional[EntryKind] = None
    truncated: bool = False
    duration_ms: int = 0

    status = ExecutionState.COMPLETED


@dataclass(frozen=True)
class Trapped:
    """Guest faulted. Output up to the fault is preserved."""
    message: str
    stdout: bytes
    stderr: bytes
    truncated: bool = False
    duration_ms: int = 0

    status = ExecutionState.TRAPPED


@dataclass(frozen=True)
class Failed:
    """Execution never reached a running state, or was aborted."""
    stage: FailureStage
    message: str
    duration_ms: int = 0

    status = ExecutionState.FAILED


ExecutionOutcome = Union[Completed, Trapped, Failed]


def outcome_to_dict(outcome: ExecutionOutcome) -> dict:
    result = asdict(outcome)
    result["status"] = outcome.status.value
    for key in ("stdout", "stderr"):
        if key in result:
            result[key] = result[key].decode("utf-8", errors="replace")
    for key in ("stage", "entry"):
        if result.get(key) is not None:
            result[key] = result[key].value
    return result


# =============================================================================
# One execution
# =============================================================================

class Execution:
    """A single run of one payload. Not reusable.

    ``cancel()`` may be called from any thread at any time.
    """

    def __init__(
        self,
        limits: SandboxLimits,
        profile: Profile,
        capabilities: CapabilitySet,
    ):
        self.limits = limits
        self.profile = profile
        self.capabilities = capabilities
        self.state = ExecutionState.CONFIGURED
        self.entry: Optional[EntryPoint] = None
        self.outcome: Optional[ExecutionOutcome] = None

        self._engine: Optional[Engine] = None
        self._cancel_reason: Optional[str] = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    def cancel(self, reason: str = "execution cancelled") -> None:
        """Abort the execution. Running guest code stops at its next epoch check."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancel_reason = reason
            self._cancelled.set()
            engine = self._engine
        if engine is not None:
            engine.increment_epoch()
        logger.debug(f"Execution cancel requested: {reason}")

    def _transition(self, state: ExecutionState) -> None:
        logger.debug(f"Execution {self.state.value} -> {state.value}")
        self.state = state

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise CancellationError(self._cancel_reason or "execution cancelled")

    def run(self, payload: bytes) -> ExecutionOutcome:
        """Drive the payload to a terminal outcome. Never raises SandboxError."""
        if self.state != ExecutionState.CONFIGURED:
            raise RuntimeError("Execution objects are single-use")

        start_time = time.monotonic()
        timer = None
        if self.limits.timeout_seconds is not None:
            timer = threading.Timer(
                self.limits.timeout_seconds,
                self.cancel,
                kwargs={"reason": f"execution timed out after {self.limits.timeout_seconds:g}s"},
            )
            timer.daemon = True
            timer.start()

        try:
            try:
                exit_code = self._drive(payload)
                trap = None
            except ExecutionTrap as e:
                exit_code, trap = None, e
            finally:
                if timer is not None:
                    timer.cancel()
                # Component stdio is collected here, before snapshots
                self.profile.release(self.capabilities)
        except SandboxError as e:
            outcome = Failed(stage=e.stage, message=e.message)
        else:
            stdio = self.capabilities.stdio
            if trap is not None:
                outcome = Trapped(
                    message=trap.message,
                    stdout=stdio.stdout.snapshot(),
                    stderr=stdio.stderr.snapshot(),
                    truncated=stdio.truncated,
                )
            else:
                outcome = Completed(
                    stdout=stdio.stdout.snapshot(),
                    stderr=stdio.stderr.snapshot(),
                    exit_code=exit_code,
                    entry=self.entry.kind if self.entry else None,
                    truncated=stdio.truncated,
                )

        duration_ms = int((time.monotonic() - start_time) * 1000)
        outcome = _with_duration(outcome, duration_ms)
        self._transition(outcome.status)
        self.outcome = outcome

        if isinstance(outcome, Failed):
            logger.info(f"Execution failed at {outcome.stage.value} after {duration_ms}ms: {outcome.message}")
        elif isinstance(outcome, Trapped):
            logger.info(f"Execution trapped after {duration_ms}ms: {outcome.message}")
        else:
            logger.info(f"Execution completed in {duration_ms}ms with exit code {outcome.exit_code}")
        return outcome

    def _drive(self, payload: bytes) -> int:
        """Run all stages. Returns the guest exit code.

        Raises:
            SandboxError: stage failure or cancellation
            ExecutionTrap: guest fault
        """
        self._check_cancelled()
        engine = Engine(self.limits.engine_config())
        with self._lock:
            self._engine = engine

        compiled = self.profile.compile(engine, payload)
        # Only the compiled form is used from here on
        del payload
        self._transition(ExecutionState.COMPILED)
        self._check_cancelled()

        store = Store(engine)
        self.limits.apply_to_store(store)
        # A cancel that bumped the epoch before the deadline was set would
        # otherwise go unnoticed
        self._check_cancelled()
        linker = self.profile.link(engine, store, self.capabilities)
        try:
            instance = self.profile.instantiate(linker, store, compiled)
        except (GuestExit, Trap, WasmtimeError) as e:
            return self._guest_stopped(e, store)
        self._transition(ExecutionState.INSTANTIATED)

        self.entry = self.profile.resolve_entry(instance, store)
        logger.debug(f"Resolved entry point '{self.entry.name}' ({self.entry.kind.value})")

        # Deadline is armed; any cancel from here on bumps the epoch past it
        self._check_cancelled()
        self._transition(ExecutionState.RUNNING)
        try:
            code = self.profile.invoke(self.entry, store)
        except (GuestExit, Trap, WasmtimeError) as e:
            return self._guest_stopped(e, store)

        if self.capabilities.exit_code is not None:
            return self.capabilities.exit_code
        return code or 0

    def _guest_stopped(self, error: Exception, store: Store) -> int:
        """Work out why guest code stopped abnormally."""
        if self.capabilities.exit_code is not None:
            return self.capabilities.exit_code
        if self._cancelled.is_set():
            raise CancellationError(self._cancel_reason or "execution cancelled")
        if self.limits.fuel is not None and store.get_fuel() == 0:
            raise CancellationError(f"fuel budget of {self.limits.fuel} exhausted")
        message = error.message if isinstance(error, Trap) else str(error)
        raise ExecutionTrap(message)


def _with_duration(outcome: ExecutionOutcome, duration_ms: int) -> ExecutionOutcome:
    return replace(outcome, duration_ms=duration_ms)


# =============================================================================
# Executor
# =============================================================================

class SandboxExecutor:
    """Runs payloads on a fixed-size worker pool.

    Pool size does not follow the host's core count: on enclave hosts the
    thread budget is fixed in the manifest.
    """

    def __init__(
        self,
        limits: Optional[SandboxLimits] = None,
        profile: Optional[Profile] = None,
        workers: int = DEFAULT_WORKERS,
        capture_bytes: int = DEFAULT_CAPACITY,
        argv0: str = "main.wasm",
        env: Optional[dict[str, str]] = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.limits = limits or SandboxLimits()
        self.profile = profile or ModuleProfile()
        self.workers = workers
        self.capture_bytes = capture_bytes
        self.argv0 = argv0
        self.env = dict(env or {})

        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="wasm-runner")
        self._inflight: set[Execution] = set()
        self._inflight_lock = threading.Lock()

    def new_execution(self) -> Execution:
        capabilities = build_capabilities(
            argv0=self.argv0,
            env=self.env,
            capacity=self.capture_bytes,
        )
        return Execution(self.limits, self.profile, capabilities)

    def execute(self, payload: bytes) -> ExecutionOutcome:
        """Run ``payload`` on the calling thread."""
        return self._run_tracked(self.new_execution(), payload)

    async def execute_async(self, payload: bytes) -> ExecutionOutcome:
        """Run ``payload`` on the worker pool.

        If the awaiting task is cancelled (client gone, server shutting down)
        the execution is cancelled too.
        """
        execution = self.new_execution()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._pool, self._run_tracked, execution, payload)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            execution.cancel("request cancelled")
            raise

    def _run_tracked(self, execution: Execution, payload: bytes) -> ExecutionOutcome:
        with self._inflight_lock:
            self._inflight.add(execution)
        try:
            return execution.run(payload)
        finally:
            with self._inflight_lock:
                self._inflight.discard(execution)

    @property
    def inflight(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def cancel_all(self, reason: str = "service shutting down") -> int:
        with self._inflight_lock:
            running = list(self._inflight)
        for execution in running:
            execution.cancel(reason)
        return len(running)

    def shutdown(self, grace_seconds: float = 5.0) -> None:
        """Let in-flight executions finish for ``grace_seconds``, then cancel them."""
        deadline = time.monotonic() + grace_seconds
        while self.inflight and time.monotonic() < deadline:
            time.sleep(0.05)
        cancelled = self.cancel_all()
        if cancelled:
            logger.warning(f"Cancelled {cancelled} in-flight execution(s) at shutdown")
        self._pool.shutdown(wait=True)


# =============================================================================
# CLI Integration
# =============================================================================

def sandbox_execute(
    payload: bytes,
    profile: Optional[Profile] = None,
    fuel: Optional[int] = None,
    timeout: Optional[float] = 30.0,
) -> ExecutionOutcome:
    """High-level API for a one-off execution.

    Args:
        payload: WebAssembly binary
        profile: Format/ABI profile (default: module)
        fuel: Step budget, None for unlimited
        timeout: Wall-clock budget in seconds, None for unlimited

    Returns:
        ExecutionOutcome
    """
    limits = SandboxLimits(fuel=fuel, timeout_seconds=timeout)
    execution = Execution(limits, profile or ModuleProfile(), build_capabilities())
    return execution.run(payload)
