"""
Wasm Runner Configuration

Read once at process start from the environment. Nothing is persisted.

Environment variables:
- HOST, PORT: listening address (default 0.0.0.0:3000)
- WASM_RUNNER_PROFILE: "module" (default) or "component"
- WASM_RUNNER_WORKERS: execution worker threads (default 4)
- WASM_RUNNER_CAPTURE_BYTES: per-stream capture capacity (default 1 MiB)
- WASM_RUNNER_CANCEL_STATUS: HTTP status for cancelled executions (default 503)
- WASM_RUNNER_ARGV0: argv[0] seen by guests (default main.wasm)
- WASM_RUNNER_SHUTDOWN_GRACE: seconds in-flight executions get at shutdown
- WASM_RUNNER_MEMORY_*, WASM_RUNNER_GUARD_SIZE, WASM_RUNNER_FUEL,
  WASM_RUNNER_TIMEOUT: sandbox limits, see sandbox.limits
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .sandbox.capture import DEFAULT_CAPACITY
from .sandbox.executor import DEFAULT_WORKERS
from .sandbox.limits import SandboxLimits
from .sandbox.profiles import ProfileKind
from .sandbox.report import DEFAULT_CANCELLATION_STATUS

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000


@dataclass(frozen=True)
class Settings:
    """Process configuration."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    profile: ProfileKind = ProfileKind.MODULE
    workers: int = DEFAULT_WORKERS
    capture_bytes: int = DEFAULT_CAPACITY
    cancellation_status: int = DEFAULT_CANCELLATION_STATUS
    argv0: str = "main.wasm"
    shutdown_grace_seconds: float = 5.0
    limits: SandboxLimits = field(default_factory=SandboxLimits)


def _int(env, name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_settings(environ: Optional[dict] = None) -> Settings:
    """Build Settings from the environment.

    Raises:
        ValueError: on any invalid value; the process must not start
    """
    env = os.environ if environ is None else environ

    profile_raw = env.get("WASM_RUNNER_PROFILE", ProfileKind.MODULE.value).strip().lower()
    try:
        profile = ProfileKind(profile_raw)
    except ValueError:
        raise ValueError(f"WASM_RUNNER_PROFILE must be 'module' or 'component', got {profile_raw!r}")

    port = _int(env, "PORT", DEFAULT_PORT, minimum=0)
    if port > 65535:
        raise ValueError(f"PORT must be <= 65535, got {port}")

    cancellation_status = _int(env, "WASM_RUNNER_CANCEL_STATUS", DEFAULT_CANCELLATION_STATUS)
    if not 400 <= cancellation_status <= 599:
        raise ValueError(f"WASM_RUNNER_CANCEL_STATUS must be a 4xx/5xx status, got {cancellation_status}")

    grace_raw = env.get("WASM_RUNNER_SHUTDOWN_GRACE", "").strip()
    try:
        grace = float(grace_raw) if grace_raw else 5.0
    except ValueError:
        raise ValueError(f"WASM_RUNNER_SHUTDOWN_GRACE must be a number, got {grace_raw!r}")

    return Settings(
        host=env.get("HOST", DEFAULT_HOST).strip() or DEFAULT_HOST,
        port=port,
        profile=profile,
        workers=_int(env, "WASM_RUNNER_WORKERS", DEFAULT_WORKERS, minimum=1),
        capture_bytes=_int(env, "WASM_RUNNER_CAPTURE_BYTES", DEFAULT_CAPACITY, minimum=0),
        cancellation_status=cancellation_status,
        argv0=env.get("WASM_RUNNER_ARGV0", "main.wasm"),
        shutdown_grace_seconds=grace,
        limits=SandboxLimits.from_env(env),
    )
