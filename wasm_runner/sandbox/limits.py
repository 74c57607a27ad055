"""
Wasm Runner Sandbox Limits

Process-wide resource limits for every sandbox the service creates.

Hosts that cap reservable address space and thread count (SGX enclaves under
Gramine, for instance) cannot afford wasmtime's default multi-GiB virtual
reservations and guard regions, so every knob here is explicit and small.

A SandboxLimits value is built once at startup and shared by reference
across concurrent executions. It is frozen: concurrent reads need no locking.
"""

import logging
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from wasmtime import Config, Store

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

# Engine knobs that map straight onto SandboxLimits fields. Older engine
# builds do not expose all of them; those are skipped with a debug log.
_RESERVATION_KNOBS = (
    ("memory_reservation", "initial_memory_reservation_bytes"),
    ("memory_reservation_for_growth", "growth_reservation_bytes"),
    ("memory_guard_size", "guard_page_size_bytes"),
    ("memory_may_move", "allow_memory_relocation"),
)


class SandboxLimits(BaseModel):
    """Immutable sandbox limits shared by all executions."""

    model_config = ConfigDict(frozen=True)

    initial_memory_reservation_bytes: int = Field(default=1 * MIB, gt=0)
    growth_reservation_bytes: int = Field(default=16 * MIB, ge=0)
    guard_page_size_bytes: int = Field(default=0, ge=0)
    allow_memory_relocation: bool = True

    # Step budget. None disables fuel metering.
    fuel: Optional[int] = Field(default=None, gt=0)
    # Wall-clock budget enforced through epoch interruption. None disables it.
    timeout_seconds: Optional[float] = Field(default=30.0, gt=0)

    @property
    def memory_ceiling_bytes(self) -> int:
        """Largest linear memory a guest may grow to."""
        return self.initial_memory_reservation_bytes + self.growth_reservation_bytes

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "SandboxLimits":
        """Build limits from WASM_RUNNER_* environment variables.

        Raises:
            ValueError: if a variable does not parse or the values are invalid
        """
        env = os.environ if environ is None else environ
        values = {}

        int_vars = {
            "WASM_RUNNER_MEMORY_RESERVATION": "initial_memory_reservation_bytes",
            "WASM_RUNNER_MEMORY_GROWTH": "growth_reservation_bytes",
            "WASM_RUNNER_GUARD_SIZE": "guard_page_size_bytes",
            "WASM_RUNNER_FUEL": "fuel",
        }
        for var, field_name in int_vars.items():
            raw = env.get(var, "").strip()
            if raw:
                values[field_name] = _parse_int(var, raw)

        raw = env.get("WASM_RUNNER_MEMORY_MAY_MOVE", "").strip()
        if raw:
            values["allow_memory_relocation"] = raw.lower() in ("1", "true", "yes", "on")

        raw = env.get("WASM_RUNNER_TIMEOUT", "").strip()
        if raw:
            # 0 or "none" turns the wall-clock budget off
            if raw.lower() in ("0", "none", "off"):
                values["timeout_seconds"] = None
            else:
                try:
                    values["timeout_seconds"] = float(raw)
                except ValueError:
                    raise ValueError(f"WASM_RUNNER_TIMEOUT must be a number, got {raw!r}")

        try:
            return cls(**values)
        except ValidationError as e:
            raise ValueError(f"Invalid sandbox limits: {e}") from e

    def engine_config(self) -> Config:
        """Build a fresh engine Config. Configs are consumed by an Engine,
        so every execution asks for its own."""
        config = Config()
        config.wasm_memory64 = False
        config.epoch_interruption = True
        if self.fuel is not None:
            config.consume_fuel = True

        for knob, field_name in _RESERVATION_KNOBS:
            if hasattr(type(config), knob):
                setattr(config, knob, getattr(self, field_name))
            else:
                logger.debug(f"Engine does not expose '{knob}', leaving default")

        return config

    def apply_to_store(self, store: Store) -> None:
        """Apply per-store limits: memory ceiling, fuel, epoch deadline."""
        store.set_limits(memory_size=self.memory_ceiling_bytes)
        if self.fuel is not None:
            store.set_fuel(self.fuel)
        # Any epoch bump (timeout or cancel) interrupts the guest.
        store.set_epoch_deadline(1)


def _parse_int(var: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{var} must be an integer, got {raw!r}")
