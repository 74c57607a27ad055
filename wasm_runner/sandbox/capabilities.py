"""
Wasm Runner Capability Adapter

Builds the per-request capability set and exposes it to guests.

For the module profile the engine's own WASI preview 1 implementation is
linked with argv and env from the capability set, no preopened directories
and no inherited stdio: filesystem calls fail with an errno, the rest of the
preview 1 surface (clocks, random, poll, sched_yield) behaves as usual.
``fd_write`` and ``proc_exit`` are then shadowed so that guest output lands in
the request's bounded buffers and exit codes are recorded.

Guest stdio is never wired to the host process's own stdio.
"""

import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from wasmtime import Caller, FuncType, Linker, Memory, Store, ValType, WasiConfig

from .capture import DEFAULT_CAPACITY, OutputBuffer
from .errors import GuestExit

logger = logging.getLogger(__name__)

WASI_P1_MODULE = "wasi_snapshot_preview1"

# WASI preview 1 errno values
ERRNO_SUCCESS = 0
ERRNO_BADF = 8
ERRNO_FAULT = 21

STDOUT, STDERR = 1, 2


@dataclass
class CapturedStdio:
    """stdout/stderr bound to bounded in-memory buffers."""
    stdout: OutputBuffer
    stderr: OutputBuffer

    @classmethod
    def fresh(cls, capacity: int = DEFAULT_CAPACITY) -> "CapturedStdio":
        return cls(stdout=OutputBuffer(capacity), stderr=OutputBuffer(capacity))

    @property
    def truncated(self) -> bool:
        return self.stdout.truncated or self.stderr.truncated


@dataclass
class CapabilitySet:
    """Host-provided capabilities for one execution. Never reused."""
    args: list[str]
    env: dict[str, str] = field(default_factory=dict)
    stdio: CapturedStdio = field(default_factory=CapturedStdio.fresh)

    # Set by proc_exit
    exit_code: Optional[int] = None
    # Component profile stdio spill directory
    scratch_dir: Optional[Path] = None


def build_capabilities(
    argv0: str = "main.wasm",
    args: Optional[list[str]] = None,
    env: Optional[dict[str, str]] = None,
    capacity: int = DEFAULT_CAPACITY,
) -> CapabilitySet:
    """Create a fresh capability set with captured stdio."""
    return CapabilitySet(
        args=[argv0, *(args or [])],
        env=dict(env or {}),
        stdio=CapturedStdio.fresh(capacity),
    )


def wasi_config(capabilities: CapabilitySet) -> WasiConfig:
    """WASI context with argv and env only: no preopens, no host stdio."""
    wasi = WasiConfig()
    wasi.argv = capabilities.args
    wasi.env = list(capabilities.env.items())
    return wasi


# =============================================================================
# WASI preview 1 linking
# =============================================================================

class WasiPreview1:
    """wasi_snapshot_preview1 for one CapabilitySet."""

    def __init__(self, capabilities: CapabilitySet):
        self.capabilities = capabilities

    def define(self, linker: Linker, store: Store) -> None:
        """Link the engine's WASI into ``linker`` with captured stdio."""
        store.set_wasi(wasi_config(self.capabilities))
        linker.define_wasi()

        i32 = ValType.i32()
        linker.allow_shadowing = True
        linker.define_func(
            WASI_P1_MODULE, "fd_write",
            FuncType([i32, i32, i32, i32], [i32]),
            self.fd_write, access_caller=True,
        )
        linker.define_func(
            WASI_P1_MODULE, "proc_exit",
            FuncType([i32], []),
            self.proc_exit,
        )
        linker.allow_shadowing = False

    @staticmethod
    def _memory(caller: Caller) -> Memory:
        memory = caller.get("memory")
        if not isinstance(memory, Memory):
            raise GuestFault("guest does not export a linear memory")
        return memory

    @staticmethod
    def _read(caller: Caller, memory: Memory, ptr: int, length: int) -> bytes:
        if ptr < 0 or length < 0 or ptr + length > memory.data_len(caller):
            raise GuestFault(f"out of bounds read at {ptr}+{length}")
        return bytes(memory.read(caller, ptr, ptr + length))

    def fd_write(self, caller: Caller, fd: int, iovs: int, iovs_len: int, nwritten: int) -> int:
        stdio = self.capabilities.stdio
        target = {STDOUT: stdio.stdout, STDERR: stdio.stderr}.get(fd)
        if target is None:
            return ERRNO_BADF
        try:
            memory = self._memory(caller)
            total = 0
            for i in range(iovs_len):
                base, length = struct.unpack("<II", self._read(caller, memory, iovs + 8 * i, 8))
                if base + length > memory.data_len(caller):
                    raise GuestFault(f"out of bounds iovec at {base}+{length}")
                # Only copy what the buffer can still hold
                room = target.remaining
                target.write(self._read(caller, memory, base, min(length, room)))
                if length > room:
                    target.truncated = True
                # Dropped bytes still count as written, so the guest does
                # not spin retrying once the buffer is full.
                total += length
            if nwritten < 0 or nwritten + 4 > memory.data_len(caller):
                raise GuestFault(f"out of bounds write at {nwritten}+4")
            memory.write(caller, struct.pack("<I", total & 0xFFFFFFFF), nwritten)
        except GuestFault:
            return ERRNO_FAULT
        return ERRNO_SUCCESS

    def proc_exit(self, code: int) -> None:
        self.capabilities.exit_code = code
        logger.debug(f"guest called proc_exit({code})")
        raise GuestExit(code)


class GuestFault(Exception):
    """A capability call referenced memory the guest does not own."""
