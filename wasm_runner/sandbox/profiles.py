"""
Wasm Runner Format/ABI Profiles

A process serves exactly one profile, chosen at deployment time:

- module: core WebAssembly modules using the WASI preview 1 flat ABI,
  entered through ``_start`` or ``main``.
- component: WebAssembly components implementing the WASI command world,
  entered through ``wasi:cli/run``.

Each profile knows how to compile, link, instantiate and enter its payloads.
Profiles hold no per-request state; everything per request lives on the
CapabilitySet and the Store passed in.
"""

import logging
import shutil
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from wasmtime import Engine, Linker, Module, Store, Trap, WasmtimeError

from .capabilities import CapabilitySet, WasiPreview1, wasi_config
from .entry import EntryKind, EntryPoint, resolve_component_entry, resolve_module_entry
from .errors import CompilationError, InstantiationError

logger = logging.getLogger(__name__)

WASM_MAGIC = b"\0asm"


class ProfileKind(str, Enum):
    MODULE = "module"
    COMPONENT = "component"


def detect_binary_kind(payload: bytes) -> ProfileKind:
    """Classify a payload from its 8-byte preamble.

    Raises:
        CompilationError: if the bytes are not a WebAssembly binary
    """
    if len(payload) < 8 or payload[:4] != WASM_MAGIC:
        raise CompilationError("payload is not a WebAssembly binary (missing \\0asm magic)")

    version = int.from_bytes(payload[4:6], "little")
    layer = int.from_bytes(payload[6:8], "little")
    if layer == 0 and version == 1:
        return ProfileKind.MODULE
    if layer == 1:
        return ProfileKind.COMPONENT
    raise CompilationError(f"unsupported WebAssembly binary (version {version}, layer {layer})")


class Profile(Protocol):
    """What the executor needs from a profile."""

    kind: ProfileKind

    def compile(self, engine: Engine, payload: bytes) -> Any: ...

    def link(self, engine: Engine, store: Store, capabilities: CapabilitySet) -> Any: ...

    def instantiate(self, linker: Any, store: Store, compiled: Any) -> Any: ...

    def resolve_entry(self, instance: Any, store: Store) -> EntryPoint: ...

    def invoke(self, entry: EntryPoint, store: Store) -> Optional[int]: ...

    def release(self, capabilities: CapabilitySet) -> None: ...


def _expect_kind(payload: bytes, kind: ProfileKind) -> None:
    found = detect_binary_kind(payload)
    if found != kind:
        raise CompilationError(
            f"payload is a WebAssembly {found.value}, but this service runs {kind.value}s"
        )


# =============================================================================
# Module profile (WASI preview 1)
# =============================================================================

class ModuleProfile:
    """Core modules with the legacy flat-export ABI."""

    kind = ProfileKind.MODULE

    def compile(self, engine: Engine, payload: bytes) -> Module:
        _expect_kind(payload, self.kind)
        try:
            return Module(engine, payload)
        except WasmtimeError as e:
            raise CompilationError(str(e)) from e

    def link(self, engine: Engine, store: Store, capabilities: CapabilitySet) -> Linker:
        linker = Linker(engine)
        WasiPreview1(capabilities).define(linker, store)
        return linker

    def instantiate(self, linker: Linker, store: Store, compiled: Module):
        try:
            return linker.instantiate(store, compiled)
        except Trap:
            # A start section that faults is guest behaviour, not a link error.
            raise
        except WasmtimeError as e:
            raise InstantiationError(str(e)) from e

    def resolve_entry(self, instance, store: Store) -> EntryPoint:
        return resolve_module_entry(instance, store)

    def invoke(self, entry: EntryPoint, store: Store) -> Optional[int]:
        result = entry.func(store)
        if entry.kind == EntryKind.LEGACY_MAIN:
            return int(result)
        return None

    def release(self, capabilities: CapabilitySet) -> None:
        pass


# =============================================================================
# Component profile (WASI command world)
# =============================================================================

class ComponentProfile:
    """Components implementing wasi:cli/command.

    The engine's WASI p2 implementation only writes stdio to files, so each
    request gets a private scratch directory whose stdout/stderr files are
    read back into the request's bounded buffers and then deleted.
    """

    kind = ProfileKind.COMPONENT

    def compile(self, engine: Engine, payload: bytes):
        _expect_kind(payload, self.kind)
        from wasmtime import component

        try:
            return component.Component(engine, payload)
        except WasmtimeError as e:
            raise CompilationError(str(e)) from e

    def link(self, engine: Engine, store: Store, capabilities: CapabilitySet):
        from wasmtime import component

        scratch = Path(tempfile.mkdtemp(prefix="wasm-runner-"))
        capabilities.scratch_dir = scratch

        wasi = wasi_config(capabilities)
        wasi.stdout_file = str(scratch / "stdout")
        wasi.stderr_file = str(scratch / "stderr")
        store.set_wasi(wasi)

        linker = component.Linker(engine)
        try:
            linker.add_wasip2()
        except WasmtimeError as e:
            raise InstantiationError(f"cannot provide WASI command world: {e}") from e
        return linker

    def instantiate(self, linker, store: Store, compiled):
        try:
            return linker.instantiate(store, compiled)
        except Trap:
            raise
        except WasmtimeError as e:
            raise InstantiationError(str(e)) from e

    def resolve_entry(self, instance, store: Store) -> EntryPoint:
        def lookup(interface: str, name: str):
            parent = instance.get_export_index(store, interface)
            if parent is None:
                return None
            index = instance.get_export_index(store, name, parent)
            if index is None:
                return None
            return instance.get_func(store, index)

        return resolve_component_entry(lookup)

    def invoke(self, entry: EntryPoint, store: Store) -> Optional[int]:
        result = entry.func(store)
        entry.func.post_return(store)
        # run returns result<_, _> as a variant tagged ok or err
        return 0 if getattr(result, "tag", None) == "ok" else 1

    def release(self, capabilities: CapabilitySet) -> None:
        scratch = capabilities.scratch_dir
        if scratch is None:
            return
        try:
            stdio = capabilities.stdio
            for name, buffer in (("stdout", stdio.stdout), ("stderr", stdio.stderr)):
                path = scratch / name
                if path.exists():
                    with open(path, "rb") as f:
                        # One byte past capacity is enough to flag truncation
                        buffer.write(f.read(buffer.capacity + 1))
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
            capabilities.scratch_dir = None


PROFILES = {
    ProfileKind.MODULE: ModuleProfile,
    ProfileKind.COMPONENT: ComponentProfile,
}


def get_profile(kind) -> Profile:
    """Instantiate the profile for ``kind`` ('module' or 'component')."""
    try:
        return PROFILES[ProfileKind(kind)]()
    except ValueError:
        choices = ", ".join(k.value for k in ProfileKind)
        raise ValueError(f"Unknown profile: {kind!r} (expected one of: {choices})")
