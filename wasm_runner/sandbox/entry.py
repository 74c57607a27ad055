"""
Wasm Runner Entry-Point Resolver

Finds the callable to run once a payload is instantiated.

Module payloads are searched through an ordered list of (export name,
signature) candidates; the first export that exists with exactly that
signature wins. Component payloads expose a single ``wasi:cli/run``
function.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from wasmtime import Func, Instance, Store

from .errors import EntryPointNotFound


class EntryKind(str, Enum):
    LEGACY_START = "legacy_start"
    LEGACY_MAIN = "legacy_main"
    COMPONENT_RUN = "component_run"


@dataclass(frozen=True)
class EntryPoint:
    """The one function chosen to run for an execution."""
    kind: EntryKind
    name: str
    func: Any
    params: tuple[str, ...] = ()
    results: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntryCandidate:
    name: str
    kind: EntryKind
    params: tuple[str, ...]
    results: tuple[str, ...]


# Priority order. Do not reorder.
MODULE_ENTRY_CANDIDATES = (
    EntryCandidate("_start", EntryKind.LEGACY_START, (), ()),
    EntryCandidate("main", EntryKind.LEGACY_MAIN, (), ("i32",)),
)

# Command world run export, newest first
COMPONENT_RUN_INTERFACES = (
    "wasi:cli/run@0.2.6",
    "wasi:cli/run@0.2.3",
    "wasi:cli/run@0.2.0",
)
COMPONENT_RUN_FUNC = "run"


def func_signature(func: Func, store: Store) -> tuple[tuple[str, ...], tuple[str, ...]]:
    ty = func.type(store)
    return tuple(str(p) for p in ty.params), tuple(str(r) for r in ty.results)


def resolve_module_entry(instance: Instance, store: Store) -> EntryPoint:
    """Pick the entry of a core module instance.

    Raises:
        EntryPointNotFound: if no candidate exists with a matching signature
    """
    exports = instance.exports(store)
    rejected = []

    for candidate in MODULE_ENTRY_CANDIDATES:
        try:
            export = exports[candidate.name]
        except KeyError:
            continue

        if not isinstance(export, Func):
            rejected.append(f"'{candidate.name}' is not a function")
            continue

        params, results = func_signature(export, store)
        if (params, results) != (candidate.params, candidate.results):
            rejected.append(
                f"'{candidate.name}' has signature ({', '.join(params)}) -> ({', '.join(results)})"
            )
            continue

        return EntryPoint(
            kind=candidate.kind,
            name=candidate.name,
            func=export,
            params=params,
            results=results,
        )

    expected = " or ".join(f"'{c.name}'" for c in MODULE_ENTRY_CANDIDATES)
    detail = f" ({'; '.join(rejected)})" if rejected else ""
    raise EntryPointNotFound(f"no {expected} export with the expected signature{detail}")


def resolve_component_entry(lookup: Callable[[str, str], Optional[Any]]) -> EntryPoint:
    """Pick the ``run`` function of a command component.

    ``lookup(interface, func_name)`` returns the exported function or None.
    """
    for interface in COMPONENT_RUN_INTERFACES:
        func = lookup(interface, COMPONENT_RUN_FUNC)
        if func is not None:
            return EntryPoint(
                kind=EntryKind.COMPONENT_RUN,
                name=f"{interface}#{COMPONENT_RUN_FUNC}",
                func=func,
            )
    raise EntryPointNotFound("component does not export the wasi:cli/run interface")
