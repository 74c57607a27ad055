"""
Wasm Runner Result Marshaller

Turns an ExecutionOutcome into the plain-text body returned to the caller,
and decides the HTTP status for it. Output is decoded lossily: guest bytes
are untrusted and must never break the report.
"""

from .entry import EntryKind
from .executor import Completed, ExecutionOutcome, Failed, Trapped
from .errors import FailureStage

TRAP_PREFIX = "WASM trap"
ERROR_PREFIX = "WASM error"
TRUNCATION_NOTICE = "[output truncated: capture limit reached]"
NO_OUTPUT_NOTICE = "[completed with no output]"

DEFAULT_CANCELLATION_STATUS = 503


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _sections(stdout: bytes, stderr: bytes, always_label: bool = False) -> str:
    out, err = _decode(stdout), _decode(stderr)
    if not err and not always_label:
        return out
    text = f"-- stdout --\n{out}"
    if err:
        text += f"\n\n-- stderr --\n{err}"
    return text


def _append_footer(body: str, lines: list[str]) -> str:
    if not lines:
        return body
    if body and not body.endswith("\n"):
        body += "\n"
    return body + "\n".join(lines)


def render_report(outcome: ExecutionOutcome) -> str:
    """Render ``outcome`` as response text. Same outcome, same text."""
    if isinstance(outcome, Completed):
        footer = []
        if outcome.entry == EntryKind.LEGACY_MAIN or outcome.exit_code != 0:
            footer.append(f"[exit code: {outcome.exit_code}]")
        if outcome.truncated:
            footer.append(TRUNCATION_NOTICE)
        body = _sections(outcome.stdout, outcome.stderr) or NO_OUTPUT_NOTICE
        return _append_footer(body, footer)

    if isinstance(outcome, Trapped):
        body = f"{TRAP_PREFIX}: {outcome.message}\n\n"
        body += _sections(outcome.stdout, outcome.stderr, always_label=True)
        return _append_footer(body, [TRUNCATION_NOTICE] if outcome.truncated else [])

    if isinstance(outcome, Failed):
        return f"{ERROR_PREFIX} [{outcome.stage.value}]: {outcome.message}"

    raise TypeError(f"Unknown outcome type: {type(outcome).__name__}")


def status_code(outcome: ExecutionOutcome, cancellation_status: int = DEFAULT_CANCELLATION_STATUS) -> int:
    """HTTP status for ``outcome``. Traps are guest-level: still 200."""
    if isinstance(outcome, (Completed, Trapped)):
        return 200
    if outcome.stage == FailureStage.CANCELLATION:
        return cancellation_status
    return 400
