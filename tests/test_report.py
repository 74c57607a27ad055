"""Tests for report rendering and HTTP status mapping."""

import pytest

from wasm_runner.sandbox import (
    Completed,
    EntryKind,
    Failed,
    FailureStage,
    Trapped,
    render_report,
    status_code,
)
from wasm_runner.sandbox.report import NO_OUTPUT_NOTICE, TRUNCATION_NOTICE


def test_completed_stdout_only():
    outcome = Completed(stdout=b"hello\n", stderr=b"", entry=EntryKind.LEGACY_START)
    assert render_report(outcome) == "hello\n"
    assert status_code(outcome) == 200


def test_completed_empty_output_still_reports_success():
    assert render_report(Completed(stdout=b"", stderr=b"")) == NO_OUTPUT_NOTICE


def test_completed_with_stderr_has_both_sections():
    outcome = Completed(stdout=b"out", stderr=b"err")
    assert render_report(outcome) == "-- stdout --\nout\n\n-- stderr --\nerr"


def test_main_always_reports_exit_code():
    outcome = Completed(stdout=b"done", stderr=b"", exit_code=0, entry=EntryKind.LEGACY_MAIN)
    assert render_report(outcome) == "done\n[exit code: 0]"


def test_nonzero_exit_is_reported_but_still_ok():
    outcome = Completed(stdout=b"", stderr=b"", exit_code=3, entry=EntryKind.LEGACY_START)
    assert render_report(outcome) == f"{NO_OUTPUT_NOTICE}\n[exit code: 3]"
    assert status_code(outcome) == 200


def test_truncation_notice():
    outcome = Completed(stdout=b"abc\n", stderr=b"", truncated=True)
    assert render_report(outcome) == f"abc\n{TRUNCATION_NOTICE}"


def test_invalid_utf8_is_replaced():
    outcome = Completed(stdout=b"ok \xff\xfe", stderr=b"")
    assert render_report(outcome) == "ok ��"


def test_trap_report_keeps_output():
    outcome = Trapped(message="wasm trap: unreachable", stdout=b"partial", stderr=b"")
    report = render_report(outcome)
    assert report.startswith("WASM trap: wasm trap: unreachable\n\n")
    assert "-- stdout --\npartial" in report
    assert "-- stderr --" not in report
    assert status_code(outcome) == 200


def test_trap_report_with_stderr_and_truncation():
    outcome = Trapped(message="boom", stdout=b"a", stderr=b"b", truncated=True)
    report = render_report(outcome)
    assert "-- stderr --\nb" in report
    assert report.endswith(TRUNCATION_NOTICE)


@pytest.mark.parametrize("stage", [
    FailureStage.COMPILATION,
    FailureStage.LINKING,
    FailureStage.ENTRY_RESOLUTION,
])
def test_setup_failures_are_client_errors(stage):
    outcome = Failed(stage=stage, message="bad payload")
    assert render_report(outcome) == f"WASM error [{stage.value}]: bad payload"
    assert status_code(outcome) == 400


def test_cancellation_status_is_configurable():
    outcome = Failed(stage=FailureStage.CANCELLATION, message="execution timed out after 1s")
    assert status_code(outcome) == 503
    assert status_code(outcome, cancellation_status=408) == 408
    assert render_report(outcome) == "WASM error [cancellation]: execution timed out after 1s"


def test_report_is_deterministic():
    outcome = Trapped(message="m", stdout=b"x" * 100, stderr=b"y")
    assert render_report(outcome) == render_report(outcome)


def test_unknown_outcome_rejected():
    with pytest.raises(TypeError):
        render_report(object())
