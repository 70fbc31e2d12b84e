"""
Unit tests for graph_app_toolkit/audit_log.py.
"""

import csv
import io

import pytest
from rich.console import Console

from graph_app_toolkit.audit_log import AuditLog


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=200), buf


class TestOrdering:
    def test_start_resets(self):
        log = AuditLog()
        log.start("first")
        log.log("hello")
        log.start("second")
        assert [e.message for e in log.entries] == ["Begin second"]

    def test_sequence_is_monotonic(self):
        log = AuditLog()
        log.start("cmd")
        for i in range(5):
            log.log(f"m{i}")
        assert [e.sequence for e in log.entries] == list(range(1, 7))

    def test_nested_functions_attribute_entries(self):
        log = AuditLog()
        log.start("cmd")
        log.begin_function("Outer")
        log.begin_function("Inner")
        log.log("deep")
        log.end_function("Inner")
        log.log("shallow")
        log.end_function("Outer")
        by_message = {e.message: e.function for e in log.entries}
        assert by_message["deep"] == "Inner"
        assert by_message["shallow"] == "Outer"
        assert log.current_function == "cmd"

    def test_begin_function_does_not_reset(self):
        log = AuditLog()
        log.start("cmd")
        log.log("kept")
        log.begin_function("F")
        assert any(e.message == "kept" for e in log.entries)

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValueError):
            AuditLog().log("x", "Debug")


class TestFunctionContext:
    def test_error_logged_and_reraised(self):
        log = AuditLog()
        log.start("cmd")
        with pytest.raises(RuntimeError):
            with log.function("Step"):
                raise RuntimeError("boom")
        errors = [e for e in log.entries if e.severity == "Error"]
        assert errors and "boom" in errors[0].message
        assert log.entries[-1].message == "End Step"
        assert log.current_function == "cmd"


class TestEcho:
    def test_verbose_hidden_unless_verbose(self):
        console, buf = _console()
        log = AuditLog(console=console)
        log.log("quiet detail")
        log.log("visible warning", "Warning")
        out = buf.getvalue()
        assert "quiet detail" not in out
        assert "WARNING: visible warning" in out

    def test_verbose_echoed_when_verbose(self):
        console, buf = _console()
        log = AuditLog(console=console, verbose=True)
        log.log("quiet detail")
        assert "quiet detail" in buf.getvalue()

    def test_hidden_entries_still_recorded(self):
        console, _ = _console()
        log = AuditLog(console=console)
        log.log("quiet detail")
        assert log.entries[-1].message == "quiet detail"


class TestEnd:
    def test_end_without_path_returns_none(self):
        log = AuditLog()
        log.start("cmd")
        assert log.end() is None
        assert log.entries[-1].message == "End cmd"

    def test_end_exports_csv(self, tmp_path):
        log = AuditLog()
        log.start("cmd")
        log.log("one", "Information")
        log.log("=HYPERLINK()", "Warning")
        out = log.end(tmp_path / "logs" / "run.csv")
        with out.open(encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))
        assert [r["message"] for r in rows] == ["Begin cmd", "one", "'=HYPERLINK()", "End cmd"]
        assert rows[2]["severity"] == "Warning"
        assert list(rows[0]) == ["sequence", "timestamp", "severity", "function", "message"]
