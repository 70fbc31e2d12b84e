"""
Append-only audit trail for a single toolkit command.

An AuditLog is created by the CLI (or the caller) and passed explicitly to
every component. Entries are never filtered: severity only controls what is
echoed to the console, everything is recorded and exported.
"""

from __future__ import annotations

import csv
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from rich.console import Console

SEVERITIES = ("Verbose", "Information", "Warning", "Error")

_SEVERITY_STYLES = {
    "Verbose": "dim",
    "Information": "cyan",
    "Warning": "yellow",
    "Error": "bold red",
}


@dataclass(frozen=True)
class AuditLogEntry:
    sequence: int
    timestamp: str
    severity: str
    function: str
    message: str


def _csv_safe(value: str) -> str:
    """Prefix formula-triggering characters so spreadsheets treat them as literals."""
    if value and value[0] in ("=", "+", "-", "@", "\t", "\r"):
        return "'" + value
    return value


class AuditLog:
    """Ordered log of everything a command did, bracketed per function."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self._entries: list[AuditLogEntry] = []
        self._stack: list[str] = []
        self._console = console
        self.verbose = verbose

    @property
    def entries(self) -> list[AuditLogEntry]:
        return list(self._entries)

    @property
    def current_function(self) -> str:
        return self._stack[-1] if self._stack else ""

    def start(self, command: str) -> None:
        """Reset the log and open a new top-level command."""
        self._entries = []
        self._stack = [command]
        self.log(f"Begin {command}", "Information")

    def begin_function(self, name: str) -> None:
        self._stack.append(name)
        self.log(f"Begin {name}")

    def end_function(self, name: str) -> None:
        self.log(f"End {name}")
        if self._stack and self._stack[-1] == name:
            self._stack.pop()

    @contextmanager
    def function(self, name: str) -> Iterator[None]:
        """Bracket a block with begin/end markers; failures are logged and re-raised."""
        self.begin_function(name)
        try:
            yield
        except Exception as exc:
            self.log(f"{name} failed: {exc}", "Error")
            raise
        finally:
            self.end_function(name)

    def log(self, message: str, severity: str = "Verbose") -> AuditLogEntry:
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity {severity!r}; expected one of {', '.join(SEVERITIES)}")
        entry = AuditLogEntry(
            sequence=len(self._entries) + 1,
            timestamp=datetime.now(timezone.utc).isoformat(),
            severity=severity,
            function=self.current_function,
            message=message,
        )
        self._entries.append(entry)
        self._echo(entry)
        return entry

    def _echo(self, entry: AuditLogEntry) -> None:
        if self._console is None:
            return
        if entry.severity == "Verbose" and not self.verbose:
            return
        style = _SEVERITY_STYLES[entry.severity]
        label = "" if entry.severity in ("Verbose", "Information") else f"{entry.severity.upper()}: "
        self._console.print(f"[{style}]{label}{entry.message}[/{style}]", highlight=False)

    def end(self, output_path: Path | None = None) -> Path | None:
        """Close the top-level command and optionally export the whole log as CSV."""
        command = self._stack[0] if self._stack else ""
        self._stack = self._stack[:1]
        self.log(f"End {command}".rstrip(), "Information")
        if output_path is None:
            return None
        return self.export_csv(output_path)

    def export_csv(self, output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fieldnames = ["sequence", "timestamp", "severity", "function", "message"]
        with output_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            for e in self._entries:
                writer.writerow(
                    {
                        "sequence": e.sequence,
                        "timestamp": e.timestamp,
                        "severity": e.severity,
                        "function": _csv_safe(e.function),
                        "message": _csv_safe(e.message),
                    }
                )
        return output_path
