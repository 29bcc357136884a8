"""
Append-only history of terminal command output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, Protocol

# CSI sequences (colours, cursor moves) and OSC sequences (window titles),
# the latter ended by BEL or ESC backslash.
ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_CONTROL_CHARS_RE = re.compile(r"[\x00\x07\x08]")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_RE.sub("", text)


def sanitize_terminal_output(text: str) -> str:
    """Normalise raw terminal bytes into plain text.

    Strips escape sequences, bell/NUL/backspace characters and converts
    carriage returns to newlines.

    Args:
        text: Raw output as read from the terminal.

    Returns:
        Cleaned text.
    """
    cleaned = strip_ansi(text)
    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_CHARS_RE.sub("", cleaned)


@dataclass(frozen=True)
class TerminalRecord:
    """A command and the output the terminal produced for it."""

    command: str
    output: str
    timestamp: datetime = field(default_factory=datetime.now)


class OutputSource(Protocol):
    """Read-only view of terminal output used by the orchestrator."""

    def __len__(self) -> int: ...

    def since(self, start_length: int) -> list[TerminalRecord]: ...

    def latest(self) -> TerminalRecord | None: ...


class OutputHistory:
    """Ordered, append-only list of terminal records."""

    def __init__(self, max_records: int | None = None) -> None:
        """Initialize history.

        Args:
            max_records: Optional cap; the oldest records are dropped beyond it.
        """
        self._records: list[TerminalRecord] = []
        self._dropped = 0
        self.max_records = max_records

    def append(self, command: str, output: str) -> TerminalRecord:
        """Append a record with sanitised output.

        Args:
            command: Command text that produced the output (may be empty).
            output: Raw terminal output.

        Returns:
            The stored record.
        """
        record = TerminalRecord(command=command, output=sanitize_terminal_output(output))
        self._records.append(record)
        if self.max_records is not None and len(self._records) > self.max_records:
            overflow = len(self._records) - self.max_records
            del self._records[:overflow]
            self._dropped += overflow
        return record

    def since(self, start_length: int) -> list[TerminalRecord]:
        """Records appended after the history had ``start_length`` entries."""
        offset = max(0, start_length - self._dropped)
        return list(self._records[offset:])

    def latest(self) -> TerminalRecord | None:
        return self._records[-1] if self._records else None

    def __len__(self) -> int:
        # Total ever appended, so lengths captured earlier stay comparable.
        return len(self._records) + self._dropped

    def __getitem__(self, index):
        return self._records[index]

    def __iter__(self) -> Iterator[TerminalRecord]:
        return iter(list(self._records))
