"""
Bounded dialogue context sent to the gateway on each planning call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from termagent.core.message import Role
from termagent.core.output_history import TerminalRecord, strip_ansi
from termagent.core.tokenizer import TokenEstimator

MAX_HISTORY_LENGTH = 10
MAX_OUTPUT_LINES = 50
MAX_OUTPUT_LENGTH = 500

CONTINUATION_HEADER = "Continue with the task. Result of the last step:"

_BLANK_LINES_RE = re.compile(r"\n\s*\n")


def _cap_line(line: str, max_length: int) -> str:
    if len(line) <= max_length:
        return line
    omitted = len(line) - max_length
    return f"... ({omitted} earlier characters omitted) ...{line[-max_length:]}"


def compact_output(
    text: str,
    max_lines: int = MAX_OUTPUT_LINES,
    max_length: int = MAX_OUTPUT_LENGTH,
) -> str:
    """Compact terminal output for the dialogue, keeping the most recent content.

    Output that is already clean and within both limits comes back unchanged.

    Args:
        text: Captured terminal output.
        max_lines: Number of trailing lines to keep.
        max_length: Number of trailing characters to keep per line.

    Returns:
        Compacted output.
    """
    cleaned = _BLANK_LINES_RE.sub("\n", strip_ansi(text)).strip()
    lines = [line for line in cleaned.split("\n") if line.strip()]

    omitted_lines = 0
    if len(lines) > max_lines:
        omitted_lines = len(lines) - max_lines
        lines = lines[-max_lines:]

    compacted = [_cap_line(line, max_length) for line in lines]
    if omitted_lines:
        compacted.insert(0, f"... ({omitted_lines} earlier lines omitted) ...")
    return "\n".join(compacted)


@dataclass
class DialogueEntry:
    """A single role-tagged entry of the dialogue."""

    role: Role
    content: str

    def to_chat_format(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


class DialogueContext:
    """Role-tagged dialogue with a permanent system entry and capped user entries."""

    def __init__(
        self,
        system_prompt: str,
        max_history_length: int = MAX_HISTORY_LENGTH,
        max_output_lines: int = MAX_OUTPUT_LINES,
        max_output_length: int = MAX_OUTPUT_LENGTH,
        token_estimator: TokenEstimator | None = None,
    ) -> None:
        """Initialize the dialogue.

        Args:
            system_prompt: Fixed instruction prompt, never evicted.
            max_history_length: Maximum number of user entries retained.
            max_output_lines: Lines of output kept per continuation.
            max_output_length: Characters kept per output line.
            token_estimator: Estimator used for size reporting.
        """
        self.system_entry = DialogueEntry(Role.SYSTEM, system_prompt)
        self.max_history_length = max_history_length
        self.max_output_lines = max_output_lines
        self.max_output_length = max_output_length
        self._token_estimator = token_estimator or TokenEstimator()
        self._entries: list[DialogueEntry] = [self.system_entry]

    @property
    def entries(self) -> tuple[DialogueEntry, ...]:
        return tuple(self._entries)

    @property
    def system_prompt(self) -> str:
        return self.system_entry.content

    def format_turn(
        self,
        input: str,
        output_history: Sequence[TerminalRecord],
        is_new_user_query: bool,
    ) -> str:
        """Render the text of the next turn.

        Args:
            input: The goal for a new query, or the captured output for a continuation.
            output_history: Records of the step just finished; the last one is used.
            is_new_user_query: Whether this starts a new goal.

        Returns:
            The goal verbatim for a new query, otherwise a compacted
            continuation built from the most recent command and its output.
        """
        if is_new_user_query:
            return input

        record = output_history[-1] if output_history else None
        command = record.command if record else ""
        output = record.output if record else input

        parts = [CONTINUATION_HEADER]
        if command:
            parts.append(f"$ {command}")
        parts.append(
            compact_output(output, self.max_output_lines, self.max_output_length) or "(no output)"
        )
        return "\n".join(parts)

    def append_turn(self, content: str, is_new_user_query: bool) -> DialogueEntry:
        """Add a turn to the dialogue.

        A new query gets its own user entry; a continuation extends the
        last user entry so one goal accumulates all of its step outputs.

        Args:
            content: Turn text, usually from format_turn().
            is_new_user_query: Whether this starts a new goal.

        Returns:
            The entry that now holds the content.
        """
        last = self._entries[-1]
        if not is_new_user_query and last.role == Role.USER:
            last.content = f"{last.content}\n\n{content}"
            return last

        entry = DialogueEntry(Role.USER, content)
        self._entries.append(entry)
        self._prune_history()
        return entry

    def messages_for_gateway(self) -> list[dict[str, Any]]:
        """Get entries formatted for a chat completion request."""
        return [entry.to_chat_format() for entry in self._entries]

    def last_user_entry(self) -> DialogueEntry | None:
        for entry in reversed(self._entries):
            if entry.role == Role.USER:
                return entry
        return None

    def clear(self) -> None:
        """Drop every entry except the system prompt."""
        self._entries = [self.system_entry]

    @property
    def total_tokens(self) -> int:
        """Estimate tokens across all retained entries."""
        return sum(self._token_estimator.count(entry.content) for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _prune_history(self) -> None:
        while len(self._entries) > self.max_history_length + 1:
            if not self._remove_oldest_entry():
                break

    def _remove_oldest_entry(self) -> bool:
        """Remove the oldest non-system entry.

        Returns:
            True if an entry was removed.
        """
        for idx, entry in enumerate(self._entries):
            if entry.role != Role.SYSTEM:
                self._entries.pop(idx)
                return True
        return False
