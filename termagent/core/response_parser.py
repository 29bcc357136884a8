"""
Parsing logic to turn model replies into agent steps.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from termagent.core.message import Command, RiskLevel
from termagent.exceptions import EmptyResponseError, ResponseParseError

COMPLETION_MARKERS = ("task complete", "summary", "任务完成", "总结")


@dataclass
class AgentReply:
    """Normalised model reply."""

    commands: list[Command] = field(default_factory=list)
    analysis: str | None = None
    complete: bool = False
    summary: str | None = None

    @property
    def has_commands(self) -> bool:
        return bool(self.commands)


def parse_agent_response(text: str | None) -> AgentReply:
    """
    Parse a model reply into commands or a completion summary.

    The reply is expected to contain a JSON object, possibly surrounded by
    prose or code fences. The first brace-balanced object that parses
    wins; a bare array of command objects is only used when no object
    parses or the object is an element of that array. Prose without JSON
    is only accepted when it carries a completion marker.

    Args:
        text: Raw text returned by the gateway.

    Returns:
        AgentReply with commands, or with complete=True.

    Raises:
        EmptyResponseError: If the reply is empty.
        ResponseParseError: If no usable JSON can be extracted.
    """
    if text is None or not text.strip():
        raise EmptyResponseError("Empty response from model")

    objects = list(_balanced_spans(text, "{", "}"))
    arrays = list(_balanced_spans(text, "[", "]"))
    command_array = _first_command_array(arrays)

    first_error: json.JSONDecodeError | None = None
    for start, candidate in objects:
        if command_array is not None and command_array[0] < start < command_array[1]:
            # Element of a bare command list
            break
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            first_error = first_error or e
            continue
        return _reply_from_object(data, raw_text=text)

    if command_array is not None:
        return AgentReply(commands=command_array[2])
    if first_error is not None:
        raise ResponseParseError(
            f"Malformed JSON in model reply: {first_error}", raw_text=text
        ) from first_error
    if _has_completion_marker(text):
        return AgentReply(complete=True, summary=text.strip())
    raise ResponseParseError("No JSON object found in model reply", raw_text=text)


def _reply_from_object(data: dict[str, Any], raw_text: str) -> AgentReply:
    analysis = _optional_str(data.get("analysis"))
    raw_commands = data.get("commands")
    if raw_commands is None and data.get("command"):
        # Older single-command reply shape
        raw_commands = [data]
    if raw_commands is not None and not isinstance(raw_commands, list):
        raise ResponseParseError("'commands' must be a list", raw_text=raw_text)

    commands = _command_items(raw_commands or [])
    if raw_commands and not commands:
        raise ResponseParseError("Reply listed commands but none had command text", raw_text=raw_text)
    complete = _truthy(data.get("complete", data.get("isEnd", data.get("is_end"))))

    if commands:
        return AgentReply(commands=commands, analysis=analysis, complete=complete)

    summary = _optional_str(data.get("summary")) or _optional_str(data.get("result")) or analysis
    return AgentReply(analysis=analysis, complete=True, summary=summary)


def _balanced_spans(text: str, open_char: str, close_char: str) -> Iterator[tuple[int, str]]:
    """Top-level balanced containers of one kind, with their start offsets."""
    start = text.find(open_char)
    while start != -1:
        candidate = _extract_balanced(text, open_char, close_char, start)
        if candidate is None:
            return
        yield start, candidate
        start = text.find(open_char, start + len(candidate))


def _first_command_array(arrays: list[tuple[int, str]]) -> tuple[int, int, list[Command]] | None:
    """First array that parses to a list holding at least one usable command."""
    for start, candidate in arrays:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, list):
            continue
        commands = _command_items(data)
        if commands:
            return start, start + len(candidate), commands
    return None


def _extract_balanced(text: str, open_char: str, close_char: str, start: int) -> str | None:
    """Extract the balanced JSON container opening at ``start``, ignoring brackets in strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _command_items(items: list[Any]) -> list[Command]:
    """Commands from a list of reply items; entries without command text are skipped."""
    commands: list[Command] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        command_text = _optional_str(item.get("command"))
        if not command_text:
            continue
        commands.append(
            Command(
                text=command_text,
                description=_optional_str(item.get("description")) or "",
                risk=RiskLevel.parse(item.get("risk")),
                stop_command=_optional_str(item.get("stop_command", item.get("stopCommand"))),
            )
        )

    return commands


def _has_completion_marker(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in COMPLETION_MARKERS)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)
