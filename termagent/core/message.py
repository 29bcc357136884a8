"""
Message data structures for the agent transcript.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Dialogue roles sent to the gateway."""

    SYSTEM = "system"
    USER = "user"


class RiskLevel(str, Enum):
    """Declared danger classification of a proposed command."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)

    def __le__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        """Parse a risk label, treating anything unrecognised as HIGH.

        Args:
            value: Raw label from the model reply or configuration.

        Returns:
            Matching RiskLevel.
        """
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for level in cls:
                if level.value == normalized:
                    return level
        return cls.HIGH


class MessageStatus(str, Enum):
    """Rendering-facing status of an agent message."""

    THINKING = "thinking"
    WAITING = "waiting"
    EXECUTING = "executing"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class ContentType(str, Enum):
    """Kinds of transcript blocks."""

    ANALYSIS = "analysis"
    COMMAND = "command"
    OUTPUT = "output"
    RESULT = "result"
    ERROR = "error"


@dataclass
class Command:
    """A shell command proposed by the model."""

    text: str
    description: str = ""
    risk: RiskLevel = RiskLevel.HIGH
    executed: bool = False
    stop_command: str | None = None

    def mark_executed(self) -> None:
        self.executed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.text,
            "description": self.description,
            "risk": self.risk.value,
            "executed": self.executed,
            "stop_command": self.stop_command,
        }


@dataclass
class ContentBlock:
    """One time-stamped entry in a message transcript."""

    type: ContentType
    content: str = ""
    commands: list[Command] = field(default_factory=list)
    analysis: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def command_text(self) -> str:
        """All commands of the block joined for a single dispatch."""
        return "\n".join(cmd.text for cmd in self.commands)

    @property
    def max_risk(self) -> RiskLevel:
        """Highest declared risk in the block."""
        if not self.commands:
            return RiskLevel.LOW
        return max(self.commands, key=lambda cmd: cmd.risk.rank).risk

    def mark_executed(self) -> None:
        """Mark every command in the block as executed."""
        for cmd in self.commands:
            cmd.mark_executed()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.commands:
            data["commands"] = [cmd.to_dict() for cmd in self.commands]
        if self.analysis:
            data["analysis"] = self.analysis
        return data

    @classmethod
    def command_block(cls, commands: list[Command], analysis: str | None = None) -> "ContentBlock":
        """Create a command block.

        Args:
            commands: Commands proposed in one model reply.
            analysis: Optional analysis text accompanying them.

        Returns:
            New ContentBlock instance.
        """
        return cls(type=ContentType.COMMAND, commands=list(commands), analysis=analysis)

    @classmethod
    def analysis_block(cls, text: str) -> "ContentBlock":
        return cls(type=ContentType.ANALYSIS, content=text)

    @classmethod
    def output_block(cls, output: str) -> "ContentBlock":
        return cls(type=ContentType.OUTPUT, content=output)

    @classmethod
    def result_block(cls, text: str) -> "ContentBlock":
        return cls(type=ContentType.RESULT, content=text)

    @classmethod
    def error_block(cls, text: str) -> "ContentBlock":
        return cls(type=ContentType.ERROR, content=text)


@dataclass
class AgentMessage:
    """The append-only transcript of one task.

    Blocks are only ever appended; nothing is rewritten or removed.
    """

    status: MessageStatus = MessageStatus.THINKING
    user_input: str = ""
    _contents: list[ContentBlock] = field(default_factory=list)

    @property
    def contents(self) -> tuple[ContentBlock, ...]:
        return tuple(self._contents)

    def append(self, block: ContentBlock) -> ContentBlock:
        """Append a block to the transcript.

        Args:
            block: Block to append.

        Returns:
            The appended block.
        """
        self._contents.append(block)
        return block

    def latest_command_block(self) -> ContentBlock | None:
        """Get the most recent command block.

        Returns:
            Last command block or None.
        """
        for block in reversed(self._contents):
            if block.type == ContentType.COMMAND:
                return block
        return None

    def blocks_of(self, content_type: ContentType) -> list[ContentBlock]:
        return [block for block in self._contents if block.type == content_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "user_input": self.user_input,
            "contents": [block.to_dict() for block in self._contents],
        }

    def __len__(self) -> int:
        return len(self._contents)
