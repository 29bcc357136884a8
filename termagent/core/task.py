"""
Agent task domain objects and lifecycle state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from termagent.core.cancellation import CancellationToken
from termagent.core.message import AgentMessage


class AgentState(str, Enum):
    """Agent task lifecycle states."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.COMPLETED, AgentState.CANCELLED, AgentState.ERROR)


@dataclass
class AgentTask:
    """One end-to-end pursuit of a user goal."""

    id: str
    goal: str
    state: AgentState = AgentState.IDLE
    auto_execute: bool = True
    paused: bool = False
    current_message: AgentMessage = field(default_factory=AgentMessage)
    steps: list[str] = field(default_factory=list)  # description of each proposed step
    error: str | None = None
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def finish(self, state: AgentState, error: str | None = None) -> None:
        """Move the task into a terminal state.

        Args:
            state: COMPLETED, CANCELLED or ERROR.
            error: Failure text for ERROR.
        """
        self.state = state
        if error is not None:
            self.error = error
        self.completed_at = datetime.now()

    def duration_seconds(self) -> float:
        """Calculate task duration in seconds."""
        end = self.completed_at or datetime.now()
        return (end - self.created_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for rendering layers."""
        return {
            "id": self.id,
            "goal": self.goal,
            "state": self.state.value,
            "auto_execute": self.auto_execute,
            "paused": self.paused,
            "steps": list(self.steps),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "message": self.current_message.to_dict(),
        }
