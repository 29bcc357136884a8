"""Core module initialization."""

from termagent.core.dialogue import DialogueContext
from termagent.core.message import AgentMessage, Command, ContentBlock, RiskLevel
from termagent.core.orchestrator import TaskOrchestrator
from termagent.core.output_history import OutputHistory
from termagent.core.task import AgentState, AgentTask

__all__ = [
    "AgentMessage",
    "AgentState",
    "AgentTask",
    "Command",
    "ContentBlock",
    "DialogueContext",
    "OutputHistory",
    "RiskLevel",
    "TaskOrchestrator",
]
