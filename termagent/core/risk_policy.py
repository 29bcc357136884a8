"""
Auto-execution policy for proposed commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from termagent.config import AgentConfig
from termagent.core.message import Command, RiskLevel


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str


class RiskPolicy:
    """Decide whether a command may run without user confirmation.

    Stateless apart from the configuration it reads, so it is safe to call
    repeatedly.
    """

    def __init__(self, config: AgentConfig) -> None:
        self.config = config

    @property
    def max_allowed_risk(self) -> RiskLevel:
        return RiskLevel.parse(self.config.max_allowed_risk)

    def evaluate(self, risk: RiskLevel | str) -> PolicyDecision:
        level = RiskLevel.parse(risk)
        if not self.config.auto_run:
            return PolicyDecision(False, f"Auto-run disabled (risk={level.value})")
        ceiling = self.max_allowed_risk
        if level <= ceiling:
            return PolicyDecision(True, f"allowed:{level.value}<={ceiling.value}")
        return PolicyDecision(
            False, f"Risk {level.value} exceeds auto-run ceiling {ceiling.value}"
        )

    def can_auto_execute(self, risk: RiskLevel | str) -> bool:
        return self.evaluate(risk).allowed

    def can_auto_execute_all(self, commands: Iterable[Command]) -> bool:
        """Check a whole command block; every command must be allowed."""
        commands = list(commands)
        if not commands:
            return False
        return all(self.can_auto_execute(cmd.risk) for cmd in commands)
