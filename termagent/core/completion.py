"""
Command completion detection by watching terminal output.

The terminal gives no "command finished" signal, so completion is inferred
from a shell prompt reappearing at the end of new output, with a bounded
number of polls as the fallback.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable

from termagent.core.cancellation import CancellationToken
from termagent.core.output_history import OutputSource

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
MAX_POLLS = 100
SKIP_OUTPUT = "Command skipped"

PromptDetector = Callable[[str], bool]
Sleep = Callable[[float], Awaitable[None]]

# Trailing $, # or >, optionally preceded by a bracketed [user@host dir] segment.
SHELL_PROMPT_RE = re.compile(r"(?:\[[^\]\n]*\][^\n$#>]*)?[$#>]\s*$")


def is_shell_prompt(text: str) -> bool:
    """Check whether the last line of text ends in a shell prompt.

    Args:
        text: Output text to inspect.

    Returns:
        True if the final line ends with a prompt character.
    """
    if not text:
        return False
    lines = text.rstrip("\r\n").splitlines()
    if not lines:
        return False
    return SHELL_PROMPT_RE.search(lines[-1]) is not None


async def wait_for(
    condition: Callable[[], bool],
    *,
    interval: float = POLL_INTERVAL,
    max_polls: int = MAX_POLLS,
    sleep: Sleep = asyncio.sleep,
    token: CancellationToken | None = None,
) -> tuple[bool, int]:
    """Poll ``condition`` until it holds, the poll ceiling is hit, or cancellation.

    Args:
        condition: Predicate evaluated after each interval.
        interval: Seconds between polls.
        max_polls: Maximum number of polls before giving up.
        sleep: Coroutine used to wait between polls.
        token: Optional token that stops polling early.

    Returns:
        Tuple of (condition met, polls performed).
    """
    polls = 0
    while polls < max_polls:
        if token is not None and token.is_cancelled:
            return False, polls
        await sleep(interval)
        polls += 1
        if condition():
            return True, polls
    return False, polls


@dataclass
class CompletionResult:
    """Output captured for one dispatched command."""

    output: str
    matched: bool = False
    timed_out: bool = False
    cancelled: bool = False
    polls: int = 0


class CompletionDetector:
    """Wait for a dispatched command's output to end in a shell prompt."""

    def __init__(
        self,
        history: OutputSource,
        *,
        poll_interval: float = POLL_INTERVAL,
        max_polls: int = MAX_POLLS,
        prompt_detector: PromptDetector = is_shell_prompt,
        skip_output: str = SKIP_OUTPUT,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.history = history
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.prompt_detector = prompt_detector
        self.skip_output = skip_output
        self._sleep = sleep

    def arm(self) -> int:
        """Capture the history length before a command is dispatched."""
        return len(self.history)

    def _prompt_seen(self, start_length: int) -> bool:
        if len(self.history) <= start_length:
            return False
        latest = self.history.latest()
        return latest is not None and self.prompt_detector(latest.output)

    def _collect(self, start_length: int) -> str:
        return "\n".join(record.output for record in self.history.since(start_length))

    async def wait_for_completion(
        self,
        start_length: int,
        token: CancellationToken | None = None,
    ) -> CompletionResult:
        """Wait until output after ``start_length`` ends in a prompt.

        Never blocks past the poll ceiling; on timeout whatever output has
        accumulated is returned.

        Args:
            start_length: Value returned by arm() before dispatch.
            token: Optional token that abandons the wait.

        Returns:
            CompletionResult with the captured output.
        """
        matched, polls = await wait_for(
            lambda: self._prompt_seen(start_length),
            interval=self.poll_interval,
            max_polls=self.max_polls,
            sleep=self._sleep,
            token=token,
        )
        output = self._collect(start_length)
        cancelled = bool(token and token.is_cancelled and not matched)
        timed_out = not matched and not cancelled
        if timed_out:
            logger.info("No prompt after %d polls; continuing with partial output", polls)
        else:
            logger.debug("Completion wait finished after %d polls (matched=%s)", polls, matched)
        return CompletionResult(
            output=output,
            matched=matched,
            timed_out=timed_out,
            cancelled=cancelled,
            polls=polls,
        )

    def skip(self) -> CompletionResult:
        """Bypass polling with the fixed skip output."""
        return CompletionResult(output=self.skip_output, matched=True)
