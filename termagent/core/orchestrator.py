"""
Agent task orchestration: goal -> plan -> dispatch -> observe -> re-plan.
"""

from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable

from termagent.config import AgentConfig, Config
from termagent.core.cancellation import Generation
from termagent.core.completion import CompletionDetector, CompletionResult
from termagent.core.dialogue import DialogueContext
from termagent.core.gateway import ChatGateway, create_gateway
from termagent.core.message import AgentMessage, ContentBlock, MessageStatus
from termagent.core.output_history import OutputSource, TerminalRecord
from termagent.core.response_parser import parse_agent_response
from termagent.core.risk_policy import RiskPolicy
from termagent.core.task import AgentState, AgentTask
from termagent.core.tokenizer import TokenEstimator
from termagent.exceptions import (
    DispatchError,
    EmptyResponseError,
    GatewayError,
    ResponseParseError,
    TaskStateError,
)

logger = logging.getLogger(__name__)

DispatchCallback = Callable[[str], Awaitable[None]]

CTRL_C = "\x03"

AGENT_SYSTEM_PROMPT = """You are an expert Linux assistant that leads the user through complex tasks on a remote shell.
Follow these rules:
1. Break the task into steps. Each step is run in the user's terminal and you will see its output before deciding the next step.
2. Every step must be returned as plain JSON (no markdown) in this form:
   {
     "analysis": "what the previous command's output shows",
     "commands": [
       {
         "command": "the exact command; join several with newlines so they run in one go",
         "description": "what the command does",
         "risk": "low | medium | high"
       }
     ]
   }
3. For dangerous commands (rm, chmod, service restarts, ...) explain the risk in the description and mark them high.
4. Fill in parameters from the context you already have instead of asking the user, e.g. "kill 123456", never "kill <PID>".
5. If a command needs a key to stop it (like "q" for a pager), add "stop_command" to that command.
6. When something fails, diagnose it and propose a fix.
7. When the task is complete, reply with {"analysis": "<summary of what was done>", "commands": []}."""


class TaskOrchestrator:
    """Drives one agent task at a time against a live terminal."""

    def __init__(
        self,
        gateway: ChatGateway,
        history: OutputSource,
        config: AgentConfig | None = None,
        *,
        dispatch: DispatchCallback | None = None,
        detector: CompletionDetector | None = None,
        policy: RiskPolicy | None = None,
        dialogue: DialogueContext | None = None,
        system_prompt: str = AGENT_SYSTEM_PROMPT,
        token_estimator: TokenEstimator | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            gateway: LLM gateway used for planning calls.
            history: Terminal output the detector watches.
            config: Agent settings; defaults when omitted.
            dispatch: Callback that sends a command to the terminal.
            detector: Completion detector; built from config when omitted.
            policy: Auto-execution policy; built from config when omitted.
            dialogue: Dialogue context; built from config when omitted.
            system_prompt: Instruction prompt for a freshly built dialogue.
            token_estimator: Estimator for dialogue size logging.
            id_factory: Task id generator.
        """
        self.config = config or AgentConfig()
        self.gateway = gateway
        self.history = history
        self.dispatch = dispatch
        self.policy = policy or RiskPolicy(self.config)
        self.detector = detector or CompletionDetector(
            history,
            poll_interval=self.config.poll_interval,
            max_polls=self.config.max_polls,
            skip_output=self.config.skip_output,
        )
        self.dialogue = dialogue or DialogueContext(
            system_prompt,
            max_history_length=self.config.max_history_length,
            max_output_lines=self.config.max_output_lines,
            max_output_length=self.config.max_output_length,
            token_estimator=token_estimator,
        )
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._generation = Generation()
        self._task: AgentTask | None = None
        self._messages: list[AgentMessage] = []

    @classmethod
    def from_config(
        cls,
        config: Config,
        history: OutputSource,
        dispatch: DispatchCallback | None = None,
    ) -> "TaskOrchestrator":
        """Build an orchestrator with the configured gateway."""
        return cls(
            create_gateway(config.gateway),
            history,
            config.agent,
            dispatch=dispatch,
            token_estimator=TokenEstimator(
                mode=config.tokens.mode,
                encoding=config.tokens.encoding,
                approx_chars_per_token=config.tokens.approx_chars_per_token,
            ),
        )

    @property
    def state(self) -> AgentState:
        return self._task.state if self._task else AgentState.IDLE

    @property
    def current_task(self) -> AgentTask | None:
        return self._task

    @property
    def current_message(self) -> AgentMessage | None:
        return self._task.current_message if self._task else None

    @property
    def messages(self) -> tuple[AgentMessage, ...]:
        """All messages, oldest first."""
        return tuple(self._messages)

    def set_dispatch(self, callback: DispatchCallback | None) -> None:
        self.dispatch = callback

    def toggle_auto_execute(self) -> None:
        if self._task:
            self._task.auto_execute = not self._task.auto_execute
            logger.info("Auto-execute: %s", self._task.auto_execute)

    def toggle_pause(self) -> None:
        if self._task:
            self._task.paused = not self._task.paused
            logger.info("Paused: %s", self._task.paused)

    async def submit_goal(self, goal: str) -> AgentTask:
        """Start a new task for a user goal.

        Args:
            goal: Natural-language goal.

        Returns:
            The new task, after its first planning step.
        """
        goal = goal.strip()
        if not goal:
            raise ValueError("Goal must not be empty")

        self._retire_current()
        generation = self._generation.advance()
        task = AgentTask(
            id=self._id_factory(),
            goal=goal,
            state=AgentState.PLANNING,
            current_message=AgentMessage(status=MessageStatus.THINKING, user_input=goal),
        )
        self._task = task
        self._messages.append(task.current_message)
        logger.info("Task %s started: %s", task.id, goal)

        turn = self.dialogue.format_turn(goal, [], is_new_user_query=True)
        self.dialogue.append_turn(turn, is_new_user_query=True)
        await self._plan(task, generation)
        return task

    async def command_completed(self, output: str) -> None:
        """Feed a finished command's output back and plan the next step.

        Ignored when there is no active task, or it is paused, has
        auto-execute turned off, or has already finished.

        Args:
            output: Captured terminal output (or the skip literal).
        """
        task = self._task
        if task is None or task.paused or not task.auto_execute or task.state.is_terminal:
            logger.debug("Ignoring command completion (state=%s)", self.state.value)
            return

        generation = self._generation.current
        message = task.current_message
        block = message.latest_command_block()
        if block is not None:
            block.mark_executed()
        message.append(ContentBlock.output_block(output))
        task.state = AgentState.ANALYZING
        message.status = MessageStatus.ANALYZING

        record = TerminalRecord(command=block.command_text if block else "", output=output)
        turn = self.dialogue.format_turn(output, [record], is_new_user_query=False)
        self.dialogue.append_turn(turn, is_new_user_query=False)
        await self._plan(task, generation)

    async def execute_command(self, command_text: str | None = None) -> CompletionResult | None:
        """Dispatch a command, wait for its output, then continue the task.

        Args:
            command_text: Text to send; defaults to the latest command block.

        Returns:
            The completion result, or None if nothing was dispatched.

        Raises:
            DispatchError: If no dispatch callback is configured.
            TaskStateError: If the task is paused or has auto-execute off.
        """
        task = self._task
        if task is None or task.state.is_terminal:
            logger.debug("No active task; nothing to execute")
            return None
        self._ensure_accepts_output(task)
        if command_text is None:
            block = task.current_message.latest_command_block()
            if block is None:
                return None
            command_text = block.command_text
        return await self._run(task, self._generation.current, command_text)

    async def skip_command(self) -> None:
        """Skip the pending command without running it.

        Raises:
            TaskStateError: If the task is paused or has auto-execute off.
        """
        if self._task is not None and not self._task.state.is_terminal:
            self._ensure_accepts_output(self._task)
        result = self.detector.skip()
        await self.command_completed(result.output)

    async def interrupt_command(self) -> None:
        """Send the latest command's stop key (Ctrl-C by default)."""
        task = self._task
        if task is None:
            return
        if self.dispatch is None:
            raise DispatchError("No dispatch callback configured")
        block = task.current_message.latest_command_block()
        stop = CTRL_C
        if block is not None:
            stop = next((cmd.stop_command for cmd in block.commands if cmd.stop_command), CTRL_C)
        generation = self._generation.current
        try:
            await self.dispatch(stop)
        except Exception as e:
            logger.exception("Failed to interrupt command")
            if not self._is_stale(task, generation):
                self._fail(task, f"Command dispatch failed: {e}")

    def reset(self) -> None:
        """Abandon the current task and clear the dialogue.

        Results of requests or polls started before the reset are dropped
        when they arrive.
        """
        self._generation.advance()
        task = self._task
        if task is not None:
            task.cancellation_token.cancel()
            if not task.state.is_terminal:
                task.finish(AgentState.CANCELLED)
                task.current_message.status = MessageStatus.CANCELLED
            logger.info("Task %s reset", task.id)
        self._task = None
        self.dialogue.clear()

    def _retire_current(self) -> None:
        task = self._task
        if task is None:
            return
        task.cancellation_token.cancel()
        if not task.state.is_terminal:
            task.finish(AgentState.COMPLETED)
        # The error block stays in the transcript; only the status moves on.
        task.current_message.status = MessageStatus.COMPLETED

    def _ensure_accepts_output(self, task: AgentTask) -> None:
        """Refuse to run or skip when command_completed would drop the result."""
        if task.paused:
            raise TaskStateError("Task is paused; resume it before running or skipping commands")
        if not task.auto_execute:
            raise TaskStateError(
                "Auto-execute is off for this task; turn it back on before running or skipping commands"
            )

    def _is_stale(self, task: AgentTask, generation: int) -> bool:
        return self._task is not task or not self._generation.is_current(generation)

    async def _plan(self, task: AgentTask, generation: int) -> None:
        """Ask the gateway for the next step and apply the reply."""
        message = task.current_message
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Planning call for task %s (%d entries, ~%d tokens)",
                task.id,
                len(self.dialogue),
                self.dialogue.total_tokens,
            )

        try:
            reply_text = await self.gateway.complete(self.dialogue.messages_for_gateway())
        except EmptyResponseError:
            reply_text = ""
        except GatewayError as e:
            if not self._is_stale(task, generation):
                self._fail(task, f"Request failed: {e}")
            return
        except Exception as e:
            logger.exception("Gateway call raised unexpectedly")
            if not self._is_stale(task, generation):
                self._fail(task, f"Request failed: {e}")
            return

        if self._is_stale(task, generation):
            logger.debug("Dropping reply for stale task %s", task.id)
            return

        try:
            reply = parse_agent_response(reply_text)
        except EmptyResponseError:
            self._fail(task, "Empty response from model")
            return
        except ResponseParseError as e:
            self._fail(task, f"Could not parse model reply ({e}):\n{e.raw_text}")
            return

        if reply.has_commands:
            block = message.append(ContentBlock.command_block(reply.commands, reply.analysis))
            first = reply.commands[0]
            task.steps.append(first.description or first.text)
            task.state = AgentState.EXECUTING
            message.status = MessageStatus.WAITING
            logger.info(
                "Task %s step %d: %d command(s), max risk %s",
                task.id,
                len(task.steps),
                len(reply.commands),
                block.max_risk.value,
            )
            await self._maybe_auto_execute(task, generation, block)
            return

        if reply.analysis and reply.analysis != reply.summary:
            message.append(ContentBlock.analysis_block(reply.analysis))
        message.append(ContentBlock.result_block(reply.summary or "Task completed."))
        message.status = MessageStatus.COMPLETED
        task.finish(AgentState.COMPLETED)
        logger.info(
            "Task %s completed after %d step(s) in %.1fs",
            task.id,
            len(task.steps),
            task.duration_seconds(),
        )

    async def _maybe_auto_execute(
        self,
        task: AgentTask,
        generation: int,
        block: ContentBlock,
    ) -> None:
        if not task.auto_execute or task.paused:
            return
        if not self.policy.can_auto_execute_all(block.commands):
            logger.info(
                "Waiting for confirmation: %s",
                self.policy.evaluate(block.max_risk).reason,
            )
            return
        if self.dispatch is None:
            logger.warning("Auto-run allowed but no dispatch callback is set")
            return
        await self._run(task, generation, block.command_text)

    async def _run(
        self,
        task: AgentTask,
        generation: int,
        command_text: str,
    ) -> CompletionResult | None:
        if self.dispatch is None:
            raise DispatchError("No dispatch callback configured")

        start_length = self.detector.arm()
        task.current_message.status = MessageStatus.EXECUTING
        try:
            await self.dispatch(command_text)
        except Exception as e:
            logger.exception("Dispatch failed for %r", command_text)
            if not self._is_stale(task, generation):
                self._fail(task, f"Command dispatch failed: {e}")
            return None

        result = await self.detector.wait_for_completion(start_length, task.cancellation_token)
        if self._is_stale(task, generation):
            logger.debug("Dropping command output for stale task %s", task.id)
            return result
        await self.command_completed(result.output)
        return result

    def _fail(self, task: AgentTask, text: str) -> None:
        task.current_message.append(ContentBlock.error_block(text))
        task.current_message.status = MessageStatus.ERROR
        task.finish(AgentState.ERROR, error=text)
        logger.error("Task %s failed: %s", task.id, text.splitlines()[0] if text else "")
