import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from termagent.config import AgentConfig
from termagent.core.completion import CompletionDetector
from termagent.core.message import ContentType, MessageStatus
from termagent.core.orchestrator import TaskOrchestrator
from termagent.core.task import AgentState
from termagent.exceptions import EmptyResponseError, GatewayConnectionError, TaskStateError

from conftest import PROMPT, FakeGateway, PromptingShell


def _commands(*commands, analysis: str = "") -> str:
    return json.dumps(
        {
            "analysis": analysis,
            "commands": [
                {"command": text, "description": f"run {text}", "risk": risk}
                for text, risk in commands
            ],
        }
    )


def _done(summary: str = "Task complete: files listed.") -> str:
    return json.dumps({"analysis": summary, "commands": []})


def _blocks(message, block_type: ContentType):
    return message.blocks_of(block_type)


@pytest.mark.anyio
async def test_goal_with_command_waits_for_confirmation(make_orchestrator, gateway) -> None:
    gateway.replies = [_commands(("ls -la", "low"))]
    orchestrator = make_orchestrator()

    task = await orchestrator.submit_goal("list files")

    assert orchestrator.state == AgentState.EXECUTING
    assert orchestrator.current_message.status == MessageStatus.WAITING
    command_blocks = _blocks(task.current_message, ContentType.COMMAND)
    assert len(command_blocks) == 1
    assert command_blocks[0].commands[0].text == "ls -la"
    assert task.steps == ["run ls -la"]
    assert gateway.calls[0][-1] == {"role": "user", "content": "list files"}


@pytest.mark.anyio
async def test_low_risk_command_is_dispatched_automatically(make_orchestrator, gateway, history) -> None:
    shell = PromptingShell(history, {"ls -la": "total 0"})
    gateway.replies = [_commands(("ls -la", "low")), _done()]
    orchestrator = make_orchestrator(dispatch=shell, auto_run=True, max_allowed_risk="low")

    task = await orchestrator.submit_goal("list files")

    assert shell.dispatched == ["ls -la"]
    assert task.state == AgentState.COMPLETED
    assert task.current_message.status == MessageStatus.COMPLETED
    command_block = _blocks(task.current_message, ContentType.COMMAND)[0]
    assert all(cmd.executed for cmd in command_block.commands)
    assert _blocks(task.current_message, ContentType.RESULT)[0].content == "Task complete: files listed."

    continuation = gateway.calls[1]
    assert len(continuation) == 2
    assert continuation[1]["content"].startswith("list files\n\n")
    assert "$ ls -la" in continuation[1]["content"]
    assert "total 0" in continuation[1]["content"]


@pytest.mark.anyio
async def test_command_above_ceiling_is_not_dispatched(make_orchestrator, gateway, shell) -> None:
    gateway.replies = [_commands(("ls", "low"), ("rm -rf /tmp/cache", "medium"))]
    orchestrator = make_orchestrator(dispatch=shell, auto_run=True, max_allowed_risk="low")

    await orchestrator.submit_goal("clean cache")

    assert shell.dispatched == []
    assert orchestrator.state == AgentState.EXECUTING
    assert orchestrator.current_message.status == MessageStatus.WAITING


@pytest.mark.anyio
async def test_skip_feeds_skip_output_and_replans(make_orchestrator, gateway) -> None:
    gateway.replies = [_commands(("apt upgrade -y", "high")), _done("Skipped the upgrade; summary done.")]
    orchestrator = make_orchestrator()
    task = await orchestrator.submit_goal("upgrade packages")

    seen = []
    gateway.on_call = lambda: seen.append((orchestrator.state, orchestrator.current_message.status))
    await orchestrator.skip_command()

    assert seen == [(AgentState.ANALYZING, MessageStatus.ANALYZING)]
    outputs = _blocks(task.current_message, ContentType.OUTPUT)
    assert [block.content for block in outputs] == ["Command skipped"]
    assert _blocks(task.current_message, ContentType.COMMAND)[0].commands[0].executed
    assert task.state == AgentState.COMPLETED


@pytest.mark.anyio
async def test_reply_without_json_is_an_error(make_orchestrator, gateway) -> None:
    gateway.replies = ["I'm not sure what you mean"]
    orchestrator = make_orchestrator()

    task = await orchestrator.submit_goal("do the thing")

    assert task.state == AgentState.ERROR
    assert task.current_message.status == MessageStatus.ERROR
    errors = _blocks(task.current_message, ContentType.ERROR)
    assert len(errors) == 1
    assert "I'm not sure what you mean" in errors[0].content


@pytest.mark.anyio
async def test_gateway_failure_is_an_error(make_orchestrator, gateway) -> None:
    gateway.replies = [GatewayConnectionError("Cannot connect to Ollama")]
    orchestrator = make_orchestrator()

    task = await orchestrator.submit_goal("check uptime")

    assert task.state == AgentState.ERROR
    assert task.error == "Request failed: Cannot connect to Ollama"
    assert _blocks(task.current_message, ContentType.ERROR)[0].content == task.error


@pytest.mark.anyio
async def test_empty_reply_is_an_error(make_orchestrator, gateway) -> None:
    gateway.replies = [EmptyResponseError("Empty response from model")]
    orchestrator = make_orchestrator()

    task = await orchestrator.submit_goal("check uptime")

    assert task.state == AgentState.ERROR
    assert _blocks(task.current_message, ContentType.ERROR)[0].content == "Empty response from model"


@pytest.mark.anyio
async def test_dispatch_exception_is_an_error(make_orchestrator, gateway) -> None:
    dispatch = AsyncMock(side_effect=RuntimeError("pty closed"))
    gateway.replies = [_commands(("uptime", "low"))]
    orchestrator = make_orchestrator(dispatch=dispatch, auto_run=True)

    task = await orchestrator.submit_goal("check uptime")

    dispatch.assert_awaited_once_with("uptime")
    assert task.state == AgentState.ERROR
    assert "Command dispatch failed: pty closed" in _blocks(task.current_message, ContentType.ERROR)[0].content


@pytest.mark.anyio
async def test_manual_execute_runs_all_commands_in_one_dispatch(make_orchestrator, gateway, shell) -> None:
    gateway.replies = [_commands(("cd /var/log", "low"), ("ls", "low")), _done()]
    orchestrator = make_orchestrator(dispatch=shell)
    await orchestrator.submit_goal("look at logs")

    result = await orchestrator.execute_command()

    assert shell.dispatched == ["cd /var/log\nls"]
    assert result is not None and result.matched
    assert orchestrator.state == AgentState.COMPLETED


@pytest.mark.anyio
async def test_timeout_continues_with_partial_output(make_orchestrator, gateway, history) -> None:
    async def no_prompt(command: str) -> None:
        history.append(command, "still compiling")

    gateway.replies = [_commands(("make", "low")), _done()]
    orchestrator = make_orchestrator(dispatch=no_prompt, auto_run=True, max_polls=3)

    task = await orchestrator.submit_goal("build")

    assert task.state == AgentState.COMPLETED
    assert _blocks(task.current_message, ContentType.OUTPUT)[0].content == "still compiling"


@pytest.mark.anyio
async def test_paused_or_manual_task_ignores_completion(make_orchestrator, gateway) -> None:
    gateway.replies = [_commands(("ls", "low"))]
    orchestrator = make_orchestrator()
    task = await orchestrator.submit_goal("list")

    orchestrator.toggle_pause()
    await orchestrator.command_completed("output")
    orchestrator.toggle_pause()
    orchestrator.toggle_auto_execute()
    await orchestrator.command_completed("output")

    assert task.paused is False
    assert task.auto_execute is False
    assert _blocks(task.current_message, ContentType.OUTPUT) == []
    assert len(gateway.calls) == 1
    assert task.state == AgentState.EXECUTING


@pytest.mark.anyio
async def test_new_goal_retires_previous_message(make_orchestrator, gateway) -> None:
    gateway.replies = [_commands(("ls", "low")), _commands(("df -h", "low"))]
    orchestrator = make_orchestrator()

    first = await orchestrator.submit_goal("list")
    second = await orchestrator.submit_goal("disk usage")

    assert first.current_message.status == MessageStatus.COMPLETED
    assert first.cancellation_token.is_cancelled
    assert orchestrator.current_task is second
    assert [m.user_input for m in orchestrator.messages] == ["list", "disk usage"]
    assert [e["content"] for e in gateway.calls[1][1:]] == ["list", "disk usage"]


@pytest.mark.anyio
async def test_interrupt_sends_stop_command(make_orchestrator, gateway) -> None:
    dispatch = AsyncMock()
    gateway.replies = [
        json.dumps({"commands": [{"command": "top", "risk": "low", "stop_command": "q"}]})
    ]
    orchestrator = make_orchestrator(dispatch=dispatch)
    await orchestrator.submit_goal("watch processes")

    await orchestrator.interrupt_command()

    dispatch.assert_awaited_once_with("q")


@pytest.mark.anyio
async def test_reset_clears_task_and_dialogue(make_orchestrator, gateway) -> None:
    gateway.replies = [_commands(("ls", "low"))]
    orchestrator = make_orchestrator()
    task = await orchestrator.submit_goal("list")

    orchestrator.reset()

    assert orchestrator.current_task is None
    assert orchestrator.state == AgentState.IDLE
    assert task.state == AgentState.CANCELLED
    assert task.current_message.status == MessageStatus.CANCELLED
    assert len(orchestrator.dialogue) == 1


@pytest.mark.anyio
async def test_late_poll_result_after_new_goal_is_dropped(gateway, history) -> None:
    async def slow_command(command: str) -> None:
        history.append(command, "working...")

    async def yield_sleep(_interval: float) -> None:
        await asyncio.sleep(0)

    detector = CompletionDetector(history, max_polls=1000, sleep=yield_sleep)
    orchestrator = TaskOrchestrator(
        gateway,
        history,
        AgentConfig(),
        dispatch=slow_command,
        detector=detector,
    )
    gateway.replies = [_commands(("sleep 60", "low")), _commands(("uptime", "low"))]
    await orchestrator.submit_goal("wait a minute")

    pending = asyncio.create_task(orchestrator.execute_command())
    for _ in range(5):
        await asyncio.sleep(0)
    second = await orchestrator.submit_goal("uptime")
    history.append("", f"done\n{PROMPT}")
    await pending

    assert orchestrator.current_task is second
    assert second.state == AgentState.EXECUTING
    assert _blocks(second.current_message, ContentType.OUTPUT) == []
    assert len(gateway.calls) == 2


@pytest.mark.anyio
async def test_late_gateway_reply_after_reset_is_dropped(history) -> None:
    release = asyncio.Event()

    class SlowGateway(FakeGateway):
        async def complete(self, messages):
            await release.wait()
            return await super().complete(messages)

    gateway = SlowGateway([_commands(("ls", "low"))])
    orchestrator = TaskOrchestrator(gateway, history, AgentConfig())

    pending = asyncio.create_task(orchestrator.submit_goal("list"))
    await asyncio.sleep(0)
    task = orchestrator.current_task
    orchestrator.reset()
    release.set()
    await pending

    assert orchestrator.current_task is None
    assert orchestrator.state == AgentState.IDLE
    assert task.state == AgentState.CANCELLED
    assert _blocks(task.current_message, ContentType.COMMAND) == []


@pytest.mark.anyio
async def test_empty_goal_is_rejected(make_orchestrator) -> None:
    with pytest.raises(ValueError):
        await make_orchestrator().submit_goal("   ")


@pytest.mark.anyio
async def test_run_or_skip_is_refused_while_paused_or_manual(make_orchestrator, gateway) -> None:
    dispatch = AsyncMock()
    gateway.replies = [_commands(("ls", "low"))]
    orchestrator = make_orchestrator(dispatch=dispatch)
    task = await orchestrator.submit_goal("list")

    orchestrator.toggle_auto_execute()
    with pytest.raises(TaskStateError, match="Auto-execute is off"):
        await orchestrator.execute_command()
    with pytest.raises(TaskStateError, match="Auto-execute is off"):
        await orchestrator.skip_command()
    orchestrator.toggle_auto_execute()
    orchestrator.toggle_pause()
    with pytest.raises(TaskStateError, match="paused"):
        await orchestrator.execute_command()
    with pytest.raises(TaskStateError, match="paused"):
        await orchestrator.skip_command()

    dispatch.assert_not_awaited()
    assert _blocks(task.current_message, ContentType.OUTPUT) == []
    assert not _blocks(task.current_message, ContentType.COMMAND)[0].commands[0].executed
    assert len(gateway.calls) == 1
    assert task.state == AgentState.EXECUTING


@pytest.mark.anyio
async def test_completion_marks_every_command_in_block_executed(make_orchestrator, gateway) -> None:
    gateway.replies = [
        _commands(("cd /srv/app", "low"), ("git pull", "medium"), ("systemctl restart app", "high")),
        _done(),
    ]
    orchestrator = make_orchestrator()
    task = await orchestrator.submit_goal("deploy")

    await orchestrator.command_completed("Already up to date.")

    commands = _blocks(task.current_message, ContentType.COMMAND)[0].commands
    assert len(commands) == 3
    assert all(cmd.executed for cmd in commands)


@pytest.mark.anyio
async def test_completion_with_separate_analysis_adds_both_blocks(make_orchestrator, gateway) -> None:
    gateway.replies = [
        json.dumps({"analysis": "Port 80 answers with 200.", "summary": "Nginx installed.", "commands": []})
    ]
    orchestrator = make_orchestrator()

    task = await orchestrator.submit_goal("install nginx")

    types = [block.type for block in task.current_message.contents]
    assert types[-2:] == [ContentType.ANALYSIS, ContentType.RESULT]
    assert _blocks(task.current_message, ContentType.ANALYSIS)[0].content == "Port 80 answers with 200."
    assert _blocks(task.current_message, ContentType.RESULT)[0].content == "Nginx installed."
    assert task.duration_seconds() >= 0


@pytest.mark.anyio
async def test_late_poll_result_after_reset_is_dropped(gateway, history) -> None:
    async def slow_command(command: str) -> None:
        history.append(command, "working...")

    async def yield_sleep(_interval: float) -> None:
        await asyncio.sleep(0)

    detector = CompletionDetector(history, max_polls=1000, sleep=yield_sleep)
    orchestrator = TaskOrchestrator(
        gateway,
        history,
        AgentConfig(),
        dispatch=slow_command,
        detector=detector,
    )
    gateway.replies = [_commands(("sleep 60", "low")), _done()]
    task = await orchestrator.submit_goal("wait a minute")

    pending = asyncio.create_task(orchestrator.execute_command())
    for _ in range(5):
        await asyncio.sleep(0)
    orchestrator.reset()
    history.append("", f"done\n{PROMPT}")
    await pending

    assert orchestrator.current_task is None
    assert orchestrator.state == AgentState.IDLE
    assert task.state == AgentState.CANCELLED
    assert _blocks(task.current_message, ContentType.OUTPUT) == []
    assert len(gateway.calls) == 1
    assert len(orchestrator.dialogue) == 1
