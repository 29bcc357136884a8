"""
Main CLI loop for termagent.

This module handles:
- Goal input and slash command routing
- Confirmation of commands the risk policy won't auto-run
- Rendering the task transcript as it grows
"""

import argparse
import logging
from pathlib import Path

from rich.console import Console

from termagent.config import Config, load_config
from termagent.core.gateway import OllamaGateway
from termagent.core.message import AgentMessage
from termagent.core.orchestrator import TaskOrchestrator
from termagent.core.output_history import OutputHistory
from termagent.core.task import AgentState
from termagent.exceptions import TermAgentError
from termagent.shell import LocalShellSession
from termagent.ui.display import (
    display_command_help,
    display_error,
    display_info,
    display_success,
    display_warning,
    display_welcome,
    render_message,
)
from termagent.ui.input import choose_action, get_user_input


console = Console()
logger = logging.getLogger(__name__)

COMMANDS = {
    "help": "Show this help",
    "run": "Run the pending commands",
    "skip": "Skip the pending commands",
    "auto": "Toggle auto-execute for the current task",
    "pause": "Pause or resume the current task",
    "status": "Show the current task state",
    "reset": "Abandon the current task and clear context",
    "exit": "Quit",
}


class TermAgent:
    """Console front-end driving a TaskOrchestrator against a local shell."""

    def __init__(self, config: Config) -> None:
        """Initialize the application.

        Args:
            config: Application configuration.
        """
        self.config = config
        self.history = OutputHistory()
        self.shell = LocalShellSession(self.history, config.shell)
        self.orchestrator = TaskOrchestrator.from_config(
            config, self.history, dispatch=self.shell.dispatch
        )
        self.running = True
        self._rendered: dict[int, int] = {}

    async def start(self) -> int:
        """Start the main application loop.

        Returns:
            Exit code (0 for success).
        """
        display_welcome(self.config)
        for warning in getattr(self.config, "_migration_warnings", []):
            display_warning(warning)

        gateway = self.orchestrator.gateway
        if isinstance(gateway, OllamaGateway) and not await gateway.is_available():
            display_error(
                f"Cannot connect to Ollama at {self.config.gateway.host}\n"
                "Make sure Ollama is running: ollama serve"
            )
            return 1

        while self.running:
            try:
                user_input = await get_user_input(status_callback=self._toolbar)
                if not user_input.strip():
                    continue
                await self.process_input(user_input)
            except KeyboardInterrupt:
                console.print("\n[dim]Use /exit to quit[/dim]")
            except EOFError:
                break
            except TermAgentError as e:
                display_error(str(e))
            except Exception as e:
                logger.exception("Unexpected error")
                display_error(f"Unexpected error: {e}")

        return 0

    async def process_input(self, user_input: str) -> None:
        """Process user input - either a slash command or a new goal.

        Args:
            user_input: Raw user input string.
        """
        user_input = user_input.strip()
        if user_input.startswith("/"):
            await self.handle_command(user_input[1:].split(maxsplit=1)[0].lower())
            return

        with console.status("[cyan]Planning...[/cyan]"):
            await self.orchestrator.submit_goal(user_input)
        await self._drive()

    async def handle_command(self, name: str) -> None:
        """Handle a slash command.

        Args:
            name: Command name without the leading '/'.
        """
        orchestrator = self.orchestrator
        task = orchestrator.current_task

        if name == "help":
            display_command_help(COMMANDS)
        elif name == "exit":
            self.running = False
        elif name == "reset":
            orchestrator.reset()
            self._rendered.clear()
            display_success("Task reset")
        elif name == "status":
            self._show_status()
        elif task is None:
            display_info("No active task. Describe a goal to start one.")
        elif name == "run":
            with console.status("[cyan]Running...[/cyan]"):
                await orchestrator.execute_command()
            await self._drive()
        elif name == "skip":
            with console.status("[cyan]Analyzing...[/cyan]"):
                await orchestrator.skip_command()
            await self._drive()
        elif name == "auto":
            orchestrator.toggle_auto_execute()
            display_info(f"Auto-execute {'on' if task.auto_execute else 'off'}")
            if task.auto_execute:
                await self._drive()
        elif name == "pause":
            orchestrator.toggle_pause()
            display_info("Paused" if task.paused else "Resumed")
            if not task.paused:
                await self._drive()
        else:
            display_error(f"Unknown command: /{name}")

    async def _drive(self) -> None:
        """Render progress and ask for confirmation until the task stops."""
        orchestrator = self.orchestrator
        while True:
            self._render()
            task = orchestrator.current_task
            if task is None or task.state != AgentState.EXECUTING:
                break
            if task.paused:
                display_info("Task is paused; use /pause to resume it.")
                break
            if not task.auto_execute:
                display_info("Auto-execute is off; run the commands yourself or use /auto to turn it back on.")
                break

            action = await choose_action(
                "Run these commands?",
                {"y": "run", "s": "skip", "n": "hold"},
                default="run",
            )
            if action == "hold":
                display_info("Holding. Use /run, /skip or enter a new goal.")
                break
            with console.status("[cyan]Working...[/cyan]"):
                if action == "run":
                    await orchestrator.execute_command()
                else:
                    await orchestrator.skip_command()

        task = orchestrator.current_task
        if task is not None and task.state == AgentState.ERROR:
            logger.debug("Task %s ended with error: %s", task.id, task.error)

    def _render(self) -> None:
        message = self.orchestrator.current_message
        if message is None:
            return
        key = id(message)
        start = self._rendered.get(key, 0)
        render_message(message, start=start)
        self._rendered[key] = len(message)

    def _show_status(self) -> None:
        task = self.orchestrator.current_task
        if task is None:
            display_info(f"State: {AgentState.IDLE.value}")
            return
        display_info(
            f"Task {task.id[:8]}: {task.state.value}, {len(task.steps)} step(s), "
            f"auto-execute {'on' if task.auto_execute else 'off'}"
            f"{', paused' if task.paused else ''}"
        )
        display_info(f"Context: {len(self.orchestrator.dialogue)} entries, ~{self.orchestrator.dialogue.total_tokens} tokens")

    def _toolbar(self) -> str:
        message: AgentMessage | None = self.orchestrator.current_message
        state = self.orchestrator.state.value
        return f" state: {state}" + (f" | {message.status.value}" if message else "")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termagent",
        description="Turn a goal into shell commands, step by step.",
    )
    parser.add_argument("goal", nargs="?", help="Run a single goal and exit")
    parser.add_argument("-c", "--config", type=Path, default=Path("config.yaml"), help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def run_cli(argv: list[str] | None = None) -> int:
    """Run the termagent CLI application.

    Args:
        argv: Command-line arguments; defaults to sys.argv.

    Returns:
        Exit code (0 for success).
    """
    args = _parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    try:
        config = load_config(args.config)
        app = TermAgent(config)
    except (TermAgentError, ValueError) as exc:
        display_error(str(exc))
        return 1

    if args.goal:
        try:
            await app.process_input(args.goal)
        except TermAgentError as exc:
            display_error(str(exc))
            return 1
        task = app.orchestrator.current_task
        return 1 if task is not None and task.state == AgentState.ERROR else 0

    return await app.start()
