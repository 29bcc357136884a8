"""
Local shell session used as the console front-end's terminal.
"""

import asyncio
import getpass
import logging
import shlex
import socket
from pathlib import Path

from termagent.config import ShellConfig
from termagent.core.output_history import OutputHistory
from termagent.exceptions import DispatchError

logger = logging.getLogger(__name__)

CTRL_C = "\x03"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "user"


class LocalShellSession:
    """Run dispatched commands in a subprocess and record their output.

    Every record ends with a rendered prompt line, the same way an
    interactive terminal prints the prompt once a command returns.
    """

    def __init__(self, history: OutputHistory, config: ShellConfig | None = None) -> None:
        """Initialize the session.

        Args:
            history: Output history that receives one record per command.
            config: Shell settings.
        """
        self.history = history
        self.config = config or ShellConfig()
        self.cwd = Path(self.config.cwd or Path.cwd()).expanduser().resolve()
        self._process: asyncio.subprocess.Process | None = None

    def render_prompt(self) -> str:
        home = Path.home()
        try:
            cwd = "~/" + str(self.cwd.relative_to(home)) if self.cwd != home else "~"
        except ValueError:
            cwd = str(self.cwd)
        return self.config.prompt.format(
            user=_current_user(),
            host=socket.gethostname().split(".")[0],
            cwd=cwd,
        )

    async def dispatch(self, command: str) -> None:
        """Run a command and append its output plus a prompt to the history.

        Args:
            command: Command text; several lines run as one script.

        Raises:
            DispatchError: If the process cannot be started.
        """
        if command == CTRL_C:
            self.interrupt()
            self.history.append("", f"^C\n{self.render_prompt()}")
            return

        if self._try_change_dir(command):
            self.history.append(command, self.render_prompt())
            return

        output = await self._run(command)
        if output and not output.endswith("\n"):
            output += "\n"
        self.history.append(command, f"{output}{self.render_prompt()}")

    def interrupt(self) -> None:
        """Kill the running command, if any."""
        if self._process is not None and self._process.returncode is None:
            logger.info("Interrupting running command")
            self._process.kill()

    async def _run(self, command: str) -> str:
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as e:
            raise DispatchError(f"Failed to execute command: {e}") from e

        self._process = process
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command timed out after %s seconds: %s", self.config.timeout, command)
            return f"Command timed out after {self.config.timeout} seconds"
        finally:
            self._process = None

        parts = []
        stdout_str = stdout.decode("utf-8", errors="replace")
        stderr_str = stderr.decode("utf-8", errors="replace")
        if stdout_str:
            parts.append(stdout_str.rstrip("\n"))
        if stderr_str:
            parts.append(stderr_str.rstrip("\n"))
        if process.returncode:
            logger.debug("Command exited with %s: %s", process.returncode, command)
        return "\n".join(parts)

    def _try_change_dir(self, command: str) -> bool:
        """Handle a bare ``cd`` so later commands run in the new directory."""
        stripped = command.strip()
        if "\n" in stripped or not (stripped == "cd" or stripped.startswith("cd ")):
            return False
        try:
            args = shlex.split(stripped)[1:]
        except ValueError:
            return False
        if len(args) > 1:
            return False

        target = Path(args[0]).expanduser() if args else Path.home()
        if not target.is_absolute():
            target = self.cwd / target
        target = target.resolve()
        if not target.is_dir():
            # Let the shell report the error.
            return False
        self.cwd = target
        return True
