"""
Input handling for the termagent console.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.styles import Style


PROMPT_STYLE = Style.from_dict({
    "prompt": "cyan bold",
    "": "",
})

_session: PromptSession | None = None


def _get_history_path() -> Path:
    history_dir = Path.home() / ".termagent"
    history_dir.mkdir(exist_ok=True)
    return history_dir / "history"


def _get_session() -> PromptSession:
    """Get or create prompt session."""
    global _session
    if _session is None:
        _session = PromptSession(
            history=FileHistory(str(_get_history_path())),
            auto_suggest=AutoSuggestFromHistory(),
            style=PROMPT_STYLE,
            multiline=False,
            enable_history_search=True,
        )
    return _session


async def get_user_input(
    prompt: str = "goal> ",
    status_callback: Callable[[], Any] | None = None,
) -> str:
    """Get user input asynchronously.

    Args:
        prompt: Prompt string to display.
        status_callback: Optional callback that returns content for the bottom toolbar.

    Returns:
        User's input string.
    """
    session = _get_session()
    # prompt_toolkit's prompt() blocks, so run it off the event loop.
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        lambda: session.prompt([("class:prompt", prompt)], bottom_toolbar=status_callback),
    )


async def choose_action(prompt: str, choices: dict[str, str], default: str) -> str:
    """Ask for a single-letter choice.

    Args:
        prompt: Question to show.
        choices: Mapping of key to action name, e.g. {"y": "run"}.
        default: Action returned on empty input.

    Returns:
        The chosen action name.
    """
    keys = "/".join(choices)
    while True:
        answer = (await get_user_input(f"{prompt} [{keys}] ")).strip().lower()
        if not answer:
            return default
        if answer[0] in choices:
            return choices[answer[0]]
