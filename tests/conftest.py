import sys
import asyncio
import itertools
from pathlib import Path

import pytest

# Ensure project root is importable
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from termagent import config as config_module  # noqa: E402
from termagent.config import AgentConfig, Config  # noqa: E402
from termagent.core.completion import CompletionDetector  # noqa: E402
from termagent.core.orchestrator import TaskOrchestrator  # noqa: E402
from termagent.core.output_history import OutputHistory  # noqa: E402

PROMPT = "user@host:~$ "


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the test suite."""
    config.addinivalue_line("markers", "asyncio: mark test as requiring an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Provide lightweight asyncio support when pytest-asyncio is unavailable."""
    testfunction = pyfuncitem.obj
    if not asyncio.iscoroutinefunction(testfunction):
        return None

    if pyfuncitem.get_closest_marker("anyio"):
        # Let anyio plugin handle its own marked tests
        return None

    if not pyfuncitem.get_closest_marker("asyncio"):
        return None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        argnames = getattr(pyfuncitem._fixtureinfo, "argnames", ())
        funcargs = {name: pyfuncitem.funcargs[name] for name in argnames}
        loop.run_until_complete(testfunction(**funcargs))
    finally:
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio only; the code under test is asyncio-based."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_config() -> Config:
    """Reset the global configuration before each test."""
    config = Config()
    config_module._config = config  # type: ignore[attr-defined]
    yield config
    config_module._config = None  # type: ignore[attr-defined]


class FakeGateway:
    """Gateway returning scripted replies and recording each request."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[list[dict]] = []
        self.on_call = None

    async def complete(self, messages):
        self.calls.append([dict(m) for m in messages])
        if self.on_call is not None:
            self.on_call()
        if not self.replies:
            raise AssertionError("FakeGateway ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class PromptingShell:
    """Dispatch callback that answers each command with canned output and a prompt."""

    def __init__(self, history: OutputHistory, outputs=None):
        self.history = history
        self.outputs = dict(outputs or {})
        self.dispatched: list[str] = []

    async def __call__(self, command: str) -> None:
        self.dispatched.append(command)
        output = self.outputs.get(command, "ok")
        self.history.append(command, f"{output}\n{PROMPT}")


async def _no_sleep(_interval: float) -> None:
    return None


@pytest.fixture
def history() -> OutputHistory:
    return OutputHistory()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def shell(history: OutputHistory) -> PromptingShell:
    return PromptingShell(history)


@pytest.fixture
def make_orchestrator(history: OutputHistory, gateway: FakeGateway):
    """Build an orchestrator whose completion polling never really sleeps."""

    ids = (f"task-{n}" for n in itertools.count(1))

    def _make(dispatch=None, **agent_settings) -> TaskOrchestrator:
        agent = AgentConfig(**agent_settings)
        detector = CompletionDetector(
            history,
            poll_interval=0,
            max_polls=agent.max_polls,
            skip_output=agent.skip_output,
            sleep=_no_sleep,
        )
        return TaskOrchestrator(
            gateway,
            history,
            agent,
            dispatch=dispatch,
            detector=detector,
            id_factory=lambda: next(ids),
        )

    return _make
