"""
Display utilities for terminal output.
"""

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from termagent import __version__
from termagent.config import Config
from termagent.core.message import AgentMessage, ContentBlock, ContentType, MessageStatus, RiskLevel


console = Console()

RISK_STYLES = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "bold red",
}

STATUS_STYLES = {
    MessageStatus.THINKING: "cyan",
    MessageStatus.WAITING: "yellow",
    MessageStatus.EXECUTING: "blue",
    MessageStatus.ANALYZING: "magenta",
    MessageStatus.COMPLETED: "green",
    MessageStatus.CANCELLED: "dim",
    MessageStatus.ERROR: "red",
}


def display_welcome(config: Config) -> None:
    """Display welcome message.

    Args:
        config: Application configuration.
    """
    title = Text()
    title.append("$ ", style="green")
    title.append("TERMAGENT", style="bold cyan")

    gateway = config.gateway
    endpoint = gateway.host if gateway.provider == "ollama" else gateway.base_url

    welcome_text = Text()
    welcome_text.append(f"Agent task orchestrator v{__version__}\n\n", style="dim")
    welcome_text.append("Model: ", style="dim")
    welcome_text.append(f"{gateway.model}\n", style="green")
    welcome_text.append(f"{gateway.provider}: ", style="dim")
    welcome_text.append(f"{endpoint}\n", style="blue")
    welcome_text.append("Auto-run: ", style="dim")
    welcome_text.append(
        f"{'on' if config.agent.auto_run else 'off'} (up to {config.agent.max_allowed_risk} risk)\n\n",
        style="yellow",
    )
    welcome_text.append("Describe a goal, or type ", style="dim")
    welcome_text.append("/help", style="yellow")
    welcome_text.append(" for commands.", style="dim")

    console.print(Panel(welcome_text, title=title, border_style="cyan", padding=(1, 2)))
    console.print()


def display_error(message: str) -> None:
    """Display an error message.

    Args:
        message: Error message to display.
    """
    console.print(f"[bold red]Error:[/bold red] {message}")


def display_info(message: str) -> None:
    console.print(f"[cyan]ℹ[/cyan] {message}")


def display_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def display_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def display_command_help(commands: dict[str, str]) -> None:
    """Display command help.

    Args:
        commands: Dictionary of command names to descriptions.
    """
    console.print("\n[bold]Available Commands:[/bold]\n")
    for cmd, desc in commands.items():
        console.print(f"  [yellow]/{cmd:<8}[/yellow] {desc}")
    console.print()


def risk_badge(risk: RiskLevel) -> Text:
    return Text(f"[{risk.value}]", style=RISK_STYLES[risk])


def render_block(block: ContentBlock) -> Text:
    """Render one transcript block."""
    text = Text()
    if block.type == ContentType.COMMAND:
        if block.analysis:
            text.append(f"{block.analysis}\n", style="italic")
        for cmd in block.commands:
            text.append("✓ " if cmd.executed else "• ", style="green" if cmd.executed else "dim")
            text.append_text(risk_badge(cmd.risk))
            text.append(f" {cmd.text}", style="bold")
            if cmd.description:
                text.append(f"  # {cmd.description}", style="dim")
            text.append("\n")
    elif block.type == ContentType.OUTPUT:
        text.append(block.content or "(no output)", style="dim")
        text.append("\n")
    elif block.type == ContentType.RESULT:
        text.append(f"{block.content}\n", style="green")
    elif block.type == ContentType.ERROR:
        text.append(f"{block.content}\n", style="red")
    else:
        text.append(f"{block.content}\n")
    return text


def render_message(message: AgentMessage, *, start: int = 0) -> None:
    """Print a message's transcript from block ``start`` onwards.

    Args:
        message: Message to render.
        start: Index of the first block to print.
    """
    blocks = message.contents[start:]
    if not blocks:
        return
    status = Text(message.status.value, style=STATUS_STYLES[message.status])
    console.print(
        Panel(
            Group(*(render_block(block) for block in blocks)),
            title=Text(message.user_input, style="bold"),
            subtitle=status,
            border_style=STATUS_STYLES[message.status],
        )
    )
