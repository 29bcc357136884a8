"""
Custom exceptions for termagent.

All exceptions inherit from TermAgentError for easy catching.
"""


class TermAgentError(Exception):
    """Base exception for all termagent errors."""
    pass


class ConfigError(TermAgentError):
    """Configuration-related errors."""
    pass


class GatewayError(TermAgentError):
    """LLM gateway communication errors."""
    pass


class GatewayConnectionError(GatewayError):
    """Failed to reach the LLM endpoint."""
    pass


class GatewayModelError(GatewayError):
    """Model-related errors (not found, failed to load)."""
    pass


class EmptyResponseError(GatewayError):
    """The gateway answered with no content."""
    pass


class ResponseParseError(TermAgentError):
    """Model reply could not be parsed into an agent step."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class DispatchError(TermAgentError):
    """Command dispatch to the terminal failed."""
    pass


class TaskStateError(TermAgentError):
    """The current task cannot take the requested action."""
    pass
