"""
termagent - Agent task orchestration for terminal sessions.

Turns a natural-language goal into a self-correcting sequence of shell
commands, watching terminal output to decide the next step.
"""

__version__ = "0.1.0"

from termagent.config import Config, get_config

__all__ = ["Config", "get_config", "__version__"]
