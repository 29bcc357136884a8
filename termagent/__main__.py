"""
Entry point for running termagent as a module.

Usage:
    python -m termagent
    python -m termagent --help
    python -m termagent "find the largest files in /var/log"
"""

import asyncio
import sys

from termagent.cli import run_cli


def main() -> int:
    """Main entry point."""
    try:
        return asyncio.run(run_cli())
    except KeyboardInterrupt:
        print("\nGoodbye!")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
