"""
LlmChat entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API, CLI or the calendar check).
"""

import argparse
import logging
import sys

from llmchat.api.app import run_api
from llmchat.common import (
    AnsiColors,
    colored_print,
)
from llmchat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Keep per-request transport chatter out of the log
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _check_calendar() -> int:
    """Run the Google Calendar diagnostics and print the outcome; returns the exit status."""
    import asyncio  # pylint: disable=import-outside-toplevel

    from llmchat.tools.calendar import diagnose_calendar  # pylint: disable=import-outside-toplevel

    result = asyncio.run(
        diagnose_calendar(settings.GOOGLE_CALENDAR_ACCESS_TOKEN, settings.GOOGLE_CALENDAR_ID)
    )
    colored_print(result.summary(), AnsiColors.GREEN if result.ok else AnsiColors.RED)
    return 0 if result.ok else 1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the LlmChat application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the LlmChat orchestrator")
    parser.add_argument(
        "--mode",
        choices=["api", "cli", "check-calendar"],
        type=str.lower,
        default="api",
        help=(
            "Launch the REST API, the API plus an interactive CLI, or the calendar "
            "connectivity check (default: api)"
        ),
    )
    parser.add_argument(
        "--provider",
        type=str.lower,
        default=settings.LLM_PROVIDER,
        help="LLM provider to use (default from env: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    settings.LLM_PROVIDER = args.provider

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting LlmChat [%s mode, provider=%s]", args.mode, settings.LLM_PROVIDER)

    if args.mode == "check-calendar":
        sys.exit(_check_calendar())

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid threading when only serving the API
    import threading  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "127.0.0.1",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Lazy import to avoid CLI dependencies if not needed
    from llmchat.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    run_cli()


if __name__ == "__main__":
    main()
