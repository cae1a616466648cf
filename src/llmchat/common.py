"""Small helpers shared by the console client, the orchestrator and the providers."""

import json
import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def truncate(text: str, limit: int) -> str:
    """Shorten *text* to *limit* characters for log output."""
    if not text or len(text) <= limit:
        return text
    return text[:limit] + "…"


def safe_json_dumps(payload: Any) -> str:
    """
    Serialize *payload* to JSON without ever raising.

    Values the encoder does not know are rendered with ``str``; anything that still cannot be
    encoded (e.g. circular structures) collapses to an empty object.
    """
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as exc:
        logger.debug("Could not serialize payload of type %s: %s", type(payload).__name__, exc)
        return "{}"
