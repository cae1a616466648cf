"""CLI client for the LlmChat API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from llmchat.common import (
    AnsiColors,
    colored_print,
)
from llmchat.config import settings

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit", "/exit"}


def _api_url(endpoint: str) -> str:
    return f"http://localhost:{settings.API_PORT}{endpoint}"


def _error_detail(response: httpx.Response) -> str | None:
    """Pull FastAPI's ``detail`` out of an error response, if there is one."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return None


def _backoff(attempt: int, max_retries: int) -> None:
    retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
    logger.info(
        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
        retry_delay,
        attempt + 1,
        max_retries,
    )
    time.sleep(retry_delay)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(endpoint: str, data: Dict[str, Any], max_retries: int = 5) -> Dict[str, Any]:
    """Make a POST request to the API and return the response with retries."""
    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=settings.REQUEST_TIMEOUT) as client:
                response = client.post(_api_url(endpoint), json=data)
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                _backoff(attempt, max_retries)
                continue
            logger.error("API request error: %s", e)
            return {"error": f"Error connecting to API: {e}"}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", e)
            return {"error": f"Error connecting to API: {e}"}

        if response.is_error:
            detail = _error_detail(response) or response.text
            return {"error": f"API error {response.status_code}: {detail}"}
        return cast(Dict[str, Any], response.json())

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def stream_reply(message: str, session_id: str) -> str:
    """
    Send one message to ``/agent/stream`` and echo fragments as they arrive.

    Returns the concatenated reply.  Errors are printed as-is; text already shown stays on screen.
    """
    chunks = []
    try:
        with httpx.Client(timeout=settings.REQUEST_TIMEOUT) as client:
            with client.stream(
                "POST",
                _api_url("/agent/stream"),
                json={"message": message, "session_id": session_id},
            ) as response:
                if response.is_error:
                    response.read()
                    detail = _error_detail(response) or response.text
                    colored_print(f"API error {response.status_code}: {detail}", AnsiColors.RED)
                    return ""
                for fragment in response.iter_text():
                    chunks.append(fragment)
                    colored_print(fragment, AnsiColors.YELLOW, end="", flush=True)
    except httpx.HTTPError as e:
        logger.error("Streaming request error: %s", e)
        colored_print(f"\nError: {e}", AnsiColors.RED)
    print()
    return "".join(chunks)


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    session_response = call_api("/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print(
            session_response.get("error", "Failed to create a session"), AnsiColors.RED
        )
        return

    colored_print(
        "\nLlmChat shell - type 'exit', 'quit' or '/exit' (or Ctrl+C) to leave", AnsiColors.GREEN
    )
    colored_print(f"Session: {session_id}", AnsiColors.CYAN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if not user_msg:
            continue
        if user_msg.lower() in EXIT_COMMANDS:
            break

        colored_print("Assistant: ", AnsiColors.GREEN, end="")
        stream_reply(user_msg, session_id)


if __name__ == "__main__":
    run_cli()
