"""Runs a planned tool and folds every failure into a negative ``ToolResult``."""

import logging
from typing import (
    Any,
    Dict,
    Mapping,
    Tuple,
)

from llmchat.common import (
    safe_json_dumps,
    truncate,
)
from llmchat.core.schema import (
    ToolCallLog,
    ToolResult,
)
from llmchat.tools import Tool

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised inside :func:`run_tool` when a tool misbehaves; never escapes it."""


async def _invoke(tool: Tool, session_id: str, args: Dict[str, Any]) -> ToolResult:
    try:
        result = await tool.invoke(session_id, args)
    except TypeError as exc:
        # Argument mismatch: give the caller a clean message
        raise ToolExecutionError(f"Invalid arguments for tool '{tool.name}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        raise ToolExecutionError(f"Tool '{tool.name}' raised an error: {exc}") from exc
    if not isinstance(result, ToolResult):
        raise ToolExecutionError(f"Tool '{tool.name}' returned {type(result).__name__}")
    return result


async def run_tool(
    tool: Tool, session_id: str, args: Mapping[str, Any] | None = None
) -> Tuple[ToolResult, ToolCallLog]:
    """
    Invoke *tool* for *session_id* with *args*.

    Parameters
    ----------
    tool:
        The resolved tool.
    session_id:
        Session the turn belongs to.
    args:
        Arguments from the execution plan.  If *None*, an empty dict is assumed.

    Returns
    -------
    Tuple[ToolResult, ToolCallLog]
        The tool's result (``ok=False`` with the error message on any failure) and the log entry
        for the turn result.
    """
    safe_args: Dict[str, Any] = dict(args or {})
    logger.debug("Executing tool '%s'", tool.name)
    logger.debug("Tool parameters: %s", truncate(safe_json_dumps(safe_args), 500))

    try:
        result = await _invoke(tool, session_id, safe_args)
    except ToolExecutionError as exc:
        logger.warning("Tool '%s' failed: %s", tool.name, exc, exc_info=exc.__cause__)
        result = ToolResult(ok=False, error=str(exc))

    logger.debug("Tool '%s' result: ok=%s", tool.name, result.ok)
    log = ToolCallLog(tool_name=tool.name, arguments=safe_args, ok=result.ok, error=result.error)
    return result, log
