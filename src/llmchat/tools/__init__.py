"""
Tool contract and registry for llmchat.

A tool is a named capability with advisory input/output schemas that the intent router shows to
the planning model.  The registry is built once at startup and is read-only afterwards.
"""

from __future__ import annotations

import inspect
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
)

from llmchat.core.schema import ToolResult

logger = logging.getLogger(__name__)


class Tool(ABC):
    """Abstract base for every tool."""

    name: ClassVar[str]
    description: ClassVar[str] = ""
    input_schema: ClassVar[Mapping[str, Any]] = {"type": "object"}
    output_schema: ClassVar[Mapping[str, Any]] = {}

    @abstractmethod
    async def invoke(self, session_id: str, arguments: Mapping[str, Any]) -> ToolResult:
        """Run the tool for *session_id* with the planner-supplied *arguments*."""


class FunctionTool(Tool):
    """
    Wrap a plain (sync or async) function as a tool.

    The function receives the argument mapping as keyword arguments and its return value becomes
    the tool's ``data``.  Any exception it raises propagates to the caller, which is expected to
    go through :func:`llmchat.agent.tool_executor.run_tool`.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[..., Any] | Callable[..., Awaitable[Any]],
        description: str | None = None,
        input_schema: Mapping[str, Any] | None = None,
        output_schema: Mapping[str, Any] | None = None,
    ) -> None:
        # Instance attributes shadow the class-level defaults declared on Tool
        self.name = name  # type: ignore[misc]
        self.description = description or inspect.getdoc(fn) or ""  # type: ignore[misc]
        self.input_schema = input_schema or {"type": "object"}  # type: ignore[misc]
        self.output_schema = output_schema or {}  # type: ignore[misc]
        self._fn = fn

    async def invoke(self, session_id: str, arguments: Mapping[str, Any]) -> ToolResult:
        result = self._fn(**dict(arguments))
        if inspect.isawaitable(result):
            result = await result
        return ToolResult(ok=True, data=result)


class ToolRegistry:
    """
    Immutable, case-insensitive mapping of tool name -> tool.

    Parameters
    ----------
    tools:
        The tools to expose.  Two tools whose names only differ in case are a collision.

    Raises
    ------
    ValueError
        If two tools share a name.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            key = tool.name.strip().lower()
            if not key:
                raise ValueError("Tool name must not be empty.")
            if key in self._tools:
                raise ValueError(f"Tool '{tool.name}' is already registered.")
            self._tools[key] = tool
            logger.debug("Registered tool '%s'", tool.name)

    def get(self, name: str) -> Tool | None:
        """Return the tool called *name* (any casing) or ``None``."""
        return self._tools.get(name.strip().lower())

    def all(self) -> List[Tool]:
        """Return every registered tool in registration order."""
        return list(self._tools.values())

    def names(self) -> List[str]:
        """Return every registered tool name."""
        return [tool.name for tool in self._tools.values()]

    def catalog(self) -> List[Dict[str, Any]]:
        """Describe the tools for the planning prompt."""
        return [
            {"name": tool.name, "description": tool.description, "inputSchema": tool.input_schema}
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._tools)
