"""
Schema definitions shared by the orchestrator, the intent router, the tools and the providers.

These data models serve as the contract between the planner LLM, the turn orchestrator, the
transcript store and individual tools.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

from __future__ import annotations

from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

if TYPE_CHECKING:
    from llmchat.tools import ToolRegistry


class ChatRole(str, Enum):
    """Who authored a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: "ChatRole | str") -> "ChatRole":
        """Map a stored role case-insensitively; anything unknown is treated as the user."""
        if isinstance(value, ChatRole):
            return value
        normalized = str(value).strip().lower()
        for role in cls:
            if role.value == normalized:
                return role
        return cls.USER


class ChatMessage(BaseModel):
    """A single role-tagged message.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str


class ChatResponse(BaseModel):
    """Normalized reply of one blocking provider call."""

    text: str
    finish_reason: Optional[str] = None
    raw: Any = Field(default=None, repr=False, exclude=True)


class ExecutionPlan(BaseModel):
    """
    The intent router's decision for one turn.

    Field aliases follow the JSON shape the planning prompt asks the model for.  The raw model
    output is never trusted: :meth:`normalized` must be applied before the plan is used.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    requires_tool: bool = Field(False, alias="requiresTool")
    tool_name: Optional[str] = Field(None, alias="toolName")
    parameters: Optional[Dict[str, Any]] = None
    should_write_memory: bool = Field(False, alias="shouldWriteMemory")
    memory_note: Optional[str] = Field(None, alias="memoryNote")

    @classmethod
    def default(cls) -> "ExecutionPlan":
        """No tool, no memory write."""
        return cls()

    def normalized(self, registry: "ToolRegistry") -> "ExecutionPlan":
        """
        Return a copy that only requires a tool if ``tool_name`` resolves in *registry*.

        A resolved name is replaced by the registered spelling of the tool.
        """
        tool = None
        if self.requires_tool and self.tool_name and self.tool_name.strip():
            tool = registry.get(self.tool_name.strip())
        if tool is None:
            return self.model_copy(update={"requires_tool": False, "tool_name": None})
        return self.model_copy(update={"tool_name": tool.name})

    @property
    def wants_memory_write(self) -> bool:
        """True when the plan asks for a non-blank fact to be recorded."""
        return self.should_write_memory and bool(self.memory_note and self.memory_note.strip())


class ToolResult(BaseModel):
    """Outcome of a tool invocation."""

    ok: bool
    data: Any = None
    error: Optional[str] = None


class ToolCallLog(BaseModel):
    """One entry per turn that ran a tool (never written to the transcript)."""

    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    ok: bool
    error: Optional[str] = None


class TurnResult(BaseModel):
    """Result of a blocking turn."""

    final_text: str
    tool_calls: List[ToolCallLog] = Field(default_factory=list)
