"""
Pydantic models for LlmChat API requests and responses.
This module defines the request and response schemas used by the LlmChat API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from llmchat.core.schema import (
    ChatMessage,
    ToolCallLog,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., description="User message for the assistant")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    tool_calls: List[ToolCallLog] = Field(default_factory=list)
    session_id: str


class TranscriptResponse(BaseModel):
    """Tail of a session transcript."""

    session_id: str
    messages: List[ChatMessage]


class FactsResponse(BaseModel):
    """Tail of the facts recorded for a session."""

    session_id: str
    facts: List[str]
