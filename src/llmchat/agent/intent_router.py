"""
Intent router: turns the current turn's context into an :class:`ExecutionPlan`.

The router issues exactly one planning call per turn and never re-prompts.  The model's reply is
untrusted: it is cut down to the outermost JSON object, parsed leniently, and finally validated
against the tool registry.  Nothing that goes wrong here is allowed to fail the turn.
"""

from __future__ import annotations

import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from pydantic import ValidationError

from llmchat.common import (
    safe_json_dumps,
    truncate,
)
from llmchat.core.schema import (
    ChatMessage,
    ChatRole,
    ExecutionPlan,
)
from llmchat.providers.chat_client import (
    ChatClient,
    ProviderError,
)
from llmchat.tools import ToolRegistry

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = "You plan actions for an agent. Respond with STRICT JSON only."
PLANNER_INSTRUCTION = "Decide if a tool is needed; if yes, pick one and build parameters."
PLAN_OUTPUT_SCHEMA: Dict[str, str] = {
    "requiresTool": "bool",
    "toolName": "string|null",
    "parameters": "object|null",
    "shouldWriteMemory": "bool",
    "memoryNote": "string|null",
}


class PlanningError(ValueError):
    """The planning reply could not be turned into a plan (never leaves the router)."""


@dataclass(frozen=True)
class AgentContext:
    """Everything the router may look at for one turn."""

    session_id: str
    user_input: str
    tools: ToolRegistry
    recent_messages: Sequence[ChatMessage] = field(default_factory=tuple)


def extract_json(text: str) -> str:
    """Return the substring between the first ``{`` and the last ``}`` (or ``"{}"``)."""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return "{}"
    return text[start : end + 1]


def parse_plan(text: str) -> ExecutionPlan:
    """
    Parse a raw planning reply.

    Raises
    ------
    PlanningError
        If the extracted object is not valid JSON or does not fit the plan shape.
    """
    try:
        return ExecutionPlan.model_validate_json(extract_json(text))
    except ValidationError as exc:
        raise PlanningError(f"Malformed plan: {exc.errors()[0]['msg']}") from exc


class IntentRouter:
    """LLM-backed planner for a single turn."""

    def __init__(self, llm: ChatClient) -> None:
        self._llm = llm

    @staticmethod
    def build_messages(ctx: AgentContext) -> List[ChatMessage]:
        """Build the planning request: a strict-JSON system message plus one user document."""
        request: Dict[str, Any] = {
            "instruction": PLANNER_INSTRUCTION,
            "tools": ctx.tools.catalog(),
            "input": ctx.user_input,
            "schema": PLAN_OUTPUT_SCHEMA,
        }
        return [
            ChatMessage(role=ChatRole.SYSTEM, content=PLANNER_SYSTEM_PROMPT),
            ChatMessage(role=ChatRole.USER, content=safe_json_dumps(request)),
        ]

    async def route(self, ctx: AgentContext) -> ExecutionPlan:
        """Return a plan that is safe to execute as-is."""
        try:
            resp = await self._llm.complete(self.build_messages(ctx))
            logger.debug("Planner raw reply: %s", truncate(resp.text, 300))
            plan = parse_plan(resp.text)
        except (ProviderError, PlanningError) as exc:
            logger.warning(
                "Planning failed for session %s, continuing without a tool: %s",
                ctx.session_id,
                exc,
            )
            plan = ExecutionPlan.default()

        normalized = plan.normalized(ctx.tools)
        if plan.requires_tool and not normalized.requires_tool:
            logger.info("Planner asked for unknown tool %r; ignoring it", plan.tool_name)
        return normalized
