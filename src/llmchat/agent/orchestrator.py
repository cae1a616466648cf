"""
Turn orchestrator.

One turn moves linearly through the stages of :class:`TurnStage`:

    Received -> UserPersisted -> ContextLoaded -> Planned -> [ToolExecuted] -> Composed
             -> Answered -> AssistantPersisted -> [FactPersisted] -> Done

Only a provider failure while answering aborts a turn.  Planning and tool failures are absorbed
(no-tool plan, negative tool payload) so the user still gets a natural-language answer.

Streaming cancellation policy: a stream that is cancelled, or closed by its consumer before the
provider finished, persists nothing beyond the user turn.  The partial reply is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import (
    dataclass,
    field,
)
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    List,
    Sequence,
)

from llmchat.agent.intent_router import (
    AgentContext,
    IntentRouter,
)
from llmchat.agent.tool_executor import run_tool
from llmchat.common import (
    safe_json_dumps,
    truncate,
)
from llmchat.core.schema import (
    ChatMessage,
    ChatRole,
    ExecutionPlan,
    ToolCallLog,
    TurnResult,
)
from llmchat.memory.memory_store import InMemoryStore
from llmchat.providers.chat_client import ChatClient
from llmchat.tools import ToolRegistry

logger = logging.getLogger(__name__)

ASSISTANT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Reply in natural language only. Be concise and accurate."
)
TOOL_RESULT_PREAMBLE = "Tool result available as JSON. Use it to answer the user. JSON: "
DEFAULT_HISTORY_WINDOW = 40


class TurnStage(str, Enum):
    """Stages of a single turn, in order."""

    RECEIVED = "received"
    USER_PERSISTED = "user_persisted"
    CONTEXT_LOADED = "context_loaded"
    PLANNED = "planned"
    TOOL_EXECUTED = "tool_executed"
    COMPOSED = "composed"
    ANSWERED = "answered"
    ASSISTANT_PERSISTED = "assistant_persisted"
    FACT_PERSISTED = "fact_persisted"
    DONE = "done"


@dataclass
class _Turn:
    """Mutable bookkeeping for one turn in flight."""

    session_id: str
    user_input: str
    stage: TurnStage = TurnStage.RECEIVED
    plan: ExecutionPlan = field(default_factory=ExecutionPlan.default)
    tool_calls: List[ToolCallLog] = field(default_factory=list)
    messages: List[ChatMessage] = field(default_factory=list)

    def advance(self, stage: TurnStage) -> None:
        self.stage = stage
        logger.debug("Session %s: turn -> %s", self.session_id, stage.value)


def compose_messages(
    recent: Sequence[ChatMessage],
    user_input: str,
    tool_ran: bool = False,
    tool_payload: Any = None,
) -> List[ChatMessage]:
    """
    Build the outbound message list for the answering call.

    Fixed system instruction, then the recent window re-tagged by stored role, then the current
    user input, then (only if a tool ran) one system turn carrying the tool payload as JSON.
    """
    messages = [ChatMessage(role=ChatRole.SYSTEM, content=ASSISTANT_SYSTEM_PROMPT)]
    for msg in recent:
        messages.append(ChatMessage(role=ChatRole.parse(msg.role), content=msg.content))
    messages.append(ChatMessage(role=ChatRole.USER, content=user_input))
    if tool_ran:
        content = TOOL_RESULT_PREAMBLE + safe_json_dumps(tool_payload)
        messages.append(ChatMessage(role=ChatRole.SYSTEM, content=content))
    return messages


class TurnOrchestrator:
    """Top-level state machine wiring memory, router, tools and the chat client together."""

    def __init__(
        self,
        llm: ChatClient,
        router: IntentRouter,
        memory: InMemoryStore,
        tools: ToolRegistry,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ) -> None:
        self._llm = llm
        self._router = router
        self._memory = memory
        self._tools = tools
        self._history_window = history_window

    @property
    def memory(self) -> InMemoryStore:
        return self._memory

    # ------------------------------------------------------------------ #
    # Stages shared by both answer modes
    # ------------------------------------------------------------------ #
    async def _prepare(self, session_id: str, user_input: str) -> _Turn:
        turn = _Turn(session_id=session_id, user_input=user_input)

        await self._memory.append(session_id, ChatRole.USER, user_input)
        turn.advance(TurnStage.USER_PERSISTED)

        # The in-process store does not suspend between append and recent, so the last entry is
        # always the turn stored above. compose_messages adds it back as the final user turn.
        recent = await self._memory.recent(session_id, self._history_window + 1)
        recent = recent[:-1][-self._history_window :] if self._history_window > 0 else []
        turn.advance(TurnStage.CONTEXT_LOADED)

        ctx = AgentContext(
            session_id=session_id, user_input=user_input, tools=self._tools, recent_messages=recent
        )
        turn.plan = await self._router.route(ctx)
        turn.advance(TurnStage.PLANNED)
        logger.debug(
            "Intent plan: requires_tool=%s tool_name=%s",
            turn.plan.requires_tool,
            turn.plan.tool_name,
        )

        tool_ran = False
        tool_payload: Any = None
        tool = self._tools.get(turn.plan.tool_name) if turn.plan.tool_name else None
        if turn.plan.requires_tool and tool is not None:
            result, log = await run_tool(tool, session_id, turn.plan.parameters)
            turn.tool_calls.append(log)
            tool_ran = True
            tool_payload = result.data if result.ok else {"error": result.error}
            turn.advance(TurnStage.TOOL_EXECUTED)

        turn.messages = compose_messages(recent, user_input, tool_ran, tool_payload)
        turn.advance(TurnStage.COMPOSED)
        logger.debug(
            "Message chain for LLM: %s",
            [(msg.role.value, truncate(msg.content, 200)) for msg in turn.messages],
        )
        return turn

    async def _persist(self, turn: _Turn, text: str) -> None:
        logger.debug("LLM response: %s", truncate(text, 300))
        await self._memory.append(turn.session_id, ChatRole.ASSISTANT, text)
        turn.advance(TurnStage.ASSISTANT_PERSISTED)

        if turn.plan.wants_memory_write:
            await self._memory.add_fact(turn.session_id, (turn.plan.memory_note or "").strip())
            turn.advance(TurnStage.FACT_PERSISTED)
        turn.advance(TurnStage.DONE)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def handle(self, session_id: str, user_input: str) -> TurnResult:
        """
        Run one blocking turn.

        Raises
        ------
        ProviderError
            If the answering call fails.  No assistant message is persisted in that case.
        """
        logger.debug("Handling request for session %s: %s", session_id, truncate(user_input, 200))
        turn = await self._prepare(session_id, user_input)

        response = await self._llm.complete(turn.messages)
        turn.advance(TurnStage.ANSWERED)

        await self._persist(turn, response.text)
        return TurnResult(final_text=response.text, tool_calls=turn.tool_calls)

    async def stream(self, session_id: str, user_input: str) -> AsyncIterator[str]:
        """
        Run one streaming turn, yielding reply fragments as they arrive.

        The full reply is persisted only once the provider stream completes.  A provider error
        propagates after whatever fragments were already yielded.
        """
        logger.debug("Streaming request for session %s: %s", session_id, truncate(user_input, 200))
        turn = await self._prepare(session_id, user_input)

        buffer: List[str] = []
        try:
            async with aclosing(self._llm.stream(turn.messages)) as fragments:
                async for fragment in fragments:
                    buffer.append(fragment)
                    yield fragment
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(
                "Stream for session %s cancelled after %d fragment(s); partial reply discarded",
                session_id,
                len(buffer),
            )
            raise
        turn.advance(TurnStage.ANSWERED)

        await self._persist(turn, "".join(buffer))
