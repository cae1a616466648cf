"""Shared fakes for the test-suite."""

from __future__ import annotations

import asyncio
import json
from typing import (
    Any,
    AsyncIterator,
    List,
    Optional,
    Sequence,
)

import pytest

from llmchat.agent.intent_router import (
    PLANNER_SYSTEM_PROMPT,
    IntentRouter,
)
from llmchat.agent.orchestrator import TurnOrchestrator
from llmchat.core.schema import (
    ChatMessage,
    ChatResponse,
)
from llmchat.memory.memory_store import InMemoryStore
from llmchat.providers.chat_client import ChatClient
from llmchat.tools import (
    FunctionTool,
    ToolRegistry,
)


class ScriptedChatClient(ChatClient):
    """
    In-process chat client with canned replies.

    Planning requests (recognised by the planner system prompt) get *plan*; everything else gets
    *answer* (blocking) or *fragments* (streaming).  Every request is recorded.
    """

    default_model = "scripted"

    def __init__(
        self,
        plan: Any = "{}",
        answer: str = "ok",
        fragments: Optional[Sequence[str]] = None,
        plan_error: Optional[Exception] = None,
        answer_error: Optional[Exception] = None,
        block_after_fragments: Optional[asyncio.Event] = None,
    ) -> None:
        super().__init__()
        self.plan = plan if isinstance(plan, str) else json.dumps(plan)
        self.answer = answer
        self.fragments = list(fragments) if fragments is not None else [answer]
        self.plan_error = plan_error
        self.answer_error = answer_error
        self.block_after_fragments = block_after_fragments
        self.planning_calls: List[List[ChatMessage]] = []
        self.answer_calls: List[List[ChatMessage]] = []
        self.stream_calls: List[List[ChatMessage]] = []

    @staticmethod
    def _is_planning(messages: Sequence[ChatMessage]) -> bool:
        return bool(messages) and messages[0].content == PLANNER_SYSTEM_PROMPT

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        if self._is_planning(messages):
            self.planning_calls.append(list(messages))
            if self.plan_error:
                raise self.plan_error
            return ChatResponse(text=self.plan)
        self.answer_calls.append(list(messages))
        if self.answer_error:
            raise self.answer_error
        return ChatResponse(text=self.answer, finish_reason="STOP")

    async def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        self.stream_calls.append(list(messages))
        for fragment in self.fragments:
            await asyncio.sleep(0)
            yield fragment
        if self.block_after_fragments is not None:
            await self.block_after_fragments.wait()
        if self.answer_error:
            raise self.answer_error


class Recorder:
    """Remembers the keyword arguments of every call."""

    def __init__(self, result: Any = None, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[dict] = []

    def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.result


def make_orchestrator(
    llm: ScriptedChatClient,
    tools: Sequence[FunctionTool] = (),
    memory: Optional[InMemoryStore] = None,
    history_window: int = 40,
) -> TurnOrchestrator:
    return TurnOrchestrator(
        llm=llm,
        router=IntentRouter(llm),
        memory=memory or InMemoryStore(),
        tools=ToolRegistry(tools),
        history_window=history_window,
    )


@pytest.fixture
def memory() -> InMemoryStore:
    return InMemoryStore()
