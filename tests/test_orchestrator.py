"""End-to-end behaviour of one turn through the orchestrator, with an in-process chat client."""

import asyncio
import json

import httpx
import pytest
from conftest import (
    Recorder,
    ScriptedChatClient,
    make_orchestrator,
)

from llmchat.agent.orchestrator import (
    ASSISTANT_SYSTEM_PROMPT,
    TOOL_RESULT_PREAMBLE,
    compose_messages,
)
from llmchat.core.schema import (
    ChatMessage,
    ChatRole,
)
from llmchat.memory.memory_store import InMemoryStore
from llmchat.providers.chat_client import ProviderError
from llmchat.providers.gemini import GeminiChatClient
from llmchat.tools import FunctionTool

SYSTEM = ChatMessage(role=ChatRole.SYSTEM, content=ASSISTANT_SYSTEM_PROMPT)


def _user(text: str) -> ChatMessage:
    return ChatMessage(role=ChatRole.USER, content=text)


def _assistant(text: str) -> ChatMessage:
    return ChatMessage(role=ChatRole.ASSISTANT, content=text)


def _tool_payload(message: ChatMessage) -> object:
    assert message.role is ChatRole.SYSTEM
    assert message.content.startswith(TOOL_RESULT_PREAMBLE)
    return json.loads(message.content[len(TOOL_RESULT_PREAMBLE) :])


# ---------------------------------------------------------------------------
# Blocking turns
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_no_tool_turn_sends_system_and_user_only(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(plan={"requiresTool": False}, answer="Sunny, 21°C.")
    orchestrator = make_orchestrator(llm, memory=memory)

    result = await orchestrator.handle("s1", "What's the weather?")

    assert llm.answer_calls == [[SYSTEM, _user("What's the weather?")]]
    assert result.final_text == "Sunny, 21°C."
    assert result.tool_calls == []
    assert await memory.recent("s1") == [_user("What's the weather?"), _assistant("Sunny, 21°C.")]


@pytest.mark.asyncio
async def test_unregistered_tool_behaves_like_no_tool(memory: InMemoryStore) -> None:
    other = Recorder(result="unused")
    llm = ScriptedChatClient(
        plan={"requiresTool": True, "toolName": "x.search", "parameters": {"query": "q"}},
        answer="Plain answer",
    )
    orchestrator = make_orchestrator(llm, tools=[FunctionTool("y.search", other)], memory=memory)

    result = await orchestrator.handle("s1", "What's the weather?")

    assert other.calls == []
    assert llm.answer_calls == [[SYSTEM, _user("What's the weather?")]]
    assert result.tool_calls == []
    assert (await memory.recent("s1"))[-1] == _assistant("Plain answer")


@pytest.mark.asyncio
async def test_tool_result_is_appended_as_system_turn() -> None:
    search = Recorder(result={"message": "Found 1 event(s)", "events": [{"title": "Standup"}]})
    llm = ScriptedChatClient(
        plan={"requiresTool": True, "toolName": "CAL.SEARCH", "parameters": {"query": "standup"}},
        answer="You have a standup.",
    )
    orchestrator = make_orchestrator(llm, tools=[FunctionTool("cal.search", search)])

    result = await orchestrator.handle("s1", "Any standups?")

    assert search.calls == [{"query": "standup"}]
    sent = llm.answer_calls[0]
    assert sent[:2] == [SYSTEM, _user("Any standups?")]
    assert len(sent) == 3
    assert _tool_payload(sent[2]) == {"message": "Found 1 event(s)", "events": [{"title": "Standup"}]}
    assert [(log.tool_name, log.ok) for log in result.tool_calls] == [("cal.search", True)]
    assert result.tool_calls[0].arguments == {"query": "standup"}


@pytest.mark.asyncio
async def test_failing_tool_still_answers(memory: InMemoryStore) -> None:
    broken = Recorder(error=RuntimeError("calendar offline"))
    llm = ScriptedChatClient(
        plan={"requiresTool": True, "toolName": "cal.search"}, answer="Sorry, I couldn't check."
    )
    orchestrator = make_orchestrator(llm, tools=[FunctionTool("cal.search", broken)], memory=memory)

    result = await orchestrator.handle("s1", "Any meetings?")

    assert broken.calls == [{}]
    payload = _tool_payload(llm.answer_calls[0][-1])
    assert "calendar offline" in payload["error"]
    assert result.final_text == "Sorry, I couldn't check."
    assert result.tool_calls[0].ok is False
    assert (await memory.recent("s1"))[-1] == _assistant("Sorry, I couldn't check.")


@pytest.mark.asyncio
async def test_tool_without_data_still_adds_tool_turn() -> None:
    llm = ScriptedChatClient(plan={"requiresTool": True, "toolName": "noop"})
    orchestrator = make_orchestrator(llm, tools=[FunctionTool("noop", Recorder(result=None))])

    await orchestrator.handle("s1", "do it")

    assert llm.answer_calls[0][-1].content == TOOL_RESULT_PREAMBLE + "null"


@pytest.mark.asyncio
async def test_memory_note_is_recorded_as_fact(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(
        plan={"requiresTool": False, "shouldWriteMemory": True, "memoryNote": " Prefers tea "}
    )
    orchestrator = make_orchestrator(llm, memory=memory)

    await orchestrator.handle("s1", "I prefer tea.")

    assert await memory.recent_facts("s1") == ["Prefers tea"]


@pytest.mark.asyncio
async def test_blank_memory_note_is_not_recorded(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(plan={"shouldWriteMemory": True, "memoryNote": "  "})
    orchestrator = make_orchestrator(llm, memory=memory)

    await orchestrator.handle("s1", "hello")

    assert await memory.recent_facts("s1") == []


@pytest.mark.asyncio
async def test_provider_error_keeps_only_the_user_turn(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(
        plan={"shouldWriteMemory": True, "memoryNote": "n"},
        answer_error=ProviderError("Gemini API error 500", status_code=500),
    )
    orchestrator = make_orchestrator(llm, memory=memory)

    with pytest.raises(ProviderError, match="500"):
        await orchestrator.handle("s1", "hello")

    assert await memory.recent("s1") == [_user("hello")]
    assert await memory.recent_facts("s1") == []


@pytest.mark.asyncio
async def test_planning_failure_does_not_abort_turn(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(plan_error=ProviderError("planner down"), answer="still here")
    orchestrator = make_orchestrator(llm, memory=memory)

    result = await orchestrator.handle("s1", "hi")

    assert result.final_text == "still here"
    assert llm.answer_calls == [[SYSTEM, _user("hi")]]


@pytest.mark.asyncio
async def test_malformed_gemini_plan_does_not_abort_turn(memory: InMemoryStore) -> None:
    replies = [
        httpx.Response(200, json={"candidates": [{"content": "oops"}]}),
        httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "answer"}]}}]}),
    ]
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: replies.pop(0)),
        base_url="https://gemini.test/",
    )
    orchestrator = make_orchestrator(GeminiChatClient(api_key="k", client=http), memory=memory)

    result = await orchestrator.handle("s1", "hi")

    assert result.final_text == "answer"
    assert not replies


@pytest.mark.asyncio
async def test_history_is_included_once_per_message(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(answer="second answer")
    orchestrator = make_orchestrator(llm, memory=memory)
    await memory.append("s1", ChatRole.USER, "first question")
    await memory.append("s1", ChatRole.ASSISTANT, "first answer")

    await orchestrator.handle("s1", "second question")

    assert llm.answer_calls[0] == [
        SYSTEM,
        _user("first question"),
        _assistant("first answer"),
        _user("second question"),
    ]


@pytest.mark.asyncio
async def test_history_window_limits_context(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient()
    orchestrator = make_orchestrator(llm, memory=memory, history_window=2)
    for i in range(4):
        await memory.append("s1", ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT, f"m{i}")

    await orchestrator.handle("s1", "now")

    assert llm.answer_calls[0] == [SYSTEM, _user("m2"), _assistant("m3"), _user("now")]


@pytest.mark.asyncio
async def test_repeated_question_keeps_earlier_exchange(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient()
    orchestrator = make_orchestrator(llm, memory=memory, history_window=2)
    await memory.append("s1", ChatRole.USER, "again?")
    await memory.append("s1", ChatRole.ASSISTANT, "yes")

    await orchestrator.handle("s1", "again?")

    assert llm.answer_calls[0] == [SYSTEM, _user("again?"), _assistant("yes"), _user("again?")]


@pytest.mark.asyncio
async def test_zero_history_window_sends_only_current_input(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient()
    orchestrator = make_orchestrator(llm, memory=memory, history_window=0)
    await memory.append("s1", ChatRole.USER, "old")

    await orchestrator.handle("s1", "new")

    assert llm.answer_calls[0] == [SYSTEM, _user("new")]


@pytest.mark.asyncio
async def test_sessions_do_not_share_context(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient()
    orchestrator = make_orchestrator(llm, memory=memory)

    await orchestrator.handle("a", "from a")
    await orchestrator.handle("b", "from b")

    assert llm.answer_calls[1] == [SYSTEM, _user("from b")]


def test_compose_messages_retags_stored_system_turns() -> None:
    recent = [
        ChatMessage(role=ChatRole.SYSTEM, content="earlier tool note"),
        _assistant("earlier answer"),
    ]

    messages = compose_messages(recent, "next", tool_ran=True, tool_payload={"ok": 1})

    assert [m.role for m in messages] == [
        ChatRole.SYSTEM,
        ChatRole.SYSTEM,
        ChatRole.ASSISTANT,
        ChatRole.USER,
        ChatRole.SYSTEM,
    ]
    assert messages[-1].content == TOOL_RESULT_PREAMBLE + '{"ok": 1}'


# ---------------------------------------------------------------------------
# Streaming turns
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_stream_forwards_fragments_and_persists_concatenation(
    memory: InMemoryStore,
) -> None:
    llm = ScriptedChatClient(fragments=["Hel", "lo, ", "world!"])
    orchestrator = make_orchestrator(llm, memory=memory)

    received = [fragment async for fragment in orchestrator.stream("s1", "greet me")]

    assert received == ["Hel", "lo, ", "world!"]
    assert await memory.recent("s1") == [_user("greet me"), _assistant("Hello, world!")]
    assert llm.stream_calls == [[SYSTEM, _user("greet me")]]
    assert llm.answer_calls == []


@pytest.mark.asyncio
async def test_stream_records_fact_after_completion(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(
        plan={"shouldWriteMemory": True, "memoryNote": "Name is Ada"}, fragments=["Hi Ada"]
    )
    orchestrator = make_orchestrator(llm, memory=memory)

    async for _ in orchestrator.stream("s1", "I'm Ada"):
        pass

    assert await memory.recent_facts("s1") == ["Name is Ada"]


@pytest.mark.asyncio
async def test_stream_closed_early_discards_partial_reply(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(
        plan={"shouldWriteMemory": True, "memoryNote": "n"}, fragments=["Hel", "lo"]
    )
    orchestrator = make_orchestrator(llm, memory=memory)

    stream = orchestrator.stream("s1", "greet me")
    assert await stream.__anext__() == "Hel"
    await stream.aclose()

    assert await memory.recent("s1") == [_user("greet me")]
    assert await memory.recent_facts("s1") == []


@pytest.mark.asyncio
async def test_cancelled_stream_discards_partial_reply(memory: InMemoryStore) -> None:
    never = asyncio.Event()
    llm = ScriptedChatClient(fragments=["partial"], block_after_fragments=never)
    orchestrator = make_orchestrator(llm, memory=memory)
    received = []

    async def consume() -> None:
        async for fragment in orchestrator.stream("s1", "long answer please"):
            received.append(fragment)

    task = asyncio.create_task(consume())
    while not received:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert received == ["partial"]
    assert await memory.recent("s1") == [_user("long answer please")]


@pytest.mark.asyncio
async def test_stream_provider_error_after_fragments(memory: InMemoryStore) -> None:
    llm = ScriptedChatClient(fragments=["Hel"], answer_error=ProviderError("stream broke"))
    orchestrator = make_orchestrator(llm, memory=memory)
    received = []

    with pytest.raises(ProviderError, match="stream broke"):
        async for fragment in orchestrator.stream("s1", "hi"):
            received.append(fragment)

    assert received == ["Hel"]
    assert await memory.recent("s1") == [_user("hi")]


@pytest.mark.asyncio
async def test_stream_with_tool_adds_tool_turn() -> None:
    llm = ScriptedChatClient(plan={"requiresTool": True, "toolName": "now"}, fragments=["noon"])
    orchestrator = make_orchestrator(llm, tools=[FunctionTool("now", Recorder(result="12:00"))])

    assert [f async for f in orchestrator.stream("s1", "time?")] == ["noon"]
    assert _tool_payload(llm.stream_calls[0][-1]) == "12:00"
