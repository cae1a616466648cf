"""
Wire a :class:`TurnOrchestrator` from :class:`~llmchat.config.Settings`.

The core never reads the environment itself: everything it needs is resolved here and handed over
as constructor arguments.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    List,
)

from llmchat.agent.intent_router import IntentRouter
from llmchat.agent.orchestrator import TurnOrchestrator
from llmchat.config import Settings
from llmchat.memory.memory_store import InMemoryStore
from llmchat.providers import (
    ChatClient,
    FallbackChatClient,
    load_chat_client,
)
from llmchat.tools import (
    Tool,
    ToolRegistry,
)
from llmchat.tools.calendar import (
    CalendarSearchTool,
    GoogleCalendarService,
)

logger = logging.getLogger(__name__)


def _api_key(settings: Settings, provider: str) -> str | None:
    keys = {
        "gemini": settings.GEMINI_API_KEY,
        "openai": settings.OPENAI_API_KEY,
        "anthropic": settings.ANTHROPIC_API_KEY,
    }
    return keys.get(provider)


def build_chat_client(settings: Settings) -> ChatClient:
    """
    Instantiate the configured provider adapter.

    A provider without credentials falls back to :class:`FallbackChatClient` so the rest of the
    pipeline stays usable offline.

    Raises
    ------
    ValueError
        If ``LLM_PROVIDER`` names no registered provider.
    """
    provider = settings.LLM_PROVIDER.strip().lower()
    if provider == "fallback":
        return FallbackChatClient(model=settings.LLM_MODEL)

    api_key = _api_key(settings, provider)
    if provider in {"gemini", "openai", "anthropic"} and not api_key:
        logger.warning("No API key configured for %s; using the fallback client", provider)
        return FallbackChatClient(reason=f"{provider} API key not set.")

    options: Dict[str, Any] = {
        "api_key": api_key,
        "model": settings.LLM_MODEL,
        "system_prompt": settings.SYSTEM_PROMPT,
        "max_tokens": settings.MAX_OUTPUT_TOKENS,
        "timeout": settings.REQUEST_TIMEOUT,
    }
    if provider == "gemini":
        options["base_url"] = settings.GEMINI_BASE_URL
        options["debug_http"] = settings.DEBUG_HTTP
    return load_chat_client(provider, **options)


def build_tools(settings: Settings) -> ToolRegistry:
    """Register every tool whose credentials are available."""
    tools: List[Tool] = []
    if settings.GOOGLE_CALENDAR_ACCESS_TOKEN:
        service = GoogleCalendarService(
            access_token=settings.GOOGLE_CALENDAR_ACCESS_TOKEN,
            calendar_id=settings.GOOGLE_CALENDAR_ID,
            timeout=settings.REQUEST_TIMEOUT,
        )
        tools.append(CalendarSearchTool(service))
    else:
        logger.info("GOOGLE_CALENDAR_ACCESS_TOKEN not set; calendar search disabled")
    return ToolRegistry(tools)


def build_orchestrator(settings: Settings) -> TurnOrchestrator:
    """Build the full turn pipeline from *settings*."""
    llm = build_chat_client(settings)
    tools = build_tools(settings)
    logger.info(
        "Orchestrator ready (provider=%s, model=%s, tools=%s)",
        llm.provider_name,
        llm.model,
        tools.names(),
    )
    return TurnOrchestrator(
        llm=llm,
        router=IntentRouter(llm),
        memory=InMemoryStore(),
        tools=tools,
        history_window=settings.HISTORY_WINDOW,
    )
