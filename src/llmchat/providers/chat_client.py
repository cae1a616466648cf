"""
Provider-agnostic chat client interface.

This module is the contract every LLM backend adapter fulfils.  Everything else (router,
orchestrator, tools, memory) stays model-agnostic and only ever sees :class:`ChatClient`.

Backends are registered by name via :func:`register_chat_client` and built with
:func:`load_chat_client`.  Adding a provider means subclassing :class:`ChatClient` in its own
module and decorating the class.
"""

from __future__ import annotations

import logging
from abc import (
    ABC,
    abstractmethod,
)
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from llmchat.core.schema import (
    ChatMessage,
    ChatResponse,
    ChatRole,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class ProviderError(RuntimeError):
    """The backend returned a non-success status, an empty body or an unparseable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderCompatibilityError(ProviderError):
    """The backend rejected the dedicated system-instruction channel."""


# ---------------------------------------------------------------------------
# System folding
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FoldedConversation:
    """A message list split into one combined system text and the ordinary turns."""

    system_text: Optional[str]
    turns: List[ChatMessage]

    def degraded_turns(self) -> List[ChatMessage]:
        """Turns with the system text injected as a leading user turn."""
        if not self.system_text:
            return list(self.turns)
        return [ChatMessage(role=ChatRole.USER, content=self.system_text), *self.turns]


def fold_system(
    messages: Sequence[ChatMessage], fixed_prompt: str | None = None
) -> FoldedConversation:
    """
    Pull every system message out of *messages*.

    System texts are joined in order with a blank line, after the optional *fixed_prompt*.  The
    remaining turns keep their order and content.
    """
    system_parts: List[str] = [fixed_prompt] if fixed_prompt else []
    turns: List[ChatMessage] = []
    for msg in messages:
        if msg.role is ChatRole.SYSTEM:
            system_parts.append(msg.content)
        else:
            turns.append(msg)
    system_text = "\n\n".join(system_parts) if system_parts else None
    return FoldedConversation(system_text=system_text, turns=turns)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CLIENT_REGISTRY: Dict[str, Type["ChatClient"]] = {}


def register_chat_client(name: str) -> Callable:
    """Decorator to register a chat client class under *name*."""

    def wrapper(cls: Type["ChatClient"]) -> Type["ChatClient"]:
        _CLIENT_REGISTRY[name] = cls
        cls.provider_name = name
        return cls

    return wrapper


def load_chat_client(name: str, **kwargs: Any) -> "ChatClient":
    """
    Factory that returns an instantiated chat client.

    Raises
    ------
    ValueError
        If no client is registered under *name*.
    """
    cls = _CLIENT_REGISTRY.get(name.lower())
    if cls is None:
        supported = ", ".join(sorted(_CLIENT_REGISTRY))
        raise ValueError(f"Unknown LLM provider '{name}'. Supported: {supported}.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class ChatClient(ABC):
    """Executes role-tagged messages against one LLM backend."""

    provider_name: ClassVar[str] = "base"
    default_model: ClassVar[str] = ""

    def __init__(
        self,
        model: str | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.model = model or self.default_model
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    @abstractmethod
    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        """Return the full reply atomically."""

    @abstractmethod
    def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        """Yield reply fragments in arrival order.  Every call re-issues the request."""

    async def aclose(self) -> None:
        """Release network resources held by the client."""

    def _build_payload(self, folded: FoldedConversation, degraded: bool, **options: Any) -> Any:
        """
        Translate *folded* into the backend request body (degraded: no system channel).

        Only :meth:`_attempt_with_fallback` calls this hook, so adapters that use it must
        override it.  Clients without a system channel to fall back from, such as
        :class:`FallbackChatClient`, leave it alone.
        """
        raise NotImplementedError(f"{type(self).__name__} does not build request payloads")

    async def _attempt_with_fallback(
        self,
        send: Callable[[Any], Awaitable[T]],
        folded: FoldedConversation,
        **options: Any,
    ) -> T:
        """
        Two-attempt policy shared by the blocking and streaming paths.

        *send* is called with the normal payload.  Only when it raises
        :class:`ProviderCompatibilityError` is it called exactly once more with the degraded
        payload; whatever the second attempt raises is surfaced unchanged.
        """
        try:
            return await send(self._build_payload(folded, degraded=False, **options))
        except ProviderCompatibilityError as exc:
            logger.warning(
                "%s rejected the system instruction channel; retrying once without it (%s)",
                self.provider_name,
                exc,
            )
        return await send(self._build_payload(folded, degraded=True, **options))


@register_chat_client("fallback")
class FallbackChatClient(ChatClient):
    """Offline client that answers every request with a fixed explanation."""

    default_model = "fallback"

    def __init__(self, reason: str = "No LLM provider is configured.", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.reason = reason

    @property
    def text(self) -> str:
        return f"[Fallback] {self.reason}"

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        return ChatResponse(text=self.text, finish_reason="STOP")

    async def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        yield self.text
