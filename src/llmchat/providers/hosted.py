"""
Chat clients backed by the official OpenAI and Anthropic SDKs.

Both expose a dedicated system channel (a leading ``system`` message for OpenAI, the ``system``
parameter for Anthropic), so they share the folding and the one-shot compatibility retry of
:class:`~llmchat.providers.chat_client.ChatClient`.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Sequence,
)

from llmchat.core.schema import (
    ChatMessage,
    ChatResponse,
    ChatRole,
)
from llmchat.providers.chat_client import (
    ChatClient,
    FoldedConversation,
    ProviderCompatibilityError,
    ProviderError,
    fold_system,
    register_chat_client,
)

logger = logging.getLogger(__name__)

_DEFAULT_MAX_TOKENS = 1024


def _translate_error(exc: Exception, provider: str) -> ProviderError:
    """Map an SDK exception onto the provider error taxonomy."""
    status = getattr(exc, "status_code", None)
    if status is None:
        return ProviderError(f"{provider} request failed: {exc}")
    message = f"{provider} API error {status}: {exc}"
    if 400 <= status < 500 and "system" in str(exc).lower():
        return ProviderCompatibilityError(message, status_code=status)
    return ProviderError(message, status_code=status)


def _turn_dicts(turns: List[ChatMessage]) -> List[Dict[str, str]]:
    return [
        {"role": "assistant" if msg.role is ChatRole.ASSISTANT else "user", "content": msg.content}
        for msg in turns
    ]


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
@register_chat_client("openai")
class OpenAIChatClient(ChatClient):
    """Chat Completions API client."""

    default_model = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        import openai  # pylint: disable=import-outside-toplevel

        super().__init__(model=model, system_prompt=system_prompt, max_tokens=max_tokens)
        self._client = client or openai.AsyncOpenAI(api_key=api_key, timeout=timeout)

    def _build_payload(
        self, folded: FoldedConversation, degraded: bool, **options: Any
    ) -> List[Dict[str, str]]:
        if degraded:
            return _turn_dicts(folded.degraded_turns())
        messages = [{"role": "system", "content": folded.system_text}] if folded.system_text else []
        return messages + _turn_dicts(folded.turns)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        import openai  # pylint: disable=import-outside-toplevel

        folded = fold_system(messages, self.system_prompt)
        extra: Dict[str, Any] = {}
        if max_tokens or self.max_tokens:
            extra["max_tokens"] = max_tokens or self.max_tokens

        async def send(payload: List[Dict[str, str]]) -> ChatResponse:
            try:
                resp = await self._client.chat.completions.create(
                    model=model or self.model, messages=payload, **extra
                )
            except openai.APIError as exc:
                raise _translate_error(exc, "OpenAI") from exc
            if not resp.choices:
                raise ProviderError("OpenAI returned no choices.")
            choice = resp.choices[0]
            return ChatResponse(
                text=choice.message.content or "", finish_reason=choice.finish_reason, raw=resp
            )

        return await self._attempt_with_fallback(send, folded)

    async def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        import openai  # pylint: disable=import-outside-toplevel

        folded = fold_system(messages, self.system_prompt)
        extra: Dict[str, Any] = {}
        if self.max_tokens:
            extra["max_tokens"] = self.max_tokens

        async def send(payload: List[Dict[str, str]]) -> Any:
            try:
                return await self._client.chat.completions.create(
                    model=model or self.model, messages=payload, stream=True, **extra
                )
            except openai.APIError as exc:
                raise _translate_error(exc, "OpenAI") from exc

        chunks = await self._attempt_with_fallback(send, folded)
        try:
            async for chunk in chunks:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.APIError as exc:
            raise _translate_error(exc, "OpenAI") from exc
        finally:
            await chunks.close()

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
@register_chat_client("anthropic")
class AnthropicChatClient(ChatClient):
    """Messages API client."""

    default_model = "claude-3-5-haiku-latest"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        import anthropic  # pylint: disable=import-outside-toplevel

        super().__init__(model=model, system_prompt=system_prompt, max_tokens=max_tokens)
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    def _build_payload(
        self, folded: FoldedConversation, degraded: bool, **options: Any
    ) -> Dict[str, Any]:
        if degraded:
            return {"messages": _turn_dicts(folded.degraded_turns())}
        payload: Dict[str, Any] = {"messages": _turn_dicts(folded.turns)}
        if folded.system_text:
            payload["system"] = folded.system_text
        return payload

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        import anthropic  # pylint: disable=import-outside-toplevel

        folded = fold_system(messages, self.system_prompt)
        limit = max_tokens or self.max_tokens or _DEFAULT_MAX_TOKENS

        async def send(payload: Dict[str, Any]) -> ChatResponse:
            try:
                resp = await self._client.messages.create(
                    model=model or self.model, max_tokens=limit, **payload
                )
            except anthropic.APIError as exc:
                raise _translate_error(exc, "Anthropic") from exc
            texts = [block.text for block in resp.content if block.type == "text"]
            return ChatResponse(
                text=texts[0] if texts else "", finish_reason=resp.stop_reason, raw=resp
            )

        return await self._attempt_with_fallback(send, folded)

    async def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        import anthropic  # pylint: disable=import-outside-toplevel

        folded = fold_system(messages, self.system_prompt)
        limit = self.max_tokens or _DEFAULT_MAX_TOKENS

        async def send(payload: Dict[str, Any]) -> Any:
            try:
                return await self._client.messages.create(
                    model=model or self.model, max_tokens=limit, stream=True, **payload
                )
            except anthropic.APIError as exc:
                raise _translate_error(exc, "Anthropic") from exc

        events = await self._attempt_with_fallback(send, folded)
        try:
            async for event in events:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if event.delta.text:
                        yield event.delta.text
        except anthropic.APIError as exc:
            raise _translate_error(exc, "Anthropic") from exc
        finally:
            await events.close()

    async def aclose(self) -> None:
        await self._client.close()
