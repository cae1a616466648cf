"""
Google Gemini adapter over the Generative Language REST API.

System messages are folded into ``systemInstruction``.  Some deployments reject that field; the
shared two-attempt policy then resends the conversation once with the system text as the first
user turn.
"""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import httpx

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

_SYSTEM_FIELD = "systeminstruction"


def _first_candidate(payload: Mapping[str, Any]) -> Tuple[List[str], Optional[str]]:
    """
    Text parts and finish reason of the first candidate.

    Raises
    ------
    ProviderError
        If *payload* does not have the shape of a ``GenerateContentResponse``.
    """
    try:
        candidates = payload.get("candidates") or []
        if not candidates:
            return [], None
        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        texts = [part["text"] for part in parts if part.get("text")]
        if not all(isinstance(text, str) for text in texts):
            raise TypeError("text part is not a string")
        return texts, first.get("finishReason")
    except (AttributeError, KeyError, TypeError, IndexError) as exc:
        raise ProviderError(f"Gemini returned an unparseable body: {exc!r}") from exc


@register_chat_client("gemini")
class GeminiChatClient(ChatClient):
    """Chat client for ``generateContent`` / ``streamGenerateContent``."""

    default_model = "gemini-2.0-flash"
    BASE_URL = "https://generativelanguage.googleapis.com/"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        debug_http: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Gemini API key not set.")
        super().__init__(model=model, system_prompt=system_prompt, max_tokens=max_tokens)
        self.debug_http = debug_http
        self._client = client or httpx.AsyncClient(
            base_url=base_url or self.BASE_URL, timeout=timeout
        )
        self._headers = {"x-goog-api-key": api_key, "Accept": "application/json"}

    # ------------------------------------------------------------------ #
    # Request / response mapping
    # ------------------------------------------------------------------ #
    @staticmethod
    def _content(msg: ChatMessage) -> Dict[str, Any]:
        role = "model" if msg.role is ChatRole.ASSISTANT else "user"
        return {"role": role, "parts": [{"text": msg.content}]}

    def _build_payload(
        self, folded: FoldedConversation, degraded: bool, **options: Any
    ) -> Dict[str, Any]:
        turns = folded.degraded_turns() if degraded else folded.turns
        payload: Dict[str, Any] = {"contents": [self._content(msg) for msg in turns]}
        if folded.system_text and not degraded:
            payload["systemInstruction"] = {"parts": [{"text": folded.system_text}]}
        if options.get("max_tokens"):
            payload["generationConfig"] = {"maxOutputTokens": options["max_tokens"]}
        return payload

    def _raise_for_status(self, resp: httpx.Response, payload: Mapping[str, Any]) -> None:
        if not resp.is_error:
            return
        body = resp.text
        message = f"Gemini API error {resp.status_code} {resp.reason_phrase}: {body}"
        if self.debug_http:
            message += f"\nRequest JSON: {json.dumps(payload, ensure_ascii=False)}"
        if resp.is_client_error and _SYSTEM_FIELD in body.lower():
            raise ProviderCompatibilityError(message, status_code=resp.status_code)
        raise ProviderError(message, status_code=resp.status_code)

    @staticmethod
    def _parse_response(resp: httpx.Response) -> ChatResponse:
        if not resp.content:
            raise ProviderError("Gemini returned an empty body.", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(
                f"Gemini returned an unparseable body: {exc}", status_code=resp.status_code
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError("Empty Gemini response.", status_code=resp.status_code)

        texts, finish = _first_candidate(data)
        return ChatResponse(text=texts[0] if texts else "", finish_reason=finish, raw=data)

    @staticmethod
    def _parse_event(line: str) -> List[str]:
        line = line.strip()
        if not line.startswith("data:"):
            return []
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            return []
        try:
            event = json.loads(data)
        except ValueError as exc:
            raise ProviderError(f"Gemini sent an unparseable stream event: {data}") from exc
        if not isinstance(event, dict):
            raise ProviderError(f"Gemini sent an unparseable stream event: {data}")
        texts, _ = _first_candidate(event)
        return texts

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        folded = fold_system(messages, self.system_prompt)
        endpoint = f"v1/models/{model or self.model}:generateContent"

        async def send(payload: Dict[str, Any]) -> ChatResponse:
            try:
                resp = await self._client.post(endpoint, json=payload, headers=self._headers)
            except httpx.HTTPError as exc:
                raise ProviderError(f"Gemini request failed: {exc}") from exc
            self._raise_for_status(resp, payload)
            return self._parse_response(resp)

        response = await self._attempt_with_fallback(
            send, folded, max_tokens=max_tokens or self.max_tokens
        )
        logger.debug("Gemini finish reason: %s", response.finish_reason)
        return response

    async def stream(
        self, messages: Sequence[ChatMessage], model: str | None = None
    ) -> AsyncIterator[str]:
        folded = fold_system(messages, self.system_prompt)
        endpoint = f"v1/models/{model or self.model}:streamGenerateContent"
        headers = {**self._headers, "Accept": "text/event-stream"}

        async def send(payload: Dict[str, Any]) -> httpx.Response:
            request = self._client.build_request(
                "POST", endpoint, params={"alt": "sse"}, json=payload, headers=headers
            )
            try:
                resp = await self._client.send(request, stream=True)
            except httpx.HTTPError as exc:
                raise ProviderError(f"Gemini request failed: {exc}") from exc
            if resp.is_error:
                await resp.aread()
                await resp.aclose()
                self._raise_for_status(resp, payload)
            return resp

        resp = await self._attempt_with_fallback(send, folded, max_tokens=self.max_tokens)
        try:
            async for line in resp.aiter_lines():
                for fragment in self._parse_event(line):
                    yield fragment
        except httpx.HTTPError as exc:
            raise ProviderError(f"Gemini stream interrupted: {exc}") from exc
        finally:
            await resp.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
