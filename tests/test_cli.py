"""Console client against a mocked HTTP transport."""

from typing import (
    Callable,
    List,
)

import httpx
import pytest

from llmchat.client import cli

_RealClient = httpx.Client


@pytest.fixture
def transport(monkeypatch: pytest.MonkeyPatch) -> Callable:
    """Route every ``httpx.Client`` built by the CLI through *handler*."""

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> None:
        def factory(**kwargs):
            return _RealClient(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(cli.httpx, "Client", factory)

    monkeypatch.setattr(cli.time, "sleep", lambda _: None)
    return install


def test_call_api_returns_json(transport: Callable) -> None:
    transport(lambda request: httpx.Response(200, json={"session_id": "abc"}))

    assert cli.call_api("/sessions", {}) == {"session_id": "abc"}


def test_call_api_reports_detail(transport: Callable) -> None:
    transport(lambda request: httpx.Response(502, json={"detail": "Gemini API error 500"}))

    assert cli.call_api("/agent", {"message": "hi"}) == {
        "error": "API error 502: Gemini API error 500"
    }


def test_call_api_retries_connection_errors(transport: Callable) -> None:
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"ok": True})

    transport(handler)

    assert cli.call_api("/sessions", {}) == {"ok": True}
    assert len(attempts) == 3


def test_call_api_gives_up_after_max_retries(transport: Callable) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    transport(handler)

    result = cli.call_api("/sessions", {}, max_retries=2)

    assert result["error"].startswith("Error connecting to API")


def test_stream_reply_prints_and_returns_text(
    transport: Callable, capsys: pytest.CaptureFixture
) -> None:
    transport(lambda request: httpx.Response(200, text="Hello, world!"))

    assert cli.stream_reply("hi", "s1") == "Hello, world!"
    assert "Hello, world!" in capsys.readouterr().out


def test_stream_reply_prints_errors(transport: Callable, capsys: pytest.CaptureFixture) -> None:
    transport(lambda request: httpx.Response(502, json={"detail": "quota"}))

    assert cli.stream_reply("hi", "s1") == ""
    assert "API error 502: quota" in capsys.readouterr().out
