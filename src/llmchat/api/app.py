"""
HTTP API for LlmChat.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list every session seen so far.
- **GET /sessions/{id}/messages** - tail of a session transcript.
- **GET /sessions/{id}/facts** - tail of the facts recorded for a session.
- **POST /agent**   - one blocking turn: {"message": "...", "session_id": "..."}
- **POST /agent/stream** - one streaming turn, reply streamed as ``text/plain``.
"""

import logging
import uuid
from contextlib import aclosing
from typing import (
    AsyncIterator,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
    Query,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from llmchat.agent.factory import build_orchestrator
from llmchat.agent.orchestrator import TurnOrchestrator
from llmchat.api.models import (
    FactsResponse,
    MessageRequest,
    MessageResponse,
    SessionResponse,
    TranscriptResponse,
)
from llmchat.common import (
    AnsiColors,
    colored_print,
)
from llmchat.config import settings
from llmchat.providers import ProviderError

logger = logging.getLogger(__name__)

_SECRET_SETTINGS = {
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_CALENDAR_ACCESS_TOKEN",
}


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_orchestrator(request: Request) -> TurnOrchestrator:
    """Return the app's orchestrator, building it from settings on first use."""
    orchestrator: Optional[TurnOrchestrator] = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = build_orchestrator(settings)
        request.app.state.orchestrator = orchestrator
    return orchestrator


def resolve_session(session_id: Optional[str] = None) -> str:
    """Use the caller's session id, or mint a new one."""
    if session_id and session_id.strip():
        return session_id.strip()
    return str(uuid.uuid4())


async def _prefetched(first: str, rest: AsyncIterator[str], session_id: str) -> AsyncIterator[str]:
    """Re-emit an already received first fragment, then the remainder of the stream."""
    if first:
        yield first
    try:
        async with aclosing(rest):
            async for fragment in rest:
                yield fragment
    except ProviderError as exc:
        # Headers are already sent, so the failure is reported as the last line of the body.
        logger.error("Provider failed mid-stream for session %s: %s", session_id, exc)
        yield f"\n[error] {exc}"


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(orchestrator: Optional[TurnOrchestrator] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    orchestrator:
        Turn pipeline to serve.  When omitted it is built from settings on the first request.
    """
    app = FastAPI(title="LlmChat API", version="0.1.0", description="LLM chat orchestrator API")
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[f"http://localhost:{settings.API_PORT}"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session(request: Request) -> SessionResponse:
        """Create a new conversation session."""
        session_id = resolve_session()
        # Touch the store so the session shows up in listings right away.
        await get_orchestrator(request).memory.recent(session_id, 0)
        return SessionResponse(session_id=session_id)

    @app.get("/sessions", response_model=List[str], summary="List sessions")
    async def list_sessions(request: Request) -> List[str]:
        """List every session ID seen so far."""
        return get_orchestrator(request).memory.sessions()

    @app.get(
        "/sessions/{session_id}/messages",
        response_model=TranscriptResponse,
        summary="Session transcript",
    )
    async def session_messages(
        session_id: str, request: Request, limit: int = Query(50, ge=0)
    ) -> TranscriptResponse:
        """Return the last *limit* messages of a session."""
        messages = await get_orchestrator(request).memory.recent(session_id, limit)
        return TranscriptResponse(session_id=session_id, messages=messages)

    @app.get("/sessions/{session_id}/facts", response_model=FactsResponse, summary="Session facts")
    async def session_facts(
        session_id: str, request: Request, limit: int = Query(10, ge=0)
    ) -> FactsResponse:
        """Return the last *limit* facts recorded for a session."""
        facts = await get_orchestrator(request).memory.recent_facts(session_id, limit)
        return FactsResponse(session_id=session_id, facts=facts)

    @app.post("/agent", response_model=MessageResponse, summary="Process a message")
    async def agent_endpoint(req: MessageRequest, request: Request) -> MessageResponse:
        """Run one blocking turn."""
        session_id = resolve_session(req.session_id)
        try:
            result = await get_orchestrator(request).handle(session_id, req.message)
        except ProviderError as exc:
            logger.error("Provider failure for session %s: %s", session_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return MessageResponse(
            reply=result.final_text, tool_calls=result.tool_calls, session_id=session_id
        )

    @app.post("/agent/stream", summary="Process a message, streaming the reply")
    async def agent_stream_endpoint(req: MessageRequest, request: Request) -> StreamingResponse:
        """
        Run one streaming turn.

        The first fragment is awaited before the response starts so that an early provider
        failure can still be reported as a 502.
        """
        session_id = resolve_session(req.session_id)
        fragments = get_orchestrator(request).stream(session_id, req.message)
        try:
            first = await anext(fragments)
        except StopAsyncIteration:
            first = ""
        except ProviderError as exc:
            logger.error("Provider failure for session %s: %s", session_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return StreamingResponse(
            _prefetched(first, fragments, session_id),
            media_type="text/plain; charset=utf-8",
            headers={"X-Session-Id": session_id},
        )

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful during development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path of the library modules
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting LlmChat API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug("API settings: %s", settings.model_dump(exclude=_SECRET_SETTINGS))

    colored_print(f"LlmChat API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "llmchat.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m llmchat.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
