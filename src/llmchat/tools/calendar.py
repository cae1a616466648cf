"""
Calendar search tool.

The tool itself only parses planner arguments and shapes the answer; fetching events is delegated
to a :class:`CalendarService`.  :class:`GoogleCalendarService` talks to the Google Calendar v3
REST API with an OAuth access token obtained elsewhere.
"""

from __future__ import annotations

import logging
from datetime import (
    datetime,
    timedelta,
)
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
)
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from llmchat.core.schema import ToolResult
from llmchat.tools import Tool

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
_SUMMARY_LINES = 5


class CalendarError(RuntimeError):
    """Raised by a calendar service when the backend rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarService(Protocol):
    """Anything able to list calendar events (Google Calendar ``Event`` resources)."""

    async def search(
        self,
        query: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        max_results: int,
    ) -> List[Mapping[str, Any]]:
        """Return matching events ordered by start time."""


# ---------------------------------------------------------------------------
# Google Calendar REST service
# ---------------------------------------------------------------------------
class GoogleCalendarService:
    """Read-only access to one Google calendar through the v3 REST API."""

    BASE_URL = "https://www.googleapis.com/calendar/v3/"

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not access_token:
            raise ValueError("A Google Calendar access token is required.")
        self._calendar_id = calendar_id
        self._client = client or httpx.AsyncClient(base_url=self.BASE_URL, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    @staticmethod
    def _rfc3339(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.astimezone()  # naive values are local time
        return value.isoformat()

    async def search(
        self,
        query: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        max_results: int,
    ) -> List[Mapping[str, Any]]:
        params: Dict[str, Any] = {
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if query:
            params["q"] = query
        if start:
            params["timeMin"] = self._rfc3339(start)
        if end:
            params["timeMax"] = self._rfc3339(end)

        url = f"calendars/{quote(self._calendar_id, safe='')}/events"
        logger.debug("Calendar request %s params=%s", url, params)
        resp = await self._client.get(url, params=params, headers=self._headers)
        if resp.is_error:
            raise CalendarError(
                f"Google Calendar API error {resp.status_code} {resp.reason_phrase}: {resp.text}",
                status_code=resp.status_code,
            )
        items = resp.json().get("items") or []
        logger.info("Google Calendar returned %d event(s)", len(items))
        return list(items)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------
class CalendarDiagnostics(BaseModel):
    """Outcome of :func:`diagnose_calendar`."""

    token_found: bool = False
    api_access_ok: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.token_found and self.api_access_ok

    def summary(self) -> str:
        if self.ok:
            return "Google Calendar API is working correctly."
        lines = [
            "Google Calendar API diagnostics:",
            f"  Access token found: {'yes' if self.token_found else 'no'}",
            f"  API access: {'yes' if self.api_access_ok else 'no'}",
        ]
        if self.error:
            lines.append(f"  Error: {self.error}")
        return "\n".join(lines)


async def diagnose_calendar(
    access_token: Optional[str],
    calendar_id: str = "primary",
    client: httpx.AsyncClient | None = None,
) -> CalendarDiagnostics:
    """
    Check that calendar search can work with the given credentials.

    The token must be present, then one ``events.list`` call (at most one event, a week either
    side of now) must succeed.  Failures are reported in the result, never raised.
    """
    result = CalendarDiagnostics(token_found=bool(access_token))
    if not result.token_found:
        result.error = "GOOGLE_CALENDAR_ACCESS_TOKEN is not set."
        return result

    service = GoogleCalendarService(access_token, calendar_id=calendar_id, client=client)
    now = datetime.now().astimezone()
    try:
        events = await service.search(None, now - timedelta(days=7), now + timedelta(days=7), 1)
    except (CalendarError, httpx.HTTPError, ValueError) as exc:
        logger.error("Calendar API access check failed: %s", exc)
        result.error = str(exc)
    else:
        result.api_access_ok = True
        logger.info("Calendar API access check passed (%d event(s))", len(events))
    finally:
        if client is None:
            await service.aclose()
    return result


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------
def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Ignoring unparseable date %r", value)
        return None


def _parse_max(value: Any) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_MAX_RESULTS
    return parsed if 1 <= parsed <= 50 else DEFAULT_MAX_RESULTS


def _format_when(slot: Mapping[str, Any] | None) -> Optional[str]:
    if not slot:
        return None
    if slot.get("dateTime"):
        parsed = _parse_datetime(slot["dateTime"])
        return parsed.strftime("%Y-%m-%d %H:%M") if parsed else str(slot["dateTime"])
    return slot.get("date")


def _simplify(event: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "title": event.get("summary"),
        "start": _format_when(event.get("start")),
        "end": _format_when(event.get("end")),
        "location": event.get("location"),
        "link": event.get("htmlLink"),
    }


def _window(start: Optional[datetime], end: Optional[datetime], open_ended: bool) -> str:
    if start and end:
        return f" between {start:%Y-%m-%d} and {end:%Y-%m-%d}"
    if open_ended and start:
        return f" from {start:%Y-%m-%d}"
    if open_ended and end:
        return f" until {end:%Y-%m-%d}"
    return ""


def summarize_events(
    events: List[Dict[str, Any]],
    query: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
) -> str:
    """Build a short human-readable summary of *events*."""
    if not events:
        matching = f" matching '{query}'." if query else "."
        return "No calendar events found" + _window(start, end, open_ended=True) + matching

    header = f"Found {len(events)} event(s)" + _window(start, end, open_ended=False)
    if query:
        header += f" matching '{query}'"
    lines = []
    for event in events[:_SUMMARY_LINES]:
        until = f" - {event['end']}" if event.get("end") else ""
        lines.append(f"- {event['title']} ({event['start']}{until})")
    summary = header + ":\n" + "\n".join(lines)
    if len(events) > _SUMMARY_LINES:
        summary += f"\n…and {len(events) - _SUMMARY_LINES} more"
    return summary


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------
class CalendarSearchTool(Tool):
    """Search primary calendar events by text and time window."""

    name = "google.calendar.search"
    description = "Search primary calendar events by text and time window."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string"},
            "start": {"type": "string", "format": "date-time"},
            "end": {"type": "string", "format": "date-time"},
            "max": {"type": "integer", "minimum": 1, "maximum": 50},
        },
        "additionalProperties": False,
    }
    output_schema = {
        "type": "object",
        "properties": {
            "message": {"type": "string"},
            "events": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "start": {"type": "string"},
                        "end": {"type": "string"},
                        "location": {"type": "string"},
                        "link": {"type": "string"},
                    },
                },
            },
        },
    }

    def __init__(self, service: CalendarService) -> None:
        self._service = service

    async def invoke(self, session_id: str, arguments: Mapping[str, Any]) -> ToolResult:
        logger.info(
            "Calendar search invoked for session %s with parameters: %s", session_id, arguments
        )
        query = str(arguments.get("query") or "").strip() or None
        start = _parse_datetime(arguments.get("start"))
        end = _parse_datetime(arguments.get("end"))
        max_results = _parse_max(arguments.get("max", DEFAULT_MAX_RESULTS))

        try:
            raw_events = await self._service.search(query, start, end, max_results)
        except CalendarError as exc:
            logger.error("Google Calendar rejected the search: %s", exc)
            if exc.status_code == 400:
                return ToolResult(
                    ok=False,
                    error="Google Calendar API returned a Bad Request error. This might be caused "
                    f"by invalid parameters passed to the search. Error details: {exc}",
                )
            return ToolResult(ok=False, error=f"Failed to search Google Calendar: {exc}")
        except httpx.HTTPError as exc:
            logger.error("Network error during calendar search: %s", exc)
            return ToolResult(
                ok=False,
                error="Network error occurred while accessing Google Calendar. Please check your "
                f"internet connection and try again. Error: {exc}",
            )

        events = [_simplify(event) for event in raw_events]
        message = summarize_events(events, query, start, end)
        logger.debug("Calendar tool returning: %s", message)
        return ToolResult(ok=True, data={"message": message, "events": events})
