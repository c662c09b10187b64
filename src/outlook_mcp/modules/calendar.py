"""Outlook calendar operations over the process bridge.

This module defines:
- ``CalendarEvent`` / ``CalendarEventUpdate`` / ``DeleteResult``: typed
  shapes validated at the bridge boundary
- ``OutlookCalendarClient``: the six calendar operations, each mapping typed
  inputs onto the script's fixed parameter names
- ``CalendarModule``: registers the ``outlook_*`` MCP tools
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any, TypeVar

from fastmcp.exceptions import ToolError
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from outlook_mcp.core.bridge import BridgeFailed, ProcessBridge
from outlook_mcp.core.params import LIST_DELIMITER, join_list
from outlook_mcp.core.telemetry import tool_span
from outlook_mcp.modules.base import Module

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CalendarAction(StrEnum):
    """Actions understood by the calendar script's ``-Action`` parameter."""

    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SEARCH = "search"


class CalendarOperationError(RuntimeError):
    """Raised when a calendar operation fails for any reason.

    Spawn, exit-status, output-parse and script-reported failures all arrive
    here as a single message; no structured error code is available.
    """

    def __init__(self, action: str, message: str) -> None:
        self.action = action
        self.message = message
        super().__init__(message)


class CalendarPayloadError(CalendarOperationError):
    """Raised when the script's output parsed but has the wrong shape."""


class CalendarEvent(BaseModel):
    """A calendar event as exchanged with the script.

    Wire names are camelCase (``isAllDay``). Fields the script adds beyond
    these are kept as extras.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    id: str | None = None
    subject: str
    start: str
    end: str
    body: str | None = None
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    is_all_day: bool = False

    @field_validator("attendees", mode="before")
    @classmethod
    def _split_attendees(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(LIST_DELIMITER) if part.strip()]
        return value


class CalendarEventUpdate(BaseModel):
    """Fields that may be changed on an existing event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    subject: str | None = None
    start: str | None = None
    end: str | None = None
    body: str | None = None
    location: str | None = None


class DeleteResult(BaseModel):
    """Status record returned by the ``delete`` action."""

    model_config = ConfigDict(frozen=True, extra="allow")

    success: bool
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _null_message(cls, value: Any) -> Any:
        return "" if value is None else value


_EVENT_LIST_ADAPTER: TypeAdapter[list[CalendarEvent]] = TypeAdapter(list[CalendarEvent])
_EVENT_ADAPTER: TypeAdapter[CalendarEvent] = TypeAdapter(CalendarEvent)
_DELETE_ADAPTER: TypeAdapter[DeleteResult] = TypeAdapter(DeleteResult)


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")
    return value


def _as_event_list(payload: Any) -> Any:
    # ConvertTo-Json emits a lone object for one-element arrays.
    if payload is None or payload == {}:
        return []
    if isinstance(payload, Mapping):
        return [payload]
    return payload


def _summarize_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return f"{exc.error_count()} validation error(s), first at {location}: {first.get('msg')}"


class OutlookCalendarClient:
    """Typed calendar operations on top of :class:`ProcessBridge`.

    Every method raises :class:`CalendarOperationError` when the bridge
    reports failure, and :class:`ValueError` for blank required inputs
    before any process is started.
    """

    def __init__(self, bridge: ProcessBridge | None = None) -> None:
        self._bridge = bridge or ProcessBridge()

    @property
    def bridge(self) -> ProcessBridge:
        return self._bridge

    async def _call(
        self,
        action: CalendarAction,
        parameters: dict[str, Any],
        adapter: TypeAdapter[T],
        *,
        as_list: bool = False,
    ) -> T:
        result = await self._bridge.execute(action.value, parameters)
        if isinstance(result, BridgeFailed):
            raise CalendarOperationError(action.value, result.message)

        payload = _as_event_list(result.payload) if as_list else result.payload
        try:
            return adapter.validate_python(payload)
        except ValidationError as exc:
            logger.warning("Unexpected %s payload from calendar script: %s", action.value, exc)
            raise CalendarPayloadError(
                action.value,
                f"unexpected {action.value} payload: {_summarize_validation_error(exc)}",
            ) from exc

    async def list_events(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[CalendarEvent]:
        """List events, optionally bounded by ISO-8601 start/end dates."""
        params: dict[str, Any] = {}
        if start_date:
            params["StartDate"] = start_date
        if end_date:
            params["EndDate"] = end_date
        return await self._call(CalendarAction.LIST, params, _EVENT_LIST_ADAPTER, as_list=True)

    async def get_event(self, event_id: str) -> CalendarEvent:
        params = {"EventId": _require_text(event_id, "event_id")}
        return await self._call(CalendarAction.GET, params, _EVENT_ADAPTER)

    async def create_event(self, event: CalendarEvent) -> CalendarEvent:
        """Create *event* and return the stored event (with its id)."""
        params: dict[str, Any] = {
            "Subject": _require_text(event.subject, "subject"),
            "StartDate": _require_text(event.start, "start"),
            "EndDate": _require_text(event.end, "end"),
        }
        if event.body:
            params["Body"] = event.body
        if event.location:
            params["Location"] = event.location
        attendees = join_list(event.attendees)
        if attendees:
            params["Attendees"] = attendees
        if event.is_all_day:
            params["IsAllDay"] = True
        return await self._call(CalendarAction.CREATE, params, _EVENT_ADAPTER)

    async def update_event(
        self, event_id: str, updates: CalendarEventUpdate | None = None
    ) -> CalendarEvent:
        """Apply the non-empty fields of *updates* to an existing event."""
        params: dict[str, Any] = {"EventId": _require_text(event_id, "event_id")}
        if updates is not None:
            if updates.subject:
                params["Subject"] = updates.subject
            if updates.start:
                params["StartDate"] = updates.start
            if updates.end:
                params["EndDate"] = updates.end
            if updates.body:
                params["Body"] = updates.body
            if updates.location:
                params["Location"] = updates.location
        return await self._call(CalendarAction.UPDATE, params, _EVENT_ADAPTER)

    async def delete_event(self, event_id: str) -> DeleteResult:
        params = {"EventId": _require_text(event_id, "event_id")}
        return await self._call(CalendarAction.DELETE, params, _DELETE_ADAPTER)

    async def search_events(self, query: str) -> list[CalendarEvent]:
        """Search events by text (the script matches subject and body)."""
        params = {"Query": _require_text(query, "query")}
        return await self._call(CalendarAction.SEARCH, params, _EVENT_LIST_ADAPTER, as_list=True)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class CalendarModule(Module):
    """Registers the ``outlook_*`` calendar tools.

    Tool failures surface as MCP error results carrying ``Error: <message>``;
    the server keeps serving after any single failure.
    """

    def __init__(self, client: OutlookCalendarClient | None = None) -> None:
        self._client = client or OutlookCalendarClient()

    @property
    def name(self) -> str:
        return "calendar"

    @property
    def client(self) -> OutlookCalendarClient:
        return self._client

    async def register_tools(self, mcp: Any) -> None:
        client = self._client

        async def _run(tool_name: str, operation: Any) -> Any:
            with tool_span(tool_name):
                try:
                    return await operation
                except (CalendarOperationError, ValueError) as exc:
                    logger.warning("%s failed: %s", tool_name, exc)
                    raise ToolError(f"Error: {exc}") from exc

        @mcp.tool()
        async def outlook_list_events(
            startDate: str | None = None,  # noqa: N803
            endDate: str | None = None,  # noqa: N803
        ) -> list[dict[str, Any]]:
            """List calendar events from Outlook.

            Optionally filter by date range (ISO 8601 format: YYYY-MM-DDTHH:mm:ss).
            """
            events = await _run("outlook_list_events", client.list_events(startDate, endDate))
            return [_dump(event) for event in events]

        @mcp.tool()
        async def outlook_get_event(eventId: str) -> dict[str, Any]:  # noqa: N803
            """Get details of a specific calendar event by its EntryID."""
            event = await _run("outlook_get_event", client.get_event(eventId))
            return _dump(event)

        @mcp.tool()
        async def outlook_create_event(
            subject: str,
            start: str,
            end: str,
            body: str | None = None,
            location: str | None = None,
            attendees: list[str] | None = None,
            isAllDay: bool = False,  # noqa: N803
        ) -> dict[str, Any]:
            """Create a new calendar event in Outlook.

            ``start`` and ``end`` are ISO 8601 date/times; ``attendees`` is a
            list of email addresses.
            """
            try:
                event = CalendarEvent(
                    subject=subject,
                    start=start,
                    end=end,
                    body=body,
                    location=location,
                    attendees=attendees or [],
                    is_all_day=isAllDay,
                )
            except ValidationError as exc:
                raise ToolError(f"Error: {_summarize_validation_error(exc)}") from exc
            created = await _run("outlook_create_event", client.create_event(event))
            return _dump(created)

        @mcp.tool()
        async def outlook_update_event(
            eventId: str,  # noqa: N803
            subject: str | None = None,
            start: str | None = None,
            end: str | None = None,
            body: str | None = None,
            location: str | None = None,
        ) -> dict[str, Any]:
            """Update an existing calendar event; omitted fields are left unchanged."""
            updates = CalendarEventUpdate(
                subject=subject, start=start, end=end, body=body, location=location
            )
            updated = await _run("outlook_update_event", client.update_event(eventId, updates))
            return _dump(updated)

        @mcp.tool()
        async def outlook_delete_event(eventId: str) -> dict[str, Any]:  # noqa: N803
            """Delete a calendar event from Outlook."""
            result = await _run("outlook_delete_event", client.delete_event(eventId))
            return _dump(result)

        @mcp.tool()
        async def outlook_search_events(query: str) -> list[dict[str, Any]]:
            """Search calendar events by query string (searches in subject and body)."""
            events = await _run("outlook_search_events", client.search_events(query))
            return [_dump(event) for event in events]

    async def on_startup(self, config: Any) -> None:
        for problem in self._client.bridge.check_environment():
            logger.warning("Calendar bridge check: %s", problem)

    async def on_shutdown(self) -> None:
        # Children are per-call and reaped before each call returns.
        logger.debug("Calendar module shut down")
