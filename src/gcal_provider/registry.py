"""Per-calendar instances and host event wiring."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from gcal_provider.calendar import GoogleCalendar
from gcal_provider.config import ProviderConfig
from gcal_provider.errors import CalendarNotFoundError, UnsupportedCalendarKindError
from gcal_provider.host import (
    GDATA_CALENDAR_TYPE,
    CalendarHost,
    CalendarRegistration,
    EventBus,
    HookEvent,
    IdleMonitor,
    ItemStore,
    Listener,
    PreferenceStore,
)
from gcal_provider.transport import GoogleSession

logger = logging.getLogger(__name__)

_HOOK_METHODS = {
    HookEvent.INIT: "on_init",
    HookEvent.SYNC: "on_sync",
    HookEvent.RESET_SYNC: "on_reset_sync",
    HookEvent.ITEM_CREATED: "on_item_created",
    HookEvent.ITEM_UPDATED: "on_item_updated",
    HookEvent.ITEM_REMOVED: "on_item_removed",
}


class CalendarRegistry:
    """Creates at most one ``GoogleCalendar`` per host calendar id.

    Every calendar shares the registry's ``GoogleSession``.
    """

    def __init__(
        self,
        *,
        host: CalendarHost,
        items: ItemStore,
        preferences: PreferenceStore,
        idle: IdleMonitor,
        session: GoogleSession,
        config: ProviderConfig | None = None,
    ) -> None:
        self._host = host
        self._items = items
        self._preferences = preferences
        self._idle = idle
        self._session = session
        self._config = config or ProviderConfig()
        self._calendars: dict[str, GoogleCalendar] = {}
        self._lock = asyncio.Lock()

    async def get(self, calendar_id: str) -> GoogleCalendar:
        """Return the calendar for *calendar_id*, creating it on first use.

        Raises
        ------
        CalendarNotFoundError
            If the host has no such calendar.
        UnsupportedCalendarKindError
            If the calendar is not a Google calendar.
        """
        async with self._lock:
            calendar = self._calendars.get(calendar_id)
            if calendar is not None:
                return calendar

            registration = await self._host.get(calendar_id)
            if registration is None:
                raise CalendarNotFoundError(f"Unknown calendar: {calendar_id}")
            if registration.type != GDATA_CALENDAR_TYPE:
                raise UnsupportedCalendarKindError(registration.type)

            calendar = GoogleCalendar(
                registration,
                session=self._session,
                host=self._host,
                items=self._items,
                preferences=self._preferences,
                idle=self._idle,
                config=self._config,
            )
            self._calendars[calendar_id] = calendar
            logger.debug("Created %r", calendar)
            return calendar

    def forget(self, calendar_id: str) -> None:
        self._calendars.pop(calendar_id, None)

    def _listener(self, event: HookEvent) -> Listener:
        method_name = _HOOK_METHODS[event]

        async def _dispatch(registration: CalendarRegistration | str, *args: Any) -> Any:
            calendar_id = registration if isinstance(registration, str) else registration.id
            calendar = await self.get(calendar_id)
            return await getattr(calendar, method_name)(*args)

        return _dispatch

    def init_listeners(self, bus: EventBus) -> None:
        """Subscribe every lifecycle hook on *bus*."""
        for event in _HOOK_METHODS:
            bus.add_listener(event, self._listener(event))
