"""Google-backed calendar implementing the host lifecycle hooks."""

from __future__ import annotations

import logging
from typing import Any

from gcal_provider.concurrency import (
    WriteOperation,
    capture_metadata,
    write_headers,
    write_params,
)
from gcal_provider.config import ProviderConfig
from gcal_provider.errors import RequestError, StaleSyncTokenError, UnresolvedAddressError
from gcal_provider.host import (
    CalendarHooks,
    CalendarHost,
    CalendarRegistration,
    IdleMonitor,
    ItemStore,
    PreferenceStore,
)
from gcal_provider.items.model import EVENT_KIND, TASK_KIND, LocalItem
from gcal_provider.items.translator import ensure_kind, to_local, to_remote
from gcal_provider.locator import CalendarLocation, legacy_feed_address
from gcal_provider.prefs import SEND_EVENT_NOTIFICATIONS_SETTING, CalendarPrefs
from gcal_provider.sync import SyncOrchestrator, SyncReport
from gcal_provider.transport import GoogleSession

logger = logging.getLogger(__name__)

ORGANIZER_CAPABILITY = "organizer"
MISSING_RESOURCE_STATUS_CODES = {404, 410}


class GoogleCalendar(CalendarHooks):
    """A host calendar synchronized with one Google calendar and task list."""

    def __init__(
        self,
        registration: CalendarRegistration,
        *,
        session: GoogleSession,
        host: CalendarHost,
        items: ItemStore,
        preferences: PreferenceStore,
        idle: IdleMonitor,
        config: ProviderConfig | None = None,
    ) -> None:
        self._registration = registration
        self._session = session
        self._host = host
        self._items = items
        self._idle = idle
        self._config = config or ProviderConfig()
        self._cache_id = registration.cache_id or registration.id
        self.prefs = CalendarPrefs(
            preferences,
            calendar_id=registration.id,
            cache_id=self._cache_id,
            host=host,
            freshness_days=self._config.tasks_freshness_days,
        )
        self._location: CalendarLocation | None = None

    def __repr__(self) -> str:
        return f"GoogleCalendar(id={self.id!r}, url={self._registration.url!r})"

    @property
    def id(self) -> str:
        return self._registration.id

    @property
    def cache_id(self) -> str:
        return self._cache_id

    @property
    def session(self) -> GoogleSession:
        return self._session

    # ------------------------------------------------------------------
    # Addressing
    # ------------------------------------------------------------------

    async def resolve_location(self) -> CalendarLocation:
        """Parse the registration locator once; later calls reuse the result."""
        if self._location is None:
            known_users: set[str] = set()
            address = legacy_feed_address(self._registration.url)
            if address is not None and await self.prefs.is_known_user(address):
                known_users.add(address)
            self._location = CalendarLocation.parse(
                self._registration.url, known_users=known_users
            )
        return self._location

    @property
    def location(self) -> CalendarLocation:
        return self._location or CalendarLocation()

    @property
    def calendar_name(self) -> str | None:
        return self.location.calendar_name

    @property
    def tasklist_name(self) -> str | None:
        return self.location.tasklist_name

    def events_uri(self, *parts: str) -> str | None:
        return self.location.events_uri(*parts)

    def tasks_uri(self, *parts: str) -> str | None:
        return self.location.tasks_uri(*parts)

    def users_uri(self, *parts: str) -> str:
        return CalendarLocation.users_uri(*parts)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_calendar_pref(self, name: str, default: Any = None) -> Any:
        return await self.prefs.get(name, default)

    async def set_calendar_pref(self, name: str, value: Any) -> None:
        await self.prefs.set(name, value)

    async def _send_notifications(self) -> bool:
        value = await self.prefs.get_setting(
            SEND_EVENT_NOTIFICATIONS_SETTING, self._config.send_event_notifications
        )
        return bool(value)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def on_init(self) -> None:
        location = await self.resolve_location()
        if not location.resolved:
            logger.warning(
                "Calendar %s has an unrecognized locator %r",
                self.id,
                self._registration.url,
            )
            return
        if location.calendar_name:
            capabilities = {
                **self._registration.capabilities,
                ORGANIZER_CAPABILITY: location.calendar_name,
            }
            await self._host.update(self.id, {"capabilities": capabilities})

    async def on_sync(self) -> SyncReport | None:
        location = await self.resolve_location()
        if not location.resolved:
            logger.warning("Not syncing calendar %s: no remote address", self.id)
            return None
        orchestrator = SyncOrchestrator(
            calendar_id=self.id,
            cache_id=self._cache_id,
            location=location,
            session=self._session,
            prefs=self.prefs,
            items=self._items,
            host=self._host,
            idle=self._idle,
            config=self._config,
        )
        return await orchestrator.run()

    async def on_reset_sync(self) -> None:
        logger.info("Resetting sync state of calendar %s", self.id)
        await self.prefs.reset_sync_state()
        await self.prefs.clear_cache()

    async def _collection_uri(self, kind: str, *parts: str) -> str:
        location = await self.resolve_location()
        if kind == EVENT_KIND:
            uri = location.events_uri("events", *parts)
        else:
            uri = location.tasks_uri("tasks", *parts)
        if uri is None:
            raise UnresolvedAddressError(f"Calendar {self.id} has no remote {kind} collection")
        return uri

    @staticmethod
    def _remote_id(item: LocalItem, *fallbacks: LocalItem) -> str:
        for candidate in (item, *fallbacks):
            if candidate.metadata.path:
                return candidate.metadata.path
        raise UnresolvedAddressError(f"Item {item.id!r} has no remote resource id")

    async def _params(self, kind: str) -> dict[str, str]:
        send = await self._send_notifications() if kind == EVENT_KIND else False
        return write_params(kind, send)

    async def on_item_created(self, item: LocalItem) -> LocalItem:
        kind = ensure_kind(item.type)
        url = await self._collection_uri(kind)
        params: dict[str, str] = await self._params(kind)
        if kind == TASK_KIND and item.parent_id:
            params["parent"] = item.parent_id

        response = await self._session.request(
            "POST",
            url,
            params=params or None,
            json_body=to_remote(item, default_timezone=self._config.default_timezone),
            headers=write_headers(item, WriteOperation.CREATE),
        )
        logger.debug("Created %s %s in calendar %s", kind, response.data.get("id"), self.id)
        if not response.data:
            return item
        return to_local(response.data, kind, default_timezone=self._config.default_timezone)

    async def on_item_updated(self, item: LocalItem, old_item: LocalItem) -> LocalItem:
        kind = ensure_kind(item.type)
        remote_id = self._remote_id(old_item, item)
        url = await self._collection_uri(kind, remote_id)

        patch = to_remote(item, old_item, default_timezone=self._config.default_timezone)
        if not patch:
            logger.debug("Item %s unchanged, skipping update", item.id)
            return item

        response = await self._session.request(
            "PATCH",
            url,
            params=await self._params(kind) or None,
            json_body=patch,
            headers=write_headers(old_item, WriteOperation.UPDATE),
        )
        if not response.data:
            return item
        if kind == EVENT_KIND and item.exceptions():
            # The patch only covers the master; keep the local exceptions.
            return capture_metadata(item, response.data)
        return to_local(response.data, kind, default_timezone=self._config.default_timezone)

    async def on_item_removed(self, item: LocalItem) -> None:
        kind = ensure_kind(item.type)
        remote_id = self._remote_id(item)
        url = await self._collection_uri(kind, remote_id)
        try:
            await self._session.request(
                "DELETE",
                url,
                params=await self._params(kind) or None,
                headers=write_headers(item, WriteOperation.DELETE),
            )
        except StaleSyncTokenError:
            logger.info("%s %s was already deleted remotely", kind, remote_id)
        except RequestError as exc:
            if exc.status_code not in MISSING_RESOURCE_STATUS_CODES:
                raise
            logger.info("%s %s was already deleted remotely", kind, remote_id)
