"""One refresh pass for a calendar: metadata, events, then tasks.

A pass is skipped entirely while the user is idle.  Events are fetched
incrementally with the stored sync token and tasks with the stored
``updatedMin`` floor; both cursors are only persisted once every page of
their collection has been applied.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel

from gcal_provider.config import ProviderConfig
from gcal_provider.core.logging import reset_calendar_context, set_calendar_context
from gcal_provider.errors import StaleSyncTokenError
from gcal_provider.host import IDLE_STATE_ACTIVE, CalendarHost, IdleMonitor, ItemStore
from gcal_provider.items._ical import google_rfc3339
from gcal_provider.items.events import event_to_local, is_instance, merge_instance
from gcal_provider.items.model import LocalItem
from gcal_provider.items.tasks import task_to_local
from gcal_provider.locator import CalendarLocation
from gcal_provider.prefs import EVENT_SYNC_TOKEN_PREF, TASKS_LAST_UPDATED_PREF, CalendarPrefs
from gcal_provider.transport import GoogleSession

logger = logging.getLogger(__name__)

IDLE_SKIP_MESSAGE = "Skipping refresh since user is idle"
SETTINGS_PREF_PREFIX = "settings."
MIRRORED_CALENDAR_SETTINGS = (
    "accessRole",
    "backgroundColor",
    "foregroundColor",
    "description",
    "location",
    "primary",
    "summary",
    "summaryOverride",
    "timeZone",
)
DEFAULT_REMINDERS_SETTING = "defaultReminders"
FREE_BUSY_ROLE = "freeBusyReader"
# Event ids are mapped to iCalendar UIDs with this suffix by Google.
GOOGLE_UID_SUFFIX = "@google.com"


class SyncState(StrEnum):
    IDLE_SKIP = "idle_skip"
    FETCHING_METADATA = "fetching_metadata"
    FETCHING_EVENTS = "fetching_events"
    RETRYING_FULL = "retrying_full"
    FETCHING_TASKS = "fetching_tasks"
    APPLYING = "applying"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class SyncReport(BaseModel):
    """Outcome of one pass."""

    calendar_id: str
    state: SyncState
    full_resync: bool = False
    events_applied: int = 0
    events_removed: int = 0
    tasks_applied: int = 0
    tasks_removed: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncOrchestrator:
    """Runs a refresh pass for one calendar against the host stores."""

    def __init__(
        self,
        *,
        calendar_id: str,
        cache_id: str,
        location: CalendarLocation,
        session: GoogleSession,
        prefs: CalendarPrefs,
        items: ItemStore,
        host: CalendarHost,
        idle: IdleMonitor,
        config: ProviderConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._calendar_id = calendar_id
        self._cache_id = cache_id
        self._location = location
        self._session = session
        self._prefs = prefs
        self._items = items
        self._host = host
        self._idle = idle
        self._config = config
        self._clock = clock
        self._report = SyncReport(calendar_id=calendar_id, state=SyncState.DONE)
        self._master_ids: dict[str, str] = {}
        self._updated_min: datetime | None = None

    @property
    def state(self) -> SyncState:
        return self._report.state

    def _transition(self, state: SyncState) -> None:
        logger.debug("Sync %s: %s -> %s", self._calendar_id, self._report.state, state)
        self._report.state = state

    async def run(self) -> SyncReport:
        """Run one pass.  Transport and decoding failures propagate after
        moving the report to ``FAILED``."""
        self._report = SyncReport(calendar_id=self._calendar_id, state=SyncState.FETCHING_METADATA)
        self._master_ids = {}

        idle_state = await self._idle.query_state(self._config.idle_detection_seconds)
        if idle_state != IDLE_STATE_ACTIVE:
            logger.info(IDLE_SKIP_MESSAGE)
            self._transition(SyncState.IDLE_SKIP)
            return self._report

        tracer = trace.get_tracer("gcal_provider")
        context_token = set_calendar_context(self._calendar_id)
        try:
            with tracer.start_as_current_span("gcal.sync") as span:
                span.set_attribute("calendar.id", self._calendar_id)
                try:
                    await self._run_pass()
                except Exception:
                    self._transition(SyncState.FAILED)
                    logger.exception("Sync of calendar %s failed", self._calendar_id)
                    raise
                span.set_attribute("sync.full_resync", self._report.full_resync)
                span.set_attribute("sync.events_applied", self._report.events_applied)
                span.set_attribute("sync.tasks_applied", self._report.tasks_applied)
        finally:
            reset_calendar_context(context_token)

        self._transition(SyncState.DONE)
        logger.info(
            "Synced calendar %s: events +%d/-%d, tasks +%d/-%d%s",
            self._calendar_id,
            self._report.events_applied,
            self._report.events_removed,
            self._report.tasks_applied,
            self._report.tasks_removed,
            " (full resync)" if self._report.full_resync else "",
        )
        return self._report

    async def _run_pass(self) -> None:
        # A stale tasks floor clears the shared cache; that must precede any fetch.
        self._updated_min = None
        if self._location.tasklist_name:
            self._updated_min = await self._prefs.get_updated_min(now=self._clock())
        if self._location.calendar_name:
            await self._sync_metadata()
            await self._sync_events()
        if self._location.tasklist_name:
            await self._sync_tasks()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def _sync_metadata(self) -> None:
        self._transition(SyncState.FETCHING_METADATA)
        assert self._location.calendar_name is not None
        response = await self._session.request(
            "GET", CalendarLocation.users_uri("calendarList", self._location.calendar_name)
        )
        entry = response.data

        for name in MIRRORED_CALENDAR_SETTINGS:
            if name in entry:
                await self._prefs.set(f"{SETTINGS_PREF_PREFIX}{name}", entry[name])
        if DEFAULT_REMINDERS_SETTING in entry:
            await self._prefs.set(
                f"{SETTINGS_PREF_PREFIX}{DEFAULT_REMINDERS_SETTING}",
                json.dumps(entry[DEFAULT_REMINDERS_SETTING], separators=(",", ":")),
            )

        if entry.get("accessRole") == FREE_BUSY_ROLE:
            logger.info("Calendar %s is free/busy only, marking read-only", self._calendar_id)
            await self._host.update(self._calendar_id, {"read_only": True})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _sync_events(self) -> None:
        self._transition(SyncState.FETCHING_EVENTS)
        sync_token = await self._prefs.get(EVENT_SYNC_TOKEN_PREF)
        if not sync_token:
            self._report.full_resync = True
        try:
            next_sync_token = await self._fetch_events(sync_token or None)
        except StaleSyncTokenError:
            logger.warning(
                "Event sync token for %s expired, clearing cache and resyncing",
                self._calendar_id,
            )
            self._transition(SyncState.RETRYING_FULL)
            self._report.full_resync = True
            await self._prefs.reset_sync_state()
            await self._prefs.clear_cache()
            self._updated_min = None
            self._master_ids = {}
            next_sync_token = await self._fetch_events(None)

        self._transition(SyncState.PERSISTING)
        if next_sync_token:
            await self._prefs.set(EVENT_SYNC_TOKEN_PREF, next_sync_token)

    async def _fetch_events(self, sync_token: str | None) -> str | None:
        url = self._location.events_uri("events")
        assert url is not None
        page_token: str | None = None
        next_sync_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "showDeleted": True,
                "maxResults": self._config.events_page_size,
            }
            if sync_token:
                params["syncToken"] = sync_token
            if page_token:
                params["pageToken"] = page_token

            response = await self._session.request("GET", url, params=params)
            page = response.data
            await self._apply_event_page(page.get("items"))

            if isinstance(page.get("nextSyncToken"), str):
                next_sync_token = page["nextSyncToken"]
            page_token = page.get("nextPageToken") or None
            if page_token is None:
                break
            self._transition(SyncState.FETCHING_EVENTS)
        return next_sync_token

    async def _apply_event_page(self, resources: Any) -> None:
        self._transition(SyncState.APPLYING)
        if not isinstance(resources, list):
            return
        valid = [resource for resource in resources if isinstance(resource, dict)]
        # Masters first so their occurrences in the same page can be merged.
        for resource in valid:
            if not is_instance(resource):
                await self._apply_event(resource)
        for resource in valid:
            if is_instance(resource):
                await self._apply_instance(resource)

    def _event_id_candidates(self, resource: dict[str, Any]) -> list[str]:
        candidates: list[str] = []
        for value in (
            resource.get("iCalUID"),
            resource.get("id"),
            f"{resource.get('id')}{GOOGLE_UID_SUFFIX}" if resource.get("id") else None,
        ):
            if isinstance(value, str) and value and value not in candidates:
                candidates.append(value)
        return candidates

    async def _find_local(self, candidates: list[str]) -> LocalItem | None:
        for candidate in candidates:
            existing = await self._items.get(self._cache_id, candidate)
            if existing is not None:
                return existing
        return None

    async def _apply_event(self, resource: dict[str, Any]) -> None:
        if resource.get("status") == "cancelled":
            existing = await self._find_local(self._event_id_candidates(resource))
            if existing is not None and existing.id is not None:
                await self._items.remove(self._cache_id, existing.id)
                self._report.events_removed += 1
            return

        existing = await self._find_local(self._event_id_candidates(resource))
        item = event_to_local(
            resource,
            default_timezone=self._config.default_timezone,
            exceptions=existing.exceptions() if existing is not None else None,
        )
        if isinstance(resource.get("id"), str) and item.id is not None:
            self._master_ids[resource["id"]] = item.id
        await self._upsert(item, existing)
        self._report.events_applied += 1

    async def _apply_instance(self, resource: dict[str, Any]) -> None:
        master_remote_id = str(resource.get("recurringEventId"))
        candidates = []
        if isinstance(resource.get("iCalUID"), str):
            candidates.append(resource["iCalUID"])
        if master_remote_id in self._master_ids:
            candidates.append(self._master_ids[master_remote_id])
        candidates.extend([f"{master_remote_id}{GOOGLE_UID_SUFFIX}", master_remote_id])

        master = await self._find_local(candidates)
        if master is None:
            logger.warning(
                "Skipping occurrence %s: recurring event %s is not cached",
                resource.get("id"),
                master_remote_id,
            )
            return
        merged = merge_instance(master, resource, default_timezone=self._config.default_timezone)
        await self._items.update(self._cache_id, merged)
        if resource.get("status") == "cancelled":
            self._report.events_removed += 1
        else:
            self._report.events_applied += 1

    async def _upsert(self, item: LocalItem, existing: LocalItem | None) -> None:
        if existing is not None:
            await self._items.update(self._cache_id, item)
        else:
            await self._items.create(self._cache_id, item)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _sync_tasks(self) -> None:
        self._transition(SyncState.FETCHING_TASKS)
        updated_min = self._updated_min
        if updated_min is None:
            self._report.full_resync = True

        url = self._location.tasks_uri("tasks")
        assert url is not None
        started_at = self._clock()
        new_floor: datetime | None = None
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "showDeleted": True,
                "showHidden": True,
                "maxResults": self._config.tasks_page_size,
            }
            if updated_min is not None:
                params["updatedMin"] = google_rfc3339(updated_min)
            if page_token:
                params["pageToken"] = page_token

            response = await self._session.request("GET", url, params=params)
            if new_floor is None:
                new_floor = response.date or started_at
            await self._apply_task_page(response.data.get("items"))

            page_token = response.data.get("nextPageToken") or None
            if page_token is None:
                break
            self._transition(SyncState.FETCHING_TASKS)

        self._transition(SyncState.PERSISTING)
        assert new_floor is not None
        await self._prefs.set(TASKS_LAST_UPDATED_PREF, new_floor.isoformat())

    async def _apply_task_page(self, resources: Any) -> None:
        self._transition(SyncState.APPLYING)
        if not isinstance(resources, list):
            return
        for resource in resources:
            if not isinstance(resource, dict) or not isinstance(resource.get("id"), str):
                continue
            task_id = resource["id"]
            existing = await self._items.get(self._cache_id, task_id)
            if resource.get("deleted") is True:
                if existing is not None:
                    await self._items.remove(self._cache_id, task_id)
                    self._report.tasks_removed += 1
                continue
            await self._upsert(task_to_local(resource), existing)
            self._report.tasks_applied += 1
