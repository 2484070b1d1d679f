"""Namespaced per-calendar preferences.

Every calendar owns the keys under ``calendars.<id>.``; global provider
settings live under ``settings.`` and signed-in accounts are recorded as
``googleUser.<address>``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from gcal_provider.config import DEFAULT_TASKS_FRESHNESS_DAYS
from gcal_provider.errors import StalePreferenceWindowError
from gcal_provider.host import CalendarHost, PreferenceStore

logger = logging.getLogger(__name__)

CALENDAR_PREF_PREFIX = "calendars."
GLOBAL_SETTINGS_PREFIX = "settings."
GOOGLE_USER_PREFIX = "googleUser."

EVENT_SYNC_TOKEN_PREF = "eventSyncToken"
TASKS_LAST_UPDATED_PREF = "tasksLastUpdated"
SEND_EVENT_NOTIFICATIONS_SETTING = "sendEventNotifications"


class InMemoryPreferenceStore:
    """Dict-backed ``PreferenceStore`` for embedding and tests."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    async def remove(self, key: str) -> None:
        self.values.pop(key, None)


def parse_pref_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 preference value into an aware UTC datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning("Ignoring unparseable timestamp preference: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class CalendarPrefs:
    """Preference accessor scoped to one calendar."""

    def __init__(
        self,
        store: PreferenceStore,
        *,
        calendar_id: str,
        cache_id: str | None,
        host: CalendarHost,
        freshness_days: int = DEFAULT_TASKS_FRESHNESS_DAYS,
    ) -> None:
        self._store = store
        self._calendar_id = calendar_id
        self._cache_id = cache_id
        self._host = host
        self._freshness = timedelta(days=freshness_days)

    def key(self, name: str) -> str:
        return f"{CALENDAR_PREF_PREFIX}{self._calendar_id}.{name}"

    async def get(self, name: str, default: Any = None) -> Any:
        return await self._store.get(self.key(name), default)

    async def set(self, name: str, value: Any) -> None:
        await self._store.set(self.key(name), value)

    async def remove(self, name: str) -> None:
        await self._store.remove(self.key(name))

    async def get_setting(self, name: str, default: Any = None) -> Any:
        """Read a global ``settings.<name>`` value shared by all calendars."""
        return await self._store.get(f"{GLOBAL_SETTINGS_PREFIX}{name}", default)

    async def is_known_user(self, address: str) -> bool:
        return await self._store.get(f"{GOOGLE_USER_PREFIX}{address}") is not None

    async def clear_cache(self) -> None:
        """Drop the host item cache for this calendar."""
        if self._cache_id is None:
            logger.warning("Calendar %s has no cache id; nothing to clear", self._calendar_id)
            return
        await self._host.clear(self._cache_id)

    async def _load_updated_min(self, now: datetime) -> datetime | None:
        updated_min = parse_pref_timestamp(await self.get(TASKS_LAST_UPDATED_PREF))
        if updated_min is not None and now - updated_min > self._freshness:
            raise StalePreferenceWindowError(
                f"Last tasks sync {updated_min.isoformat()} is older than "
                f"{self._freshness.days} days"
            )
        return updated_min

    async def get_updated_min(self, *, now: datetime | None = None) -> datetime | None:
        """Return the stored tasks ``updatedMin`` floor, or ``None`` for a full resync.

        A floor older than the freshness horizon is discarded together with
        the local cache: the remote side no longer guarantees deleted tasks
        are reported that far back.  The cache also holds the events, so the
        event sync token goes too.
        """
        try:
            return await self._load_updated_min(now or datetime.now(UTC))
        except StalePreferenceWindowError as exc:
            logger.info("%s, forcing a full resync", exc)
            await self.reset_sync_state()
            await self.clear_cache()
            return None

    async def reset_sync_state(self) -> None:
        await self.remove(EVENT_SYNC_TOKEN_PREF)
        await self.remove(TASKS_LAST_UPDATED_PREF)
