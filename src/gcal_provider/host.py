"""Contracts between the sync engine and its host application.

The host owns calendar registrations, the local item cache, preferences,
idle detection and credentials. The engine only talks to them through the
protocols defined here.
"""

from __future__ import annotations

import abc
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from gcal_provider.items.model import LocalItem

GDATA_CALENDAR_TYPE = "gdata"
IDLE_STATE_ACTIVE = "active"


class CalendarRegistration(BaseModel):
    """Host-provided calendar record."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    cache_id: str | None = None
    type: str
    url: str = ""
    capabilities: dict[str, Any] = Field(default_factory=dict)
    read_only: bool = False


class CalendarHost(Protocol):
    """Host calendar registry."""

    async def get(self, calendar_id: str) -> CalendarRegistration | None:
        """Return the registration for *calendar_id*, if any."""
        ...

    async def update(self, calendar_id: str, changes: dict[str, Any]) -> None:
        """Apply *changes* (e.g. ``capabilities``, ``read_only``) to a registration."""
        ...

    async def clear(self, cache_id: str) -> None:
        """Drop every cached item for the calendar cache *cache_id*."""
        ...


class ItemStore(Protocol):
    """Host item cache, keyed by calendar cache id."""

    async def get(self, cache_id: str, item_id: str) -> LocalItem | None: ...

    async def create(self, cache_id: str, item: LocalItem) -> None: ...

    async def update(self, cache_id: str, item: LocalItem) -> None: ...

    async def remove(self, cache_id: str, item_id: str) -> None: ...


class PreferenceStore(Protocol):
    """Flat key/value preference storage."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class IdleMonitor(Protocol):
    """Reports whether the user is currently active."""

    async def query_state(self, detection_interval_seconds: int) -> str:
        """Return ``"active"``, ``"idle"``, ``"locked"`` or another host state."""
        ...


class TokenProvider(Protocol):
    """Supplies bearer tokens for the Google APIs."""

    async def get_access_token(self, *, force_refresh: bool = False) -> str: ...

    async def invalidate(self) -> None: ...


class HookEvent(StrEnum):
    """Host events the engine subscribes to."""

    INIT = "init"
    SYNC = "sync"
    RESET_SYNC = "reset_sync"
    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVED = "item_removed"


Listener = Callable[..., Awaitable[Any]]


class EventBus(Protocol):
    """Host event bus.  Listeners receive the registration followed by event args."""

    def add_listener(self, event: HookEvent, listener: Listener) -> None: ...


class ListenerBus:
    """Minimal in-process ``EventBus`` that awaits listeners in registration order."""

    def __init__(self) -> None:
        self._listeners: dict[HookEvent, list[Listener]] = defaultdict(list)

    def add_listener(self, event: HookEvent, listener: Listener) -> None:
        self._listeners[HookEvent(event)].append(listener)

    def has_listener(self, event: HookEvent) -> bool:
        return bool(self._listeners.get(HookEvent(event)))

    async def emit(self, event: HookEvent, *args: Any) -> list[Any]:
        results = []
        for listener in self._listeners.get(HookEvent(event), []):
            results.append(await listener(*args))
        return results


class CalendarHooks(abc.ABC):
    """One coroutine per host event, implemented by each synced calendar."""

    @abc.abstractmethod
    async def on_init(self) -> None:
        """Resolve remote addresses and publish capabilities."""
        ...

    @abc.abstractmethod
    async def on_sync(self) -> Any:
        """Run one sync pass."""
        ...

    @abc.abstractmethod
    async def on_reset_sync(self) -> None:
        """Forget sync cursors and the local cache."""
        ...

    @abc.abstractmethod
    async def on_item_created(self, item: LocalItem) -> LocalItem:
        """Create *item* remotely and return the stored version."""
        ...

    @abc.abstractmethod
    async def on_item_updated(self, item: LocalItem, old_item: LocalItem) -> LocalItem:
        """Patch the remote resource with the changes from *old_item* to *item*."""
        ...

    @abc.abstractmethod
    async def on_item_removed(self, item: LocalItem) -> None:
        """Delete the remote resource backing *item*."""
        ...
