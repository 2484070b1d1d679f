"""Shared doubles and sample Google payloads for the provider test suite."""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from gcal_provider.config import ProviderConfig
from gcal_provider.host import CalendarRegistration
from gcal_provider.items.model import LocalItem
from gcal_provider.prefs import InMemoryPreferenceStore
from gcal_provider.registry import CalendarRegistry
from gcal_provider.transport import GoogleSession

CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TASKS_API = "https://www.googleapis.com/tasks/v1"
ID1_EVENTS_URL = f"{CALENDAR_API}/calendars/id1%40calendar.google.com/events"
ID1_TASKS_URL = f"{TASKS_API}/lists/taskhash/tasks"
CALENDAR_LIST_URL = f"{CALENDAR_API}/users/me/calendarList"
SERVER_DATE = "Sat, 17 Oct 2026 10:00:00 GMT"

EVENT_ID = "go6ijb0b46hlpbu4eeu92njevo"
EVENT_ETAG = '"2299601498276000"'
TASK_ID = "lqohjsbhqoztdkusnpruvooacn"
TASK_ETAG = '"2128312983238480"'

REGISTRATIONS = {
    "id0": {"id": "id0", "type": "ics", "url": "https://example.com/feed.ics"},
    "id1": {
        "id": "id1",
        "cache_id": "cached-id1",
        "type": "gdata",
        "url": "googleapi://sessionId/?calendar=id1%40calendar.google.com&tasks=taskhash",
    },
    "id2": {
        "id": "id2",
        "cache_id": "cached-id2",
        "type": "gdata",
        "url": "googleapi://sessionId/",
    },
    "id3": {
        "id": "id3",
        "cache_id": "cached-id3",
        "type": "gdata",
        "url": "googleapi://sessionId@group.calendar.google.com/",
    },
    "id4": {
        "id": "id4",
        "cache_id": "cached-id4",
        "type": "gdata",
        "url": "https://www.google.com/calendar/ical/sessionId/private/full",
    },
    "id5": {
        "id": "id5",
        "cache_id": "cached-id5",
        "type": "gdata",
        "url": "https://www.google.com/calendar/feeds/user%40example.com/public/full",
    },
    "id6": {"id": "id6", "cache_id": "cached-id6", "type": "gdata", "url": "wat://"},
}

EVENT_RESOURCE: dict[str, Any] = {
    "kind": "calendar#event",
    "etag": EVENT_ETAG,
    "id": EVENT_ID,
    "status": "confirmed",
    "htmlLink": "https://www.google.com/calendar/event?eid=Z282aWpi",
    "created": "2006-06-08T21:04:52.000Z",
    "updated": "2006-06-08T21:05:49.138Z",
    "summary": "New Event",
    "description": "Description",
    "location": "Hard Drive",
    "organizer": {"email": "organizer@example.com", "displayName": "Eggs P. Seashell"},
    "start": {"dateTime": "2006-06-10T18:00:00+02:00", "timeZone": "Europe/Berlin"},
    "end": {"dateTime": "2006-06-10T20:00:00+02:00", "timeZone": "Europe/Berlin"},
    "iCalUID": f"{EVENT_ID}@google.com",
    "sequence": 1,
    "transparency": "transparent",
    "visibility": "private",
    "recurrence": ["RRULE:FREQ=WEEKLY;COUNT=5"],
    "attendees": [
        {
            "email": "attendee@example.com",
            "displayName": "Attendee",
            "responseStatus": "accepted",
            "optional": True,
        }
    ],
    "reminders": {
        "useDefault": False,
        "overrides": [
            {"method": "email", "minutes": 20},
            {"method": "popup", "minutes": 5},
        ],
    },
    "attachments": [
        {
            "fileUrl": "https://drive.google.com/file/d/abc/view",
            "title": "agenda.pdf",
            "mimeType": "application/pdf",
            "fileId": "abc",
        }
    ],
}

TASK_RESOURCE: dict[str, Any] = {
    "kind": "tasks#task",
    "id": TASK_ID,
    "etag": TASK_ETAG,
    "title": "New Task",
    "updated": "2006-06-08T21:05:49.000Z",
    "selfLink": f"{TASKS_API}/lists/taskhash/tasks/{TASK_ID}",
    "parent": "parentId",
    "position": "00000000000000012312",
    "notes": "description",
    "status": "completed",
    "due": "2006-06-10T18:00:00.000Z",
    "completed": "2006-06-11T18:00:00.000Z",
    "deleted": False,
    "hidden": False,
    "links": [
        {
            "type": "href",
            "description": "filename.pdf",
            "link": "https://example.com/filename.pdf",
        }
    ],
    "webViewLink": "https://example.com/calendar/task?eid=taskhash",
}

CALENDAR_LIST_ENTRY: dict[str, Any] = {
    "kind": "calendar#calendarListEntry",
    "etag": '"123123"',
    "id": "gid1",
    "summary": "calendar1",
    "summaryOverride": "calendar1override",
    "description": "The calendar 1",
    "location": "test",
    "timeZone": "Europe/Berlin",
    "colorId": 17,
    "backgroundColor": "#000000",
    "foregroundColor": "#FFFFFF",
    "hidden": False,
    "selected": False,
    "accessRole": "owner",
    "defaultReminders": [{"method": "popup", "minutes": 120}],
    "primary": True,
    "deleted": False,
}

EVENTS_PAGE: dict[str, Any] = {
    "kind": "calendar#events",
    "etag": '"123123"',
    "summary": "calendar1",
    "timeZone": "Europe/Berlin",
    "accessRole": "owner",
    "nextPageToken": None,
    "nextSyncToken": "nextSyncToken",
    "items": [],
}

TASKS_PAGE: dict[str, Any] = {
    "kind": "tasks#tasks",
    "etag": '"123123"',
    "nextPageToken": None,
    "items": [],
}


def event_resource(**overrides: Any) -> dict[str, Any]:
    resource = copy.deepcopy(EVENT_RESOURCE)
    resource.update(overrides)
    return resource


def task_resource(**overrides: Any) -> dict[str, Any]:
    resource = copy.deepcopy(TASK_RESOURCE)
    resource.update(overrides)
    return resource


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload, headers={"Date": SERVER_DATE})


# ---------------------------------------------------------------------------
# Host doubles
# ---------------------------------------------------------------------------


class FakeHost:
    def __init__(
        self,
        registrations: dict[str, dict[str, Any]] | None = None,
        *,
        items: FakeItemStore | None = None,
    ) -> None:
        self.registrations = {
            key: CalendarRegistration(**value)
            for key, value in (registrations or REGISTRATIONS).items()
        }
        self.get_calls: list[str] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.cleared: list[str] = []
        self.items = items

    async def get(self, calendar_id: str) -> CalendarRegistration | None:
        self.get_calls.append(calendar_id)
        return self.registrations.get(calendar_id)

    async def update(self, calendar_id: str, changes: dict[str, Any]) -> None:
        self.updates.append((calendar_id, changes))

    async def clear(self, cache_id: str) -> None:
        self.cleared.append(cache_id)
        if self.items is not None:
            self.items.drop_cache(cache_id)


class FakeItemStore:
    def __init__(self) -> None:
        self.items: dict[tuple[str, str], LocalItem] = {}
        self.created: list[LocalItem] = []
        self.updated: list[LocalItem] = []
        self.removed: list[str] = []

    async def get(self, cache_id: str, item_id: str) -> LocalItem | None:
        return self.items.get((cache_id, item_id))

    async def create(self, cache_id: str, item: LocalItem) -> None:
        assert item.id is not None
        self.items[(cache_id, item.id)] = item
        self.created.append(item)

    async def update(self, cache_id: str, item: LocalItem) -> None:
        assert item.id is not None
        self.items[(cache_id, item.id)] = item
        self.updated.append(item)

    async def remove(self, cache_id: str, item_id: str) -> None:
        self.items.pop((cache_id, item_id), None)
        self.removed.append(item_id)

    def drop_cache(self, cache_id: str) -> None:
        for key in [key for key in self.items if key[0] == cache_id]:
            del self.items[key]

    def cached_ids(self, cache_id: str) -> set[str]:
        return {item_id for key_cache, item_id in self.items if key_cache == cache_id}


class FakeIdleMonitor:
    def __init__(self, state: str = "active") -> None:
        self.state = state
        self.queries: list[int] = []

    async def query_state(self, detection_interval_seconds: int) -> str:
        self.queries.append(detection_interval_seconds)
        return self.state


class FakeTokenProvider:
    def __init__(self) -> None:
        self.issued = 0
        self.invalidations = 0
        self.force_refreshes = 0

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if force_refresh:
            self.force_refreshes += 1
        if force_refresh or self.issued == 0:
            self.issued += 1
        return f"token-{self.issued}"

    async def invalidate(self) -> None:
        self.invalidations += 1


Responder = Callable[[httpx.Request], httpx.Response]


class Router:
    """``httpx.MockTransport`` handler dispatching on URL prefixes."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[str, Responder]] = []

    def add(self, prefix: str, responder: Responder) -> None:
        self._routes.insert(0, (prefix, responder))

    def reply(self, prefix: str, payload: Any, status_code: int = 200) -> None:
        self.add(prefix, lambda request: json_response(payload, status_code))

    def matching(self, prefix: str) -> list[httpx.Request]:
        return [request for request in self.requests if str(request.url).startswith(prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, responder in self._routes:
            if str(request.url).startswith(prefix):
                return responder(request)
        return httpx.Response(500, json={"error": {"message": f"Unhandled request {request.url}"}})


def make_session(router: Router, token_provider: FakeTokenProvider | None = None) -> GoogleSession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    return GoogleSession(token_provider or FakeTokenProvider(), client, backoff_seconds=0)


class Harness:
    def __init__(self) -> None:
        self.items = FakeItemStore()
        self.host = FakeHost(items=self.items)
        self.preferences = InMemoryPreferenceStore()
        self.idle = FakeIdleMonitor()
        self.router = Router()
        self.tokens = FakeTokenProvider()
        self.session = make_session(self.router, self.tokens)
        self.config = ProviderConfig()
        self.registry = CalendarRegistry(
            host=self.host,
            items=self.items,
            preferences=self.preferences,
            idle=self.idle,
            session=self.session,
            config=self.config,
        )

    def route_sync(self, **calendar_list_overrides: Any) -> None:
        self.router.reply(CALENDAR_LIST_URL, {**CALENDAR_LIST_ENTRY, **calendar_list_overrides})
        self.router.reply(f"{CALENDAR_API}/calendars", EVENTS_PAGE)
        self.router.reply(ID1_TASKS_URL, TASKS_PAGE)


@pytest.fixture
async def harness():
    env = Harness()
    yield env
    await env.session.http_client.aclose()
