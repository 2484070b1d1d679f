"""Tests for the GoogleCalendar lifecycle hooks: addressing, init and writes."""

from __future__ import annotations

import json

import httpx
import pytest

from gcal_provider.errors import (
    RequestError,
    UnknownItemKindError,
    UnresolvedAddressError,
    WriteConflictError,
)
from gcal_provider.items import to_local
from tests.conftest import (
    CALENDAR_API,
    EVENT_ETAG,
    EVENT_ID,
    ID1_EVENTS_URL,
    ID1_TASKS_URL,
    TASK_ETAG,
    TASK_ID,
    TASKS_API,
    event_resource,
    task_resource,
)

pytestmark = pytest.mark.unit

EVENT_URL = f"{ID1_EVENTS_URL}/{EVENT_ID}"
TASK_URL = f"{ID1_TASKS_URL}/{TASK_ID}"


def _renamed(item, old: str, new: str):
    return item.model_copy(update={"ical": item.ical.replace(f"SUMMARY:{old}", f"SUMMARY:{new}")})


@pytest.fixture
async def calendar(harness):
    calendar = await harness.registry.get("id1")
    await calendar.on_init()
    return calendar


@pytest.fixture
def event():
    return to_local(event_resource(), "event")


@pytest.fixture
def task():
    return to_local(task_resource(), "task")


# ---------------------------------------------------------------------------
# Addressing
# ---------------------------------------------------------------------------


class TestLocators:
    @pytest.mark.parametrize(
        ("calendar_id", "calendar_name", "tasklist_name"),
        [
            ("id1", "id1@calendar.google.com", "taskhash"),
            ("id2", "sessionId", "@default"),
            ("id3", "sessionId@group.calendar.google.com", None),
            ("id4", "sessionId", None),
            ("id5", "user@example.com", None),
            ("id6", None, None),
        ],
    )
    async def test_resolves_names(self, harness, calendar_id, calendar_name, tasklist_name):
        calendar = await harness.registry.get(calendar_id)
        await calendar.on_init()
        assert calendar.calendar_name == calendar_name
        assert calendar.tasklist_name == tasklist_name

    async def test_known_user_feed_gets_default_tasklist(self, harness):
        harness.preferences.values["googleUser.user@example.com"] = "user@example.com"
        calendar = await harness.registry.get("id5")
        await calendar.on_init()
        assert calendar.calendar_name == "user@example.com"
        assert calendar.tasklist_name == "@default"

    async def test_uris(self, harness):
        calendar = await harness.registry.get("id2")
        await calendar.on_init()
        assert calendar.events_uri("events") == f"{CALENDAR_API}/calendars/sessionId/events"
        assert calendar.tasks_uri("tasks") == f"{TASKS_API}/lists/%40default/tasks"
        assert calendar.users_uri("calendarList", "sessionId") == (
            f"{CALENDAR_API}/users/me/calendarList/sessionId"
        )

    async def test_unresolved_uris_are_none(self, harness):
        calendar = await harness.registry.get("id6")
        await calendar.on_init()
        assert calendar.events_uri("events") is None
        assert calendar.tasks_uri("tasks") is None


class TestInit:
    async def test_publishes_organizer_capability(self, harness, calendar):
        assert harness.host.updates == [
            ("id1", {"capabilities": {"organizer": "id1@calendar.google.com"}})
        ]

    async def test_keeps_existing_capabilities(self, harness):
        harness.host.registrations["id2"] = harness.host.registrations["id2"].model_copy(
            update={"capabilities": {"tasks": True}}
        )
        calendar = await harness.registry.get("id2")
        await calendar.on_init()
        assert harness.host.updates == [
            ("id2", {"capabilities": {"tasks": True, "organizer": "sessionId"}})
        ]

    async def test_unresolved_calendar_is_left_alone(self, harness):
        calendar = await harness.registry.get("id6")
        await calendar.on_init()
        assert harness.host.updates == []


class TestPrefs:
    async def test_calendar_prefs_are_namespaced(self, harness, calendar):
        await calendar.set_calendar_pref("eventSyncToken", "tok")
        assert harness.preferences.values["calendars.id1.eventSyncToken"] == "tok"
        assert await calendar.get_calendar_pref("eventSyncToken") == "tok"
        assert await calendar.get_calendar_pref("missing", "fallback") == "fallback"

    async def test_reset_sync_forgets_cursors_and_cache(self, harness, calendar, task):
        harness.items.items[("cached-id1", TASK_ID)] = task
        await calendar.set_calendar_pref("eventSyncToken", "tok")
        await calendar.set_calendar_pref("tasksLastUpdated", "2026-10-16T10:00:00+00:00")

        await calendar.on_reset_sync()

        assert await calendar.get_calendar_pref("eventSyncToken") is None
        assert await calendar.get_calendar_pref("tasksLastUpdated") is None
        assert harness.host.cleared == ["cached-id1"]
        assert harness.items.cached_ids("cached-id1") == set()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEventWrites:
    async def test_create(self, harness, calendar, event):
        harness.router.reply(ID1_EVENTS_URL, event_resource())

        created = await calendar.on_item_created(event)

        (request,) = harness.router.requests
        assert request.method == "POST"
        assert str(request.url) == ID1_EVENTS_URL
        assert "If-Match" not in request.headers
        body = json.loads(request.content)
        assert body["summary"] == "New Event"
        assert created.id == f"{EVENT_ID}@google.com"
        assert created.metadata.etag == EVENT_ETAG
        assert created.metadata.path == EVENT_ID

    async def test_create_sends_notifications_when_enabled(self, harness, calendar, event):
        harness.preferences.values["settings.sendEventNotifications"] = True
        harness.router.reply(ID1_EVENTS_URL, event_resource())

        await calendar.on_item_created(event)

        (request,) = harness.router.requests
        assert request.url.params["sendUpdates"] == "all"

    async def test_update_sends_sparse_patch(self, harness, calendar, event):
        harness.router.reply(EVENT_URL, event_resource(summary="changed", etag='"new"'))

        updated = await calendar.on_item_updated(_renamed(event, "New Event", "changed"), event)

        (request,) = harness.router.requests
        assert request.method == "PATCH"
        assert str(request.url) == EVENT_URL
        assert request.headers["If-Match"] == EVENT_ETAG
        assert json.loads(request.content) == {"summary": "changed"}
        assert updated.title == "changed"
        assert updated.metadata.etag == '"new"'

    async def test_update_without_etag_matches_any(self, harness, calendar, event):
        harness.router.reply(EVENT_URL, event_resource(summary="changed"))
        old = event.with_metadata(etag=None)

        await calendar.on_item_updated(_renamed(old, "New Event", "changed"), old)

        assert harness.router.requests[0].headers["If-Match"] == "*"

    async def test_unchanged_update_makes_no_request(self, harness, calendar, event):
        assert await calendar.on_item_updated(event, event) is event
        assert harness.router.requests == []

    async def test_update_conflict(self, harness, calendar, event):
        harness.router.reply(EVENT_URL, {"error": {"message": "Precondition Failed"}}, 412)

        with pytest.raises(WriteConflictError) as exc_info:
            await calendar.on_item_updated(_renamed(event, "New Event", "changed"), event)

        assert exc_info.value.status_code == 412

    async def test_delete(self, harness, calendar, event):
        harness.router.add(EVENT_URL, lambda request: httpx.Response(204))

        assert await calendar.on_item_removed(event) is None

        (request,) = harness.router.requests
        assert request.method == "DELETE"
        assert request.headers["If-Match"] == EVENT_ETAG

    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_delete_of_missing_resource_is_tolerated(
        self, harness, calendar, event, status_code
    ):
        harness.router.reply(EVENT_URL, {"error": {"message": "Not Found"}}, status_code)
        await calendar.on_item_removed(event)

    async def test_delete_failure_propagates(self, harness, calendar, event):
        harness.router.reply(EVENT_URL, {"error": {"message": "Backend Error"}}, 500)
        with pytest.raises(RequestError):
            await calendar.on_item_removed(event)

    async def test_delete_without_remote_id(self, harness, calendar, event):
        with pytest.raises(UnresolvedAddressError):
            await calendar.on_item_removed(event.with_metadata(path=None))
        assert harness.router.requests == []


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTaskWrites:
    async def test_create(self, harness, calendar, task):
        harness.router.reply(ID1_TASKS_URL, task_resource())

        created = await calendar.on_item_created(task)

        (request,) = harness.router.requests
        assert request.method == "POST"
        assert request.url.params["parent"] == "parentId"
        assert "sendUpdates" not in request.url.params
        body = json.loads(request.content)
        assert body["title"] == "New Task"
        assert body["links"][0] == {"type": "parent", "link": "parentId"}
        assert created.id == TASK_ID
        assert created.metadata.etag == TASK_ETAG

    async def test_update(self, harness, calendar, task):
        harness.router.reply(TASK_URL, task_resource(title="changed"))

        updated = await calendar.on_item_updated(_renamed(task, "New Task", "changed"), task)

        (request,) = harness.router.requests
        assert request.method == "PATCH"
        assert request.headers["If-Match"] == TASK_ETAG
        assert json.loads(request.content) == {"title": "changed"}
        assert updated.title == "changed"

    async def test_delete(self, harness, calendar, task):
        harness.router.add(TASK_URL, lambda request: httpx.Response(204))

        await calendar.on_item_removed(task)

        (request,) = harness.router.requests
        assert request.method == "DELETE"
        assert str(request.url) == TASK_URL

    async def test_calendar_without_tasklist(self, harness, task):
        calendar = await harness.registry.get("id3")
        await calendar.on_init()

        with pytest.raises(UnresolvedAddressError):
            await calendar.on_item_created(task)
        assert harness.router.requests == []


class TestUnknownKind:
    async def test_create(self, harness, calendar, task):
        with pytest.raises(UnknownItemKindError, match="Unknown item type: wat"):
            await calendar.on_item_created(task.model_copy(update={"type": "wat"}))
        assert harness.router.requests == []

    async def test_remove(self, harness, calendar, task):
        with pytest.raises(UnknownItemKindError, match="Unknown item type: wat"):
            await calendar.on_item_removed(task.model_copy(update={"type": "wat"}))


class TestUnresolvedCalendar:
    async def test_write_hooks_fail_without_network(self, harness, event):
        calendar = await harness.registry.get("id6")
        await calendar.on_init()
        changed = _renamed(event, "New Event", "changed")

        with pytest.raises(UnresolvedAddressError):
            await calendar.on_item_created(event)
        with pytest.raises(UnresolvedAddressError):
            await calendar.on_item_updated(changed, event)
        with pytest.raises(UnresolvedAddressError):
            await calendar.on_item_removed(event)
        assert harness.router.requests == []
