"""Tests for locator parsing and API URI construction."""

from __future__ import annotations

import pytest

from gcal_provider.locator import (
    DEFAULT_TASKLIST,
    CalendarLocation,
    legacy_feed_address,
)

pytestmark = pytest.mark.unit


class TestParse:
    @pytest.mark.parametrize(
        ("url", "calendar_name", "tasklist_name"),
        [
            (
                "googleapi://sessionId/?calendar=id1%40calendar.google.com&tasks=taskhash",
                "id1@calendar.google.com",
                "taskhash",
            ),
            ("googleapi://sessionId/", "sessionId", DEFAULT_TASKLIST),
            (
                "googleapi://sessionId@group.calendar.google.com/",
                "sessionId@group.calendar.google.com",
                None,
            ),
            (
                "https://www.google.com/calendar/ical/sessionId/private/full",
                "sessionId",
                None,
            ),
            (
                "https://www.google.com/calendar/feeds/user%40example.com/public/full",
                "user@example.com",
                None,
            ),
            ("wat://", None, None),
            ("", None, None),
        ],
    )
    def test_locator_shapes(self, url, calendar_name, tasklist_name):
        location = CalendarLocation.parse(url)
        assert location.calendar_name == calendar_name
        assert location.tasklist_name == tasklist_name

    def test_legacy_feed_of_known_user_gets_default_tasklist(self):
        location = CalendarLocation.parse(
            "https://www.google.com/calendar/feeds/user%40example.com/public/full",
            known_users={"user@example.com"},
        )
        assert location.calendar_name == "user@example.com"
        assert location.tasklist_name == DEFAULT_TASKLIST

    def test_group_calendar_with_explicit_tasks_param(self):
        location = CalendarLocation.parse(
            "googleapi://team@group.calendar.google.com/?tasks=shared"
        )
        assert location.tasklist_name == "shared"

    def test_unresolved_location(self):
        assert not CalendarLocation.parse("wat://").resolved
        assert CalendarLocation.parse("googleapi://sessionId/").resolved

    def test_legacy_feed_address(self):
        assert (
            legacy_feed_address(
                "https://www.google.com/calendar/feeds/user%40example.com/public/full"
            )
            == "user@example.com"
        )
        assert legacy_feed_address("googleapi://sessionId/") is None
        assert legacy_feed_address(None) is None


class TestUris:
    def test_events_uri_encodes_each_segment(self):
        location = CalendarLocation(calendar_name="id1@calendar.google.com")
        assert location.events_uri("part1", "part2") == (
            "https://www.googleapis.com/calendar/v3/calendars/id1%40calendar.google.com/part1/part2"
        )

    def test_tasks_uri(self):
        location = CalendarLocation(tasklist_name="taskhash")
        assert location.tasks_uri("part1", "part2") == (
            "https://www.googleapis.com/tasks/v1/lists/taskhash/part1/part2"
        )

    def test_unresolved_uris_are_none(self):
        location = CalendarLocation()
        assert location.events_uri("part1") is None
        assert location.tasks_uri("part1") is None

    def test_users_uri_always_resolves(self):
        assert CalendarLocation.users_uri("part=1", "part2") == (
            "https://www.googleapis.com/calendar/v3/users/me/part%3D1/part2"
        )
