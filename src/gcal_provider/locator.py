"""Remote collection addresses derived from a calendar's source locator.

Recognized locator shapes:

- ``googleapi://<session>/?calendar=<address>&tasks=<tasklist>``
- ``googleapi://<address>/`` (primary calendar, or a ``@group.calendar...``
  calendar which has no task list)
- legacy feeds ``https://www.google.com/calendar/(feeds|ical)/<address>/...``

Anything else resolves to no address at all, and every URI builder returns
``None`` so callers can short-circuit without touching the network.
"""

from __future__ import annotations

import re
from collections.abc import Container
from dataclasses import dataclass
from urllib.parse import parse_qs, quote, unquote, urlsplit

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_TASKS_API_BASE_URL = "https://www.googleapis.com/tasks/v1"
DEFAULT_TASKLIST = "@default"

_GOOGLEAPI_SCHEME = "googleapi"
_GROUP_CALENDAR_MARKER = "@group.calendar"
_LEGACY_FEED_PATTERN = re.compile(
    r"^https?://www\.google\.com/calendar/(?:feeds|ical)/([^/]+)/"
    r"(?:public|private|free-busy)[^/]*/(?:full|basic)(?:\.ics)?$"
)


def _join(base: str, parts: tuple[str, ...]) -> str:
    return "/".join([base, *(quote(str(part), safe="") for part in parts)])


def legacy_feed_address(url: str | None) -> str | None:
    """Return the decoded account address of a legacy feed locator."""
    if not url:
        return None
    match = _LEGACY_FEED_PATTERN.match(url.strip())
    return unquote(match.group(1)) if match else None


@dataclass(frozen=True)
class CalendarLocation:
    """Resolved calendar and task-list names for one calendar."""

    calendar_name: str | None = None
    tasklist_name: str | None = None

    @classmethod
    def parse(cls, url: str | None, *, known_users: Container[str] = ()) -> CalendarLocation:
        """Parse a source locator.

        *known_users* lists account addresses signed in on this host; a legacy
        feed pointing at one of them is that account's primary calendar and
        therefore also gets the default task list.
        """
        if not url:
            return cls()

        split = urlsplit(url.strip())
        if split.scheme == _GOOGLEAPI_SCHEME:
            return cls._parse_googleapi(split.netloc, split.query)

        calendar_name = legacy_feed_address(url)
        if calendar_name is not None:
            tasklist = DEFAULT_TASKLIST if calendar_name in known_users else None
            return cls(calendar_name=calendar_name, tasklist_name=tasklist)

        return cls()

    @classmethod
    def _parse_googleapi(cls, authority: str, query: str) -> CalendarLocation:
        params = parse_qs(query)
        calendar_param = params.get("calendar", [None])[0]
        tasks_param = params.get("tasks", [None])[0]

        if calendar_param:
            return cls(calendar_name=calendar_param, tasklist_name=tasks_param or None)

        address = unquote(authority)
        if not address:
            return cls()
        if _GROUP_CALENDAR_MARKER in address:
            return cls(calendar_name=address, tasklist_name=tasks_param or None)
        return cls(calendar_name=address, tasklist_name=tasks_param or DEFAULT_TASKLIST)

    @property
    def resolved(self) -> bool:
        return bool(self.calendar_name or self.tasklist_name)

    def events_uri(self, *parts: str) -> str | None:
        if not self.calendar_name:
            return None
        return _join(f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars", (self.calendar_name, *parts))

    def tasks_uri(self, *parts: str) -> str | None:
        if not self.tasklist_name:
            return None
        return _join(f"{GOOGLE_TASKS_API_BASE_URL}/lists", (self.tasklist_name, *parts))

    @staticmethod
    def users_uri(*parts: str) -> str:
        return _join(f"{GOOGLE_CALENDAR_API_BASE_URL}/users/me", parts)
