"""Small helpers around ``icalendar`` components and Google timestamps."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar, Component

logger = logging.getLogger(__name__)

PRODID = "-//gcal-provider//Google Calendar sync//EN"


def new_calendar() -> Calendar:
    calendar = Calendar()
    calendar.add("prodid", PRODID)
    calendar.add("version", "2.0")
    return calendar


def as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def text(component: Component, name: str) -> str | None:
    """Return the first value of *name* as a plain string, or ``None``."""
    values = as_list(component.get(name))
    if not values:
        return None
    value = str(values[0])
    return value if value != "" else None


def decoded(component: Component, name: str) -> Any:
    """Return the decoded Python value of *name*, or ``None`` when absent."""
    if name not in component:
        return None
    try:
        return component.decoded(name)
    except (KeyError, ValueError):
        logger.debug("Ignoring undecodable %s property", name, exc_info=True)
        return None


def param(prop: Any, name: str) -> str | None:
    params = getattr(prop, "params", None)
    if not params:
        return None
    value = params.get(name)
    return str(value) if value is not None else None


def coerce_zone(name: str | None, fallback: str = "UTC") -> tzinfo:
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r", candidate)
    return UTC


def zone_name(value: datetime) -> str | None:
    """IANA name for an aware datetime's zone, when one can be determined."""
    tz = value.tzinfo
    if tz is None:
        return None
    key = getattr(tz, "key", None) or getattr(tz, "zone", None)
    if isinstance(key, str) and key:
        return key
    if value.utcoffset() == timedelta(0):
        return "UTC"
    return None


def parse_google_datetime(value: str) -> datetime:
    """Parse an RFC 3339 timestamp; naive results are assumed UTC."""
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_google_datetime_optional(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return parse_google_datetime(value)
    except ValueError:
        logger.debug("Ignoring unparseable timestamp %r", value)
        return None


def google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


# Google Tasks timestamps are zoned, but the local store keeps them as
# floating wall-clock values in UTC.  The two helpers below are exact
# inverses for any value that went through ``floating_from_remote``.


def floating_from_remote(value: Any) -> datetime | None:
    parsed = parse_google_datetime_optional(value)
    if parsed is None:
        return None
    return parsed.astimezone(UTC).replace(tzinfo=None)


def floating_to_remote(value: date | datetime) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
    else:
        value = datetime(value.year, value.month, value.day)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
