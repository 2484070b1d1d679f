"""Google Calendar event resources <-> VEVENT components."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from icalendar import Alarm, Component, Event

from gcal_provider.items._ical import (
    as_list,
    coerce_zone,
    decoded,
    param,
    parse_google_datetime_optional,
    text,
    zone_name,
)
from gcal_provider.items.model import EVENT_KIND, ItemMetadata, LocalItem

logger = logging.getLogger(__name__)

RECURRENCE_PROPERTIES = ("RRULE", "EXRULE", "RDATE", "EXDATE")
DEFAULT_ALARM_PROPERTY = "X-DEFAULT-ALARM"
GOOGLE_TYPE_PARAM = "X-GOOGLE-TYPE"
GOOGLE_FILEID_PARAM = "X-GOOGLE-FILEID"
EVENT_ATTACHMENT_TYPE = "file"
# Google Calendar accepts at most five reminder overrides per event.
MAX_REMINDER_OVERRIDES = 5

_REMINDER_METHOD_TO_ACTION = {
    "popup": "DISPLAY",
    "email": "EMAIL",
}
_ACTION_TO_REMINDER_METHOD = {
    "DISPLAY": "popup",
    "EMAIL": "email",
}
_VISIBILITY_TO_CLASS = {
    "public": "PUBLIC",
    "private": "PRIVATE",
    "confidential": "CONFIDENTIAL",
}
_CLASS_TO_VISIBILITY = {value: key for key, value in _VISIBILITY_TO_CLASS.items()}
_STATUS_VALUES = {"confirmed", "tentative", "cancelled"}
_RESPONSE_TO_PARTSTAT = {
    "needsAction": "NEEDS-ACTION",
    "declined": "DECLINED",
    "tentative": "TENTATIVE",
    "accepted": "ACCEPTED",
}
_PARTSTAT_TO_RESPONSE = {value: key for key, value in _RESPONSE_TO_PARTSTAT.items()}


def _str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _mailto(address: str) -> str:
    return address if address.lower().startswith("mailto:") else f"mailto:{address}"


def _strip_mailto(value: Any) -> str | None:
    raw = _str(str(value)) if value is not None else None
    if raw is None:
        return None
    return raw[7:] if raw.lower().startswith("mailto:") else raw


# ---------------------------------------------------------------------------
# Remote -> local
# ---------------------------------------------------------------------------


def _boundary_to_local(boundary: Any, default_timezone: str) -> date | datetime | None:
    if not isinstance(boundary, dict):
        return None

    raw_date = _str(boundary.get("date"))
    if raw_date is not None:
        try:
            return date.fromisoformat(raw_date)
        except ValueError:
            logger.debug("Ignoring unparseable event date %r", raw_date)
            return None

    parsed = parse_google_datetime_optional(boundary.get("dateTime"))
    if parsed is None:
        return None
    return parsed.astimezone(coerce_zone(_str(boundary.get("timeZone")), default_timezone))


def _add_recurrence(vevent: Component, lines: Any) -> None:
    if not isinstance(lines, list):
        return
    cleaned = [line.strip() for line in lines if isinstance(line, str) and line.strip()]
    if not cleaned:
        return
    block = "BEGIN:VEVENT\r\n" + "\r\n".join(cleaned) + "\r\nEND:VEVENT\r\n"
    try:
        parsed = Event.from_ical(block)
    except ValueError:
        logger.warning("Ignoring unparseable recurrence lines: %r", cleaned)
        return
    for name in RECURRENCE_PROPERTIES:
        for prop in as_list(parsed.get(name)):
            vevent.add(name, prop)


def _add_people(vevent: Component, resource: dict[str, Any]) -> None:
    organizer = resource.get("organizer")
    if isinstance(organizer, dict) and _str(organizer.get("email")):
        params = {}
        if _str(organizer.get("displayName")):
            params["CN"] = organizer["displayName"].strip()
        vevent.add("organizer", _mailto(organizer["email"].strip()), parameters=params)

    attendees = resource.get("attendees")
    if not isinstance(attendees, list):
        return
    for attendee in attendees:
        if not isinstance(attendee, dict):
            continue
        email = _str(attendee.get("email"))
        if email is None:
            continue
        params = {
            "PARTSTAT": _RESPONSE_TO_PARTSTAT.get(
                str(attendee.get("responseStatus")), "NEEDS-ACTION"
            ),
            "ROLE": "OPT-PARTICIPANT" if attendee.get("optional") else "REQ-PARTICIPANT",
        }
        if _str(attendee.get("displayName")):
            params["CN"] = attendee["displayName"].strip()
        if attendee.get("resource"):
            params["CUTYPE"] = "RESOURCE"
        vevent.add("attendee", _mailto(email), parameters=params)


def _add_alarms(vevent: Component, reminders: Any, summary: str | None) -> None:
    if not isinstance(reminders, dict):
        return
    if reminders.get("useDefault") is True:
        vevent.add(DEFAULT_ALARM_PROPERTY, "TRUE")

    overrides = reminders.get("overrides")
    if not isinstance(overrides, list):
        return
    for override in overrides:
        if not isinstance(override, dict):
            continue
        minutes = override.get("minutes")
        if isinstance(minutes, bool) or not isinstance(minutes, int | float):
            continue
        alarm = Alarm()
        alarm.add(
            "action", _REMINDER_METHOD_TO_ACTION.get(str(override.get("method")), "DISPLAY")
        )
        alarm.add("trigger", timedelta(minutes=-int(minutes)))
        alarm.add("description", summary or "Reminder")
        vevent.add_component(alarm)


def _add_attachments(vevent: Component, attachments: Any) -> None:
    if not isinstance(attachments, list):
        return
    for attachment in attachments:
        if not isinstance(attachment, dict):
            continue
        url = _str(attachment.get("fileUrl"))
        if url is None:
            continue
        params = {GOOGLE_TYPE_PARAM: EVENT_ATTACHMENT_TYPE}
        if _str(attachment.get("title")):
            params["FILENAME"] = attachment["title"].strip()
        if _str(attachment.get("mimeType")):
            params["FMTTYPE"] = attachment["mimeType"].strip()
        if _str(attachment.get("fileId")):
            params[GOOGLE_FILEID_PARAM] = attachment["fileId"].strip()
        vevent.add("attach", url, parameters=params)


def event_component_from_remote(resource: dict[str, Any], *, default_timezone: str) -> Event:
    """Build a VEVENT from a Google event resource.

    Never raises for missing optional fields.
    """
    vevent = Event()
    uid = _str(resource.get("iCalUID")) or _str(resource.get("id"))
    if uid is not None:
        vevent.add("uid", uid)

    summary = _str(resource.get("summary"))
    if summary is not None:
        vevent.add("summary", summary)
    for field, prop in (("description", "description"), ("location", "location")):
        value = resource.get(field)
        if isinstance(value, str) and value:
            vevent.add(prop, value)

    start = _boundary_to_local(resource.get("start"), default_timezone)
    end = _boundary_to_local(resource.get("end"), default_timezone)
    if start is not None:
        vevent.add("dtstart", start)
    if end is not None:
        vevent.add("dtend", end)

    original_start = _boundary_to_local(resource.get("originalStartTime"), default_timezone)
    if original_start is not None:
        vevent.add("recurrence-id", original_start)

    status = _str(resource.get("status"))
    if status is not None and status.lower() in _STATUS_VALUES:
        vevent.add("status", status.upper())

    transparency = _str(resource.get("transparency"))
    if transparency is not None:
        vevent.add("transp", "TRANSPARENT" if transparency == "transparent" else "OPAQUE")

    visibility = _VISIBILITY_TO_CLASS.get(str(resource.get("visibility")))
    if visibility is not None:
        vevent.add("class", visibility)

    sequence = resource.get("sequence")
    if isinstance(sequence, int) and not isinstance(sequence, bool):
        vevent.add("sequence", sequence)

    created = parse_google_datetime_optional(resource.get("created"))
    if created is not None:
        vevent.add("created", created)
    updated = parse_google_datetime_optional(resource.get("updated"))
    if updated is not None:
        vevent.add("last-modified", updated)
        vevent.add("dtstamp", updated)

    html_link = _str(resource.get("htmlLink"))
    if html_link is not None:
        vevent.add("url", html_link)

    _add_recurrence(vevent, resource.get("recurrence"))
    _add_people(vevent, resource)
    _add_alarms(vevent, resource.get("reminders"), summary)
    _add_attachments(vevent, resource.get("attachments"))
    return vevent


def event_to_local(
    resource: dict[str, Any],
    *,
    default_timezone: str = "UTC",
    exceptions: list[Component] | None = None,
) -> LocalItem:
    vevent = event_component_from_remote(resource, default_timezone=default_timezone)
    return LocalItem.from_components(
        EVENT_KIND,
        vevent,
        exceptions=exceptions or (),
        metadata=ItemMetadata(etag=_str(resource.get("etag")), path=_str(resource.get("id"))),
    )


# ---------------------------------------------------------------------------
# Local -> remote
# ---------------------------------------------------------------------------


def _boundary_to_remote(value: date | datetime, default_timezone: str) -> dict[str, str]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return {"dateTime": value.isoformat(), "timeZone": default_timezone}
        body = {"dateTime": value.isoformat()}
        name = zone_name(value)
        if name is not None:
            body["timeZone"] = name
        return body
    return {"date": value.isoformat()}


def _end_value(vevent: Component, start: date | datetime) -> date | datetime:
    end = decoded(vevent, "DTEND")
    if end is not None:
        return end
    duration = decoded(vevent, "DURATION")
    if isinstance(duration, timedelta):
        return start + duration
    if not isinstance(start, datetime):
        return start + timedelta(days=1)
    return start


def _recurrence_to_remote(vevent: Component) -> list[str]:
    lines: list[str] = []
    for name in RECURRENCE_PROPERTIES:
        for prop in as_list(vevent.get(name)):
            value = prop.to_ical().decode("utf-8")
            params = getattr(prop, "params", None)
            rendered = params.to_ical().decode("utf-8") if params else ""
            lines.append(f"{name};{rendered}:{value}" if rendered else f"{name}:{value}")
    return lines


def _attendees_to_remote(vevent: Component) -> list[dict[str, Any]]:
    attendees: list[dict[str, Any]] = []
    for prop in as_list(vevent.get("ATTENDEE")):
        email = _strip_mailto(prop)
        if email is None:
            continue
        attendee: dict[str, Any] = {"email": email}
        name = param(prop, "CN")
        if name:
            attendee["displayName"] = name
        partstat = (param(prop, "PARTSTAT") or "NEEDS-ACTION").upper()
        attendee["responseStatus"] = _PARTSTAT_TO_RESPONSE.get(partstat, "needsAction")
        if (param(prop, "ROLE") or "").upper() == "OPT-PARTICIPANT":
            attendee["optional"] = True
        if (param(prop, "CUTYPE") or "").upper() == "RESOURCE":
            attendee["resource"] = True
        attendees.append(attendee)
    return attendees


def _alarm_minutes(alarm: Component, start: date | datetime | None) -> int | None:
    trigger = decoded(alarm, "TRIGGER")
    if isinstance(trigger, timedelta):
        if (param(alarm.get("TRIGGER"), "RELATED") or "START").upper() == "END":
            return None
        minutes = int(-trigger.total_seconds() // 60)
    elif isinstance(trigger, datetime) and isinstance(start, datetime):
        if (trigger.tzinfo is None) != (start.tzinfo is None):
            return None
        minutes = int((start - trigger).total_seconds() // 60)
    else:
        return None
    return minutes if minutes >= 0 else None


def _reminders_to_remote(vevent: Component, start: date | datetime | None) -> dict[str, Any]:
    if (text(vevent, DEFAULT_ALARM_PROPERTY) or "").upper() == "TRUE":
        return {"useDefault": True}

    overrides: list[dict[str, Any]] = []
    for alarm in vevent.subcomponents:
        if alarm.name != "VALARM":
            continue
        minutes = _alarm_minutes(alarm, start)
        if minutes is None:
            continue
        action = (text(alarm, "ACTION") or "DISPLAY").upper()
        overrides.append(
            {"method": _ACTION_TO_REMINDER_METHOD.get(action, "popup"), "minutes": minutes}
        )
    if len(overrides) > MAX_REMINDER_OVERRIDES:
        logger.warning(
            "Event has %d alarms, only the first %d are sent",
            len(overrides),
            MAX_REMINDER_OVERRIDES,
        )
        overrides = overrides[:MAX_REMINDER_OVERRIDES]
    return {"useDefault": False, "overrides": overrides}


def _attachments_to_remote(vevent: Component) -> list[dict[str, Any]]:
    attachments: list[dict[str, Any]] = []
    for prop in as_list(vevent.get("ATTACH")):
        if (param(prop, "VALUE") or "").upper() == "BINARY":
            continue
        url = _str(str(prop))
        if url is None:
            continue
        attachment: dict[str, Any] = {"fileUrl": url}
        for param_name, key in (
            ("FILENAME", "title"),
            ("FMTTYPE", "mimeType"),
            (GOOGLE_FILEID_PARAM, "fileId"),
        ):
            value = param(prop, param_name)
            if value:
                attachment[key] = value
        attachments.append(attachment)
    return attachments


def event_to_remote(vevent: Component, *, default_timezone: str = "UTC") -> dict[str, Any]:
    """Translate a VEVENT into a complete Google event resource."""
    resource: dict[str, Any] = {}

    uid = text(vevent, "UID")
    if uid is not None:
        resource["iCalUID"] = uid
    for prop, key in (
        ("SUMMARY", "summary"),
        ("DESCRIPTION", "description"),
        ("LOCATION", "location"),
    ):
        value = text(vevent, prop)
        if value is not None:
            resource[key] = value

    start = decoded(vevent, "DTSTART")
    if isinstance(start, date):
        resource["start"] = _boundary_to_remote(start, default_timezone)
        resource["end"] = _boundary_to_remote(_end_value(vevent, start), default_timezone)

    status = text(vevent, "STATUS")
    if status is not None and status.lower() in _STATUS_VALUES:
        resource["status"] = status.lower()

    transp = text(vevent, "TRANSP")
    if transp is not None:
        resource["transparency"] = "transparent" if transp.upper() == "TRANSPARENT" else "opaque"

    visibility = _CLASS_TO_VISIBILITY.get((text(vevent, "CLASS") or "").upper())
    if visibility is not None:
        resource["visibility"] = visibility

    sequence = decoded(vevent, "SEQUENCE")
    if isinstance(sequence, int):
        resource["sequence"] = sequence

    recurrence = _recurrence_to_remote(vevent)
    if recurrence:
        resource["recurrence"] = recurrence

    attendees = _attendees_to_remote(vevent)
    if attendees:
        resource["attendees"] = attendees

    resource["reminders"] = _reminders_to_remote(vevent, start)

    attachments = _attachments_to_remote(vevent)
    if attachments:
        resource["attachments"] = attachments
    return resource


# ---------------------------------------------------------------------------
# Recurring event instances
# ---------------------------------------------------------------------------


def is_instance(resource: dict[str, Any]) -> bool:
    """True for a single occurrence of a recurring event."""
    return _str(resource.get("recurringEventId")) is not None


def merge_instance(
    master: LocalItem, resource: dict[str, Any], *, default_timezone: str = "UTC"
) -> LocalItem:
    """Fold one remote occurrence into *master*.

    A cancelled occurrence becomes an EXDATE on the master; any other
    occurrence replaces the RECURRENCE-ID exception with the same start.
    """
    base = master.component()
    instance = event_component_from_remote(resource, default_timezone=default_timezone)
    recurrence_id = decoded(instance, "RECURRENCE-ID")
    if recurrence_id is None:
        logger.warning(
            "Occurrence %s of %s has no original start, ignoring",
            resource.get("id"),
            master.id,
        )
        return master

    exceptions = [
        component
        for component in master.exceptions()
        if decoded(component, "RECURRENCE-ID") != recurrence_id
    ]
    if str(resource.get("status")) == "cancelled":
        base.add("exdate", recurrence_id)
    else:
        instance.pop("UID", None)
        if master.id is not None:
            instance.add("uid", master.id)
        exceptions.append(instance)
    return LocalItem.from_components(
        EVENT_KIND, base, exceptions=exceptions, metadata=master.metadata
    )
