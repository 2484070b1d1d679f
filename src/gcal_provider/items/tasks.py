"""Google Tasks resources <-> VTODO components.

Task timestamps are kept as floating values on the local side; see
``floating_from_remote`` / ``floating_to_remote``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from icalendar import Component, Todo

from gcal_provider.items._ical import (
    as_list,
    decoded,
    floating_from_remote,
    floating_to_remote,
    param,
    text,
)
from gcal_provider.items.model import (
    PARENT_RELTYPE,
    SORTKEY_PROPERTY,
    TASK_KIND,
    ItemMetadata,
    LocalItem,
)

logger = logging.getLogger(__name__)

GOOGLE_TYPE_PARAM = "X-GOOGLE-TYPE"
PARENT_LINK_TYPE = "parent"
POSITION_WIDTH = 20

_STATUS_TO_LOCAL = {
    "completed": "COMPLETED",
    "needsAction": "NEEDS-ACTION",
}


def _str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _parent_from_remote(resource: dict[str, Any]) -> str | None:
    links = resource.get("links")
    if isinstance(links, list):
        for link in links:
            if isinstance(link, dict) and link.get("type") == PARENT_LINK_TYPE:
                parent = _str(link.get("link"))
                if parent is not None:
                    return parent
    return _str(resource.get("parent"))


def _sort_key_from_position(position: Any) -> int | None:
    raw = _str(position)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.debug("Ignoring non-numeric task position %r", raw)
        return None


def task_component_from_remote(resource: dict[str, Any]) -> Todo:
    vtodo = Todo()
    task_id = _str(resource.get("id"))
    if task_id is not None:
        vtodo.add("uid", task_id)

    title = resource.get("title")
    if isinstance(title, str) and title:
        vtodo.add("summary", title)
    notes = resource.get("notes")
    if isinstance(notes, str) and notes:
        vtodo.add("description", notes)

    status = _STATUS_TO_LOCAL.get(str(resource.get("status")))
    if status is not None:
        vtodo.add("status", status)

    for field, prop in (
        ("updated", "last-modified"),
        ("updated", "dtstamp"),
        ("due", "due"),
        ("completed", "completed"),
    ):
        value = floating_from_remote(resource.get(field))
        if value is not None:
            vtodo.add(prop, value)

    web_link = _str(resource.get("webViewLink"))
    if web_link is not None:
        vtodo.add("url", web_link)

    parent = _parent_from_remote(resource)
    if parent is not None:
        vtodo.add("related-to", parent, parameters={"RELTYPE": PARENT_RELTYPE})

    sort_key = _sort_key_from_position(resource.get("position"))
    if sort_key is not None:
        vtodo.add(SORTKEY_PROPERTY, str(sort_key))

    links = resource.get("links")
    if isinstance(links, list):
        for link in links:
            if not isinstance(link, dict) or link.get("type") == PARENT_LINK_TYPE:
                continue
            url = _str(link.get("link"))
            if url is None:
                continue
            params = {}
            if _str(link.get("description")):
                params["FILENAME"] = link["description"].strip()
            if _str(link.get("type")):
                params[GOOGLE_TYPE_PARAM] = link["type"].strip()
            vtodo.add("attach", url, parameters=params)
    return vtodo


def task_to_local(resource: dict[str, Any]) -> LocalItem:
    vtodo = task_component_from_remote(resource)
    return LocalItem.from_components(
        TASK_KIND,
        vtodo,
        metadata=ItemMetadata(etag=_str(resource.get("etag")), path=_str(resource.get("id"))),
    )


def _floating(value: Any) -> str | None:
    if isinstance(value, date | datetime):
        return floating_to_remote(value)
    return None


def task_to_remote(vtodo: Component) -> dict[str, Any]:
    """Translate a VTODO into a Google task resource."""
    resource: dict[str, Any] = {}

    title = text(vtodo, "SUMMARY")
    if title is not None:
        resource["title"] = title
    notes = text(vtodo, "DESCRIPTION")
    if notes is not None:
        resource["notes"] = notes

    status = (text(vtodo, "STATUS") or "").upper()
    resource["status"] = "completed" if status == "COMPLETED" else "needsAction"

    due = _floating(decoded(vtodo, "DUE"))
    if due is not None:
        resource["due"] = due
    completed = _floating(decoded(vtodo, "COMPLETED"))
    if completed is not None:
        resource["completed"] = completed

    raw_sort_key = text(vtodo, SORTKEY_PROPERTY)
    if raw_sort_key is not None and raw_sort_key.lstrip("-").isdigit():
        resource["position"] = str(int(raw_sort_key)).zfill(POSITION_WIDTH)

    links: list[dict[str, str]] = []
    for prop in as_list(vtodo.get("RELATED-TO")):
        if (param(prop, "RELTYPE") or PARENT_RELTYPE).upper() == PARENT_RELTYPE:
            links.append({"type": PARENT_LINK_TYPE, "link": str(prop)})
            break
    for prop in as_list(vtodo.get("ATTACH")):
        if (param(prop, "VALUE") or "").upper() == "BINARY":
            continue
        url = _str(str(prop))
        if url is None:
            continue
        link = {"type": param(prop, GOOGLE_TYPE_PARAM) or "href", "link": url}
        filename = param(prop, "FILENAME")
        if filename:
            link["description"] = filename
        links.append(link)
    if links:
        resource["links"] = links
    return resource
