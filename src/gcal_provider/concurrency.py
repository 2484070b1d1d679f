"""Optimistic concurrency for remote writes.

Updates and deletes are conditional on the etag last seen for the item.
Items that never recorded one fall back to ``If-Match: *``, which still
fails if the resource has since been deleted remotely.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from gcal_provider.items.model import EVENT_KIND, LocalItem

IF_MATCH_HEADER = "If-Match"
IF_MATCH_ANY = "*"
SEND_UPDATES_PARAM = "sendUpdates"
SEND_UPDATES_ALL = "all"


class WriteOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def write_headers(item: LocalItem, operation: WriteOperation | str) -> dict[str, str]:
    if WriteOperation(operation) == WriteOperation.CREATE:
        return {}
    return {IF_MATCH_HEADER: item.metadata.etag or IF_MATCH_ANY}


def write_params(kind: str, send_notifications: bool) -> dict[str, str]:
    """Query parameters for a write.  Tasks have no attendee notifications."""
    if kind == EVENT_KIND and send_notifications:
        return {SEND_UPDATES_PARAM: SEND_UPDATES_ALL}
    return {}


def capture_metadata(item: LocalItem, response: dict[str, Any]) -> LocalItem:
    """Copy the server-assigned ``etag`` and ``id`` onto *item*."""
    changes: dict[str, Any] = {}
    etag = response.get("etag")
    if isinstance(etag, str) and etag:
        changes["etag"] = etag
    remote_id = response.get("id")
    if isinstance(remote_id, str) and remote_id:
        changes["path"] = remote_id
    if not changes:
        return item
    return item.with_metadata(**changes)
