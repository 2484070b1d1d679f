"""Kind dispatch between local items and Google resources."""

from __future__ import annotations

from typing import Any

from gcal_provider.errors import UnknownItemKindError
from gcal_provider.items.diff import diff_patch
from gcal_provider.items.events import event_to_local, event_to_remote
from gcal_provider.items.model import EVENT_KIND, ITEM_KINDS, LocalItem
from gcal_provider.items.tasks import task_to_local, task_to_remote


def ensure_kind(kind: str | None) -> str:
    if kind not in ITEM_KINDS:
        raise UnknownItemKindError(kind)
    return kind


def _resource(item: LocalItem, default_timezone: str) -> dict[str, Any]:
    if ensure_kind(item.type) == EVENT_KIND:
        return event_to_remote(item.component(), default_timezone=default_timezone)
    return task_to_remote(item.component())


def to_remote(
    item: LocalItem,
    previous: LocalItem | None = None,
    *,
    default_timezone: str = "UTC",
) -> dict[str, Any]:
    """Translate *item* into a request body.

    Without *previous* the full resource is returned (for inserts). With it,
    only the fields that changed are returned, suitable for PATCH.
    """
    resource = _resource(item, default_timezone)
    if previous is None:
        return resource
    return diff_patch(_resource(previous, default_timezone), resource)


def to_local(resource: dict[str, Any], kind: str, *, default_timezone: str = "UTC") -> LocalItem:
    if ensure_kind(kind) == EVENT_KIND:
        return event_to_local(resource, default_timezone=default_timezone)
    return task_to_local(resource)
