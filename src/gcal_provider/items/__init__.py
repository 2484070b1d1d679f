"""Local items and their translation to Google resources."""

from gcal_provider.items.diff import diff_patch
from gcal_provider.items.model import EVENT_KIND, TASK_KIND, ItemMetadata, LocalItem
from gcal_provider.items.translator import ensure_kind, to_local, to_remote

__all__ = [
    "EVENT_KIND",
    "TASK_KIND",
    "ItemMetadata",
    "LocalItem",
    "diff_patch",
    "ensure_kind",
    "to_local",
    "to_remote",
]
