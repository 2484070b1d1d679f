"""Sparse PATCH bodies."""

from __future__ import annotations

from typing import Any


def diff_patch(old: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
    """Return the top-level keys whose values differ between *old* and *new*.

    Keys present in *old* but missing from *new* are cleared with ``None``.
    Key order follows *new*, then removed keys in *old* order.
    """
    patch: dict[str, Any] = {}
    for key, value in new.items():
        if key not in old or old[key] != value:
            patch[key] = value
    for key in old:
        if key not in new:
            patch[key] = None
    return patch
