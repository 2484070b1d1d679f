"""Local item representation exchanged with the host item store."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from icalendar import Calendar, Component
from pydantic import BaseModel, ConfigDict, Field

from gcal_provider.items._ical import as_list, decoded, new_calendar, param, text

EVENT_KIND = "event"
TASK_KIND = "task"
ITEM_KINDS = (EVENT_KIND, TASK_KIND)

COMPONENT_NAMES = {
    EVENT_KIND: "VEVENT",
    TASK_KIND: "VTODO",
}

PARENT_RELTYPE = "PARENT"
SORTKEY_PROPERTY = "X-GOOGLE-SORTKEY"


class ItemMetadata(BaseModel):
    """Remote bookkeeping attached to a local item."""

    model_config = ConfigDict(extra="allow")

    etag: str | None = None
    path: str | None = None


class LocalItem(BaseModel):
    """One event or task as held by the host store.

    ``ical`` is a serialized VCALENDAR holding the item's main component and,
    for recurring events, its RECURRENCE-ID exceptions.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    type: str
    title: str | None = None
    metadata: ItemMetadata = Field(default_factory=ItemMetadata)
    ical: str

    @classmethod
    def from_components(
        cls,
        kind: str,
        master: Component,
        *,
        exceptions: Iterable[Component] = (),
        metadata: ItemMetadata | None = None,
    ) -> LocalItem:
        calendar = new_calendar()
        calendar.add_component(master)
        for exception in exceptions:
            calendar.add_component(exception)
        return cls(
            id=text(master, "UID"),
            type=kind,
            title=text(master, "SUMMARY"),
            metadata=metadata or ItemMetadata(),
            ical=calendar.to_ical().decode("utf-8"),
        )

    def calendar(self) -> Calendar:
        return Calendar.from_ical(self.ical)

    def _components(self) -> list[Component]:
        name = COMPONENT_NAMES.get(self.type)
        return [
            component
            for component in self.calendar().subcomponents
            if name is not None and component.name == name
        ]

    def component(self) -> Component:
        """Return the main component (the one without a RECURRENCE-ID)."""
        components = self._components()
        for component in components:
            if "RECURRENCE-ID" not in component:
                return component
        if components:
            return components[0]
        raise ValueError(f"Item {self.id!r} has no {COMPONENT_NAMES.get(self.type)} component")

    def exceptions(self) -> list[Component]:
        return [component for component in self._components() if "RECURRENCE-ID" in component]

    def with_metadata(self, **changes: Any) -> LocalItem:
        metadata = self.metadata.model_copy(update=changes)
        return self.model_copy(update={"metadata": metadata})

    @property
    def due(self) -> date | datetime | None:
        return decoded(self.component(), "DUE")

    @property
    def completed(self) -> datetime | None:
        return decoded(self.component(), "COMPLETED")

    @property
    def sort_key(self) -> int | None:
        raw = text(self.component(), SORTKEY_PROPERTY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    @property
    def parent_id(self) -> str | None:
        for prop in as_list(self.component().get("RELATED-TO")):
            reltype = (param(prop, "RELTYPE") or PARENT_RELTYPE).upper()
            if reltype == PARENT_RELTYPE:
                return str(prop)
        return None
