"""Immutable screen states handed to the rendering shell.

Each variant carries exactly what its screen shows. Error and empty screens
name their single recovery intent in `recovery`.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import ClassVar, Union

from slotbooker.domain import BookerInfo, CommitFailure, Slot
from slotbooker.formatting import format_time_12h, full_date, group_by_date

RETRY_FETCH = "retry_fetch"


@dataclass(frozen=True)
class TimeOption:
    slot_id: str | int
    label: str


@dataclass(frozen=True)
class DateGroup:
    date: dt.date
    label: str
    options: tuple[TimeOption, ...]


def date_groups(snapshot: tuple[Slot, ...]) -> tuple[DateGroup, ...]:
    return tuple(
        DateGroup(
            date=date,
            label=full_date(date),
            options=tuple(TimeOption(slot_id=s.id, label=format_time_12h(s.time)) for s in slots),
        )
        for date, slots in group_by_date(snapshot)
    )


@dataclass(frozen=True)
class Loading:
    recovery: ClassVar[str | None] = None


@dataclass(frozen=True)
class Browsing:
    slots: tuple[Slot, ...]
    groups: tuple[DateGroup, ...]
    notice: str | None = None
    recovery: ClassVar[str | None] = None


@dataclass(frozen=True)
class Empty:
    message: str = "Sorry, there are currently no available appointment slots."
    recovery: ClassVar[str | None] = RETRY_FETCH


@dataclass(frozen=True)
class FetchFailed:
    reason: str
    recovery: ClassVar[str | None] = RETRY_FETCH


@dataclass(frozen=True)
class SlotSelected:
    slot: Slot
    form_errors: dict[str, str] = field(default_factory=dict)
    # False once a background refresh no longer lists the selected slot.
    still_listed: bool = True
    recovery: ClassVar[str | None] = None

    @property
    def when(self) -> str:
        return f"{full_date(self.slot.date)} at {format_time_12h(self.slot.time)}"


@dataclass(frozen=True)
class Submitting:
    slot: Slot
    recovery: ClassVar[str | None] = None


@dataclass(frozen=True)
class Confirmed:
    slot: Slot
    booker: BookerInfo
    recovery: ClassVar[str | None] = None

    @property
    def when(self) -> str:
        return f"{full_date(self.slot.date)} at {format_time_12h(self.slot.time)}"


@dataclass(frozen=True)
class BookingFailed:
    reason: str
    failure: CommitFailure
    slot: Slot
    recovery: ClassVar[str | None] = RETRY_FETCH


RenderState = Union[Loading, Browsing, Empty, FetchFailed, SlotSelected, Submitting, Confirmed, BookingFailed]
