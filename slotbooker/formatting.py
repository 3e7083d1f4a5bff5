from __future__ import annotations

import datetime as dt
from typing import Iterable

from slotbooker.domain import Slot


def format_time_12h(time: str) -> str:
    """'14:05' -> '2:05 PM'. Strings that already carry AM/PM pass through."""
    if not time:
        return ""
    upper = time.upper()
    if "AM" in upper or "PM" in upper:
        return time

    hours, _, rest = time.partition(":")
    try:
        hour = int(hours)
    except ValueError:
        return time
    minutes = rest[:2] if rest else "00"
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minutes} {suffix}"


def day_of_week(date: dt.date) -> str:
    return f"{date:%A}"


def long_date(date: dt.date) -> str:
    # e.g. "May 1, 2024"; avoids the platform-specific %-d
    return f"{date:%B} {date.day}, {date.year}"


def full_date(date: dt.date) -> str:
    return f"{day_of_week(date)}, {long_date(date)}"


def group_by_date(slots: Iterable[Slot]) -> list[tuple[dt.date, tuple[Slot, ...]]]:
    """Group an already sorted snapshot by calendar date, keeping order."""
    groups: dict[dt.date, list[Slot]] = {}
    for slot in slots:
        groups.setdefault(slot.date, []).append(slot)
    return [(date, tuple(items)) for date, items in groups.items()]
