from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, replace


class SlotStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BOOKED = "Booked"


@dataclass(frozen=True)
class Slot:
    """A single appointment slot as held by the external store.

    `time` is kept exactly as the store returns it (either "14:30" or an
    already formatted "2:30 PM"); ordering compares the raw string.
    """

    id: str | int
    date: dt.date
    time: str
    status: SlotStatus = SlotStatus.AVAILABLE

    @property
    def sort_key(self) -> tuple[dt.date, str]:
        return (self.date, self.time)


@dataclass(frozen=True)
class BookerInfo:
    first_name: str
    last_name: str
    email: str
    # "More than an hour away from campus, interview over Zoom"
    remote_option: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def normalized(self) -> BookerInfo:
        return replace(
            self,
            first_name=self.first_name.strip(),
            last_name=self.last_name.strip(),
            email=self.email.strip(),
        )


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class BookingResult:
    status: BookingStatus
    slot: Slot
    booker: BookerInfo
    reason: str | None = None


class SlotBookingError(RuntimeError):
    """Base class for everything the booking core raises on purpose."""


# --- store client -----------------------------------------------------------


class StoreError(SlotBookingError):
    pass


class StoreTransportError(StoreError):
    """Timeout, connection, redirect or body-decoding failure talking to the slot store."""


class StoreResponseError(StoreError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreConflictError(StoreResponseError):
    """The store refused a conditional write because the slot changed."""


class SlotDecodeError(StoreError):
    """The store answered with something that is not a list of slots."""


# --- booking flow -----------------------------------------------------------


class FetchError(SlotBookingError):
    pass


class ValidationError(SlotBookingError):
    def __init__(self, fields: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in fields.items()))
        self.fields = dict(fields)


class CommitFailure(str, enum.Enum):
    NETWORK = "network"
    REJECTED = "rejected_by_store"
    CONFLICT = "conflict"
    # Anything else; the write may or may not have landed.
    UNKNOWN = "unknown"


class CommitError(SlotBookingError):
    def __init__(self, failure: CommitFailure, message: str) -> None:
        super().__init__(message)
        self.failure = failure


class NotificationError(SlotBookingError):
    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class InvalidTransitionError(SlotBookingError):
    """An intent arrived in a phase that does not accept it."""
