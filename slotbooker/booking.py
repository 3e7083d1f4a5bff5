from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any

from slotbooker.domain import (
    BookerInfo,
    CommitError,
    CommitFailure,
    SlotStatus,
    StoreConflictError,
    StoreResponseError,
    StoreTransportError,
    ValidationError,
)
from slotbooker.slot_store import SlotStore

logger = logging.getLogger(__name__)

# Syntactic plausibility only; deliverability is the mail relay's problem.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_booker(booker: BookerInfo) -> BookerInfo:
    """Return a trimmed copy of `booker` or raise ValidationError."""
    info = booker.normalized()
    errors: dict[str, str] = {}

    if not info.first_name:
        errors["first_name"] = "First name is required"
    if not info.last_name:
        errors["last_name"] = "Last name is required"
    if not info.email:
        errors["email"] = "Email address is required"
    elif not _EMAIL_RE.match(info.email):
        errors["email"] = "Email address does not look valid"

    if errors:
        raise ValidationError(errors)
    return info


def booking_fields(booker: BookerInfo, *, now: dt.datetime | None = None) -> dict[str, Any]:
    booked_at = now or dt.datetime.now(dt.timezone.utc)
    return {
        "status": SlotStatus.BOOKED.value,
        "client_name": booker.full_name,
        "client_email": booker.email,
        "booking_date": booked_at.isoformat(),
        "preference": "Yes" if booker.remote_option else "No",
    }


def commit_reservation(
    store: SlotStore,
    slot_id: str | int,
    booker: BookerInfo,
    *,
    now: dt.datetime | None = None,
) -> None:
    """Mark the slot as booked for `booker` with a single store write.

    Where the store supports it the write is conditional on the slot still
    being Available. Without that, two sessions holding the same stale
    snapshot can both succeed and the last write wins at the store.
    """

    fields = booking_fields(booker, now=now)
    expected = SlotStatus.AVAILABLE if store.supports_conditional_writes else None

    try:
        store.patch(slot_id, fields, expected_status=expected)
    except StoreConflictError as e:
        raise CommitError(
            CommitFailure.CONFLICT,
            "Sorry, this time slot was just booked by someone else. Please pick another one.",
        ) from e
    except StoreTransportError as e:
        raise CommitError(
            CommitFailure.NETWORK,
            "We could not reach the booking service. Please check your connection and try again.",
        ) from e
    except StoreResponseError as e:
        raise CommitError(
            CommitFailure.REJECTED,
            "The booking service did not accept this reservation. The slot may no longer be available.",
        ) from e

    logger.info("Slot %s booked (conditional=%s)", slot_id, expected is not None)
