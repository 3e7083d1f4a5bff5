from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, Mapping, Protocol
from urllib.parse import quote

import httpx

from slotbooker.domain import (
    Slot,
    SlotDecodeError,
    SlotStatus,
    StoreConflictError,
    StoreResponseError,
    StoreTransportError,
)

logger = logging.getLogger(__name__)

# Статусы, которыми стор отвечает на несработавшее условие записи.
_CONFLICT_STATUS_CODES = {409, 412}


class SlotStore(Protocol):
    """What the booking core needs from the remote slot store."""

    @property
    def prefiltered(self) -> bool:
        ...

    @property
    def supports_conditional_writes(self) -> bool:
        ...

    def list(self) -> list[Slot]:
        ...

    def patch(
        self,
        slot_id: str | int,
        fields: Mapping[str, Any],
        *,
        expected_status: SlotStatus | None = None,
    ) -> None:
        ...


def _parse_status(raw: Any) -> SlotStatus | None:
    if not isinstance(raw, str):
        return None
    for status in SlotStatus:
        if raw.strip().lower() == status.value.lower():
            return status
    return None


def parse_slot(raw: Any, *, require_status: bool) -> Slot | None:
    """Convert one store row into a Slot, or None if the row is unusable.

    Dates are accepted as "YYYY-MM-DD" or a full ISO timestamp (only the
    calendar date is kept). Rows without id, date or time are dropped, as are
    rows without a recognisable status when the store is not pre-filtered.
    """

    if not isinstance(raw, Mapping):
        return None

    slot_id = raw.get("id")
    if slot_id is None or isinstance(slot_id, bool) or not isinstance(slot_id, (str, int)):
        return None
    if isinstance(slot_id, str) and not slot_id.strip():
        return None

    time = raw.get("time")
    if not isinstance(time, str) or not time.strip():
        return None

    date_raw = raw.get("date")
    if not isinstance(date_raw, str):
        return None
    try:
        date = dt.date.fromisoformat(date_raw.strip()[:10])
    except ValueError:
        return None

    if "status" in raw and raw["status"] is not None:
        status = _parse_status(raw["status"])
        if status is None:
            return None
    elif require_status:
        return None
    else:
        status = SlotStatus.AVAILABLE

    return Slot(id=slot_id, date=date, time=time.strip(), status=status)


def parse_slots(rows: Any, *, require_status: bool) -> list[Slot]:
    if not isinstance(rows, list):
        raise SlotDecodeError(f"Expected a JSON array of slots, got {type(rows).__name__}")

    slots: list[Slot] = []
    dropped = 0
    for item in rows:
        slot = parse_slot(item, require_status=require_status)
        if slot is None:
            dropped += 1
            continue
        slots.append(slot)

    if dropped:
        logger.warning("Dropped %d malformed slot record(s) out of %d", dropped, len(rows))
    return slots


class HttpSlotStore:
    """Slot store reached over plain JSON/HTTP.

    GET  {base_url}{path}        -> [{id, date, time, status?}, ...]
    PATCH {base_url}{path}/{id}  -> booking fields (+ expected_status)
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/api/slots",
        prefiltered: bool = False,
        conditional_writes: bool = False,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = path
        self._prefiltered = prefiltered
        self._conditional_writes = conditional_writes
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def prefiltered(self) -> bool:
        return self._prefiltered

    @property
    def supports_conditional_writes(self) -> bool:
        return self._conditional_writes

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )

    def list(self) -> list[Slot]:
        try:
            with self._client() as client:
                r = client.get(self._path)
        except httpx.RequestError as e:
            raise StoreTransportError(f"Slot store request failed ({type(e).__name__}: {e})") from e

        if r.is_error:
            raise StoreResponseError(
                f"Slot store answered {r.status_code} to list request",
                status_code=r.status_code,
            )

        try:
            data = r.json()
        except ValueError as e:
            raise SlotDecodeError("Slot store returned a non-JSON body") from e

        return parse_slots(data, require_status=not self._prefiltered)

    def patch(
        self,
        slot_id: str | int,
        fields: Mapping[str, Any],
        *,
        expected_status: SlotStatus | None = None,
    ) -> None:
        payload = dict(fields)
        if expected_status is not None:
            if not self._conditional_writes:
                raise ValueError("This slot store is not configured for conditional writes")
            payload["expected_status"] = expected_status.value

        try:
            with self._client() as client:
                r = client.patch(f"{self._path}/{quote(str(slot_id), safe='')}", json=payload)
        except httpx.RequestError as e:
            raise StoreTransportError(f"Slot store request failed ({type(e).__name__}: {e})") from e

        if expected_status is not None and r.status_code in _CONFLICT_STATUS_CODES:
            raise StoreConflictError(
                f"Slot {slot_id} is no longer {expected_status.value}",
                status_code=r.status_code,
            )
        if r.is_error:
            raise StoreResponseError(
                f"Slot store rejected booking of slot {slot_id} ({r.status_code})",
                status_code=r.status_code,
            )


class InMemorySlotStore:
    """Process-local slot store with the same contract as HttpSlotStore.

    Holds raw rows and decodes them on every list() call, so the decode
    boundary is exercised the same way it is for the HTTP store.
    """

    def __init__(
        self,
        rows: Iterable[Mapping[str, Any]] = (),
        *,
        prefiltered: bool = False,
        conditional_writes: bool = True,
    ) -> None:
        self.rows: list[dict[str, Any]] = [dict(r) for r in rows]
        self._prefiltered = prefiltered
        self._conditional_writes = conditional_writes
        self.list_calls = 0
        self.patch_calls: list[tuple[str | int, dict[str, Any]]] = []

    @property
    def prefiltered(self) -> bool:
        return self._prefiltered

    @property
    def supports_conditional_writes(self) -> bool:
        return self._conditional_writes

    def _find(self, slot_id: str | int) -> dict[str, Any] | None:
        for row in self.rows:
            if str(row.get("id")) == str(slot_id):
                return row
        return None

    def list(self) -> list[Slot]:
        self.list_calls += 1
        rows = self.rows
        if self._prefiltered:
            rows = [
                {k: v for k, v in r.items() if k != "status"}
                for r in rows
                if _parse_status(r.get("status")) is not SlotStatus.BOOKED
            ]
        return parse_slots(list(rows), require_status=not self._prefiltered)

    def patch(
        self,
        slot_id: str | int,
        fields: Mapping[str, Any],
        *,
        expected_status: SlotStatus | None = None,
    ) -> None:
        self.patch_calls.append((slot_id, dict(fields)))
        row = self._find(slot_id)
        if row is None:
            raise StoreResponseError(f"Slot {slot_id} not found", status_code=404)

        if expected_status is not None:
            if not self._conditional_writes:
                raise ValueError("This slot store is not configured for conditional writes")
            current = _parse_status(row.get("status")) or SlotStatus.AVAILABLE
            if current is not expected_status:
                raise StoreConflictError(
                    f"Slot {slot_id} is no longer {expected_status.value}",
                    status_code=409,
                )

        row.update(fields)
