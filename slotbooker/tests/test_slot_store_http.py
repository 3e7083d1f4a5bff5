from __future__ import annotations

import datetime as dt
import json

import httpx
import pytest

from slotbooker.domain import (
    SlotDecodeError,
    SlotStatus,
    StoreConflictError,
    StoreResponseError,
    StoreTransportError,
)
from slotbooker.slot_store import HttpSlotStore, parse_slot


def _store(handler, **kwargs) -> HttpSlotStore:
    return HttpSlotStore("https://slots.example.org", transport=httpx.MockTransport(handler), **kwargs)


def test_list_decodes_rows_and_drops_malformed_ones() -> None:
    rows = [
        {"id": 1, "date": "2024-05-01", "time": "09:00", "status": "Available"},
        {"id": "b7", "date": "2024-05-02T00:00:00Z", "time": "2:30 PM", "status": "booked"},
        {"id": 3, "date": "2024-05-03"},  # no time
        {"date": "2024-05-03", "time": "10:00", "status": "Available"},  # no id
        {"id": 5, "date": "May 3rd", "time": "10:00", "status": "Available"},
        {"id": 6, "date": "2024-05-03", "time": "10:00"},  # no status, unfiltered store
        "garbage",
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/slots"
        return httpx.Response(200, json=rows)

    slots = _store(handler).list()

    assert [s.id for s in slots] == [1, "b7"]
    assert slots[0].date == dt.date(2024, 5, 1)
    assert slots[1].status is SlotStatus.BOOKED
    assert slots[1].time == "2:30 PM"


def test_prefiltered_store_accepts_rows_without_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": 6, "date": "2024-05-03", "time": "10:00"}])

    slots = _store(handler, prefiltered=True).list()
    assert len(slots) == 1
    assert slots[0].status is SlotStatus.AVAILABLE


def test_list_non_array_body_is_a_decode_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"slots": []})

    with pytest.raises(SlotDecodeError):
        _store(handler).list()


def test_list_non_json_body_is_a_decode_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>ngrok error</html>")

    with pytest.raises(SlotDecodeError):
        _store(handler).list()


def test_list_timeout_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(StoreTransportError):
        _store(handler).list()


def test_list_server_error_is_a_response_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(StoreResponseError) as exc_info:
        _store(handler).list()
    assert exc_info.value.status_code == 503


def test_patch_sends_fields_without_precondition() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    _store(handler).patch(7, {"status": "Booked", "client_name": "Ana Lee"})

    assert seen[0].method == "PATCH"
    assert seen[0].url.path == "/api/slots/7"
    assert json.loads(seen[0].content) == {"status": "Booked", "client_name": "Ana Lee"}


def test_conditional_patch_sends_expected_status() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    _store(handler, conditional_writes=True).patch(7, {"status": "Booked"}, expected_status=SlotStatus.AVAILABLE)
    assert seen == [{"status": "Booked", "expected_status": "Available"}]


@pytest.mark.parametrize("status_code", [409, 412])
def test_conditional_patch_precondition_failure_is_a_conflict(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code)

    store = _store(handler, conditional_writes=True)
    with pytest.raises(StoreConflictError):
        store.patch(7, {"status": "Booked"}, expected_status=SlotStatus.AVAILABLE)


def test_unconditional_patch_409_is_a_plain_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409)

    with pytest.raises(StoreResponseError) as exc_info:
        _store(handler).patch(7, {"status": "Booked"})
    assert not isinstance(exc_info.value, StoreConflictError)


def test_precondition_on_store_without_conditional_writes_is_refused() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never reached
        return httpx.Response(200)

    with pytest.raises(ValueError):
        _store(handler).patch(7, {"status": "Booked"}, expected_status=SlotStatus.AVAILABLE)


def test_patch_connect_error_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(StoreTransportError):
        _store(handler).patch(7, {"status": "Booked"})


@pytest.mark.parametrize("bad_id", [None, True, "  ", 1.5])
def test_parse_slot_rejects_unusable_ids(bad_id: object) -> None:
    assert parse_slot({"id": bad_id, "date": "2024-05-01", "time": "09:00"}, require_status=False) is None


def test_parse_slot_rejects_unknown_status() -> None:
    assert parse_slot({"id": 1, "date": "2024-05-01", "time": "09:00", "status": "Held"}, require_status=True) is None


@pytest.mark.parametrize(
    "error",
    [httpx.DecodingError, httpx.TooManyRedirects, httpx.UnsupportedProtocol],
)
def test_every_request_error_is_a_transport_error(error: type[httpx.RequestError]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error("broken", request=request)

    store = _store(handler, conditional_writes=True)
    with pytest.raises(StoreTransportError):
        store.list()
    with pytest.raises(StoreTransportError):
        store.patch(7, {"status": "Booked"}, expected_status=SlotStatus.AVAILABLE)


def test_patch_escapes_slot_id_in_path() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    _store(handler).patch("a/b?c#d", {"status": "Booked"})

    assert seen[0].url.raw_path == b"/api/slots/a%2Fb%3Fc%23d"
