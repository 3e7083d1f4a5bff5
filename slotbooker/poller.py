from __future__ import annotations

import logging
import threading
from typing import Callable, Collection, Protocol

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotbooker.domain import FetchError, Slot, SlotStatus, StoreError, StoreTransportError
from slotbooker.slot_store import SlotStore

logger = logging.getLogger(__name__)

_RETRY_WAIT = wait_exponential(multiplier=1, min=1, max=4)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    logger.info(
        "Slot fetch attempt %s failed (%s), next attempt in %s s",
        retry_state.attempt_number,
        _short_exc(retry_state),
        sleep_seconds,
    )


def build_snapshot(slots: list[Slot], *, prefiltered: bool, consumed: Collection[str] = ()) -> tuple[Slot, ...]:
    """Filter to bookable slots and sort by (date, raw time string)."""
    if not prefiltered:
        slots = [s for s in slots if s.status is SlotStatus.AVAILABLE]
    if consumed:
        slots = [s for s in slots if str(s.id) not in consumed]
    return tuple(sorted(slots, key=lambda s: s.sort_key))


class AvailabilityPoller:
    def __init__(self, store: SlotStore, *, retry_attempts: int = 1) -> None:
        self._store = store
        self._retry_attempts = retry_attempts
        self._consumed: set[str] = set()
        self.loading = False

    def mark_consumed(self, slot_id: str | int) -> None:
        # A slot this session booked must not come back even if the store
        # is slow to drop it from a pre-filtered listing.
        self._consumed.add(str(slot_id))

    def _list_with_retry(self) -> list[Slot]:
        decorated = retry(
            stop=stop_after_attempt(self._retry_attempts),
            wait=_RETRY_WAIT,
            retry=retry_if_exception_type(StoreTransportError),
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self._store.list)
        return decorated()

    def refresh(self, show_loading: bool = True) -> tuple[Slot, ...]:
        if show_loading:
            self.loading = True
        try:
            slots = self._list_with_retry()
        except StoreError as e:
            logger.warning("Slot fetch failed (%s: %s)", type(e).__name__, e)
            raise FetchError(str(e)) from e
        finally:
            if show_loading:
                self.loading = False

        snapshot = build_snapshot(slots, prefiltered=self._store.prefiltered, consumed=self._consumed)
        logger.debug("Slots: fetched=%d available=%d", len(slots), len(snapshot))
        return snapshot


class Timer(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> bool:
        ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class RefreshTimer:
    """Calls `callback` every `interval_seconds` on a daemon thread until cancelled."""

    def __init__(self, interval_seconds: float, callback: Callable[[], None], *, name: str = "slot-refresh") -> None:
        self._interval = interval_seconds
        self._callback = callback
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._started or self._stop.is_set():
                return
            self._started = True
        self._thread.start()

    def cancel(self) -> bool:
        """Stop the loop. Returns True only for the call that actually cancelled."""
        with self._lock:
            if self._stop.is_set():
                return False
            self._stop.set()
            return True

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._callback()
            except Exception as e:
                # The loop must outlive a bad tick; the next one may succeed.
                logger.error("Background refresh failed (%s: %s)", type(e).__name__, e)
