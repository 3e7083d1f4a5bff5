from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Protocol

from slotbooker.booking import commit_reservation, validate_booker
from slotbooker.domain import (
    BookerInfo,
    BookingResult,
    BookingStatus,
    CommitError,
    CommitFailure,
    FetchError,
    InvalidTransitionError,
    NotificationError,
    Slot,
    ValidationError,
)
from slotbooker.poller import AvailabilityPoller, RefreshTimer, Timer, TimerFactory
from slotbooker.render import (
    BookingFailed,
    Browsing,
    Confirmed,
    Empty,
    FetchFailed,
    Loading,
    RenderState,
    SlotSelected,
    Submitting,
    date_groups,
)
from slotbooker.slot_store import SlotStore

logger = logging.getLogger(__name__)

SLOT_GONE_NOTICE = "That time slot is no longer available. Please choose another one."
GENERIC_FETCH_REASON = "Error loading available slots. Please try again."
GENERIC_BOOKING_REASON = "Something went wrong while booking this slot. Please refresh and check availability."


class Notifier(Protocol):
    def notify(self, slot: Slot, booker: BookerInfo) -> list[NotificationError]:
        ...


class Phase(str, enum.Enum):
    LOADING = "loading"
    BROWSING = "browsing"
    EMPTY = "empty"
    FETCH_FAILED = "fetch_failed"
    SLOT_SELECTED = "slot_selected"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    BOOKING_FAILED = "booking_failed"


# Phases where a background refresh may re-derive the whole screen.
_LISTING_PHASES = {Phase.BROWSING, Phase.EMPTY, Phase.FETCH_FAILED}
_RETRYABLE_PHASES = {Phase.BROWSING, Phase.EMPTY, Phase.FETCH_FAILED, Phase.BOOKING_FAILED}


class BookingCoordinator:
    """Slot booking state machine for one visitor session.

    Owns the snapshot, the selection and the refresh timer. Every intent and
    every background tick runs under one lock, so transitions never overlap.
    Remote failures are converted into render states here and never escape.
    """

    def __init__(
        self,
        store: SlotStore,
        notifier: Notifier,
        *,
        refresh_interval_seconds: float = 30.0,
        fetch_retry_attempts: int = 1,
        timer_factory: TimerFactory = RefreshTimer,
        listener: Callable[[RenderState], None] | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._poller = AvailabilityPoller(store, retry_attempts=fetch_retry_attempts)
        self._refresh_interval_seconds = refresh_interval_seconds
        self._timer_factory = timer_factory
        self._listener = listener

        self._lock = threading.RLock()
        self._timer: Timer | None = None
        self._started = False
        self._closed = False

        self._phase = Phase.LOADING
        self._snapshot: tuple[Slot, ...] = ()
        self._selection: Slot | None = None
        self._form_errors: dict[str, str] = {}
        self._notice: str | None = None
        self._reason = ""
        self._failure: CommitFailure | None = None
        self._result: BookingResult | None = None
        self._state: RenderState = Loading()
        self._notify_thread: threading.Thread | None = None

    # --- read side ------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def state(self) -> RenderState:
        # Published atomically; readable while a transition is in flight.
        return self._state

    @property
    def snapshot(self) -> tuple[Slot, ...]:
        return self._snapshot

    @property
    def selection(self) -> Slot | None:
        return self._selection

    @property
    def result(self) -> BookingResult | None:
        return self._result

    @property
    def refresh_active(self) -> bool:
        return self._timer is not None

    def _render(self) -> RenderState:
        if self._phase is Phase.LOADING:
            return Loading()
        if self._phase is Phase.BROWSING:
            return Browsing(slots=self._snapshot, groups=date_groups(self._snapshot), notice=self._notice)
        if self._phase is Phase.EMPTY:
            return Empty()
        if self._phase is Phase.FETCH_FAILED:
            return FetchFailed(reason=self._reason)
        if self._phase is Phase.SLOT_SELECTED:
            slot = self._selected()
            return SlotSelected(
                slot=slot,
                form_errors=dict(self._form_errors),
                still_listed=self._find(slot.id) is not None,
            )
        if self._phase is Phase.SUBMITTING:
            return Submitting(slot=self._selected())
        if self._phase is Phase.CONFIRMED:
            if self._result is None:
                raise InvalidTransitionError("confirmed without a booking result")
            return Confirmed(slot=self._result.slot, booker=self._result.booker)
        return BookingFailed(
            reason=self._reason,
            failure=self._failure or CommitFailure.UNKNOWN,
            slot=self._selected(),
        )

    def _selected(self) -> Slot:
        if self._selection is None:
            raise InvalidTransitionError(f"no slot selected while {self._phase.value}")
        return self._selection

    def _publish(self) -> RenderState:
        self._state = self._render()
        if self._listener is not None:
            try:
                self._listener(self._state)
            except Exception:
                logger.warning("Render listener failed", exc_info=True)
        return self._state

    def _enter(self, phase: Phase) -> RenderState:
        if phase is not self._phase:
            logger.debug("Booking phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        return self._publish()

    def _require(self, intent: str, *phases: Phase) -> None:
        if self._closed:
            raise InvalidTransitionError(f"{intent}: session is closed")
        if self._phase not in phases:
            raise InvalidTransitionError(f"{intent} is not allowed while {self._phase.value}")

    def _find(self, slot_id: str | int) -> Slot | None:
        for slot in self._snapshot:
            if str(slot.id) == str(slot_id):
                return slot
        return None

    # --- refresh loop -----------------------------------------------------------

    def _load(self) -> RenderState:
        self._selection = None
        self._form_errors = {}
        self._notice = None
        self._failure = None
        self._enter(Phase.LOADING)

        try:
            snapshot = self._poller.refresh(show_loading=True)
        except FetchError as e:
            # The previous snapshot stays as it was.
            self._reason = f"Error loading available slots: {e}"
            return self._enter(Phase.FETCH_FAILED)
        except Exception as e:
            logger.error("Unexpected error while loading slots (%s: %s)", type(e).__name__, e)
            self._reason = GENERIC_FETCH_REASON
            return self._enter(Phase.FETCH_FAILED)

        self._snapshot = snapshot
        return self._enter(Phase.BROWSING if snapshot else Phase.EMPTY)

    def _on_tick(self) -> None:
        with self._lock:
            if self._closed or self._phase in (Phase.CONFIRMED, Phase.SUBMITTING, Phase.LOADING):
                return

            try:
                snapshot = self._poller.refresh(show_loading=False)
            except FetchError as e:
                logger.warning("Background slot refresh failed, keeping current view (%s)", e)
                return

            self._snapshot = snapshot
            if self._phase in _LISTING_PHASES:
                self._notice = None
                self._enter(Phase.BROWSING if snapshot else Phase.EMPTY)
            else:
                # Selection or failure screen stays; only still_listed may change.
                self._publish()

    def _stop_refresh(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            logger.info("Slot refresh stopped")

    # --- intents ----------------------------------------------------------------

    def start(self) -> RenderState:
        with self._lock:
            if self._started:
                return self._state
            self._require("start", Phase.LOADING)
            self._started = True

            state = self._load()
            self._timer = self._timer_factory(self._refresh_interval_seconds, self._on_tick)
            self._timer.start()
            return state

    def select_slot(self, slot_id: str | int) -> RenderState:
        with self._lock:
            self._require("select_slot", Phase.BROWSING)

            slot = self._find(slot_id)
            if slot is None:
                logger.info("Rejected selection of slot %s: not in current snapshot", slot_id)
                self._notice = SLOT_GONE_NOTICE
                return self._publish()

            self._selection = slot
            self._form_errors = {}
            self._notice = None
            return self._enter(Phase.SLOT_SELECTED)

    def change_selection(self) -> RenderState:
        with self._lock:
            self._require("change_selection", Phase.SLOT_SELECTED)
            self._selection = None
            self._form_errors = {}
            return self._enter(Phase.BROWSING if self._snapshot else Phase.EMPTY)

    def submit(self, booker: BookerInfo) -> RenderState:
        with self._lock:
            self._require("submit", Phase.SLOT_SELECTED)
            slot = self._selected()

            try:
                info = validate_booker(booker)
            except ValidationError as e:
                self._form_errors = e.fields
                return self._publish()

            self._form_errors = {}
            self._result = BookingResult(status=BookingStatus.PENDING, slot=slot, booker=info)
            self._enter(Phase.SUBMITTING)

            try:
                commit_reservation(self._store, slot.id, info)
            except CommitError as e:
                logger.warning("Booking of slot %s failed (%s: %s)", slot.id, e.failure.value, e)
                return self._fail_booking(slot, info, e.failure, str(e))
            except Exception as e:
                logger.error("Unexpected error while booking slot %s (%s: %s)", slot.id, type(e).__name__, e)
                return self._fail_booking(slot, info, CommitFailure.UNKNOWN, GENERIC_BOOKING_REASON)

            self._result = BookingResult(status=BookingStatus.CONFIRMED, slot=slot, booker=info)
            self._stop_refresh()
            self._poller.mark_consumed(slot.id)
            state = self._enter(Phase.CONFIRMED)

            self._notify_thread = threading.Thread(
                target=self._send_notifications,
                args=(slot, info),
                name="booking-notify",
                daemon=True,
            )
            self._notify_thread.start()
            return state

    def _fail_booking(self, slot: Slot, booker: BookerInfo, failure: CommitFailure, reason: str) -> RenderState:
        self._reason = reason
        self._failure = failure
        self._result = BookingResult(status=BookingStatus.FAILED, slot=slot, booker=booker, reason=reason)
        return self._enter(Phase.BOOKING_FAILED)

    def join_notifications(self, timeout: float | None = None) -> bool:
        """Wait for the post-booking notifications. Returns False on timeout."""
        thread = self._notify_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _send_notifications(self, slot: Slot, booker: BookerInfo) -> None:
        # Booking is already confirmed; nothing here may change that.
        try:
            errors = self._notifier.notify(slot, booker)
        except Exception as e:
            logger.error("Notifier crashed for slot %s (%s: %s)", slot.id, type(e).__name__, e)
            return
        if errors:
            logger.warning("%d booking notification(s) for slot %s were not delivered", len(errors), slot.id)

    def retry_fetch(self) -> RenderState:
        with self._lock:
            self._require("retry_fetch", *_RETRYABLE_PHASES)
            return self._load()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stop_refresh()

    def __enter__(self) -> BookingCoordinator:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
