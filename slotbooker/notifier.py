from __future__ import annotations

import enum
import logging
from typing import Any

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotbooker.domain import BookerInfo, NotificationError, Slot
from slotbooker.formatting import day_of_week, format_time_12h, full_date

logger = logging.getLogger(__name__)

_RETRY_WAIT = wait_exponential(multiplier=1, min=1, max=4)


class NotificationKind(str, enum.Enum):
    OWNER_ALERT = "owner"
    CLIENT_CONFIRMATION = "confirmation"
    # Confirmation variant for bookers who asked for the remote interview.
    CLIENT_REMOTE_CONFIRMATION = "scholarship"


def send_notification(
    *,
    url: str,
    payload: dict[str, Any],
    timeout_seconds: float = 20.0,
    transport: httpx.BaseTransport | None = None,
) -> None:
    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        r = client.post(url, json=payload)
        r.raise_for_status()


def owner_alert_payload(slot: Slot, booker: BookerInfo, *, owner_email: str) -> dict[str, Any]:
    return {
        "type": NotificationKind.OWNER_ALERT.value,
        "to_email": owner_email,
        "slot_date": full_date(slot.date),
        "slot_time": format_time_12h(slot.time),
        "client_name": booker.full_name,
        "client_email": booker.email,
        "remote_option": "Yes" if booker.remote_option else "No",
    }


def client_confirmation_payload(slot: Slot, booker: BookerInfo) -> dict[str, Any]:
    kind = (
        NotificationKind.CLIENT_REMOTE_CONFIRMATION
        if booker.remote_option
        else NotificationKind.CLIENT_CONFIRMATION
    )
    return {
        "type": kind.value,
        "first_name": booker.first_name,
        "to_email": booker.email,
        "day_of_week": day_of_week(slot.date),
        "month": f"{slot.date:%B}",
        "day": slot.date.day,
        "time": format_time_12h(slot.time),
    }


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
    logger.info(
        "Notification attempt %s failed (%s), retrying in %s s",
        retry_state.attempt_number,
        type(exc).__name__ if exc is not None else "unknown",
        sleep_seconds,
    )


class EmailNotifier:
    """Posts booking notifications to an HTTP mail relay.

    The relay owns templates and delivery; we only send the fields.
    """

    def __init__(
        self,
        *,
        url: str,
        owner_email: str,
        timeout_seconds: float = 20.0,
        retry_attempts: int = 1,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = url
        self._owner_email = owner_email
        self._timeout_seconds = timeout_seconds
        self._retry_attempts = retry_attempts
        self._transport = transport

    def send(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        decorated = retry(
            stop=stop_after_attempt(self._retry_attempts),
            wait=_RETRY_WAIT,
            retry=retry_if_exception_type(httpx.HTTPError),
            before_sleep=_log_before_sleep,
            reraise=True,
        )(send_notification)

        try:
            decorated(
                url=self._url,
                payload=payload,
                timeout_seconds=self._timeout_seconds,
                transport=self._transport,
            )
        except httpx.HTTPError as e:
            raise NotificationError(kind.value, f"{type(e).__name__}: {e}") from e

    def notify(self, slot: Slot, booker: BookerInfo) -> list[NotificationError]:
        """Send the owner alert and the client confirmation.

        Both sends are attempted regardless of the other's outcome. Failures
        are logged and returned, never raised.
        """

        client_payload = client_confirmation_payload(slot, booker)
        messages = [
            (NotificationKind.OWNER_ALERT, owner_alert_payload(slot, booker, owner_email=self._owner_email)),
            (NotificationKind(client_payload["type"]), client_payload),
        ]

        errors: list[NotificationError] = []
        for kind, payload in messages:
            try:
                self.send(kind, payload)
            except NotificationError as e:
                logger.warning("Failed to send %s notification for slot %s (%s)", kind.value, slot.id, e)
                errors.append(e)

        if not errors:
            logger.info("Booking notifications sent for slot %s", slot.id)
        return errors
