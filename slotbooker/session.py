from __future__ import annotations

import logging
from typing import Callable

from slotbooker.config import Settings
from slotbooker.coordinator import BookingCoordinator
from slotbooker.notifier import EmailNotifier
from slotbooker.render import RenderState
from slotbooker.slot_store import HttpSlotStore

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def build_slot_store(settings: Settings) -> HttpSlotStore:
    return HttpSlotStore(
        settings.slot_store_url,
        path=settings.slot_store_path,
        prefiltered=settings.slot_store_prefiltered,
        conditional_writes=settings.slot_store_conditional_writes,
        timeout_seconds=settings.request_timeout_seconds,
    )


def build_notifier(settings: Settings) -> EmailNotifier:
    return EmailNotifier(
        url=settings.notifier_url,
        owner_email=settings.owner_email,
        timeout_seconds=settings.request_timeout_seconds,
        retry_attempts=settings.notify_retry_attempts,
    )


def open_session(
    settings: Settings,
    *,
    listener: Callable[[RenderState], None] | None = None,
) -> BookingCoordinator:
    """Create and start a booking session. Call close() when the visitor leaves."""
    logger.info(
        "Opening booking session (store=%s prefiltered=%s conditional=%s interval=%ss)",
        settings.slot_store_url,
        settings.slot_store_prefiltered,
        settings.slot_store_conditional_writes,
        settings.refresh_interval_seconds,
    )
    coordinator = BookingCoordinator(
        build_slot_store(settings),
        build_notifier(settings),
        refresh_interval_seconds=settings.refresh_interval_seconds,
        fetch_retry_attempts=settings.fetch_retry_attempts,
        listener=listener,
    )
    coordinator.start()
    return coordinator
