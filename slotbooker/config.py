from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Settings:
    slot_store_url: str
    notifier_url: str
    owner_email: str

    slot_store_path: str = "/api/slots"

    # Store capabilities. Configured explicitly, never guessed from responses.
    # prefiltered: the store only returns bookable rows (no status field).
    # conditional_writes: the store honours "book only if still Available".
    slot_store_prefiltered: bool = False
    slot_store_conditional_writes: bool = False

    refresh_interval_seconds: float = 30.0
    request_timeout_seconds: float = 10.0

    # Retry tuning
    # How many attempts a single poll gets on transport errors (1 = no retry).
    fetch_retry_attempts: int = 1
    # How many attempts each notification gets before it is logged as failed.
    notify_retry_attempts: int = 2


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _positive_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected a number of seconds.") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be > 0")
    return value


def _attempts(name: str, default: str) -> int:
    value = int(os.getenv(name, default))
    if value < 1:
        raise RuntimeError(f"{name} must be >= 1")
    return value


def _parse_owner_email(raw: str) -> str:
    email = raw.strip()
    if not _EMAIL_RE.match(email):
        raise RuntimeError(f"Invalid OWNER_EMAIL value: {raw!r}")
    return email


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    slot_store_path = os.getenv("SLOT_STORE_PATH", "/api/slots").strip() or "/api/slots"
    if not slot_store_path.startswith("/"):
        slot_store_path = "/" + slot_store_path

    return Settings(
        slot_store_url=_require("SLOT_STORE_URL").rstrip("/"),
        notifier_url=_require("NOTIFIER_URL"),
        owner_email=_parse_owner_email(_require("OWNER_EMAIL")),
        slot_store_path=slot_store_path.rstrip("/"),
        slot_store_prefiltered=_get_bool("SLOT_STORE_PREFILTERED"),
        slot_store_conditional_writes=_get_bool("SLOT_STORE_CONDITIONAL_WRITES"),
        refresh_interval_seconds=_positive_float("REFRESH_INTERVAL_SECONDS", "30"),
        request_timeout_seconds=_positive_float("REQUEST_TIMEOUT_SECONDS", "10"),
        fetch_retry_attempts=_attempts("FETCH_RETRY_ATTEMPTS", "1"),
        notify_retry_attempts=_attempts("NOTIFY_RETRY_ATTEMPTS", "2"),
    )
