from __future__ import annotations

import pytest

from slotbooker.config import load_settings

_OPTIONAL = (
    "SLOT_STORE_PATH",
    "SLOT_STORE_PREFILTERED",
    "SLOT_STORE_CONDITIONAL_WRITES",
    "REFRESH_INTERVAL_SECONDS",
    "REQUEST_TIMEOUT_SECONDS",
    "FETCH_RETRY_ATTEMPTS",
    "NOTIFY_RETRY_ATTEMPTS",
)


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SLOT_STORE_URL", "https://slots.example.org/")
    monkeypatch.setenv("NOTIFIER_URL", "https://mail.example.org/hook")
    monkeypatch.setenv("OWNER_EMAIL", "owner@example.org")
    return monkeypatch


def test_load_settings_defaults(required_env: pytest.MonkeyPatch) -> None:
    settings = load_settings(dotenv_path=None)

    assert settings.slot_store_url == "https://slots.example.org"
    assert settings.slot_store_path == "/api/slots"
    assert settings.slot_store_prefiltered is False
    assert settings.slot_store_conditional_writes is False
    assert settings.refresh_interval_seconds == 30.0
    assert settings.fetch_retry_attempts == 1
    assert settings.notify_retry_attempts == 2


def test_load_settings_store_capabilities_are_explicit(required_env: pytest.MonkeyPatch) -> None:
    required_env.setenv("SLOT_STORE_PREFILTERED", "yes")
    required_env.setenv("SLOT_STORE_CONDITIONAL_WRITES", "1")
    required_env.setenv("SLOT_STORE_PATH", "slots/")

    settings = load_settings(dotenv_path=None)
    assert settings.slot_store_prefiltered is True
    assert settings.slot_store_conditional_writes is True
    assert settings.slot_store_path == "/slots"


def test_load_settings_requires_store_url(required_env: pytest.MonkeyPatch) -> None:
    required_env.delenv("SLOT_STORE_URL")

    with pytest.raises(RuntimeError, match=r"Missing required environment variable: SLOT_STORE_URL"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_invalid_owner_email(required_env: pytest.MonkeyPatch) -> None:
    required_env.setenv("OWNER_EMAIL", "not-an-email")

    with pytest.raises(RuntimeError, match=r"Invalid OWNER_EMAIL"):
        load_settings(dotenv_path=None)


@pytest.mark.parametrize("raw", ["0", "-5", "soon"])
def test_load_settings_rejects_bad_refresh_interval(required_env: pytest.MonkeyPatch, raw: str) -> None:
    required_env.setenv("REFRESH_INTERVAL_SECONDS", raw)

    with pytest.raises(RuntimeError, match=r"REFRESH_INTERVAL_SECONDS"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_zero_retry_attempts(required_env: pytest.MonkeyPatch) -> None:
    required_env.setenv("FETCH_RETRY_ATTEMPTS", "0")

    with pytest.raises(RuntimeError, match=r"FETCH_RETRY_ATTEMPTS must be >= 1"):
        load_settings(dotenv_path=None)


def test_load_settings_does_not_override_existing_env_with_dotenv(required_env: pytest.MonkeyPatch, tmp_path) -> None:
    # load_dotenv(override=False) must not overwrite already-set env vars.
    dotenv = tmp_path / ".env"
    dotenv.write_text("OWNER_EMAIL=other@example.org\n")

    settings = load_settings(dotenv_path=str(dotenv))
    assert settings.owner_email == "owner@example.org"
