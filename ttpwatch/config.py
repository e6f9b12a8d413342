from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

from dotenv import load_dotenv

from ttpwatch.domain import SetupError


@dataclass(frozen=True)
class Settings:
    # Substring of the location name, first match wins
    location: str

    # Email alerting is on only when a recipient is set
    alert_email: str | None = None

    poll_period_seconds: int = 30

    sendgrid_config_path: str = "sendgrid.secret"

    # JSON array of {"id", "name"}; when unset the list is fetched from the API
    location_cache_path: str | None = None

    log_path: str = "debug.log"

    # How many runs a crashing task gets before the process gives up.
    restart_attempts: int = 3


def _require(name: str, value: str | None) -> str:
    if not value:
        raise SetupError(f"Missing required setting: {name}")
    return value


def _parse_int(name: str, raw: Any, *, minimum: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise SetupError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < minimum:
        raise SetupError(f"{name} must be >= {minimum}")
    return value


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(overrides: Mapping[str, Any] | None = None, dotenv_path: str | None = None) -> Settings:
    """Build Settings from command line overrides, then the environment, then defaults.

    Overrides whose value is None are ignored, so argparse defaults of None fall
    through to the environment.
    """
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    given = {k: v for k, v in (overrides or {}).items() if v is not None}

    def pick(key: str, env_name: str, default: Any = None) -> Any:
        if key in given:
            return given[key]
        return os.getenv(env_name, default)

    location = _require("TTP_LOCATION", _optional(pick("location", "TTP_LOCATION")))

    poll_period_seconds = _parse_int(
        "POLL_PERIOD_SECONDS", pick("poll_period_seconds", "POLL_PERIOD_SECONDS", "30"), minimum=1
    )
    restart_attempts = _parse_int(
        "RESTART_ATTEMPTS", pick("restart_attempts", "RESTART_ATTEMPTS", "3"), minimum=1
    )

    return Settings(
        location=location,
        alert_email=_optional(pick("alert_email", "TTP_ALERT_EMAIL")),
        poll_period_seconds=poll_period_seconds,
        sendgrid_config_path=str(pick("sendgrid_config_path", "SENDGRID_CONFIG_PATH", "sendgrid.secret")),
        location_cache_path=_optional(pick("location_cache_path", "LOCATION_CACHE_PATH")),
        log_path=str(pick("log_path", "LOG_PATH", "debug.log")),
        restart_attempts=restart_attempts,
    )
