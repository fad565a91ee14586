"""Runtime settings, read from ``CADCONVERT_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import date
from zoneinfo import ZoneInfo

DEFAULT_VALET_URL = "https://www.bankofcanada.ca/valet"
# First day of the FX_RATES_DAILY group
DEFAULT_START_DATE = date(2017, 1, 3)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_date(name: str, default: date) -> date:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be YYYY-MM-DD, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    valet_url: str = DEFAULT_VALET_URL
    start_date: date = DEFAULT_START_DATE
    timezone: str = "America/Toronto"
    check_interval: float = 60.0
    force_update_prompt: bool = False
    timeout: float = 30.0
    publish_hour: int = 16
    publish_minute: int = 30

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> Settings:
        timezone = os.environ.get("CADCONVERT_TIMEZONE", "").strip() or "America/Toronto"
        try:
            ZoneInfo(timezone)
        except (KeyError, ValueError) as exc:
            raise ValueError(f"CADCONVERT_TIMEZONE is not a known zone: {timezone!r}") from exc

        return cls(
            valet_url=os.environ.get("CADCONVERT_VALET_URL", "").strip().rstrip("/")
            or DEFAULT_VALET_URL,
            start_date=_env_date("CADCONVERT_START_DATE", DEFAULT_START_DATE),
            timezone=timezone,
            check_interval=_env_float("CADCONVERT_CHECK_INTERVAL", 60.0),
            force_update_prompt=_env_bool("CADCONVERT_FORCE_UPDATE_PROMPT", False),
            timeout=_env_float("CADCONVERT_TIMEOUT", 30.0),
        )

    def with_overrides(self, **changes: object) -> Settings:
        """Return a copy with the non-``None`` overrides applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
