"""Environment-driven configuration for the support portal."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from .database import resolve_database_path
from .directory import resolve_directory_path
from .sessions import DEFAULT_SESSION_TTL, DEFAULT_SWEEP_INTERVAL
from .zammad import ZammadSettings


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Expected a number, got {value!r}") from exc


def _env_str(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


@dataclass(frozen=True)
class PortalSettings:
    """Runtime settings resolved from ``PORTAL_*`` and ``ZAMMAD_*`` variables."""

    database_path: Path
    directory_path: Path
    zammad: ZammadSettings
    secure_cookies: bool = True
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "PortalSettings":
        env = os.environ if environ is None else environ

        ttl_hours = _env_float(env.get("PORTAL_SESSION_TTL_HOURS"))
        sweep_seconds = _env_float(env.get("PORTAL_SESSION_SWEEP_SECONDS"))
        if ttl_hours is not None and ttl_hours <= 0:
            raise ValueError("PORTAL_SESSION_TTL_HOURS must be positive")
        if sweep_seconds is not None and sweep_seconds <= 0:
            raise ValueError("PORTAL_SESSION_SWEEP_SECONDS must be positive")

        return PortalSettings(
            database_path=resolve_database_path(env.get("PORTAL_DB_PATH")),
            directory_path=resolve_directory_path(env.get("PORTAL_DIRECTORY_FILE")),
            zammad=ZammadSettings(
                base_url=_env_str(env.get("ZAMMAD_URL")),
                token=_env_str(env.get("ZAMMAD_TOKEN")),
                username=_env_str(env.get("ZAMMAD_USER")),
                password=env.get("ZAMMAD_PASSWORD") or None,
                timeout=_env_float(env.get("ZAMMAD_TIMEOUT")),
            ),
            secure_cookies=_env_flag(env.get("PORTAL_SESSION_SECURE"), True),
            session_ttl=timedelta(hours=ttl_hours) if ttl_hours is not None else DEFAULT_SESSION_TTL,
            sweep_interval=(
                timedelta(seconds=sweep_seconds) if sweep_seconds is not None else DEFAULT_SWEEP_INTERVAL
            ),
        )


__all__ = ["PortalSettings"]
