from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from portal.config import PortalSettings


def test_defaults_when_environment_is_empty() -> None:
    settings = PortalSettings.from_env({})

    assert settings.secure_cookies is True
    assert settings.session_ttl == timedelta(hours=24)
    assert settings.sweep_interval == timedelta(hours=1)
    assert settings.database_path.name == "portal.sqlite3"
    assert settings.directory_path.name == "directory.yaml"
    assert settings.zammad.base_url is None
    assert not settings.zammad.configured


def test_values_are_read_from_environment(tmp_path: Path) -> None:
    settings = PortalSettings.from_env(
        {
            "PORTAL_DB_PATH": str(tmp_path / "custom.sqlite3"),
            "PORTAL_DIRECTORY_FILE": str(tmp_path / "accounts.yaml"),
            "PORTAL_SESSION_SECURE": "false",
            "PORTAL_SESSION_TTL_HOURS": "8",
            "PORTAL_SESSION_SWEEP_SECONDS": "300",
            "ZAMMAD_URL": " https://helpdesk.example.com ",
            "ZAMMAD_TOKEN": "abc",
            "ZAMMAD_TIMEOUT": "5",
        }
    )

    assert settings.database_path == (tmp_path / "custom.sqlite3").resolve()
    assert settings.directory_path == (tmp_path / "accounts.yaml").resolve()
    assert settings.secure_cookies is False
    assert settings.session_ttl == timedelta(hours=8)
    assert settings.sweep_interval == timedelta(seconds=300)
    assert settings.zammad.base_url == "https://helpdesk.example.com"
    assert settings.zammad.timeout == 5.0
    assert settings.zammad.configured


@pytest.mark.parametrize(
    "name, value",
    [
        ("PORTAL_SESSION_TTL_HOURS", "0"),
        ("PORTAL_SESSION_SWEEP_SECONDS", "-5"),
        ("ZAMMAD_TIMEOUT", "soon"),
    ],
)
def test_invalid_numbers_are_rejected(name: str, value: str) -> None:
    with pytest.raises(ValueError):
        PortalSettings.from_env({name: value})
