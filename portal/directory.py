"""Enterprise directory collaborators used for employee authentication."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

import yaml

from .database import verify_password
from .errors import DirectoryUnavailable

logger = logging.getLogger("portal.directory")


@dataclass(frozen=True)
class DirectoryProfile:
    """Attributes the directory reports for a successfully verified account."""

    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None


class DirectoryAuthenticator(Protocol):
    """Verifies employee credentials against an external authority.

    Implementations return ``None`` when the credentials are rejected and raise
    :class:`~portal.errors.DirectoryUnavailable` when the authority cannot be
    consulted at all.
    """

    def authenticate(self, username: str, password: str) -> Optional[DirectoryProfile]:
        ...


@dataclass(frozen=True)
class DirectoryAccount:
    """A single account entry in a directory file."""

    username: str
    password_hash: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    enabled: bool = True

    @staticmethod
    def from_dict(data: Dict[str, object], domain: Optional[str] = None) -> "DirectoryAccount":
        required_fields = {"username", "password_hash"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Missing required directory account fields: {', '.join(sorted(missing))}")

        username = str(data["username"]).strip()
        if not username:
            raise ValueError("Directory account username must not be empty")

        email = data.get("email")
        if email is None and domain:
            email = f"{username}@{domain}"

        return DirectoryAccount(
            username=username,
            password_hash=str(data["password_hash"]),
            email=str(email) if email is not None else None,
            full_name=str(data["full_name"]) if data.get("full_name") is not None else None,
            enabled=bool(data.get("enabled", True)),
        )

    def to_profile(self) -> DirectoryProfile:
        return DirectoryProfile(
            username=self.username,
            email=self.email,
            full_name=self.full_name or self.username,
        )


class AccountDirectory:
    """In-memory directory backed by a fixed set of accounts."""

    def __init__(self, accounts: Iterable[DirectoryAccount]) -> None:
        self._accounts: Dict[str, DirectoryAccount] = {
            account.username.lower(): account for account in accounts
        }

    def authenticate(self, username: str, password: str) -> Optional[DirectoryProfile]:
        account = self._accounts.get(username.strip().lower())
        if account is None or not account.enabled:
            return None
        if not verify_password(password, account.password_hash):
            return None
        return account.to_profile()


def parse_directory(raw: Dict[str, object]) -> AccountDirectory:
    """Build an :class:`AccountDirectory` from parsed YAML content."""

    section = raw.get("directory") if isinstance(raw, dict) else None
    if not isinstance(section, dict):
        raise ValueError("Directory file must define a 'directory' mapping")

    domain = section.get("domain")
    users_raw = section.get("users") or []
    if not isinstance(users_raw, list):
        raise ValueError("The 'directory.users' key must be a list")

    accounts = [
        DirectoryAccount.from_dict(item, domain=str(domain) if domain else None)
        for item in users_raw
    ]
    return AccountDirectory(accounts)


class FileDirectory:
    """Directory read from a YAML file on every authentication attempt.

    Re-reading keeps the portal in step with edits made by administrators
    without a restart. A missing or unreadable file means the directory is
    unreachable, not that the credentials are wrong.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> AccountDirectory:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except OSError as exc:
            logger.error("Directory file %s could not be read: %s", self._path, exc)
            raise DirectoryUnavailable() from exc
        except yaml.YAMLError as exc:
            logger.error("Directory file %s is not valid YAML: %s", self._path, exc)
            raise DirectoryUnavailable() from exc

        try:
            return parse_directory(raw)
        except ValueError as exc:
            logger.error("Directory file %s is misconfigured: %s", self._path, exc)
            raise DirectoryUnavailable() from exc

    def authenticate(self, username: str, password: str) -> Optional[DirectoryProfile]:
        return self._load().authenticate(username, password)


def resolve_directory_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the directory accounts file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "directory.yaml").resolve(strict=False)


__all__ = [
    "AccountDirectory",
    "DirectoryAccount",
    "DirectoryAuthenticator",
    "DirectoryProfile",
    "FileDirectory",
    "parse_directory",
    "resolve_directory_path",
]
