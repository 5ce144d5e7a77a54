"""Persistent session handling for portal logins."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .database import Database
from .errors import SessionInvalid
from .identity import IdentityStore
from .models import CustomerStatus, Identity, IdentityKind, Principal, Session

logger = logging.getLogger("portal.sessions")

DEFAULT_SESSION_TTL = timedelta(hours=24)
DEFAULT_SWEEP_INTERVAL = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Issue, resolve, and revoke sessions bound to exactly one identity."""

    def __init__(
        self,
        database: Database,
        identities: IdentityStore,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._database = database
        self._identities = identities
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create_session(
        self,
        identity: Identity,
        kind: IdentityKind,
        ttl: Optional[timedelta] = None,
    ) -> Session:
        if identity.kind is not kind:
            raise ValueError(f"Identity of kind {identity.kind.value} cannot own a {kind.value} session")

        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            kind=kind,
            identity_id=identity.id,
            expires_at=now + (ttl if ttl is not None else self._ttl),
            created_at=now,
        )
        self._database.insert_session(session)
        logger.debug("Issued %s session for identity %s", kind.value, identity.id)
        return session

    def resolve_session(self, token: Optional[str]) -> Principal:
        if not token:
            raise SessionInvalid()

        session = self._database.get_session(token)
        if session is None:
            raise SessionInvalid()
        if session.is_expired(self._clock()):
            raise SessionInvalid("Session has expired")

        principal = self._identities.get_principal(session.kind, session.identity_id)
        if principal is None:
            self._database.delete_session(token)
            raise SessionInvalid()

        user = principal.user
        if principal.kind is IdentityKind.LOCAL and user.status is not CustomerStatus.ACTIVE:
            self._database.delete_session(token)
            raise SessionInvalid("Account is no longer active")
        return principal

    def destroy_session(self, token: Optional[str]) -> None:
        if not token:
            return
        self._database.delete_session(token)

    def sweep_expired(self) -> int:
        removed = self._database.delete_expired_sessions(self._clock())
        if removed:
            logger.info("Removed %s expired session(s)", removed)
        return removed


class SessionSweeper:
    """Owns the recurring task that purges expired sessions."""

    def __init__(
        self,
        sessions: SessionManager,
        *,
        interval: timedelta = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("Sweep interval must be positive")
        self._sessions = sessions
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        return self._sessions.sweep_expired()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        delay = self._interval.total_seconds()
        while True:
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Session cleanup failed")


__all__ = [
    "DEFAULT_SESSION_TTL",
    "DEFAULT_SWEEP_INTERVAL",
    "SessionManager",
    "SessionSweeper",
]
