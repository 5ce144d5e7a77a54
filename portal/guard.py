"""Authorization decisions for session-protected routes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

from fastapi import Request

from .errors import Forbidden, SessionInvalid, Unauthenticated
from .models import IdentityKind, Principal
from .sessions import SessionManager

SESSION_COOKIE_NAME = "portal_session"

_BASE_ROLE_FOR_KIND = {
    IdentityKind.LOCAL: "customer",
    IdentityKind.DIRECTORY: "employee",
}


class Outcome(str, Enum):
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Requirement:
    """What a route demands of the caller's session."""

    roles: FrozenSet[str] = frozenset()
    kind: Optional[IdentityKind] = None

    @staticmethod
    def of(*roles: str, kind: Optional[IdentityKind] = None) -> "Requirement":
        return Requirement(roles=frozenset(roles), kind=kind)


AUTHENTICATED = Requirement()
ADMIN_ONLY = Requirement.of("admin")
EMPLOYEE_ONLY = Requirement.of("employee", kind=IdentityKind.DIRECTORY)


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    principal: Optional[Principal] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW


def _role_satisfies(principal: Principal, roles: Iterable[str]) -> bool:
    accepted = set(roles)
    if not accepted or principal.role in accepted:
        return True
    # Admins also pass the base-role check of their own identity kind.
    return principal.is_admin and _BASE_ROLE_FOR_KIND[principal.kind] in accepted


def authorize(principal: Optional[Principal], requirement: Requirement = AUTHENTICATED) -> Decision:
    """Decide whether ``principal`` may proceed under ``requirement``."""

    if principal is None:
        return Decision(Outcome.UNAUTHENTICATED)
    if requirement.kind is not None and principal.kind is not requirement.kind:
        return Decision(Outcome.FORBIDDEN, principal)
    if not _role_satisfies(principal, requirement.roles):
        return Decision(Outcome.FORBIDDEN, principal)
    return Decision(Outcome.ALLOW, principal)


def build_guard(
    sessions: SessionManager,
    requirement: Requirement = AUTHENTICATED,
) -> Callable[[Request], Principal]:
    """Return a FastAPI dependency enforcing ``requirement`` via the session cookie."""

    def dependency(request: Request) -> Principal:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        principal: Optional[Principal]
        try:
            principal = sessions.resolve_session(token)
        except SessionInvalid:
            principal = None

        decision = authorize(principal, requirement)
        if decision.outcome is Outcome.UNAUTHENTICATED:
            raise Unauthenticated()
        if decision.outcome is Outcome.FORBIDDEN:
            raise Forbidden()
        if decision.principal is None:
            raise Unauthenticated()
        return decision.principal

    return dependency


__all__ = [
    "ADMIN_ONLY",
    "AUTHENTICATED",
    "Decision",
    "EMPLOYEE_ONLY",
    "Outcome",
    "Requirement",
    "SESSION_COOKIE_NAME",
    "authorize",
    "build_guard",
]
