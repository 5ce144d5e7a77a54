from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Optional

import pytest

from portal import guard
from portal.errors import SessionInvalid, Unauthenticated
from portal.guard import (
    ADMIN_ONLY,
    AUTHENTICATED,
    EMPLOYEE_ONLY,
    SESSION_COOKIE_NAME,
    Decision,
    Outcome,
    Requirement,
    authorize,
    build_guard,
)
from portal.models import (
    CustomerRole,
    CustomerStatus,
    DirectoryUser,
    EmployeeRole,
    IdentityKind,
    LocalUser,
    Principal,
)

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _customer(role: CustomerRole = CustomerRole.CUSTOMER) -> Principal:
    user = LocalUser(
        id=1,
        username="acme",
        email="owner@example.com",
        full_name=None,
        company_name=None,
        phone=None,
        role=role,
        status=CustomerStatus.ACTIVE,
        created_at=STAMP,
        updated_at=STAMP,
    )
    return Principal(kind=IdentityKind.LOCAL, user=user)


def _employee(role: EmployeeRole = EmployeeRole.EMPLOYEE) -> Principal:
    user = DirectoryUser(
        id=1,
        username="jdoe",
        email="jdoe@tecknet.ca",
        full_name="Jane Doe",
        role=role,
        last_login=None,
        created_at=STAMP,
        updated_at=STAMP,
    )
    return Principal(kind=IdentityKind.DIRECTORY, user=user)


def test_missing_principal_is_unauthenticated() -> None:
    assert authorize(None).outcome is Outcome.UNAUTHENTICATED
    assert authorize(None, ADMIN_ONLY).outcome is Outcome.UNAUTHENTICATED


@pytest.mark.parametrize(
    "principal",
    [_customer(), _customer(CustomerRole.ADMIN), _employee(), _employee(EmployeeRole.ADMIN)],
)
def test_any_session_passes_authenticated(principal: Principal) -> None:
    decision = authorize(principal, AUTHENTICATED)
    assert decision.allowed
    assert decision.principal is principal


@pytest.mark.parametrize(
    "principal, expected",
    [
        (_customer(), Outcome.FORBIDDEN),
        (_employee(), Outcome.FORBIDDEN),
        (_customer(CustomerRole.ADMIN), Outcome.ALLOW),
        (_employee(EmployeeRole.ADMIN), Outcome.ALLOW),
    ],
)
def test_admin_only(principal: Principal, expected: Outcome) -> None:
    assert authorize(principal, ADMIN_ONLY).outcome is expected


@pytest.mark.parametrize(
    "principal, expected",
    [
        (_employee(), Outcome.ALLOW),
        (_employee(EmployeeRole.ADMIN), Outcome.ALLOW),
        (_customer(), Outcome.FORBIDDEN),
        (_customer(CustomerRole.ADMIN), Outcome.FORBIDDEN),
    ],
)
def test_employee_only_requires_directory_identity(principal: Principal, expected: Outcome) -> None:
    assert authorize(principal, EMPLOYEE_ONLY).outcome is expected


def test_customer_role_requirement_admits_customer_admins() -> None:
    requirement = Requirement.of("customer")

    assert authorize(_customer(), requirement).allowed
    assert authorize(_customer(CustomerRole.ADMIN), requirement).allowed
    assert not authorize(_employee(EmployeeRole.ADMIN), requirement).allowed


class _Sessions:
    def __init__(self, principal: Optional[Principal] = None) -> None:
        self.principal = principal

    def resolve_session(self, token: Optional[str]) -> Principal:
        if self.principal is None or not token:
            raise SessionInvalid()
        return self.principal


def _request(token: Optional[str] = None) -> SimpleNamespace:
    return SimpleNamespace(cookies={SESSION_COOKIE_NAME: token} if token else {})


def test_guard_dependency_returns_resolved_principal() -> None:
    customer = _customer()
    dependency = build_guard(_Sessions(customer))

    assert dependency(_request("token")) is customer
    with pytest.raises(Unauthenticated):
        dependency(_request())


def test_guard_refuses_an_allow_without_principal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(guard, "authorize", lambda principal, requirement: Decision(Outcome.ALLOW))
    dependency = build_guard(_Sessions())

    with pytest.raises(Unauthenticated):
        dependency(_request("token"))
