from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portal.database import Database, hash_password, verify_password
from portal.models import (
    CustomerRole,
    CustomerStatus,
    EmployeeRole,
    IdentityKind,
    Session,
    TicketPriority,
    TicketStatus,
)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db_path = tmp_path / "portal.sqlite3"
    db = Database(db_path)
    db.initialize()
    return db


def test_create_local_user_defaults_to_pending_customer(database: Database) -> None:
    user = database.create_local_user("acme", email="Owner@Example.com", password="hunter22")

    assert user.role is CustomerRole.CUSTOMER
    assert user.status is CustomerStatus.PENDING
    assert user.email == "owner@example.com"
    assert "password_hash" not in user.to_dict()
    assert user.to_dict()["kind"] == "local"


def test_duplicate_local_user_is_rejected(database: Database) -> None:
    database.create_local_user("acme", email="owner@example.com", password="hunter22")
    with pytest.raises(ValueError):
        database.create_local_user("other", email="owner@example.com", password="hunter22")


def test_find_local_user_credentials_by_username_or_email(database: Database) -> None:
    created = database.create_local_user("acme", email="owner@example.com", password="hunter22")

    by_username = database.find_local_user_credentials("acme")
    by_email = database.find_local_user_credentials("OWNER@example.com")

    assert by_username is not None and by_email is not None
    assert by_username[0].id == created.id == by_email[0].id
    assert verify_password("hunter22", by_email[1])
    assert database.find_local_user_credentials("   ") is None


def test_update_local_user_changes_status_and_password(database: Database) -> None:
    created = database.create_local_user("acme", email="owner@example.com", password="hunter22")

    updated = database.update_local_user(created.id, status=CustomerStatus.ACTIVE, password="new-secret")

    assert updated is not None
    assert updated.status is CustomerStatus.ACTIVE
    _, password_hash = database.find_local_user_credentials("acme")
    assert verify_password("new-secret", password_hash)
    assert database.update_local_user(9999, status=CustomerStatus.ACTIVE) is None


def test_session_row_requires_exactly_one_owner(database: Database) -> None:
    customer = database.create_local_user("acme", email="owner@example.com", password="hunter22")
    employee = database.create_directory_user("jdoe", email="jdoe@example.com", full_name="Jane Doe")
    now = datetime.now(timezone.utc).isoformat()

    conn = sqlite3.connect(database.path)
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO sessions (id, user_id, ad_user_id, expires_at, created_at) VALUES (?, ?, ?, ?, ?)",
                ("both", customer.id, employee.id, now, now),
            )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO sessions (id, user_id, ad_user_id, expires_at, created_at) VALUES (?, NULL, NULL, ?, ?)",
                ("neither", now, now),
            )
    finally:
        conn.close()


def test_session_round_trip_preserves_owner_kind(database: Database) -> None:
    employee = database.create_directory_user("jdoe", email=None, full_name=None, role=EmployeeRole.ADMIN)
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    database.insert_session(
        Session(
            token="tok",
            kind=IdentityKind.DIRECTORY,
            identity_id=employee.id,
            expires_at=now + timedelta(hours=24),
            created_at=now,
        )
    )

    stored = database.get_session("tok")

    assert stored is not None
    assert stored.kind is IdentityKind.DIRECTORY
    assert stored.ad_user_id == employee.id
    assert stored.user_id is None
    assert stored.expires_at == now + timedelta(hours=24)


def test_delete_expired_sessions_compares_instants(database: Database) -> None:
    customer = database.create_local_user("acme", email="owner@example.com", password="hunter22")
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    for token, offset in (("old", -1), ("edge", 0), ("fresh", 1)):
        database.insert_session(
            Session(
                token=token,
                kind=IdentityKind.LOCAL,
                identity_id=customer.id,
                expires_at=base + timedelta(seconds=offset),
                created_at=base - timedelta(hours=1),
            )
        )

    # A non-UTC clock must still compare correctly against stored UTC text.
    eastern = timezone(timedelta(hours=-5))
    removed = database.delete_expired_sessions(base.astimezone(eastern))

    assert removed == 2
    assert database.get_session("fresh") is not None
    assert database.count_sessions() == 1


def test_ticket_shadow_create_and_update(database: Database) -> None:
    customer = database.create_local_user("acme", email="owner@example.com", password="hunter22")
    ticket = database.create_ticket(
        "501",
        subject="Printer",
        description="It is on fire",
        status=TicketStatus.OPEN,
        priority=TicketPriority.HIGH,
        user_id=customer.id,
    )

    assert database.get_ticket_by_external_id("501") == ticket
    with pytest.raises(ValueError):
        database.create_ticket(
            "501",
            subject="Again",
            description=None,
            status=TicketStatus.OPEN,
            priority=TicketPriority.LOW,
            user_id=customer.id,
        )

    updated = database.update_ticket(ticket.id, status=TicketStatus.PENDING, subject="Printer (smoke)")
    assert updated is not None
    assert updated.status is TicketStatus.PENDING
    assert updated.subject == "Printer (smoke)"
    assert database.list_tickets_for_identity(IdentityKind.LOCAL, customer.id) == [updated]
    assert database.update_ticket(9999, status=TicketStatus.CLOSED) is None


def test_default_application_links_are_seeded_once(database: Database) -> None:
    first = database.ensure_default_application_links()
    second = database.ensure_default_application_links()

    assert [link.name for link in first] == ["Prometheus", "Wazuh", "Calendar", "Documentation"]
    assert len(second) == len(first)


def test_password_hash_verification() -> None:
    hashed = hash_password("anothersecurepassword")

    assert hashed.startswith("$pbkdf2-sha256$")
    assert verify_password("anothersecurepassword", hashed)
    assert not verify_password("incorrect", hashed)
    assert not verify_password("anything", "not-a-real-hash")
    assert not verify_password("anything", None)
    with pytest.raises(ValueError):
        hash_password("")
