"""SQLite-backed persistence for identities, sessions, tickets and application links."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from passlib.context import CryptContext

from .models import (
    ApplicationLink,
    CustomerRole,
    CustomerStatus,
    DirectoryUser,
    EmployeeRole,
    IdentityKind,
    LocalUser,
    Session,
    Ticket,
    TicketPriority,
    TicketStatus,
)


DEFAULT_APPLICATION_LINKS: Tuple[Dict[str, object], ...] = (
    {
        "name": "Prometheus",
        "url": "https://prometheus.tecknet.ca",
        "description": "Monitoring and alerting system",
        "icon": "bar-chart-2",
        "order": 1,
    },
    {
        "name": "Wazuh",
        "url": "https://wazuh.tecknet.ca",
        "description": "Security information and event management",
        "icon": "shield",
        "order": 2,
    },
    {
        "name": "Calendar",
        "url": "https://calendar.tecknet.ca",
        "description": "Company-wide calendar and scheduling",
        "icon": "calendar",
        "order": 3,
    },
    {
        "name": "Documentation",
        "url": "https://docs.tecknet.ca",
        "description": "Product and internal documentation",
        "icon": "file-text",
        "order": 4,
    },
)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the portal database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "portal.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical ordering equal to chronological ordering.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return _parse_datetime(str(value))


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed or not password:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class Database:
    """Simple wrapper around SQLite for the portal's local state."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT UNIQUE,
                    password_hash TEXT,
                    full_name TEXT,
                    company_name TEXT,
                    phone TEXT,
                    role TEXT NOT NULL DEFAULT 'customer',
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ad_users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT,
                    full_name TEXT,
                    role TEXT NOT NULL DEFAULT 'employee',
                    last_login TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
                    ad_user_id INTEGER REFERENCES ad_users(id) ON DELETE CASCADE,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    CHECK ((user_id IS NULL) <> (ad_user_id IS NULL))
                );

                CREATE TABLE IF NOT EXISTS tickets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ticket_id TEXT NOT NULL UNIQUE,
                    subject TEXT,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
                    ad_user_id INTEGER REFERENCES ad_users(id) ON DELETE CASCADE,
                    assigned_to INTEGER REFERENCES ad_users(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS application_links (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    description TEXT,
                    icon TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    sort_order INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at);
                CREATE INDEX IF NOT EXISTS idx_tickets_user_id ON tickets(user_id);
                CREATE INDEX IF NOT EXISTS idx_tickets_ad_user_id ON tickets(ad_user_id);
                """
            )

    # ------------------------------------------------------------------
    # Local (customer) users
    # ------------------------------------------------------------------
    def create_local_user(
        self,
        username: str,
        *,
        email: Optional[str],
        password: Optional[str],
        full_name: Optional[str] = None,
        company_name: Optional[str] = None,
        phone: Optional[str] = None,
        role: CustomerRole = CustomerRole.CUSTOMER,
        status: CustomerStatus = CustomerStatus.PENDING,
    ) -> LocalUser:
        """Insert a customer account. ``password`` may be ``None`` for externally verified accounts."""

        normalized_username = username.strip()
        if not normalized_username:
            raise ValueError("Username must not be empty")

        password_hash = hash_password(password) if password is not None else None
        now = _serialize_datetime(_current_timestamp())

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        username, email, password_hash, full_name, company_name,
                        phone, role, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_username,
                        _normalize_email(email),
                        password_hash,
                        _clean_optional(full_name),
                        _clean_optional(company_name),
                        _clean_optional(phone),
                        CustomerRole(role).value,
                        CustomerStatus(status).value,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that username or email already exists") from exc
            user_id = cursor.lastrowid

        user = self.get_local_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_local_user(self, user_id: int) -> Optional[LocalUser]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_local_user(row)

    def find_local_user_credentials(self, identifier: str) -> Optional[Tuple[LocalUser, Optional[str]]]:
        """Look a customer up by username or email and return it with its password hash."""

        cleaned = identifier.strip()
        if not cleaned:
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (cleaned,)).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT * FROM users WHERE email = ?",
                    (_normalize_email(cleaned),),
                ).fetchone()
        if row is None:
            return None
        return self._row_to_local_user(row), row["password_hash"]

    def list_local_users(self, *, status: Optional[CustomerStatus] = None) -> List[LocalUser]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM users WHERE status = ? ORDER BY created_at, id",
                    (CustomerStatus(status).value,),
                ).fetchall()
        return [self._row_to_local_user(row) for row in rows]

    def update_local_user(self, user_id: int, **fields: object) -> Optional[LocalUser]:
        """Update profile, role, status or password of a customer account."""

        allowed = {
            "email": "email",
            "full_name": "full_name",
            "company_name": "company_name",
            "phone": "phone",
            "role": "role",
            "status": "status",
            "password": "password_hash",
        }

        updates: List[str] = []
        values: List[object] = []
        for key, column in allowed.items():
            if key not in fields:
                continue
            value = fields[key]
            if key == "email":
                value = _normalize_email(value)  # type: ignore[arg-type]
            elif key == "role":
                value = CustomerRole(value).value
            elif key == "status":
                value = CustomerStatus(value).value
            elif key == "password":
                value = hash_password(str(value))
            elif isinstance(value, str):
                value = _clean_optional(value)
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_local_user(user_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.append(user_id)
        query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"

        with self._connect() as conn:
            try:
                cursor = conn.execute(query, values)
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            if cursor.rowcount == 0:
                return None

        return self.get_local_user(user_id)

    # ------------------------------------------------------------------
    # Directory (employee) users
    # ------------------------------------------------------------------
    def get_directory_user(self, user_id: int) -> Optional[DirectoryUser]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM ad_users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_directory_user(row)

    def get_directory_user_by_username(self, username: str) -> Optional[DirectoryUser]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ad_users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_directory_user(row)

    def create_directory_user(
        self,
        username: str,
        *,
        email: Optional[str],
        full_name: Optional[str],
        role: EmployeeRole = EmployeeRole.EMPLOYEE,
        last_login: Optional[datetime] = None,
    ) -> DirectoryUser:
        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO ad_users (username, email, full_name, role, last_login, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        username.strip(),
                        _normalize_email(email),
                        _clean_optional(full_name),
                        EmployeeRole(role).value,
                        _serialize_datetime(last_login) if last_login else None,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A directory user with that username already exists") from exc
            user_id = cursor.lastrowid

        user = self.get_directory_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load directory user after creation")
        return user

    def record_directory_login(
        self,
        user_id: int,
        *,
        email: Optional[str],
        full_name: Optional[str],
        last_login: datetime,
    ) -> Optional[DirectoryUser]:
        """Refresh profile attributes from the directory and stamp the login time."""

        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE ad_users
                   SET email = COALESCE(?, email),
                       full_name = COALESCE(?, full_name),
                       last_login = ?,
                       updated_at = ?
                 WHERE id = ?
                """,
                (
                    _normalize_email(email),
                    _clean_optional(full_name),
                    _serialize_datetime(last_login),
                    now,
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_directory_user(user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def insert_session(self, session: Session) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions (id, user_id, ad_user_id, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.token,
                    session.user_id,
                    session.ad_user_id,
                    _serialize_datetime(session.expires_at),
                    _serialize_datetime(session.created_at),
                ),
            )

    def get_session(self, token: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (token,)).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def delete_session(self, token: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (token,))
            return cursor.rowcount > 0

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?",
                (_serialize_datetime(now),),
            )
            return cursor.rowcount

    def count_sessions(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM sessions").fetchone()
        return int(row["total"])

    # ------------------------------------------------------------------
    # Ticket shadow records
    # ------------------------------------------------------------------
    def create_ticket(
        self,
        external_ticket_id: str,
        *,
        subject: Optional[str],
        description: Optional[str],
        status: TicketStatus,
        priority: TicketPriority,
        user_id: Optional[int] = None,
        ad_user_id: Optional[int] = None,
        assigned_to: Optional[int] = None,
    ) -> Ticket:
        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO tickets (
                        ticket_id, subject, description, status, priority,
                        user_id, ad_user_id, assigned_to, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(external_ticket_id),
                        subject,
                        description,
                        TicketStatus(status).value,
                        TicketPriority(priority).value,
                        user_id,
                        ad_user_id,
                        assigned_to,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Ticket {external_ticket_id} is already recorded") from exc
            ticket_id = cursor.lastrowid

        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise RuntimeError("Failed to load ticket after creation")
        return ticket

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_ticket(row)

    def get_ticket_by_external_id(self, external_ticket_id: str) -> Optional[Ticket]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tickets WHERE ticket_id = ?",
                (str(external_ticket_id),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_ticket(row)

    def list_tickets_for_identity(self, kind: IdentityKind, identity_id: int) -> List[Ticket]:
        column = "user_id" if kind is IdentityKind.LOCAL else "ad_user_id"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM tickets WHERE {column} = ? ORDER BY id",
                (identity_id,),
            ).fetchall()
        return [self._row_to_ticket(row) for row in rows]

    def update_ticket(self, ticket_id: int, **fields: object) -> Optional[Ticket]:
        allowed = ("subject", "description", "status", "priority", "assigned_to")

        updates: List[str] = []
        values: List[object] = []
        for column in allowed:
            if column not in fields:
                continue
            value = fields[column]
            if column == "status":
                value = TicketStatus(value).value
            elif column == "priority":
                value = TicketPriority(value).value
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_ticket(ticket_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.append(ticket_id)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE tickets SET {', '.join(updates)} WHERE id = ?",
                values,
            )
            if cursor.rowcount == 0:
                return None

        return self.get_ticket(ticket_id)

    def touch_ticket(self, ticket_id: int) -> Optional[Ticket]:
        """Bump ``updated_at`` without changing any other column."""

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tickets SET updated_at = ? WHERE id = ?",
                (_serialize_datetime(_current_timestamp()), ticket_id),
            )
            if cursor.rowcount == 0:
                return None

        return self.get_ticket(ticket_id)

    def count_tickets(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM tickets").fetchone()
        return int(row["total"])

    # ------------------------------------------------------------------
    # Application links
    # ------------------------------------------------------------------
    def create_application_link(
        self,
        *,
        name: str,
        url: str,
        icon: str,
        description: Optional[str] = None,
        is_active: bool = True,
        order: int = 0,
    ) -> ApplicationLink:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO application_links (name, url, description, icon, is_active, sort_order)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (name, url, description, icon, int(bool(is_active)), int(order)),
            )
            link_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM application_links WHERE id = ?", (link_id,)).fetchone()
        return self._row_to_application_link(row)

    def list_application_links(self, *, active_only: bool = True) -> List[ApplicationLink]:
        query = "SELECT * FROM application_links"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY sort_order, id"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_application_link(row) for row in rows]

    def ensure_default_application_links(
        self,
        defaults: Iterable[Dict[str, object]] = DEFAULT_APPLICATION_LINKS,
    ) -> List[ApplicationLink]:
        """Seed the default links when the table is empty and return the active set."""

        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM application_links").fetchone()
        if int(row["total"]) == 0:
            for link in defaults:
                self.create_application_link(
                    name=str(link["name"]),
                    url=str(link["url"]),
                    icon=str(link["icon"]),
                    description=link.get("description"),  # type: ignore[arg-type]
                    order=int(link.get("order", 0)),  # type: ignore[arg-type]
                )
        return self.list_application_links()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_local_user(self, row: sqlite3.Row) -> LocalUser:
        return LocalUser(
            id=int(row["id"]),
            username=str(row["username"]),
            email=row["email"],
            full_name=row["full_name"],
            company_name=row["company_name"],
            phone=row["phone"],
            role=CustomerRole(row["role"]),
            status=CustomerStatus(row["status"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
            has_password=bool(row["password_hash"]),
        )

    def _row_to_directory_user(self, row: sqlite3.Row) -> DirectoryUser:
        return DirectoryUser(
            id=int(row["id"]),
            username=str(row["username"]),
            email=row["email"],
            full_name=row["full_name"],
            role=EmployeeRole(row["role"]),
            last_login=_parse_optional_datetime(row["last_login"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        if row["user_id"] is not None:
            kind, identity_id = IdentityKind.LOCAL, int(row["user_id"])
        else:
            kind, identity_id = IdentityKind.DIRECTORY, int(row["ad_user_id"])
        return Session(
            token=str(row["id"]),
            kind=kind,
            identity_id=identity_id,
            expires_at=_parse_datetime(str(row["expires_at"])),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_ticket(self, row: sqlite3.Row) -> Ticket:
        return Ticket(
            id=int(row["id"]),
            external_ticket_id=str(row["ticket_id"]),
            subject=row["subject"],
            description=row["description"],
            status=TicketStatus(row["status"]),
            priority=TicketPriority(row["priority"]),
            user_id=row["user_id"],
            ad_user_id=row["ad_user_id"],
            assigned_to=row["assigned_to"],
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_application_link(self, row: sqlite3.Row) -> ApplicationLink:
        return ApplicationLink(
            id=int(row["id"]),
            name=str(row["name"]),
            url=str(row["url"]),
            description=row["description"],
            icon=str(row["icon"]),
            is_active=bool(row["is_active"]),
            order=int(row["sort_order"]),
        )


__all__ = [
    "DEFAULT_APPLICATION_LINKS",
    "Database",
    "hash_password",
    "resolve_database_path",
    "verify_password",
]
