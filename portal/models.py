"""Domain models for the support portal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union


class IdentityKind(str, Enum):
    """Which identity source a session belongs to."""

    LOCAL = "local"
    DIRECTORY = "directory"


class CustomerRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class CustomerStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class EmployeeRole(str, Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class LocalUser:
    """A customer (or customer-side admin) whose password hash is stored locally."""

    id: int
    username: str
    email: Optional[str]
    full_name: Optional[str]
    company_name: Optional[str]
    phone: Optional[str]
    role: CustomerRole
    status: CustomerStatus
    created_at: datetime
    updated_at: datetime
    has_password: bool = True

    kind = IdentityKind.LOCAL

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "company_name": self.company_name,
            "phone": self.phone,
            "role": self.role.value,
            "status": self.status.value,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class DirectoryUser:
    """An employee provisioned from the enterprise directory. Never holds a password."""

    id: int
    username: str
    email: Optional[str]
    full_name: Optional[str]
    role: EmployeeRole
    last_login: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    kind = IdentityKind.DIRECTORY

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value,
            "last_login": _isoformat(self.last_login),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


Identity = Union[LocalUser, DirectoryUser]


@dataclass(frozen=True)
class Session:
    """A login session bound to exactly one identity.

    The owner is stored as a ``(kind, identity_id)`` pair so a session can
    never reference both identity kinds or neither of them.
    """

    token: str
    kind: IdentityKind
    identity_id: int
    expires_at: datetime
    created_at: datetime

    @property
    def user_id(self) -> Optional[int]:
        return self.identity_id if self.kind is IdentityKind.LOCAL else None

    @property
    def ad_user_id(self) -> Optional[int]:
        return self.identity_id if self.kind is IdentityKind.DIRECTORY else None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class Principal:
    """The identity a resolved session acts as."""

    kind: IdentityKind
    user: Identity

    @property
    def id(self) -> int:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role.value

    @property
    def email(self) -> Optional[str]:
        return self.user.email

    @property
    def display_name(self) -> str:
        return self.user.full_name or self.user.username

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> Dict[str, object]:
        return self.user.to_dict()


@dataclass(frozen=True)
class Ticket:
    """Local shadow of a ticket whose authoritative copy lives in the helpdesk."""

    id: int
    external_ticket_id: str
    subject: Optional[str]
    description: Optional[str]
    status: TicketStatus
    priority: TicketPriority
    user_id: Optional[int]
    ad_user_id: Optional[int]
    assigned_to: Optional[int]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "external_ticket_id": self.external_ticket_id,
            "subject": self.subject,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "user_id": self.user_id,
            "ad_user_id": self.ad_user_id,
            "assigned_to": self.assigned_to,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class ApplicationLink:
    """Internal tool shortcut shown to employees."""

    id: int
    name: str
    url: str
    description: Optional[str]
    icon: str
    is_active: bool
    order: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "icon": self.icon,
            "is_active": self.is_active,
            "order": self.order,
        }


__all__ = [
    "ApplicationLink",
    "CustomerRole",
    "CustomerStatus",
    "DirectoryUser",
    "EmployeeRole",
    "Identity",
    "IdentityKind",
    "LocalUser",
    "Principal",
    "Session",
    "Ticket",
    "TicketPriority",
    "TicketStatus",
]
