"""Ticket proxy between the portal's vocabulary and the Zammad helpdesk.

Status codes map onto Zammad's default ticket states::

    open        -> 1 (new)
    in_progress -> 2 (open)
    pending     -> 3 (pending reminder)
    resolved    -> 4 (closed)
    closed      -> 6 (closed successful)

The reverse direction folds several states together: 3 and 5 (pending
close) become ``pending``; 4, 6 and 7 (closed unsuccessful) become
``closed``. A ticket read back from the helpdesk can therefore report a
different status than the one written, e.g. ``resolved`` reads back as
``closed`` and state 5 is written back as 3. Keep the tables lossy.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .database import Database
from .errors import (
    ExternalUnavailable,
    Forbidden,
    PartialSyncFailure,
    TicketNotFound,
    ValidationError,
)
from .models import IdentityKind, Principal, Ticket, TicketPriority, TicketStatus
from .zammad import ZammadClient, ZammadError

logger = logging.getLogger("portal.tickets")

STATUS_TO_EXTERNAL: Dict[TicketStatus, int] = {
    TicketStatus.OPEN: 1,
    TicketStatus.IN_PROGRESS: 2,
    TicketStatus.PENDING: 3,
    TicketStatus.RESOLVED: 4,
    TicketStatus.CLOSED: 6,
}

EXTERNAL_TO_STATUS: Dict[int, TicketStatus] = {
    1: TicketStatus.OPEN,
    2: TicketStatus.IN_PROGRESS,
    3: TicketStatus.PENDING,
    5: TicketStatus.PENDING,
    4: TicketStatus.CLOSED,
    6: TicketStatus.CLOSED,
    7: TicketStatus.CLOSED,
}

PRIORITY_TO_EXTERNAL: Dict[TicketPriority, int] = {
    TicketPriority.LOW: 1,
    TicketPriority.MEDIUM: 2,
    TicketPriority.HIGH: 3,
    TicketPriority.CRITICAL: 4,
}

EXTERNAL_TO_PRIORITY: Dict[int, TicketPriority] = {
    code: priority for priority, code in PRIORITY_TO_EXTERNAL.items()
}

_DEFAULT_STATUS_CODE = STATUS_TO_EXTERNAL[TicketStatus.OPEN]
_DEFAULT_PRIORITY_CODE = PRIORITY_TO_EXTERNAL[TicketPriority.MEDIUM]


def _coerce_code(code: object) -> Optional[int]:
    try:
        return int(code)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def status_to_external(status: Optional[object]) -> int:
    try:
        return STATUS_TO_EXTERNAL[TicketStatus(status)]
    except ValueError:
        return _DEFAULT_STATUS_CODE


def status_from_external(code: object) -> TicketStatus:
    return EXTERNAL_TO_STATUS.get(_coerce_code(code), TicketStatus.OPEN)  # type: ignore[arg-type]


def priority_to_external(priority: Optional[object]) -> int:
    try:
        return PRIORITY_TO_EXTERNAL[TicketPriority(priority)]
    except ValueError:
        return _DEFAULT_PRIORITY_CODE


def priority_from_external(code: object) -> TicketPriority:
    return EXTERNAL_TO_PRIORITY.get(_coerce_code(code), TicketPriority.MEDIUM)  # type: ignore[arg-type]


@dataclass(frozen=True)
class TicketDraft:
    subject: str
    description: str
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM


@dataclass(frozen=True)
class TicketArticle:
    """One message in a helpdesk ticket's conversation."""

    id: str
    body: str
    internal: bool = False
    sender: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "body": self.body,
            "internal": self.internal,
            "sender": self.sender,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class HelpdeskTicket:
    """A ticket as reported by the helpdesk, in portal vocabulary."""

    external_ticket_id: str
    subject: Optional[str]
    description: str
    status: TicketStatus
    priority: TicketPriority
    number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    local_id: Optional[int] = None
    articles: Tuple[TicketArticle, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.local_id,
            "external_ticket_id": self.external_ticket_id,
            "number": self.number,
            "subject": self.subject,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "articles": [article.to_dict() for article in self.articles],
        }


def _first_article_body(payload: Mapping[str, Any]) -> str:
    articles = payload.get("articles")
    if isinstance(articles, list) and articles:
        first = articles[0]
        if isinstance(first, Mapping):
            return str(first.get("body") or "")
    article = payload.get("article")
    if isinstance(article, Mapping):
        return str(article.get("body") or "")
    return ""


def map_from_external(payload: Mapping[str, Any], *, local_id: Optional[int] = None) -> HelpdeskTicket:
    number = payload.get("number")
    return HelpdeskTicket(
        external_ticket_id=str(payload.get("id")),
        subject=payload.get("title"),
        description=_first_article_body(payload),
        status=status_from_external(payload.get("state_id")),
        priority=priority_from_external(payload.get("priority_id")),
        number=str(number) if number is not None else None,
        created_at=payload.get("created_at"),
        updated_at=payload.get("updated_at"),
        local_id=local_id,
    )


def map_article(payload: Mapping[str, Any]) -> TicketArticle:
    sender = payload.get("sender") or payload.get("from")
    return TicketArticle(
        id=str(payload.get("id")),
        body=str(payload.get("body") or ""),
        internal=bool(payload.get("internal")),
        sender=str(sender) if sender else None,
        created_at=payload.get("created_at"),
    )


def build_reply_payload(external_ticket_id: str, body: str, *, subject: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "ticket_id": _coerce_code(external_ticket_id) or external_ticket_id,
        "body": body,
        "content_type": "text/plain",
        "type": "note",
        "internal": False,
    }
    if subject:
        payload["subject"] = subject
    return payload


def build_create_payload(draft: TicketDraft, customer_id: object) -> Dict[str, Any]:
    return {
        "title": draft.subject,
        "customer_id": customer_id,
        "state_id": status_to_external(draft.status),
        "priority_id": priority_to_external(draft.priority),
        "article": {
            "subject": draft.subject,
            "body": draft.description,
            "type": "note",
            "internal": False,
        },
    }


def can_access(principal: Principal, ticket: Ticket) -> bool:
    """Customers only see their own tickets; employees see every ticket."""

    if principal.kind is IdentityKind.DIRECTORY:
        return True
    if principal.is_admin:
        return True
    return ticket.user_id == principal.id


def _require_email(principal: Principal) -> str:
    email = principal.email
    if not email:
        raise ValidationError("User email not found")
    return email


def _external_failure(action: str, exc: ZammadError) -> ExternalUnavailable:
    logger.error(
        "Zammad request failed while %s (status=%s): %s %s",
        action,
        exc.status_code,
        exc,
        exc.body or "",
    )
    return ExternalUnavailable(upstream_status=exc.status_code, upstream_body=exc.body)


class TicketService:
    """Forward ticket operations to the helpdesk and maintain local shadows."""

    def __init__(self, database: Database, zammad: ZammadClient) -> None:
        self._database = database
        self._zammad = zammad

    def create_ticket(self, principal: Principal, draft: TicketDraft) -> Ticket:
        email = _require_email(principal)

        try:
            customer = self._zammad.find_or_create_customer(email, principal.display_name)
            created = self._zammad.create_ticket(build_create_payload(draft, customer.get("id")))
        except ZammadError as exc:
            raise _external_failure("creating a ticket", exc) from exc

        external_id = created.get("id")
        if external_id is None:
            logger.error("Zammad accepted a ticket but returned no id: %s", created)
            raise ExternalUnavailable()

        # Read back through the lossy tables so the shadow mirrors the helpdesk.
        status = status_from_external(created.get("state_id", status_to_external(draft.status)))
        priority = priority_from_external(created.get("priority_id", priority_to_external(draft.priority)))

        try:
            ticket = self._database.create_ticket(
                str(external_id),
                subject=created.get("title") or draft.subject,
                description=draft.description,
                status=status,
                priority=priority,
                user_id=principal.id if principal.kind is IdentityKind.LOCAL else None,
                ad_user_id=principal.id if principal.kind is IdentityKind.DIRECTORY else None,
            )
        except (sqlite3.Error, ValueError) as exc:
            logger.exception("Ticket %s created in Zammad but the local record could not be saved", external_id)
            raise PartialSyncFailure(
                str(external_id),
                "Ticket was created in the helpdesk but the local record could not be saved",
            ) from exc
        logger.info("Ticket %s created in Zammad as %s by %s %s", ticket.id, external_id, principal.kind.value, principal.id)
        return ticket

    def get_tickets_by_identity(self, email: str) -> List[HelpdeskTicket]:
        try:
            customer = self._zammad.find_customer(email)
            if customer is None:
                return []
            remote = self._zammad.search_tickets(f"customer.id:{customer.get('id')}")
        except ZammadError as exc:
            raise _external_failure("listing tickets", exc) from exc

        tickets: List[HelpdeskTicket] = []
        for item in remote:
            shadow = self._database.get_ticket_by_external_id(str(item.get("id")))
            ticket = map_from_external(item, local_id=shadow.id if shadow else None)
            if not ticket.description and shadow is not None and shadow.description:
                ticket = replace(ticket, description=shadow.description)
            tickets.append(ticket)
        return tickets

    def list_tickets_for(self, principal: Principal) -> List[HelpdeskTicket]:
        return self.get_tickets_by_identity(_require_email(principal))

    def get_ticket(self, ticket_id: int, *, principal: Optional[Principal] = None) -> HelpdeskTicket:
        shadow = self._load_shadow(ticket_id, principal)
        try:
            remote = self._zammad.get_ticket(shadow.external_ticket_id)
        except ZammadError as exc:
            if exc.status_code == 404:
                raise TicketNotFound() from exc
            raise _external_failure("loading a ticket", exc) from exc

        try:
            articles = [map_article(item) for item in self._zammad.list_articles(shadow.external_ticket_id)]
        except ZammadError as exc:
            raise _external_failure("loading ticket articles", exc) from exc

        ticket = map_from_external(remote, local_id=shadow.id)
        description = ticket.description or (articles[0].body if articles else "") or shadow.description or ""
        # Internal notes are for staff only.
        if principal is None or principal.kind is IdentityKind.LOCAL:
            articles = [article for article in articles if not article.internal]
        return replace(ticket, description=description, articles=tuple(articles))

    def add_reply(self, ticket_id: int, body: str, *, principal: Optional[Principal] = None) -> TicketArticle:
        """Append a public note to the helpdesk ticket and bump the shadow's ``updated_at``."""

        shadow = self._load_shadow(ticket_id, principal)
        text = (body or "").strip()
        if not text:
            raise ValidationError("Reply must not be empty", errors=[{"field": "body", "message": "Reply is required"}])

        try:
            created = self._zammad.create_article(
                build_reply_payload(shadow.external_ticket_id, text, subject=shadow.subject)
            )
        except ZammadError as exc:
            if exc.status_code == 404:
                raise TicketNotFound() from exc
            raise _external_failure(f"replying to ticket {shadow.external_ticket_id}", exc) from exc

        try:
            touched = self._database.touch_ticket(shadow.id)
        except sqlite3.Error as exc:
            logger.exception(
                "Reply added to ticket %s in Zammad but the local record could not be saved",
                shadow.external_ticket_id,
            )
            raise PartialSyncFailure(shadow.external_ticket_id) from exc
        if touched is None:
            logger.error("Local record for ticket %s vanished during reply", shadow.external_ticket_id)
            raise PartialSyncFailure(shadow.external_ticket_id)

        logger.info("Reply added to ticket %s", shadow.external_ticket_id)
        return map_article(created)

    def update_ticket(
        self,
        ticket_id: int,
        changes: Mapping[str, Any],
        *,
        principal: Optional[Principal] = None,
    ) -> Ticket:
        shadow = self._load_shadow(ticket_id, principal)

        fields: Dict[str, Any] = {}
        if changes.get("subject") is not None:
            fields["subject"] = str(changes["subject"])
        if changes.get("description") is not None:
            fields["description"] = str(changes["description"])
        if changes.get("status") is not None:
            fields["status"] = TicketStatus(changes["status"])
        if changes.get("priority") is not None:
            fields["priority"] = TicketPriority(changes["priority"])
        if not fields:
            return shadow

        subject = fields.get("subject", shadow.subject)
        payload: Dict[str, Any] = {
            "title": subject,
            "state_id": status_to_external(fields.get("status", shadow.status)),
            "priority_id": priority_to_external(fields.get("priority", shadow.priority)),
        }
        if "description" in fields:
            payload["article"] = {
                "subject": subject,
                "body": fields["description"],
                "type": "note",
                "internal": False,
            }

        try:
            self._zammad.update_ticket(shadow.external_ticket_id, payload)
        except ZammadError as exc:
            raise _external_failure(f"updating ticket {shadow.external_ticket_id}", exc) from exc

        try:
            updated = self._database.update_ticket(shadow.id, **fields)
        except (sqlite3.Error, ValueError) as exc:
            logger.exception(
                "Ticket %s updated in Zammad but the local record could not be saved",
                shadow.external_ticket_id,
            )
            raise PartialSyncFailure(shadow.external_ticket_id) from exc
        if updated is None:
            logger.error("Local record for ticket %s vanished during update", shadow.external_ticket_id)
            raise PartialSyncFailure(shadow.external_ticket_id)

        logger.info("Ticket %s updated (%s)", shadow.external_ticket_id, ", ".join(sorted(fields)))
        return updated

    def _load_shadow(self, ticket_id: int, principal: Optional[Principal]) -> Ticket:
        shadow = self._database.get_ticket(ticket_id)
        if shadow is None:
            raise TicketNotFound()
        if principal is not None and not can_access(principal, shadow):
            raise Forbidden("You do not have access to this ticket")
        return shadow


__all__ = [
    "EXTERNAL_TO_PRIORITY",
    "EXTERNAL_TO_STATUS",
    "HelpdeskTicket",
    "PRIORITY_TO_EXTERNAL",
    "STATUS_TO_EXTERNAL",
    "TicketDraft",
    "TicketService",
    "TicketArticle",
    "build_create_payload",
    "build_reply_payload",
    "can_access",
    "map_article",
    "map_from_external",
    "priority_from_external",
    "priority_to_external",
    "status_from_external",
    "status_to_external",
]
