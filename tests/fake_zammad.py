"""In-memory stand-in for the Zammad REST API, served through ``httpx.MockTransport``."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from portal.zammad import ZammadClient, ZammadSettings

BASE_URL = "https://helpdesk.test"
API_PREFIX = "/api/v1"


class FakeZammad:
    def __init__(self) -> None:
        self.users: Dict[int, Dict[str, Any]] = {}
        self.passwords: Dict[str, str] = {}
        self.tickets: Dict[int, Dict[str, Any]] = {}
        self.articles: Dict[int, List[Dict[str, Any]]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self._next_user_id = 100
        self._next_ticket_id = 500
        self._next_article_id = 900

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------
    def client(self, **settings: Any) -> ZammadClient:
        options = {"base_url": BASE_URL, "token": "test-token"}
        options.update(settings)
        return ZammadClient(ZammadSettings(**options), transport=httpx.MockTransport(self.handle))

    def fail(self, method: str, path: str, status_code: int = 500, body: str = "boom") -> None:
        self.failures[(method.upper(), path)] = (status_code, body)

    def add_user(
        self,
        email: str,
        firstname: str = "",
        lastname: str = "",
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        user = {
            "id": self._next_user_id,
            "email": email,
            "firstname": firstname,
            "lastname": lastname,
            "role_ids": [3],
        }
        self.users[user["id"]] = user
        if password is not None:
            self.passwords[email.lower()] = password
        self._next_user_id += 1
        return user

    def add_ticket(self, customer_id: int, title: str, state_id: int = 1, priority_id: int = 2, body: str = "") -> Dict[str, Any]:
        ticket = {
            "id": self._next_ticket_id,
            "number": str(31000 + self._next_ticket_id),
            "title": title,
            "customer_id": customer_id,
            "state_id": state_id,
            "priority_id": priority_id,
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-01T00:00:00Z",
        }
        self.tickets[ticket["id"]] = ticket
        self.articles[ticket["id"]] = []
        self._next_ticket_id += 1
        if body:
            self.add_article(ticket["id"], body, sender="Customer")
        return ticket

    def add_article(self, ticket_id: int, body: str, *, internal: bool = False, sender: str = "Agent") -> Dict[str, Any]:
        article = {
            "id": self._next_article_id,
            "ticket_id": ticket_id,
            "body": body,
            "internal": internal,
            "sender": sender,
            "type": "note",
            "created_at": "2024-01-01T00:00:00Z",
        }
        self.articles.setdefault(ticket_id, []).append(article)
        self._next_article_id += 1
        return article

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _basic_credentials(self, request: httpx.Request) -> Optional[Tuple[str, str]]:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Basic "):
            return None
        decoded = base64.b64decode(header[len("Basic "):]).decode("utf-8")
        email, _, password = decoded.partition(":")
        return email, password

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(API_PREFIX):
            path = path[len(API_PREFIX):]
        method = request.method.upper()
        self.requests.append((method, path))

        failure = self.failures.get((method, path))
        if failure is not None:
            status_code, body = failure
            return httpx.Response(status_code, text=body)

        payload: Optional[Dict[str, Any]] = None
        if request.content:
            payload = json.loads(request.content)

        if method == "GET" and path == "/users/me":
            credentials = self._basic_credentials(request)
            if credentials is None:
                return httpx.Response(401, json={"error": "authentication failed"})
            email, password = credentials
            if self.passwords.get(email.lower()) != password:
                return httpx.Response(401, json={"error": "authentication failed"})
            for user in self.users.values():
                if user["email"].lower() == email.lower():
                    return httpx.Response(200, json=user)
            return httpx.Response(401, json={"error": "authentication failed"})
        if method == "GET" and path == "/users/search":
            # Full-text search: partial matches are returned too.
            query = request.url.params.get("query", "").lower()
            matches = [user for user in self.users.values() if query in user["email"].lower()]
            return httpx.Response(200, json=matches)
        if method == "POST" and path == "/users":
            user = self.add_user(payload["email"], payload.get("firstname", ""), payload.get("lastname", ""))
            return httpx.Response(201, json=user)
        if method == "GET" and path == "/tickets/search":
            query = request.url.params.get("query", "")
            customer_id = int(query.split(":", 1)[1]) if ":" in query else None
            matches = [ticket for ticket in self.tickets.values() if ticket["customer_id"] == customer_id]
            return httpx.Response(200, json=matches)
        if method == "POST" and path == "/tickets":
            article = payload.get("article") or {}
            ticket = self.add_ticket(
                payload["customer_id"],
                payload["title"],
                state_id=payload.get("state_id", 1),
                priority_id=payload.get("priority_id", 2),
                body=article.get("body", ""),
            )
            return httpx.Response(201, json=ticket)
        if method == "GET" and path.startswith("/ticket_articles/by_ticket/"):
            ticket_id = int(path.rsplit("/", 1)[1])
            if ticket_id not in self.tickets:
                return httpx.Response(404, json={"error": "Not Found"})
            return httpx.Response(200, json=self.articles.get(ticket_id, []))
        if method == "POST" and path == "/ticket_articles":
            ticket_id = int(payload["ticket_id"])
            if ticket_id not in self.tickets:
                return httpx.Response(404, json={"error": "Not Found"})
            article = self.add_article(
                ticket_id,
                payload["body"],
                internal=bool(payload.get("internal")),
                sender="Customer",
            )
            return httpx.Response(201, json=article)
        if path.startswith("/tickets/"):
            ticket = self.tickets.get(int(path.rsplit("/", 1)[1]))
            if ticket is None:
                return httpx.Response(404, json={"error": "Not Found"})
            if method == "GET":
                return httpx.Response(200, json=ticket)
            if method == "PUT":
                for key in ("title", "state_id", "priority_id"):
                    if key in payload:
                        ticket[key] = payload[key]
                if payload.get("article"):
                    self.add_article(ticket["id"], payload["article"]["body"], sender="Customer")
                return httpx.Response(200, json=ticket)

        return httpx.Response(404, json={"error": f"No route for {method} {path}"})
