"""HTTP client for the Zammad helpdesk REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

logger = logging.getLogger("portal.zammad")

CUSTOMER_ROLE_ID = 3


class ZammadError(RuntimeError):
    """Raised when the helpdesk cannot be reached or answers with a non-2xx status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class ZammadSettings:
    base_url: Optional[str]
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url) and (bool(self.token) or bool(self.username and self.password))


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip().rstrip("/")
    if not cleaned:
        raise ValueError("Zammad base URL must not be empty")
    if not cleaned.endswith("/api/v1"):
        cleaned = f"{cleaned}/api/v1"
    return cleaned


def _split_name(name: str) -> Tuple[str, str]:
    parts = (name or "").strip().split(" ", 1)
    firstname = parts[0] if parts else ""
    lastname = parts[1].strip() if len(parts) > 1 else ""
    return firstname, lastname


class ZammadClient:
    """Thin wrapper over the Zammad endpoints the portal relies on."""

    def __init__(
        self,
        settings: ZammadSettings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._client: Optional[httpx.Client] = None
        if not settings.base_url:
            logger.warning("ZAMMAD_URL is not set; helpdesk integration is disabled")
            return

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        auth: Optional[Tuple[str, str]] = None
        if settings.token:
            headers["Authorization"] = f"Token token={settings.token}"
        elif settings.username and settings.password:
            auth = (settings.username, settings.password)
        else:
            logger.warning("No Zammad credentials configured; requests will be unauthenticated")

        client_kwargs: Dict[str, Any] = {
            "base_url": _normalize_base_url(settings.base_url),
            "headers": headers,
            "auth": auth,
            "transport": transport,
        }
        if settings.timeout is not None:
            client_kwargs["timeout"] = settings.timeout
        self._client = httpx.Client(**client_kwargs)

    @property
    def configured(self) -> bool:
        return self._client is not None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> "ZammadClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        auth: Optional[Tuple[str, str]] = None,
    ) -> Union[Dict[str, Any], List[Any]]:
        if self._client is None:
            raise ZammadError("Zammad is not configured. Set ZAMMAD_URL and ZAMMAD_TOKEN.")

        request_kwargs: Dict[str, Any] = {"params": params, "json": json}
        if auth is not None:
            request_kwargs["auth"] = auth
        try:
            response = self._client.request(method, path, **request_kwargs)
        except httpx.HTTPError as exc:
            raise ZammadError(f"Failed to contact Zammad: {exc}") from exc

        if not response.is_success:
            body = response.text
            raise ZammadError(
                f"Zammad API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=body,
            )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ZammadError(
                "Zammad returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def search_users(self, query: str) -> List[Dict[str, Any]]:
        result = self._request("GET", "/users/search", params={"query": query})
        return list(result) if isinstance(result, list) else []

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request("POST", "/users", json=payload)
        if not isinstance(result, dict):
            raise ZammadError("Unexpected response when creating Zammad user")
        return result

    def find_customer(self, email: str) -> Optional[Dict[str, Any]]:
        # Search is full-text; only an exact email match identifies the customer.
        wanted = (email or "").strip().lower()
        if not wanted:
            return None
        for candidate in self.search_users(email.strip()):
            if str(candidate.get("email") or "").strip().lower() == wanted:
                return candidate
        return None

    def verify_customer(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """Check helpdesk credentials by fetching ``/users/me`` as that customer.

        Returns the helpdesk profile, or ``None`` when the credentials are rejected.
        """

        if self._client is None:
            return None
        try:
            result = self._request("GET", "/users/me", auth=(email, password))
        except ZammadError as exc:
            if exc.status_code in (401, 403):
                return None
            raise
        return result if isinstance(result, dict) else None

    def find_or_create_customer(self, email: str, name: str) -> Dict[str, Any]:
        existing = self.find_customer(email)
        if existing is not None:
            return existing

        firstname, lastname = _split_name(name)
        logger.info("Creating Zammad customer for %s", email)
        return self.create_user(
            {
                "email": email,
                "firstname": firstname,
                "lastname": lastname,
                "role_ids": [CUSTOMER_ROLE_ID],
            }
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    def get_ticket(self, ticket_id: Union[int, str]) -> Dict[str, Any]:
        result = self._request("GET", f"/tickets/{ticket_id}")
        if not isinstance(result, dict):
            raise ZammadError(f"Unexpected response when loading ticket {ticket_id}")
        return result

    def search_tickets(self, query: str) -> List[Dict[str, Any]]:
        result = self._request("GET", "/tickets/search", params={"query": query, "expand": "true"})
        if isinstance(result, list):
            return result
        assets = result.get("assets", {}) if isinstance(result, dict) else {}
        return list(assets.get("Ticket", {}).values())

    def create_ticket(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request("POST", "/tickets", json=payload)
        if not isinstance(result, dict):
            raise ZammadError("Unexpected response when creating ticket")
        return result

    def update_ticket(self, ticket_id: Union[int, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request("PUT", f"/tickets/{ticket_id}", json=payload)
        return result if isinstance(result, dict) else {}

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------
    def list_articles(self, ticket_id: Union[int, str]) -> List[Dict[str, Any]]:
        result = self._request("GET", f"/ticket_articles/by_ticket/{ticket_id}")
        return list(result) if isinstance(result, list) else []

    def create_article(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request("POST", "/ticket_articles", json=payload)
        if not isinstance(result, dict):
            raise ZammadError("Unexpected response when creating ticket article")
        return result


__all__ = ["CUSTOMER_ROLE_ID", "ZammadClient", "ZammadError", "ZammadSettings"]
