"""HTTP API for portal authentication, ticket proxying and customer administration."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from .config import PortalSettings
from .database import Database
from .directory import DirectoryAuthenticator, FileDirectory
from .errors import PortalError
from .guard import ADMIN_ONLY, EMPLOYEE_ONLY, SESSION_COOKIE_NAME, build_guard
from .identity import IdentityStore
from .models import IdentityKind, Principal, Session, TicketPriority, TicketStatus
from .sessions import SessionManager, SessionSweeper
from .tickets import TicketDraft, TicketService
from .zammad import ZammadClient

logger = logging.getLogger("portal.service")


class EmployeeLoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Username is required")
        return stripped


class CustomerLoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _require_identifier(self):  # type: ignore[override]
        if not (self.email or "").strip() and not (self.username or "").strip():
            raise ValueError("Email or username is required")
        return self

    @property
    def identifier(self) -> str:
        return (self.email or self.username or "").strip()


class CustomerRegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)
    username: Optional[str] = Field(default=None, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=255)
    company_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)


class TicketCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM

    @field_validator("subject", "description")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class TicketReplyRequest(BaseModel):
    body: str = Field(..., min_length=1)

    @field_validator("body")
    @classmethod
    def _strip_body(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class TicketUpdateRequest(BaseModel):
    subject: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None

    @model_validator(mode="after")
    def _ensure_non_empty(self):  # type: ignore[override]
        if self.subject is None and self.description is None and self.status is None and self.priority is None:
            raise ValueError("At least one field must be provided")
        return self


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        if location and location[0] == "body":
            location = location[1:]
        errors.append({"field": ".".join(location) or None, "message": error.get("msg", "Invalid value")})
    return errors


def create_app(
    *,
    settings: Optional[PortalSettings] = None,
    database: Optional[Database] = None,
    directory: Optional[DirectoryAuthenticator] = None,
    zammad: Optional[ZammadClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application for the support portal."""

    settings = settings or PortalSettings.from_env()

    db = database or Database(settings.database_path)
    db.initialize()

    owns_zammad = zammad is None
    helpdesk = zammad or ZammadClient(settings.zammad)
    identity_directory = directory or FileDirectory(settings.directory_path)

    clock_kwargs = {"clock": clock} if clock is not None else {}
    identities = IdentityStore(db, identity_directory, helpdesk=helpdesk, **clock_kwargs)
    sessions = SessionManager(db, identities, ttl=settings.session_ttl, **clock_kwargs)
    sweeper = SessionSweeper(sessions, interval=settings.sweep_interval)
    tickets = TicketService(db, helpdesk)

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        db.ensure_default_application_links()
        if start_sweeper:
            sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            if owns_zammad:
                helpdesk.close()

    app = FastAPI(
        title="Support Portal API",
        version="0.1.0",
        description="Customer and employee authentication with a Zammad ticket proxy.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = db
    app.state.identities = identities
    app.state.session_manager = sessions
    app.state.sweeper = sweeper
    app.state.tickets = tickets

    current_principal = build_guard(sessions)
    admin_principal = build_guard(sessions, ADMIN_ONLY)
    employee_principal = build_guard(sessions, EMPLOYEE_ONLY)

    def _issue_session_cookie(response: Response, session: Session) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session.token,
            max_age=sessions.cookie_max_age,
            secure=settings.secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def _start_session(request: Request, response: Response, principal_user, kind: IdentityKind) -> None:
        existing_token = request.cookies.get(SESSION_COOKIE_NAME)
        if existing_token:
            sessions.destroy_session(existing_token)
        session = sessions.create_session(principal_user, kind)
        _issue_session_cookie(response, session)

    @app.exception_handler(PortalError)
    async def handle_portal_error(_: Request, exc: PortalError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Invalid request data",
                "code": "validation_error",
                "errors": _validation_errors(exc),
            },
        )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.post("/auth/employee/login")
    async def employee_login(payload: EmployeeLoginRequest, request: Request, response: Response) -> Dict[str, Any]:
        user = identities.authenticate_directory(payload.username, payload.password)
        _start_session(request, response, user, IdentityKind.DIRECTORY)
        logger.info("Employee %s signed in", user.username)
        return {"user": user.to_dict()}

    @app.post("/auth/customer/login")
    def customer_login(payload: CustomerLoginRequest, request: Request, response: Response) -> Dict[str, Any]:
        user = identities.authenticate_local(payload.identifier, payload.password)
        _start_session(request, response, user, IdentityKind.LOCAL)
        logger.info("Customer %s signed in", user.id)
        return {"user": user.to_dict()}

    @app.post("/auth/customer/register", status_code=status.HTTP_201_CREATED)
    async def customer_register(payload: CustomerRegisterRequest) -> Dict[str, Any]:
        user = identities.register_customer(
            email=payload.email,
            password=payload.password,
            username=payload.username,
            full_name=payload.full_name,
            company_name=payload.company_name,
            phone=payload.phone,
        )
        return {"user": user.to_dict()}

    @app.get("/auth/me")
    async def me(principal: Principal = Depends(current_principal)) -> Dict[str, Any]:
        return {"user": principal.to_dict()}

    @app.post("/auth/logout")
    async def logout(request: Request, response: Response) -> Dict[str, str]:
        sessions.destroy_session(request.cookies.get(SESSION_COOKIE_NAME))
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return {"message": "Logged out successfully"}

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    @app.get("/tickets")
    def list_tickets(principal: Principal = Depends(current_principal)) -> Dict[str, Any]:
        found = tickets.list_tickets_for(principal)
        return {"tickets": [ticket.to_dict() for ticket in found]}

    @app.get("/tickets/{ticket_id}")
    def get_ticket(ticket_id: int, principal: Principal = Depends(current_principal)) -> Dict[str, Any]:
        ticket = tickets.get_ticket(ticket_id, principal=principal)
        return {"ticket": ticket.to_dict()}

    @app.post("/tickets", status_code=status.HTTP_201_CREATED)
    def create_ticket(
        payload: TicketCreateRequest,
        principal: Principal = Depends(current_principal),
    ) -> Dict[str, Any]:
        draft = TicketDraft(
            subject=payload.subject,
            description=payload.description,
            status=payload.status,
            priority=payload.priority,
        )
        ticket = tickets.create_ticket(principal, draft)
        return {"ticket": ticket.to_dict()}

    @app.patch("/tickets/{ticket_id}")
    def update_ticket(
        ticket_id: int,
        payload: TicketUpdateRequest,
        principal: Principal = Depends(current_principal),
    ) -> Dict[str, Any]:
        ticket = tickets.update_ticket(
            ticket_id,
            payload.model_dump(exclude_none=True),
            principal=principal,
        )
        return {"ticket": ticket.to_dict()}

    @app.post("/tickets/{ticket_id}/reply", status_code=status.HTTP_201_CREATED)
    def reply_to_ticket(
        ticket_id: int,
        payload: TicketReplyRequest,
        principal: Principal = Depends(current_principal),
    ) -> Dict[str, Any]:
        article = tickets.add_reply(ticket_id, payload.body, principal=principal)
        return {"article": article.to_dict()}

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    @app.get("/admin/pending-customers")
    async def pending_customers(principal: Principal = Depends(admin_principal)) -> Dict[str, Any]:
        return {"users": [user.to_dict() for user in identities.list_pending_customers()]}

    @app.post("/admin/approve-customer/{user_id}")
    async def approve_customer(user_id: int, principal: Principal = Depends(admin_principal)) -> Dict[str, Any]:
        user = identities.approve_customer(user_id)
        logger.info("%s %s approved customer %s", principal.kind.value, principal.id, user_id)
        return {"user": user.to_dict()}

    @app.post("/admin/deactivate-customer/{user_id}")
    async def deactivate_customer(user_id: int, principal: Principal = Depends(admin_principal)) -> Dict[str, Any]:
        user = identities.deactivate_customer(user_id)
        logger.info("%s %s deactivated customer %s", principal.kind.value, principal.id, user_id)
        return {"user": user.to_dict()}

    # ------------------------------------------------------------------
    # Employee tools
    # ------------------------------------------------------------------
    @app.get("/applications")
    async def applications(principal: Principal = Depends(employee_principal)) -> Dict[str, Any]:
        return {"applications": [link.to_dict() for link in db.list_application_links()]}

    return app


__all__ = ["create_app"]
