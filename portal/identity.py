"""Identity store unifying local customer accounts and directory-backed employees."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .database import Database, verify_password
from .directory import DirectoryAuthenticator
from .errors import (
    AccountInactive,
    ExternalUnavailable,
    InvalidCredentials,
    PendingApproval,
    UserNotFound,
    ValidationError,
)
from .models import (
    CustomerRole,
    CustomerStatus,
    DirectoryUser,
    EmployeeRole,
    IdentityKind,
    LocalUser,
    Principal,
)
from .zammad import ZammadClient, ZammadError

logger = logging.getLogger("portal.identity")

PASSWORD_MIN_LENGTH = 6
ADMIN_DIRECTORY_USERNAME = "admin"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _strip_domain(username: str) -> str:
    cleaned = username.strip()
    if "@" in cleaned:
        cleaned = cleaned.split("@", 1)[0]
    return cleaned


class IdentityStore:
    """Exchange credentials for identity records of either kind."""

    def __init__(
        self,
        database: Database,
        directory: DirectoryAuthenticator,
        *,
        clock: Callable[[], datetime] = _utcnow,
        helpdesk: Optional[ZammadClient] = None,
    ) -> None:
        self._database = database
        self._directory = directory
        self._clock = clock
        self._helpdesk = helpdesk

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def authenticate_local(self, identifier: str, password: str) -> LocalUser:
        """Verify a customer against the local hash, or the helpdesk when there is none.

        A helpdesk customer without a local account is provisioned as an
        active customer on the first successful login.
        """

        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise InvalidCredentials()

        found = self._database.find_local_user_credentials(identifier)
        if found is None:
            user = self._provision_helpdesk_customer(identifier, password)
        else:
            user, password_hash = found
            if user.has_password:
                verified = verify_password(password, password_hash)
            else:
                verified = self._verify_with_helpdesk(user.email or identifier, password) is not None
            if not verified:
                logger.warning("Customer login failed for %s", user.username)
                raise InvalidCredentials()

        if user.status is CustomerStatus.PENDING:
            logger.info("Customer %s attempted login before approval", user.id)
            raise PendingApproval()
        if user.status is not CustomerStatus.ACTIVE:
            logger.info("Inactive customer %s attempted login", user.id)
            raise AccountInactive()
        return user

    def _verify_with_helpdesk(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        if self._helpdesk is None or not self._helpdesk.configured:
            return None
        try:
            return self._helpdesk.verify_customer(email, password)
        except ZammadError as exc:
            logger.error("Helpdesk login check failed for %s (status=%s): %s", email, exc.status_code, exc)
            raise ExternalUnavailable(upstream_status=exc.status_code, upstream_body=exc.body) from exc

    def _provision_helpdesk_customer(self, identifier: str, password: str) -> LocalUser:
        if "@" not in identifier:
            logger.warning("Customer login failed for unknown account %s", identifier)
            raise InvalidCredentials()

        profile = self._verify_with_helpdesk(identifier, password)
        if profile is None:
            logger.warning("Customer login failed for unknown account %s", identifier)
            raise InvalidCredentials()

        email = str(profile.get("email") or identifier).strip()
        names = (str(profile.get(key) or "").strip() for key in ("firstname", "lastname"))
        full_name = " ".join(name for name in names if name)
        try:
            user = self._database.create_local_user(
                email,
                email=email,
                password=None,
                full_name=full_name or None,
                role=CustomerRole.CUSTOMER,
                status=CustomerStatus.ACTIVE,
            )
        except ValueError:
            # Another request provisioned the same customer first.
            found = self._database.find_local_user_credentials(email)
            if found is None:
                raise
            return found[0]

        logger.info("Provisioned customer %s from helpdesk account %s", user.id, email)
        return user

    def authenticate_directory(self, username: str, password: str) -> DirectoryUser:
        account_name = _strip_domain(username)
        if not account_name or not password:
            raise InvalidCredentials()

        profile = self._directory.authenticate(account_name, password)
        if profile is None:
            logger.warning("Directory login failed for %s", account_name)
            raise InvalidCredentials()

        now = self._clock()
        existing = self._database.get_directory_user_by_username(profile.username)
        if existing is None:
            role = (
                EmployeeRole.ADMIN
                if profile.username.lower() == ADMIN_DIRECTORY_USERNAME
                else EmployeeRole.EMPLOYEE
            )
            try:
                user = self._database.create_directory_user(
                    profile.username,
                    email=profile.email,
                    full_name=profile.full_name,
                    role=role,
                    last_login=now,
                )
            except ValueError:
                # Another request provisioned the same account first.
                existing = self._database.get_directory_user_by_username(profile.username)
                if existing is None:
                    raise
            else:
                logger.info("Provisioned directory user %s (%s)", user.username, user.role.value)
                return user

        refreshed = self._database.record_directory_login(
            existing.id,
            email=profile.email,
            full_name=profile.full_name,
            last_login=now,
        )
        return refreshed or existing

    # ------------------------------------------------------------------
    # Customer lifecycle
    # ------------------------------------------------------------------
    def register_customer(
        self,
        *,
        email: str,
        password: str,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> LocalUser:
        """Create a customer account that waits for administrator approval."""

        errors = []
        cleaned_email = (email or "").strip()
        if not _EMAIL_PATTERN.match(cleaned_email):
            errors.append({"field": "email", "message": "Valid email is required"})
        if len(password or "") < PASSWORD_MIN_LENGTH:
            errors.append(
                {
                    "field": "password",
                    "message": f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
                }
            )
        if errors:
            raise ValidationError("Invalid registration data", errors=errors)

        try:
            user = self._database.create_local_user(
                (username or cleaned_email).strip(),
                email=cleaned_email,
                password=password,
                full_name=full_name,
                company_name=company_name,
                phone=phone,
                role=CustomerRole.CUSTOMER,
                status=CustomerStatus.PENDING,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        logger.info("Registered customer %s awaiting approval", user.id)
        return user

    def list_pending_customers(self) -> List[LocalUser]:
        return self._database.list_local_users(status=CustomerStatus.PENDING)

    def approve_customer(self, user_id: int) -> LocalUser:
        user = self._database.get_local_user(user_id)
        if user is None:
            raise UserNotFound()
        if user.status is CustomerStatus.ACTIVE:
            return user
        if user.status is not CustomerStatus.PENDING:
            raise ValidationError("Only pending customers can be approved")

        updated = self._database.update_local_user(user_id, status=CustomerStatus.ACTIVE)
        if updated is None:
            raise UserNotFound()
        logger.info("Customer %s approved", user_id)
        return updated

    def deactivate_customer(self, user_id: int) -> LocalUser:
        updated = self._database.update_local_user(user_id, status=CustomerStatus.INACTIVE)
        if updated is None:
            raise UserNotFound()
        logger.info("Customer %s deactivated", user_id)
        return updated

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get_principal(self, kind: IdentityKind, identity_id: int) -> Optional[Principal]:
        if kind is IdentityKind.LOCAL:
            local = self._database.get_local_user(identity_id)
            if local is None:
                return None
            return Principal(kind=kind, user=local)
        directory_user = self._database.get_directory_user(identity_id)
        if directory_user is None:
            return None
        return Principal(kind=kind, user=directory_user)


__all__ = ["ADMIN_DIRECTORY_USERNAME", "IdentityStore", "PASSWORD_MIN_LENGTH"]
