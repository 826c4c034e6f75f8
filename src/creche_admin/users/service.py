from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from werkzeug.security import check_password_hash, generate_password_hash

from ..common.validators import optional_text, require_min_length, require_non_empty
from ..core.constants import MIN_PASSWORD_LENGTH
from ..core.enums import Role
from ..core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from .model import User
from .repository import UserRepository


@dataclass(frozen=True)
class SessionUser:
    """What we store into the Flask session after login."""

    user_id: int
    full_name: str
    role: Role


class AuthService:
    """Use case: authenticate user (login)."""

    def __init__(self, users: UserRepository):
        self._users = users

    def authenticate(self, email: str, password: str) -> SessionUser:
        email = (email or "").strip().lower()
        user = self._users.get_by_email(email)
        if not user or not check_password_hash(user.password_hash, password or ""):
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise AuthenticationError("Account is disabled")
        return SessionUser(user_id=user.user_id, full_name=user.full_name, role=user.role)


class UserService:
    """Use cases: account administration."""

    def __init__(self, users: UserRepository):
        self._users = users

    def create_user(
        self,
        *,
        current_role: Role,
        full_name: str,
        email: str,
        password: str,
        role: str,
        phone: Optional[str] = None,
    ) -> int:
        try:
            new_role = Role((role or "").strip().lower())
        except ValueError:
            raise ValidationError("Unknown role")

        # Staff may register parents; only admins create staff and admin accounts.
        if current_role != Role.ADMIN and not (current_role == Role.STAFF and new_role == Role.PARENT):
            raise AuthorizationError("You are not allowed to create this account")

        full_name = require_non_empty(full_name, "Full name")
        email = require_non_empty(email, "Email").lower()
        if "@" not in email:
            raise ValidationError("Email is not valid")
        password = require_min_length(password, "Password", MIN_PASSWORD_LENGTH)

        if self._users.get_by_email(email):
            raise ValidationError("Email is already registered")

        return self._users.create_user(
            full_name=full_name,
            email=email,
            password_hash=generate_password_hash(password),
            role=new_role,
            phone=optional_text(phone),
        )

    def list_parents(self) -> Sequence[User]:
        return self._users.list_by_role(Role.PARENT)
