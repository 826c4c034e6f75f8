from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import Role


@dataclass(frozen=True)
class User:
    """Domain entity: User.

    Parents, staff and admins share one table and are told apart by ``role``.
    A parent account is simply a user with ``Role.PARENT``.
    """

    user_id: int
    full_name: str
    email: str
    password_hash: str
    role: Role
    phone: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
            "is_active": self.is_active,
        }
