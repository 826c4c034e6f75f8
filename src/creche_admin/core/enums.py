from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """User roles used for authorization."""

    ADMIN = "admin"
    STAFF = "staff"
    PARENT = "parent"


STAFF_ROLES = frozenset({Role.ADMIN, Role.STAFF})


class EnrollmentStatus(str, Enum):
    """Lifecycle of a child-parent link as stored in the database."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
