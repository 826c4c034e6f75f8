from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Optional

from ..core.enums import Gender


@dataclass(frozen=True)
class Child:
    child_id: int
    first_name: str
    last_name: str
    birth_date: date
    gender: Optional[Gender] = None
    medical_info: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    is_active: bool = True
    archived_at: Optional[datetime] = None
    archived_by: Optional[int] = None
    archive_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "child_id": self.child_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "birth_date": self.birth_date.isoformat(),
            "gender": self.gender.value if self.gender else None,
            "medical_info": self.medical_info,
            "allergies": self.allergies,
            "emergency_contact_name": self.emergency_contact_name,
            "emergency_contact_phone": self.emergency_contact_phone,
            "is_active": self.is_active,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "archived_by": self.archived_by,
            "archive_reason": self.archive_reason,
        }


@dataclass(frozen=True)
class ChildDetails:
    """Editable biographic fields of a child (create / update payload)."""

    first_name: str
    last_name: str
    birth_date: date
    gender: Optional[Gender] = None
    medical_info: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None

    @classmethod
    def of(cls, child: Child) -> "ChildDetails":
        return cls(**{f.name: getattr(child, f.name) for f in fields(cls)})


@dataclass(frozen=True)
class ChildArchiveSnapshot:
    """Immutable copy of a child row taken when the child was archived."""

    archive_id: int
    child_id: int
    details: ChildDetails
    archived_at: datetime
    archived_by: int
    archive_reason: str

    def to_dict(self) -> dict:
        return {
            "archive_id": self.archive_id,
            "child_id": self.child_id,
            "first_name": self.details.first_name,
            "last_name": self.details.last_name,
            "birth_date": self.details.birth_date.isoformat(),
            "gender": self.details.gender.value if self.details.gender else None,
            "medical_info": self.details.medical_info,
            "allergies": self.details.allergies,
            "emergency_contact_name": self.details.emergency_contact_name,
            "emergency_contact_phone": self.details.emergency_contact_phone,
            "archived_at": self.archived_at.isoformat(),
            "archived_by": self.archived_by,
            "archive_reason": self.archive_reason,
        }


def months_between(birth_date: date, today: date) -> int:
    """Whole months elapsed, like MySQL ``TIMESTAMPDIFF(MONTH, ...)``."""

    months = (today.year - birth_date.year) * 12 + today.month - birth_date.month
    if today.day < birth_date.day:
        months -= 1
    return months


@dataclass(frozen=True)
class ChildStats:
    """Head counts of active children, split by gender and age group."""

    total: int = 0
    boys: int = 0
    girls: int = 0
    babies: int = 0
    toddlers: int = 0
    preschool: int = 0
    older: int = 0
    archived: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "boys": self.boys,
            "girls": self.girls,
            "age_groups": {
                "babies": self.babies,
                "toddlers": self.toddlers,
                "preschool": self.preschool,
                "older": self.older,
            },
            "archived": self.archived,
        }
