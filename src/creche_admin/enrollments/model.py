from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional

from ..core.enums import EnrollmentStatus
from ..core.exceptions import EnrollmentNotFound, MultipleActiveEnrollments


@dataclass(frozen=True)
class EnrollmentAttrs:
    """Administrative fields supplied when a link is submitted."""

    enrollment_date: Optional[date] = None
    lunch_assistance: bool = False
    regulation_accepted: bool = False
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    admin_notes: Optional[str] = None


@dataclass(frozen=True)
class Enrollment:
    enrollment_id: int
    child_id: int
    parent_id: int
    status: EnrollmentStatus
    enrollment_date: date
    created_at: datetime
    lunch_assistance: bool = False
    regulation_accepted: bool = False
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    admin_notes: Optional[str] = None
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "enrollment_id": self.enrollment_id,
            "child_id": self.child_id,
            "parent_id": self.parent_id,
            "status": self.status.value,
            "enrollment_date": self.enrollment_date.isoformat(),
            "lunch_assistance": self.lunch_assistance,
            "regulation_accepted": self.regulation_accepted,
            "appointment_date": self.appointment_date.isoformat() if self.appointment_date else None,
            "appointment_time": self.appointment_time.strftime("%H:%M") if self.appointment_time else None,
            "admin_notes": self.admin_notes,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class DuplicateActiveLink:
    child_id: int
    enrollment_ids: tuple[int, ...]
    parent_ids: tuple[int, ...]

    def to_dict(self) -> dict:
        return {
            "child_id": self.child_id,
            "enrollment_ids": list(self.enrollment_ids),
            "parent_ids": list(self.parent_ids),
        }


@dataclass(frozen=True)
class DanglingLink:
    enrollment_id: int
    child_id: int
    parent_id: int
    status: EnrollmentStatus
    problem: str

    def to_dict(self) -> dict:
        return {
            "enrollment_id": self.enrollment_id,
            "child_id": self.child_id,
            "parent_id": self.parent_id,
            "status": self.status.value,
            "problem": self.problem,
        }


@dataclass(frozen=True)
class EnrollmentStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    archived: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "approved": self.approved,
            "rejected": self.rejected,
            "archived": self.archived,
        }


def describe_dangling(
    *,
    status: EnrollmentStatus,
    child_exists: bool,
    child_active: bool,
    user_exists: bool,
    user_role: Optional[str],
) -> Optional[str]:
    """Name what is wrong with a link's endpoints, or None when it is sound."""

    if not child_exists:
        return "missing child"
    if not user_exists:
        return "missing parent"
    if user_role != "parent":
        return "linked user is not a parent"
    if status == EnrollmentStatus.APPROVED and not child_active:
        return "approved link on archived child"
    return None


def select_current_enrollment(child_id: int, enrollments: Iterable[Enrollment]) -> Enrollment:
    """Pick the enrollment that represents a child's link right now.

    Order of preference: the approved row, then the newest pending row, then
    the newest row of any other status. Two approved rows are an invariant
    violation and are reported rather than resolved.
    """

    rows = sorted(enrollments, key=lambda e: (e.created_at, e.enrollment_id), reverse=True)
    if not rows:
        raise EnrollmentNotFound(f"Child {child_id} has no enrollment")

    approved = [e for e in rows if e.status == EnrollmentStatus.APPROVED]
    if len(approved) > 1:
        raise MultipleActiveEnrollments(child_id, sorted(e.enrollment_id for e in approved))
    if approved:
        return approved[0]

    for e in rows:
        if e.status == EnrollmentStatus.PENDING:
            return e
    return rows[0]
