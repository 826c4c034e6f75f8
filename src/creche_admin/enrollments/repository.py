from __future__ import annotations

from datetime import date, datetime, time
from typing import ContextManager, Optional, Protocol, Sequence

from ..children.model import Child, ChildArchiveSnapshot, ChildDetails, ChildStats
from ..core.enums import EnrollmentStatus
from ..users.model import User
from .model import DanglingLink, DuplicateActiveLink, Enrollment, EnrollmentAttrs, EnrollmentStats


class AssociationStore(Protocol):
    """Repository over children, parent accounts and enrollment links.

    This is the only component allowed to write the ``children``,
    ``enrollments`` and ``children_archive`` tables. It also creates the
    parent accounts of public intake, inside the intake transaction.
    Mutations made inside one ``transaction()`` block commit or roll back
    together; opening a transaction on a store that is already inside one
    joins it.
    """

    def transaction(self) -> ContextManager["AssociationStore"]:
        raise NotImplementedError

    # Lookups
    def find_child(self, child_id: int, *, for_update: bool = False) -> Child:
        """Raise ChildNotFound when the id does not resolve."""

        raise NotImplementedError

    def find_parent(self, parent_id: int) -> User:
        """Raise ParentNotFound when the id is unknown or not a parent."""

        raise NotImplementedError

    def find_enrollment(self, enrollment_id: int, *, for_update: bool = False) -> Enrollment:
        raise NotImplementedError

    def find_enrollment_by_child(self, child_id: int) -> Enrollment:
        """Return the current link (see select_current_enrollment)."""

        raise NotImplementedError

    def list_enrollments_for_child(self, child_id: int) -> Sequence[Enrollment]:
        raise NotImplementedError

    # Enrollment writes
    def upsert_enrollment(
        self,
        *,
        child_id: int,
        parent_id: int,
        status: EnrollmentStatus,
        attrs: EnrollmentAttrs,
    ) -> Enrollment:
        """Update the child's pending enrollment, or insert one if there is none."""

        raise NotImplementedError

    def set_enrollment_status(
        self,
        *,
        enrollment_id: int,
        from_status: EnrollmentStatus,
        to_status: EnrollmentStatus,
        decided_by: Optional[int] = None,
        admin_notes: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> bool:
        """Conditional update; False when the row is no longer in ``from_status``."""

        raise NotImplementedError

    def set_appointment(
        self,
        *,
        enrollment_id: int,
        appointment_date: Optional[date],
        appointment_time: Optional[time],
    ) -> None:
        raise NotImplementedError

    # Parent accounts
    def find_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    def create_parent_account(
        self,
        *,
        full_name: str,
        email: str,
        password_hash: str,
        phone: Optional[str] = None,
    ) -> User:
        """Raise ValidationError when the email is already registered."""

        raise NotImplementedError

    # Child writes
    def create_child(self, details: ChildDetails) -> Child:
        raise NotImplementedError

    def update_child(self, child_id: int, details: ChildDetails) -> Child:
        raise NotImplementedError

    def insert_archive_snapshot(
        self,
        *,
        child: Child,
        archived_by: int,
        archive_reason: str,
        archived_at: datetime,
    ) -> int:
        raise NotImplementedError

    def mark_child_archived(
        self,
        *,
        child_id: int,
        archived_by: int,
        archive_reason: str,
        archived_at: datetime,
    ) -> bool:
        raise NotImplementedError

    def mark_child_restored(self, child_id: int) -> bool:
        raise NotImplementedError

    # Read models
    def list_children(self, *, active: Optional[bool] = True) -> Sequence[Child]:
        raise NotImplementedError

    def list_archive_snapshots(self, child_id: int) -> Sequence[ChildArchiveSnapshot]:
        raise NotImplementedError

    def list_orphan_children(self) -> Sequence[Child]:
        """Active children without an approved enrollment."""

        raise NotImplementedError

    def list_duplicate_active_links(self) -> Sequence[DuplicateActiveLink]:
        raise NotImplementedError

    def list_dangling_enrollments(self) -> Sequence[DanglingLink]:
        raise NotImplementedError

    def has_approved_link(self, *, child_id: int, parent_id: int) -> bool:
        raise NotImplementedError

    def list_children_for_parent(self, parent_id: int) -> Sequence[Child]:
        raise NotImplementedError

    def list_enrollments(
        self,
        *,
        status: Optional[EnrollmentStatus] = None,
        parent_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[Enrollment]:
        raise NotImplementedError

    def count_enrollments(
        self,
        *,
        status: Optional[EnrollmentStatus] = None,
        parent_id: Optional[int] = None,
    ) -> int:
        raise NotImplementedError

    def enrollment_stats(self) -> EnrollmentStats:
        raise NotImplementedError

    def child_stats(self, today: date) -> ChildStats:
        raise NotImplementedError
