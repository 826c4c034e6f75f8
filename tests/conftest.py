from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import date, datetime, timedelta
from typing import Dict, Optional

import pytest

from creche_admin.children.model import Child, ChildArchiveSnapshot, ChildDetails, ChildStats, months_between
from creche_admin.container import wire_services
from creche_admin.core.constants import AGE_GROUP_MONTHS
from creche_admin.core.enums import EnrollmentStatus, Gender, Role
from creche_admin.core.exceptions import (
    ChildNotFound,
    DuplicateActiveEnrollment,
    EnrollmentNotFound,
    ParentNotFound,
    ValidationError,
)
from creche_admin.enrollments.model import (
    DanglingLink,
    DuplicateActiveLink,
    Enrollment,
    EnrollmentAttrs,
    EnrollmentStats,
    describe_dangling,
    select_current_enrollment,
)
from creche_admin.users.model import User

BASE_TIME = datetime(2026, 9, 1, 8, 0, 0)


class InMemoryAssociationStore:
    """Association store kept in dicts.

    Transactions snapshot the dicts and put them back on error, and a lock
    serializes them the way row locks would. ``fail_on`` injects an error
    into a named method.
    """

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.children: Dict[int, Child] = {}
        self.enrollments: Dict[int, Enrollment] = {}
        self.snapshots: Dict[int, ChildArchiveSnapshot] = {}
        self.fail_on: Dict[str, Exception] = {}
        self.commits = 0
        self.rollbacks = 0
        self._ids = itertools.count(1)
        self._tick = itertools.count(1)
        self._lock = threading.RLock()
        self._local = threading.local()

    # -------- test helpers --------
    def _next_id(self) -> int:
        return next(self._ids)

    def _now(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._tick))

    def state(self) -> tuple:
        return (dict(self.users), dict(self.children), dict(self.enrollments), dict(self.snapshots))

    def _restore(self, saved: tuple) -> None:
        self.users, self.children, self.enrollments, self.snapshots = (dict(s) for s in saved)

    def _maybe_fail(self, name: str) -> None:
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    def add_user(self, full_name: str = "Parent", role: Role = Role.PARENT) -> User:
        uid = self._next_id()
        user = User(
            user_id=uid,
            full_name=full_name,
            email=f"user{uid}@example.com",
            password_hash="x",
            role=role,
        )
        self.users[uid] = user
        return user

    def add_child(self, first_name: str = "Lina", *, is_active: bool = True, **kw) -> Child:
        cid = self._next_id()
        child = Child(
            child_id=cid,
            first_name=first_name,
            last_name=kw.pop("last_name", "Martin"),
            birth_date=kw.pop("birth_date", date(2022, 3, 14)),
            gender=kw.pop("gender", Gender.FEMALE),
            is_active=is_active,
            created_at=self._now(),
            **kw,
        )
        self.children[cid] = child
        return child

    def add_enrollment(self, child_id: int, parent_id: int, status: EnrollmentStatus) -> Enrollment:
        """Insert a row directly, bypassing every rule (legacy data)."""

        eid = self._next_id()
        enrollment = Enrollment(
            enrollment_id=eid,
            child_id=child_id,
            parent_id=parent_id,
            status=status,
            enrollment_date=date(2026, 9, 1),
            created_at=self._now(),
        )
        self.enrollments[eid] = enrollment
        return enrollment

    # -------- unit of work --------
    @contextmanager
    def transaction(self):
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield self
            finally:
                self._local.depth = depth
            return

        with self._lock:
            saved = self.state()
            self._local.depth = 1
            try:
                yield self
            except Exception:
                self._restore(saved)
                self.rollbacks += 1
                raise
            else:
                self.commits += 1
            finally:
                self._local.depth = 0

    # -------- lookups --------
    def find_child(self, child_id: int, *, for_update: bool = False) -> Child:
        child = self.children.get(int(child_id))
        if child is None:
            raise ChildNotFound(f"Child {child_id} not found")
        return child

    def find_parent(self, parent_id: int) -> User:
        user = self.users.get(int(parent_id))
        if user is None:
            raise ParentNotFound(f"Parent {parent_id} not found")
        if user.role != Role.PARENT:
            raise ParentNotFound(f"User {parent_id} is not a parent account")
        return user

    def find_enrollment(self, enrollment_id: int, *, for_update: bool = False) -> Enrollment:
        enrollment = self.enrollments.get(int(enrollment_id))
        if enrollment is None:
            raise EnrollmentNotFound(f"Enrollment {enrollment_id} not found")
        return enrollment

    def find_enrollment_by_child(self, child_id: int) -> Enrollment:
        return select_current_enrollment(int(child_id), self.list_enrollments_for_child(child_id))

    def list_enrollments_for_child(self, child_id: int):
        rows = [e for e in self.enrollments.values() if e.child_id == int(child_id)]
        return sorted(rows, key=lambda e: (e.created_at, e.enrollment_id), reverse=True)

    def _guard_unique_approved(self, child_id: int, enrollment_id: int) -> None:
        for e in self.enrollments.values():
            if e.child_id == child_id and e.status == EnrollmentStatus.APPROVED and e.enrollment_id != enrollment_id:
                raise DuplicateActiveEnrollment("This child is already linked to a parent")

    # -------- enrollment writes --------
    def upsert_enrollment(self, *, child_id, parent_id, status, attrs: EnrollmentAttrs) -> Enrollment:
        self._maybe_fail("upsert_enrollment")
        with self.transaction():
            self.find_child(child_id)
            self.find_parent(parent_id)
            pending = [e for e in self.list_enrollments_for_child(child_id) if e.status == EnrollmentStatus.PENDING]
            if pending:
                current = pending[0]
                enrollment = replace(
                    current,
                    parent_id=int(parent_id),
                    status=status,
                    enrollment_date=attrs.enrollment_date or current.enrollment_date,
                    lunch_assistance=attrs.lunch_assistance,
                    regulation_accepted=attrs.regulation_accepted,
                    appointment_date=attrs.appointment_date,
                    appointment_time=attrs.appointment_time,
                    admin_notes=attrs.admin_notes if attrs.admin_notes is not None else current.admin_notes,
                )
            else:
                enrollment = Enrollment(
                    enrollment_id=self._next_id(),
                    child_id=int(child_id),
                    parent_id=int(parent_id),
                    status=status,
                    enrollment_date=attrs.enrollment_date or date(2026, 9, 1),
                    created_at=self._now(),
                    lunch_assistance=attrs.lunch_assistance,
                    regulation_accepted=attrs.regulation_accepted,
                    appointment_date=attrs.appointment_date,
                    appointment_time=attrs.appointment_time,
                    admin_notes=attrs.admin_notes,
                )
            if status == EnrollmentStatus.APPROVED:
                self._guard_unique_approved(enrollment.child_id, enrollment.enrollment_id)
            self.enrollments[enrollment.enrollment_id] = enrollment
            return enrollment

    def set_enrollment_status(
        self,
        *,
        enrollment_id,
        from_status,
        to_status,
        decided_by=None,
        admin_notes=None,
        decided_at=None,
    ) -> bool:
        self._maybe_fail("set_enrollment_status")
        with self.transaction():
            current = self.enrollments.get(int(enrollment_id))
            if current is None or current.status != from_status:
                return False
            if to_status == EnrollmentStatus.APPROVED:
                self._guard_unique_approved(current.child_id, current.enrollment_id)
            self.enrollments[current.enrollment_id] = replace(
                current,
                status=to_status,
                decided_by=decided_by if decided_by is not None else current.decided_by,
                decided_at=decided_at if decided_at is not None else current.decided_at,
                admin_notes=admin_notes if admin_notes is not None else current.admin_notes,
            )
            return True

    def set_appointment(self, *, enrollment_id, appointment_date, appointment_time) -> None:
        with self.transaction():
            current = self.find_enrollment(enrollment_id)
            self.enrollments[current.enrollment_id] = replace(
                current, appointment_date=appointment_date, appointment_time=appointment_time
            )

    # -------- parent accounts --------
    def find_user_by_email(self, email: str) -> Optional[User]:
        for u in self.users.values():
            if u.email == email:
                return u
        return None

    def create_parent_account(self, *, full_name, email, password_hash, phone=None) -> User:
        with self.transaction():
            if self.find_user_by_email(email) is not None:
                raise ValidationError("Email is already registered")
            uid = self._next_id()
            user = User(
                user_id=uid,
                full_name=full_name,
                email=email,
                password_hash=password_hash,
                role=Role.PARENT,
                phone=phone,
                created_at=self._now(),
            )
            self.users[uid] = user
            return user

    # -------- child writes --------
    def create_child(self, details: ChildDetails) -> Child:
        with self.transaction():
            cid = self._next_id()
            child = Child(
                child_id=cid,
                created_at=self._now(),
                **{f.name: getattr(details, f.name) for f in fields(ChildDetails)},
            )
            self.children[cid] = child
            return child

    def update_child(self, child_id: int, details: ChildDetails) -> Child:
        with self.transaction():
            current = self.find_child(child_id)
            child = replace(current, **{f.name: getattr(details, f.name) for f in fields(ChildDetails)})
            self.children[current.child_id] = child
            return child

    def insert_archive_snapshot(self, *, child, archived_by, archive_reason, archived_at) -> int:
        self._maybe_fail("insert_archive_snapshot")
        with self.transaction():
            aid = self._next_id()
            self.snapshots[aid] = ChildArchiveSnapshot(
                archive_id=aid,
                child_id=child.child_id,
                details=ChildDetails.of(child),
                archived_at=archived_at,
                archived_by=int(archived_by),
                archive_reason=archive_reason,
            )
            return aid

    def mark_child_archived(self, *, child_id, archived_by, archive_reason, archived_at) -> bool:
        self._maybe_fail("mark_child_archived")
        with self.transaction():
            current = self.children.get(int(child_id))
            if current is None or not current.is_active:
                return False
            self.children[current.child_id] = replace(
                current,
                is_active=False,
                archived_at=archived_at,
                archived_by=int(archived_by),
                archive_reason=archive_reason,
            )
            return True

    def mark_child_restored(self, child_id: int) -> bool:
        self._maybe_fail("mark_child_restored")
        with self.transaction():
            current = self.children.get(int(child_id))
            if current is None or current.is_active:
                return False
            self.children[current.child_id] = replace(
                current, is_active=True, archived_at=None, archived_by=None, archive_reason=None
            )
            return True

    # -------- read models --------
    def list_children(self, *, active: Optional[bool] = True):
        rows = [c for c in self.children.values() if active is None or c.is_active == active]
        return sorted(rows, key=lambda c: (c.last_name, c.first_name, c.child_id))

    def list_archive_snapshots(self, child_id: int):
        rows = [s for s in self.snapshots.values() if s.child_id == int(child_id)]
        return sorted(rows, key=lambda s: (s.archived_at, s.archive_id), reverse=True)

    def _approved_child_ids(self) -> set:
        return {e.child_id for e in self.enrollments.values() if e.status == EnrollmentStatus.APPROVED}

    def list_orphan_children(self):
        linked = self._approved_child_ids()
        rows = [c for c in self.children.values() if c.is_active and c.child_id not in linked]
        return sorted(rows, key=lambda c: (c.created_at, c.child_id), reverse=True)

    def list_duplicate_active_links(self):
        by_child: Dict[int, list] = {}
        for e in sorted(self.enrollments.values(), key=lambda e: e.enrollment_id):
            if e.status == EnrollmentStatus.APPROVED:
                by_child.setdefault(e.child_id, []).append(e)
        return [
            DuplicateActiveLink(
                child_id=child_id,
                enrollment_ids=tuple(e.enrollment_id for e in rows),
                parent_ids=tuple(e.parent_id for e in rows),
            )
            for child_id, rows in sorted(by_child.items())
            if len(rows) > 1
        ]

    def list_dangling_enrollments(self):
        out = []
        for e in sorted(self.enrollments.values(), key=lambda e: e.enrollment_id):
            child = self.children.get(e.child_id)
            user = self.users.get(e.parent_id)
            problem = describe_dangling(
                status=e.status,
                child_exists=child is not None,
                child_active=bool(child and child.is_active),
                user_exists=user is not None,
                user_role=user.role.value if user else None,
            )
            if problem:
                out.append(
                    DanglingLink(
                        enrollment_id=e.enrollment_id,
                        child_id=e.child_id,
                        parent_id=e.parent_id,
                        status=e.status,
                        problem=problem,
                    )
                )
        return out

    def has_approved_link(self, *, child_id: int, parent_id: int) -> bool:
        child = self.children.get(int(child_id))
        if child is None or not child.is_active:
            return False
        return any(
            e.child_id == int(child_id) and e.parent_id == int(parent_id) and e.status == EnrollmentStatus.APPROVED
            for e in self.enrollments.values()
        )

    def list_children_for_parent(self, parent_id: int):
        ids = {
            e.child_id
            for e in self.enrollments.values()
            if e.parent_id == int(parent_id) and e.status == EnrollmentStatus.APPROVED
        }
        rows = [c for c in self.children.values() if c.child_id in ids and c.is_active]
        return sorted(rows, key=lambda c: (c.first_name, c.last_name))

    def _filtered(self, status, parent_id):
        rows = [
            e
            for e in self.enrollments.values()
            if (status is None or e.status == status) and (parent_id is None or e.parent_id == int(parent_id))
        ]
        return sorted(rows, key=lambda e: (e.created_at, e.enrollment_id), reverse=True)

    def list_enrollments(self, *, status=None, parent_id=None, limit=20, offset=0):
        return self._filtered(status, parent_id)[offset : offset + limit]

    def count_enrollments(self, *, status=None, parent_id=None) -> int:
        return len(self._filtered(status, parent_id))

    def enrollment_stats(self) -> EnrollmentStats:
        counts = {s: 0 for s in EnrollmentStatus}
        for e in self.enrollments.values():
            counts[e.status] += 1
        return EnrollmentStats(
            total=len(self.enrollments),
            pending=counts[EnrollmentStatus.PENDING],
            approved=counts[EnrollmentStatus.APPROVED],
            rejected=counts[EnrollmentStatus.REJECTED],
            archived=counts[EnrollmentStatus.ARCHIVED],
        )

    def child_stats(self, today: date) -> ChildStats:
        active = [c for c in self.children.values() if c.is_active]
        baby, toddler, preschool = AGE_GROUP_MONTHS
        months = [months_between(c.birth_date, today) for c in active]
        return ChildStats(
            total=len(active),
            boys=sum(1 for c in active if c.gender == Gender.MALE),
            girls=sum(1 for c in active if c.gender == Gender.FEMALE),
            babies=sum(1 for m in months if m < baby),
            toddlers=sum(1 for m in months if baby <= m < toddler),
            preschool=sum(1 for m in months if toddler <= m < preschool),
            older=sum(1 for m in months if m >= preschool),
            archived=len(self.children) - len(active),
        )


class InMemoryUsers:
    """UserRepository over the store's user table."""

    def __init__(self, store: InMemoryAssociationStore):
        self._store = store

    def get_by_email(self, email: str) -> Optional[User]:
        for u in self._store.users.values():
            if u.email == email:
                return u
        return None

    def create_user(self, *, full_name, email, password_hash, role, phone=None) -> int:
        uid = self._store._next_id()
        self._store.users[uid] = User(
            user_id=uid,
            full_name=full_name,
            email=email,
            password_hash=password_hash,
            role=role,
            phone=phone,
        )
        return uid

    def list_by_role(self, role: Role):
        return sorted((u for u in self._store.users.values() if u.role == role), key=lambda u: u.full_name)


class FakeDBConnection:
    """Answers the health check's SELECT 1."""

    def connect(self):
        return self

    def cursor(self, *args, **kwargs):
        return self

    def execute(self, sql, params=()):
        return None

    def fetchall(self):
        return [(1,)]

    def close(self):
        return None


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 1, 9, 30, 0)


@pytest.fixture
def store() -> InMemoryAssociationStore:
    return InMemoryAssociationStore()


@pytest.fixture
def container(store, fixed_now):
    return wire_services(
        conn=FakeDBConnection(),
        users_repo=InMemoryUsers(store),
        store=store,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def machine(container):
    return container.state_machine


@pytest.fixture
def archival(container):
    return container.archival_manager


@pytest.fixture
def auditor(container):
    return container.auditor
