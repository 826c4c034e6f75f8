from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Any, Dict, Iterator, List, Optional, Sequence

from mysql.connector.errors import IntegrityError

from ..children.model import Child, ChildArchiveSnapshot, ChildDetails, ChildStats
from ..core.constants import AGE_GROUP_MONTHS
from ..core.enums import EnrollmentStatus, Gender, Role
from ..core.exceptions import (
    ChildNotFound,
    DuplicateActiveEnrollment,
    EnrollmentNotFound,
    ParentNotFound,
    ValidationError,
)
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, is_duplicate_key, to_time
from ..users.model import User
from ..users.mysql_user_repository import USER_COLUMNS, user_from_row
from .model import (
    DanglingLink,
    DuplicateActiveLink,
    Enrollment,
    EnrollmentAttrs,
    EnrollmentStats,
    describe_dangling,
    select_current_enrollment,
)
from .repository import AssociationStore

APPROVED_PER_CHILD_INDEX = "uq_enrollments_one_approved_per_child"

CHILD_COLUMNS = (
    "child_id, first_name, last_name, birth_date, gender, medical_info, allergies, "
    "emergency_contact_name, emergency_contact_phone, is_active, archived_at, archived_by, "
    "archive_reason, created_at, updated_at"
)

ENROLLMENT_COLUMNS = (
    "enrollment_id, child_id, parent_id, status, enrollment_date, lunch_assistance, "
    "regulation_accepted, appointment_date, appointment_time, admin_notes, decided_by, "
    "decided_at, created_at, updated_at"
)


def _prefixed(columns: str, alias: str) -> str:
    return ", ".join(f"{alias}.{c.strip()}" for c in columns.split(","))


def child_from_row(row: Dict[str, Any]) -> Child:
    return Child(
        child_id=int(row["child_id"]),
        first_name=row["first_name"],
        last_name=row["last_name"],
        birth_date=row["birth_date"],
        gender=Gender(row["gender"]) if row.get("gender") else None,
        medical_info=row.get("medical_info"),
        allergies=row.get("allergies"),
        emergency_contact_name=row.get("emergency_contact_name"),
        emergency_contact_phone=row.get("emergency_contact_phone"),
        is_active=bool(row.get("is_active", True)),
        archived_at=row.get("archived_at"),
        archived_by=row.get("archived_by"),
        archive_reason=row.get("archive_reason"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def enrollment_from_row(row: Dict[str, Any]) -> Enrollment:
    return Enrollment(
        enrollment_id=int(row["enrollment_id"]),
        child_id=int(row["child_id"]),
        parent_id=int(row["parent_id"]),
        status=EnrollmentStatus(row["status"]),
        enrollment_date=row["enrollment_date"],
        created_at=row["created_at"],
        lunch_assistance=bool(row.get("lunch_assistance")),
        regulation_accepted=bool(row.get("regulation_accepted")),
        appointment_date=row.get("appointment_date"),
        appointment_time=to_time(row.get("appointment_time")),
        admin_notes=row.get("admin_notes"),
        decided_by=row.get("decided_by"),
        decided_at=row.get("decided_at"),
        updated_at=row.get("updated_at"),
    )


def _split_ids(value: Any) -> tuple[int, ...]:
    # GROUP_CONCAT may come back as bytes depending on the connector build.
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    return tuple(int(v) for v in str(value or "").split(",") if v.strip())


class MySQLAssociationStore(AssociationStore):
    def __init__(self, conn_factory: DatabaseConnection, *, cursor=None):
        self._conn_factory = conn_factory
        self._cur = cursor

    @contextmanager
    def transaction(self) -> Iterator["MySQLAssociationStore"]:
        if self._cur is not None:
            yield self
            return
        with db_cursor(self._conn_factory) as (_, cur):
            yield MySQLAssociationStore(self._conn_factory, cursor=cur)

    @contextmanager
    def _cursor(self):
        if self._cur is not None:
            yield self._cur
            return
        with db_cursor(self._conn_factory) as (_, cur):
            yield cur

    @staticmethod
    def _execute_link_write(cur, sql: str, params: tuple) -> None:
        try:
            cur.execute(sql, params)
        except IntegrityError as exc:
            if is_duplicate_key(exc, index_name=APPROVED_PER_CHILD_INDEX):
                raise DuplicateActiveEnrollment("This child is already linked to a parent") from exc
            raise

    # -------- Lookups --------
    def find_child(self, child_id: int, *, for_update: bool = False) -> Child:
        lock = " FOR UPDATE" if for_update else ""
        with self._cursor() as cur:
            cur.execute(f"SELECT {CHILD_COLUMNS} FROM children WHERE child_id=%s{lock}", (int(child_id),))
            row = fetchone(cur)
        if not row:
            raise ChildNotFound(f"Child {child_id} not found")
        return child_from_row(row)

    def find_parent(self, parent_id: int) -> User:
        with self._cursor() as cur:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE user_id=%s", (int(parent_id),))
            row = fetchone(cur)
        if not row:
            raise ParentNotFound(f"Parent {parent_id} not found")
        user = user_from_row(row)
        if user.role != Role.PARENT:
            raise ParentNotFound(f"User {parent_id} is not a parent account")
        return user

    def find_enrollment(self, enrollment_id: int, *, for_update: bool = False) -> Enrollment:
        lock = " FOR UPDATE" if for_update else ""
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {ENROLLMENT_COLUMNS} FROM enrollments WHERE enrollment_id=%s{lock}",
                (int(enrollment_id),),
            )
            row = fetchone(cur)
        if not row:
            raise EnrollmentNotFound(f"Enrollment {enrollment_id} not found")
        return enrollment_from_row(row)

    def find_enrollment_by_child(self, child_id: int) -> Enrollment:
        return select_current_enrollment(int(child_id), self.list_enrollments_for_child(child_id))

    def list_enrollments_for_child(self, child_id: int) -> Sequence[Enrollment]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {ENROLLMENT_COLUMNS}
                FROM enrollments
                WHERE child_id=%s
                ORDER BY created_at DESC, enrollment_id DESC
                """,
                (int(child_id),),
            )
            return [enrollment_from_row(r) for r in fetchall(cur)]

    # -------- Enrollment writes --------
    def upsert_enrollment(
        self,
        *,
        child_id: int,
        parent_id: int,
        status: EnrollmentStatus,
        attrs: EnrollmentAttrs,
    ) -> Enrollment:
        with self.transaction() as tx:
            tx.find_child(child_id, for_update=True)
            tx.find_parent(parent_id)
            cur = tx._cur
            cur.execute(
                """
                SELECT enrollment_id FROM enrollments
                WHERE child_id=%s AND status=%s
                ORDER BY created_at DESC, enrollment_id DESC
                LIMIT 1
                FOR UPDATE
                """,
                (int(child_id), EnrollmentStatus.PENDING.value),
            )
            existing = fetchone(cur)
            if existing:
                enrollment_id = int(existing["enrollment_id"])
                tx._execute_link_write(
                    cur,
                    """
                    UPDATE enrollments
                    SET parent_id=%s, status=%s, enrollment_date=COALESCE(%s, enrollment_date),
                        lunch_assistance=%s, regulation_accepted=%s,
                        appointment_date=%s, appointment_time=%s,
                        admin_notes=COALESCE(%s, admin_notes)
                    WHERE enrollment_id=%s
                    """,
                    (
                        int(parent_id),
                        status.value,
                        attrs.enrollment_date,
                        1 if attrs.lunch_assistance else 0,
                        1 if attrs.regulation_accepted else 0,
                        attrs.appointment_date,
                        attrs.appointment_time,
                        attrs.admin_notes,
                        enrollment_id,
                    ),
                )
            else:
                tx._execute_link_write(
                    cur,
                    """
                    INSERT INTO enrollments(
                        child_id, parent_id, status, enrollment_date, lunch_assistance,
                        regulation_accepted, appointment_date, appointment_time, admin_notes
                    )
                    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    (
                        int(child_id),
                        int(parent_id),
                        status.value,
                        attrs.enrollment_date or date.today(),
                        1 if attrs.lunch_assistance else 0,
                        1 if attrs.regulation_accepted else 0,
                        attrs.appointment_date,
                        attrs.appointment_time,
                        attrs.admin_notes,
                    ),
                )
                enrollment_id = int(cur.lastrowid)
            return tx.find_enrollment(enrollment_id)

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
        with self._cursor() as cur:
            self._execute_link_write(
                cur,
                """
                UPDATE enrollments
                SET status=%s,
                    decided_by=COALESCE(%s, decided_by),
                    decided_at=COALESCE(%s, decided_at),
                    admin_notes=COALESCE(%s, admin_notes)
                WHERE enrollment_id=%s AND status=%s
                """,
                (
                    to_status.value,
                    decided_by,
                    decided_at,
                    admin_notes,
                    int(enrollment_id),
                    from_status.value,
                ),
            )
            return cur.rowcount > 0

    def set_appointment(
        self,
        *,
        enrollment_id: int,
        appointment_date: Optional[date],
        appointment_time: Optional[time],
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE enrollments SET appointment_date=%s, appointment_time=%s WHERE enrollment_id=%s",
                (appointment_date, appointment_time, int(enrollment_id)),
            )

    # -------- Child writes --------
    # -------- Parent accounts --------
    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE email=%s", (email,))
            row = fetchone(cur)
        return user_from_row(row) if row else None

    def create_parent_account(
        self,
        *,
        full_name: str,
        email: str,
        password_hash: str,
        phone: Optional[str] = None,
    ) -> User:
        with self.transaction() as tx:
            try:
                tx._cur.execute(
                    """
                    INSERT INTO users(full_name, email, phone, password_hash, role, is_active)
                    VALUES(%s,%s,%s,%s,%s,1)
                    """,
                    (full_name, email, phone, password_hash, Role.PARENT.value),
                )
            except IntegrityError as exc:
                if is_duplicate_key(exc):
                    raise ValidationError("Email is already registered") from exc
                raise
            return tx.find_parent(int(tx._cur.lastrowid))

    def create_child(self, details: ChildDetails) -> Child:
        with self.transaction() as tx:
            tx._cur.execute(
                """
                INSERT INTO children(
                    first_name, last_name, birth_date, gender, medical_info, allergies,
                    emergency_contact_name, emergency_contact_phone, is_active
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,1)
                """,
                (
                    details.first_name,
                    details.last_name,
                    details.birth_date,
                    details.gender.value if details.gender else None,
                    details.medical_info,
                    details.allergies,
                    details.emergency_contact_name,
                    details.emergency_contact_phone,
                ),
            )
            return tx.find_child(int(tx._cur.lastrowid))

    def update_child(self, child_id: int, details: ChildDetails) -> Child:
        with self.transaction() as tx:
            tx.find_child(child_id, for_update=True)
            tx._cur.execute(
                """
                UPDATE children
                SET first_name=%s, last_name=%s, birth_date=%s, gender=%s, medical_info=%s,
                    allergies=%s, emergency_contact_name=%s, emergency_contact_phone=%s
                WHERE child_id=%s
                """,
                (
                    details.first_name,
                    details.last_name,
                    details.birth_date,
                    details.gender.value if details.gender else None,
                    details.medical_info,
                    details.allergies,
                    details.emergency_contact_name,
                    details.emergency_contact_phone,
                    int(child_id),
                ),
            )
            return tx.find_child(child_id)

    def insert_archive_snapshot(
        self,
        *,
        child: Child,
        archived_by: int,
        archive_reason: str,
        archived_at: datetime,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO children_archive(
                    child_id, first_name, last_name, birth_date, gender, medical_info, allergies,
                    emergency_contact_name, emergency_contact_phone, child_created_at,
                    archived_at, archived_by, archive_reason
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    child.child_id,
                    child.first_name,
                    child.last_name,
                    child.birth_date,
                    child.gender.value if child.gender else None,
                    child.medical_info,
                    child.allergies,
                    child.emergency_contact_name,
                    child.emergency_contact_phone,
                    child.created_at,
                    archived_at,
                    int(archived_by),
                    archive_reason,
                ),
            )
            return int(cur.lastrowid)

    def mark_child_archived(
        self,
        *,
        child_id: int,
        archived_by: int,
        archive_reason: str,
        archived_at: datetime,
    ) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE children
                SET is_active=0, archived_at=%s, archived_by=%s, archive_reason=%s
                WHERE child_id=%s AND is_active=1
                """,
                (archived_at, int(archived_by), archive_reason, int(child_id)),
            )
            return cur.rowcount > 0

    def mark_child_restored(self, child_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE children
                SET is_active=1, archived_at=NULL, archived_by=NULL, archive_reason=NULL
                WHERE child_id=%s AND is_active=0
                """,
                (int(child_id),),
            )
            return cur.rowcount > 0

    # -------- Read models --------
    def list_children(self, *, active: Optional[bool] = True) -> Sequence[Child]:
        where = "1=1" if active is None else "is_active=%s"
        params: tuple = () if active is None else (1 if active else 0,)
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {CHILD_COLUMNS} FROM children WHERE {where} ORDER BY last_name, first_name, child_id",
                params,
            )
            return [child_from_row(r) for r in fetchall(cur)]

    def list_archive_snapshots(self, child_id: int) -> Sequence[ChildArchiveSnapshot]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT archive_id, child_id, first_name, last_name, birth_date, gender, medical_info,
                       allergies, emergency_contact_name, emergency_contact_phone,
                       archived_at, archived_by, archive_reason
                FROM children_archive
                WHERE child_id=%s
                ORDER BY archived_at DESC, archive_id DESC
                """,
                (int(child_id),),
            )
            rows = fetchall(cur)
        out: List[ChildArchiveSnapshot] = []
        for r in rows:
            out.append(
                ChildArchiveSnapshot(
                    archive_id=int(r["archive_id"]),
                    child_id=int(r["child_id"]),
                    details=ChildDetails(
                        first_name=r["first_name"],
                        last_name=r["last_name"],
                        birth_date=r["birth_date"],
                        gender=Gender(r["gender"]) if r.get("gender") else None,
                        medical_info=r.get("medical_info"),
                        allergies=r.get("allergies"),
                        emergency_contact_name=r.get("emergency_contact_name"),
                        emergency_contact_phone=r.get("emergency_contact_phone"),
                    ),
                    archived_at=r["archived_at"],
                    archived_by=int(r["archived_by"]),
                    archive_reason=r["archive_reason"],
                )
            )
        return out

    def list_orphan_children(self) -> Sequence[Child]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_prefixed(CHILD_COLUMNS, "c")}
                FROM children c
                LEFT JOIN enrollments e ON e.child_id = c.child_id AND e.status = %s
                WHERE c.is_active = 1 AND e.enrollment_id IS NULL
                ORDER BY c.created_at DESC, c.child_id DESC
                """,
                (EnrollmentStatus.APPROVED.value,),
            )
            return [child_from_row(r) for r in fetchall(cur)]

    def list_duplicate_active_links(self) -> Sequence[DuplicateActiveLink]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT child_id,
                       GROUP_CONCAT(enrollment_id ORDER BY enrollment_id) AS enrollment_ids,
                       GROUP_CONCAT(parent_id ORDER BY enrollment_id) AS parent_ids
                FROM enrollments
                WHERE status = %s
                GROUP BY child_id
                HAVING COUNT(*) > 1
                ORDER BY child_id
                """,
                (EnrollmentStatus.APPROVED.value,),
            )
            rows = fetchall(cur)
        return [
            DuplicateActiveLink(
                child_id=int(r["child_id"]),
                enrollment_ids=_split_ids(r["enrollment_ids"]),
                parent_ids=_split_ids(r["parent_ids"]),
            )
            for r in rows
        ]

    def list_dangling_enrollments(self) -> Sequence[DanglingLink]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT e.enrollment_id, e.child_id, e.parent_id, e.status,
                       c.child_id AS found_child_id, c.is_active AS child_active,
                       u.user_id AS found_user_id, u.role AS user_role
                FROM enrollments e
                LEFT JOIN children c ON c.child_id = e.child_id
                LEFT JOIN users u ON u.user_id = e.parent_id
                WHERE c.child_id IS NULL
                   OR u.user_id IS NULL
                   OR u.role <> %s
                   OR (e.status = %s AND c.is_active = 0)
                ORDER BY e.enrollment_id
                """,
                (Role.PARENT.value, EnrollmentStatus.APPROVED.value),
            )
            rows = fetchall(cur)
        out: List[DanglingLink] = []
        for r in rows:
            status = EnrollmentStatus(r["status"])
            problem = describe_dangling(
                status=status,
                child_exists=r.get("found_child_id") is not None,
                child_active=bool(r.get("child_active")),
                user_exists=r.get("found_user_id") is not None,
                user_role=r.get("user_role"),
            )
            if problem:
                out.append(
                    DanglingLink(
                        enrollment_id=int(r["enrollment_id"]),
                        child_id=int(r["child_id"]),
                        parent_id=int(r["parent_id"]),
                        status=status,
                        problem=problem,
                    )
                )
        return out

    def has_approved_link(self, *, child_id: int, parent_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT 1 AS linked
                FROM enrollments e
                JOIN children c ON c.child_id = e.child_id
                WHERE e.child_id=%s AND e.parent_id=%s AND e.status=%s AND c.is_active=1
                LIMIT 1
                """,
                (int(child_id), int(parent_id), EnrollmentStatus.APPROVED.value),
            )
            return fetchone(cur) is not None

    def list_children_for_parent(self, parent_id: int) -> Sequence[Child]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_prefixed(CHILD_COLUMNS, "c")}
                FROM children c
                JOIN enrollments e ON e.child_id = c.child_id AND e.status = %s
                WHERE e.parent_id=%s AND c.is_active=1
                ORDER BY c.first_name, c.last_name
                """,
                (EnrollmentStatus.APPROVED.value, int(parent_id)),
            )
            return [child_from_row(r) for r in fetchall(cur)]

    @staticmethod
    def _filters(status: Optional[EnrollmentStatus], parent_id: Optional[int]) -> tuple[str, list]:
        clauses = ["1=1"]
        params: list[object] = []
        if status is not None:
            clauses.append("status=%s")
            params.append(status.value)
        if parent_id is not None:
            clauses.append("parent_id=%s")
            params.append(int(parent_id))
        return " AND ".join(clauses), params

    def list_enrollments(
        self,
        *,
        status: Optional[EnrollmentStatus] = None,
        parent_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[Enrollment]:
        where, params = self._filters(status, parent_id)
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {ENROLLMENT_COLUMNS}
                FROM enrollments
                WHERE {where}
                ORDER BY created_at DESC, enrollment_id DESC
                LIMIT %s OFFSET %s
                """,
                tuple(params + [int(limit), int(offset)]),
            )
            return [enrollment_from_row(r) for r in fetchall(cur)]

    def count_enrollments(
        self,
        *,
        status: Optional[EnrollmentStatus] = None,
        parent_id: Optional[int] = None,
    ) -> int:
        where, params = self._filters(status, parent_id)
        with self._cursor() as cur:
            cur.execute(f"SELECT COUNT(*) AS total FROM enrollments WHERE {where}", tuple(params))
            row = fetchone(cur)
            return int(row["total"]) if row else 0

    def enrollment_stats(self) -> EnrollmentStats:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status='pending' THEN 1 ELSE 0 END) AS pending,
                       SUM(CASE WHEN status='approved' THEN 1 ELSE 0 END) AS approved,
                       SUM(CASE WHEN status='rejected' THEN 1 ELSE 0 END) AS rejected,
                       SUM(CASE WHEN status='archived' THEN 1 ELSE 0 END) AS archived
                FROM enrollments
                """
            )
            row = fetchone(cur) or {}
        return EnrollmentStats(**{k: int(row.get(k) or 0) for k in ("total", "pending", "approved", "rejected", "archived")})

    def child_stats(self, today: date) -> ChildStats:
        baby, toddler, preschool = AGE_GROUP_MONTHS
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT SUM(is_active=1) AS total,
                       SUM(is_active=1 AND gender='male') AS boys,
                       SUM(is_active=1 AND gender='female') AS girls,
                       SUM(is_active=1 AND TIMESTAMPDIFF(MONTH, birth_date, %s) < %s) AS babies,
                       SUM(is_active=1 AND TIMESTAMPDIFF(MONTH, birth_date, %s) >= %s
                           AND TIMESTAMPDIFF(MONTH, birth_date, %s) < %s) AS toddlers,
                       SUM(is_active=1 AND TIMESTAMPDIFF(MONTH, birth_date, %s) >= %s
                           AND TIMESTAMPDIFF(MONTH, birth_date, %s) < %s) AS preschool,
                       SUM(is_active=1 AND TIMESTAMPDIFF(MONTH, birth_date, %s) >= %s) AS older,
                       SUM(is_active=0) AS archived
                FROM children
                """,
                (
                    today, baby,
                    today, baby, today, toddler,
                    today, toddler, today, preschool,
                    today, preschool,
                ),
            )
            row = fetchone(cur) or {}
        keys = ("total", "boys", "girls", "babies", "toddlers", "preschool", "older", "archived")
        return ChildStats(**{k: int(row.get(k) or 0) for k in keys})
