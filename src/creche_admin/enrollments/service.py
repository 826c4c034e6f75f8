from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from werkzeug.security import generate_password_hash

from ..children.model import Child
from ..children.service import ChildService
from ..common.validators import (
    optional_text,
    parse_bool,
    parse_optional_date,
    parse_optional_time,
    parse_paging,
    require_id,
    require_min_length,
    require_non_empty,
)
from ..core.constants import MIN_PASSWORD_LENGTH
from ..core.enums import STAFF_ROLES, EnrollmentStatus, Role
from ..core.exceptions import AuthorizationError, EnrollmentNotFound, ValidationError
from ..users.model import User
from .model import Enrollment, EnrollmentAttrs, EnrollmentStats
from .repository import AssociationStore
from .state_machine import EnrollmentStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntakeResult:
    parent: User
    child: Child
    enrollment: Enrollment


def _require_staff(current_role: Role) -> None:
    if current_role not in STAFF_ROLES:
        raise AuthorizationError("Only staff and admins can do this")


class EnrollmentService:
    """Role-aware entry points over the state machine and the store.

    Parents act on their own records only; decisions are for staff/admin.
    """

    def __init__(self, store: AssociationStore, machine: EnrollmentStateMachine):
        self._store = store
        self._machine = machine

    @staticmethod
    def attrs_from_payload(data: Mapping[str, Any]) -> EnrollmentAttrs:
        return EnrollmentAttrs(
            enrollment_date=parse_optional_date(data.get("enrollment_date"), "Enrollment date"),
            lunch_assistance=parse_bool(data.get("lunch_assistance")),
            regulation_accepted=parse_bool(data.get("regulation_accepted")),
            appointment_date=parse_optional_date(data.get("appointment_date"), "Appointment date"),
            appointment_time=parse_optional_time(data.get("appointment_time"), "Appointment time"),
            admin_notes=optional_text(data.get("admin_notes")),
        )

    def submit(
        self,
        *,
        current_role: Role,
        current_user_id: int,
        data: Mapping[str, Any],
    ) -> Enrollment:
        child_id = require_id(data.get("child_id"), "child_id")
        if current_role == Role.PARENT:
            raw_parent = data.get("parent_id")
            if raw_parent not in (None, "") and require_id(raw_parent, "parent_id") != int(current_user_id):
                raise AuthorizationError("Parents can only enroll for their own account")
            parent_id = int(current_user_id)
        else:
            _require_staff(current_role)
            parent_id = require_id(data.get("parent_id"), "parent_id")

        attrs = self.attrs_from_payload(data)
        if current_role == Role.PARENT and not attrs.regulation_accepted:
            raise ValidationError("The nursery regulation must be accepted")
        return self._machine.submit(child_id, parent_id, attrs)

    def public_intake(self, data: Mapping[str, Any], *, today: Optional[date] = None) -> IntakeResult:
        """Unauthenticated application: a new parent account, the child and a
        pending enrollment, all created in one transaction.

        Everything is validated before anything is written. An email that
        already has an account is refused; those families log in instead.
        """

        first = require_non_empty(data.get("parent_first_name", ""), "Parent first name")
        last = require_non_empty(data.get("parent_last_name", ""), "Parent last name")
        email = require_non_empty(data.get("parent_email", ""), "Parent email").lower()
        if "@" not in email:
            raise ValidationError("Parent email is not valid")
        password = require_min_length(data.get("parent_password"), "Password", MIN_PASSWORD_LENGTH)

        details = ChildService.details_from_payload(
            {
                "first_name": data.get("child_first_name", ""),
                "last_name": data.get("child_last_name", ""),
                "birth_date": data.get("birth_date"),
                "gender": data.get("gender"),
                "medical_info": data.get("medical_info"),
                "allergies": data.get("allergies"),
                "emergency_contact_name": data.get("emergency_contact_name"),
                "emergency_contact_phone": data.get("emergency_contact_phone"),
            },
            today=today,
        )
        attrs = self.attrs_from_payload(
            {
                "enrollment_date": data.get("enrollment_date"),
                "lunch_assistance": data.get("lunch_assistance"),
                "regulation_accepted": data.get("regulation_accepted"),
            }
        )
        if not attrs.regulation_accepted:
            raise ValidationError("The nursery regulation must be accepted")

        with self._store.transaction() as tx:
            if tx.find_user_by_email(email) is not None:
                raise ValidationError("Email is already registered")
            parent = tx.create_parent_account(
                full_name=f"{first} {last}",
                email=email,
                password_hash=generate_password_hash(password),
                phone=optional_text(data.get("parent_phone")),
            )
            child = tx.create_child(details)
            enrollment = self._machine.within(tx).submit(child.child_id, parent.user_id, attrs)

        logger.info(
            "public intake: parent %s, child %s, enrollment %s",
            parent.user_id,
            child.child_id,
            enrollment.enrollment_id,
        )
        return IntakeResult(parent=parent, child=child, enrollment=enrollment)

    def approve(self, *, current_role: Role, current_user_id: int, enrollment_id: int, admin_notes: str = "") -> Enrollment:
        _require_staff(current_role)
        return self._machine.approve(enrollment_id, admin_notes, decided_by=int(current_user_id))

    def reject(self, *, current_role: Role, current_user_id: int, enrollment_id: int, admin_notes: str = "") -> Enrollment:
        _require_staff(current_role)
        return self._machine.reject(enrollment_id, admin_notes, decided_by=int(current_user_id))

    def schedule_appointment(self, *, current_role: Role, enrollment_id: int, data: Mapping[str, Any]) -> Enrollment:
        _require_staff(current_role)
        appointment_date = parse_optional_date(data.get("appointment_date"), "Appointment date")
        appointment_time = parse_optional_time(data.get("appointment_time"), "Appointment time")
        if appointment_time and not appointment_date:
            raise ValidationError("An appointment time needs a date")
        return self._machine.schedule_appointment(enrollment_id, appointment_date, appointment_time)

    def get(self, *, current_role: Role, current_user_id: int, enrollment_id: int) -> Enrollment:
        enrollment = self._store.find_enrollment(enrollment_id)
        if current_role == Role.PARENT and enrollment.parent_id != int(current_user_id):
            # Do not reveal other families' records.
            raise EnrollmentNotFound(f"Enrollment {enrollment_id} not found")
        return enrollment

    def list_enrollments(
        self,
        *,
        current_role: Role,
        current_user_id: int,
        status: Optional[str] = None,
        parent_id: Any = None,
        page: Any = 1,
        limit: Any = None,
    ) -> dict:
        status_filter = None
        if status and status != "all":
            try:
                status_filter = EnrollmentStatus(status)
            except ValueError:
                raise ValidationError("Unknown enrollment status")

        if current_role == Role.PARENT:
            parent_filter = int(current_user_id)
        elif parent_id not in (None, ""):
            parent_filter = require_id(parent_id, "parent_id")
        else:
            parent_filter = None
        page_num, limit_num = parse_paging(page, limit)
        rows = self._store.list_enrollments(
            status=status_filter,
            parent_id=parent_filter,
            limit=limit_num,
            offset=(page_num - 1) * limit_num,
        )
        total = self._store.count_enrollments(status=status_filter, parent_id=parent_filter)
        return {
            "enrollments": list(rows),
            "pagination": {
                "page": page_num,
                "limit": limit_num,
                "total": total,
                "pages": (total + limit_num - 1) // limit_num,
            },
        }

    def stats(self, *, current_role: Role) -> EnrollmentStats:
        _require_staff(current_role)
        return self._store.enrollment_stats()

    def current_for_child(self, *, current_role: Role, child_id: int) -> Enrollment:
        _require_staff(current_role)
        self._store.find_child(child_id)
        return self._store.find_enrollment_by_child(child_id)

    def has_approved_link(self, *, child_id: int, parent_id: int) -> bool:
        """Read-only check for attendance, notifications and document access."""

        return self._store.has_approved_link(child_id=int(child_id), parent_id=int(parent_id))

    def children_of_parent(self, *, parent_id: int) -> Sequence[Child]:
        self._store.find_parent(parent_id)
        return self._store.list_children_for_parent(parent_id)
