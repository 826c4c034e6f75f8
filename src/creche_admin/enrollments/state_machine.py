from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Callable, Mapping, Optional

from ..common.validators import optional_text
from ..core.enums import EnrollmentStatus
from ..core.exceptions import ChildNotFound, DuplicateActiveEnrollment, InvalidTransition
from .model import Enrollment, EnrollmentAttrs
from .repository import AssociationStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Mapping[EnrollmentStatus, frozenset] = {
    EnrollmentStatus.PENDING: frozenset({EnrollmentStatus.APPROVED, EnrollmentStatus.REJECTED}),
    EnrollmentStatus.APPROVED: frozenset({EnrollmentStatus.ARCHIVED}),
    EnrollmentStatus.ARCHIVED: frozenset({EnrollmentStatus.APPROVED}),
    EnrollmentStatus.REJECTED: frozenset(),
}


def can_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class EnrollmentStateMachine:
    """Validates and applies status changes of a child-parent link.

    Every operation runs in a unit of work on the store it was built with.
    ``within(tx)`` returns a machine that joins an already-open transaction,
    which is how the archival manager drives ``archive`` and ``restore``.
    """

    def __init__(self, store: AssociationStore, *, clock: Callable[[], datetime] = datetime.now):
        self._store = store
        self._clock = clock

    def within(self, tx: AssociationStore) -> "EnrollmentStateMachine":
        return EnrollmentStateMachine(tx, clock=self._clock)

    def _transition(
        self,
        tx: AssociationStore,
        enrollment: Enrollment,
        target: EnrollmentStatus,
        *,
        decided_by: Optional[int] = None,
        admin_notes: Optional[str] = None,
        stamp_decision: bool = False,
    ) -> Enrollment:
        if not can_transition(enrollment.status, target):
            raise InvalidTransition(
                f"Enrollment {enrollment.enrollment_id} cannot go from "
                f"{enrollment.status.value} to {target.value}"
            )
        changed = tx.set_enrollment_status(
            enrollment_id=enrollment.enrollment_id,
            from_status=enrollment.status,
            to_status=target,
            decided_by=decided_by,
            admin_notes=admin_notes,
            decided_at=self._clock() if stamp_decision else None,
        )
        if not changed:
            # Someone else moved the row between our read and our write.
            raise InvalidTransition(f"Enrollment {enrollment.enrollment_id} was modified concurrently")
        logger.info(
            "enrollment %s (child %s, parent %s): %s -> %s",
            enrollment.enrollment_id,
            enrollment.child_id,
            enrollment.parent_id,
            enrollment.status.value,
            target.value,
        )
        return tx.find_enrollment(enrollment.enrollment_id)

    @staticmethod
    def _other_approved(tx: AssociationStore, child_id: int, enrollment_id: int) -> Optional[Enrollment]:
        for e in tx.list_enrollments_for_child(child_id):
            if e.status == EnrollmentStatus.APPROVED and e.enrollment_id != enrollment_id:
                return e
        return None

    def submit(self, child_id: int, parent_id: int, attrs: Optional[EnrollmentAttrs] = None) -> Enrollment:
        attrs = attrs or EnrollmentAttrs()
        with self._store.transaction() as tx:
            child = tx.find_child(child_id, for_update=True)
            if not child.is_active:
                raise ChildNotFound(f"Child {child_id} is archived")
            tx.find_parent(parent_id)

            for e in tx.list_enrollments_for_child(child_id):
                if e.status in (EnrollmentStatus.APPROVED, EnrollmentStatus.PENDING):
                    logger.warning(
                        "submit refused for child %s: enrollment %s is already %s",
                        child_id,
                        e.enrollment_id,
                        e.status.value,
                    )
                    raise DuplicateActiveEnrollment(
                        f"Child {child_id} already has an {e.status.value} enrollment ({e.enrollment_id})"
                    )

            enrollment = tx.upsert_enrollment(
                child_id=child_id,
                parent_id=parent_id,
                status=EnrollmentStatus.PENDING,
                attrs=attrs,
            )
        logger.info("enrollment %s submitted for child %s by parent %s", enrollment.enrollment_id, child_id, parent_id)
        return enrollment

    def approve(self, enrollment_id: int, admin_notes: Optional[str] = None, *, decided_by: Optional[int] = None) -> Enrollment:
        with self._store.transaction() as tx:
            enrollment = tx.find_enrollment(enrollment_id)
            # Lock order: child row first, then the link. Racing approvals for
            # the same child queue on the child row.
            child = tx.find_child(enrollment.child_id, for_update=True)
            enrollment = tx.find_enrollment(enrollment_id, for_update=True)
            if enrollment.status != EnrollmentStatus.PENDING:
                raise InvalidTransition(
                    f"Enrollment {enrollment_id} is {enrollment.status.value}, only pending enrollments can be approved"
                )
            if not child.is_active:
                raise ChildNotFound(f"Child {enrollment.child_id} is archived")
            other = self._other_approved(tx, enrollment.child_id, enrollment.enrollment_id)
            if other is not None:
                raise DuplicateActiveEnrollment(
                    f"Child {enrollment.child_id} is already linked to parent {other.parent_id}"
                )
            return self._transition(
                tx,
                enrollment,
                EnrollmentStatus.APPROVED,
                decided_by=decided_by,
                admin_notes=optional_text(admin_notes),
                stamp_decision=True,
            )

    def reject(self, enrollment_id: int, admin_notes: Optional[str] = None, *, decided_by: Optional[int] = None) -> Enrollment:
        with self._store.transaction() as tx:
            enrollment = tx.find_enrollment(enrollment_id, for_update=True)
            return self._transition(
                tx,
                enrollment,
                EnrollmentStatus.REJECTED,
                decided_by=decided_by,
                admin_notes=optional_text(admin_notes),
                stamp_decision=True,
            )

    def archive(self, enrollment_id: int) -> Enrollment:
        """approved -> archived. Only the archival manager calls this, inside
        the transaction that deactivates the child."""
        with self._store.transaction() as tx:
            enrollment = tx.find_enrollment(enrollment_id, for_update=True)
            if enrollment.status != EnrollmentStatus.APPROVED:
                raise InvalidTransition(
                    f"Enrollment {enrollment_id} is {enrollment.status.value}, only approved enrollments can be archived"
                )
            return self._transition(tx, enrollment, EnrollmentStatus.ARCHIVED)

    def restore(self, enrollment_id: int) -> Enrollment:
        """archived -> approved. Only the archival manager calls this, inside
        the transaction that reactivates the child."""
        with self._store.transaction() as tx:
            enrollment = tx.find_enrollment(enrollment_id, for_update=True)
            if enrollment.status != EnrollmentStatus.ARCHIVED:
                raise InvalidTransition(
                    f"Enrollment {enrollment_id} is {enrollment.status.value}, only archived enrollments can be restored"
                )
            other = self._other_approved(tx, enrollment.child_id, enrollment.enrollment_id)
            if other is not None:
                raise DuplicateActiveEnrollment(
                    f"Child {enrollment.child_id} was linked to parent {other.parent_id} in the meantime"
                )
            return self._transition(tx, enrollment, EnrollmentStatus.APPROVED)

    def schedule_appointment(
        self,
        enrollment_id: int,
        appointment_date: Optional[date],
        appointment_time: Optional[time],
    ) -> Enrollment:
        with self._store.transaction() as tx:
            enrollment = tx.find_enrollment(enrollment_id, for_update=True)
            if enrollment.status != EnrollmentStatus.PENDING:
                raise InvalidTransition(
                    f"Enrollment {enrollment_id} is {enrollment.status.value}, appointments are only for pending enrollments"
                )
            tx.set_appointment(
                enrollment_id=enrollment_id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
            )
            return tx.find_enrollment(enrollment_id)
