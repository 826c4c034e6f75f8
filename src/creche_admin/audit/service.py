from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..children.model import Child
from ..core.enums import EnrollmentStatus
from ..core.exceptions import ChildNotFound, DuplicateActiveEnrollment
from ..enrollments.model import DanglingLink, DuplicateActiveLink, Enrollment, EnrollmentAttrs
from ..enrollments.repository import AssociationStore
from ..enrollments.state_machine import EnrollmentStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditReport:
    orphans: Sequence[Child] = field(default_factory=tuple)
    duplicates: Sequence[DuplicateActiveLink] = field(default_factory=tuple)
    dangling: Sequence[DanglingLink] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return not (self.orphans or self.duplicates or self.dangling)

    def to_dict(self) -> dict:
        return {
            "clean": self.is_clean,
            "orphans": [c.to_dict() for c in self.orphans],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "dangling": [d.to_dict() for d in self.dangling],
        }


class ConsistencyAuditor:
    """Read-only diagnostics over the association store.

    Scans are best-effort snapshots and never write. ``repair_orphan`` is the
    only mutating entry point and must be called explicitly by an operator.
    """

    def __init__(self, store: AssociationStore, machine: EnrollmentStateMachine):
        self._store = store
        self._machine = machine

    def find_orphans(self) -> Sequence[Child]:
        return self._store.list_orphan_children()

    def find_duplicate_active_links(self) -> Sequence[DuplicateActiveLink]:
        return self._store.list_duplicate_active_links()

    def find_dangling_links(self) -> Sequence[DanglingLink]:
        return self._store.list_dangling_enrollments()

    def report(self) -> AuditReport:
        report = AuditReport(
            orphans=tuple(self.find_orphans()),
            duplicates=tuple(self.find_duplicate_active_links()),
            dangling=tuple(self.find_dangling_links()),
        )
        if not report.is_clean:
            logger.warning(
                "audit: %d orphan(s), %d duplicate approved link(s), %d dangling link(s)",
                len(report.orphans),
                len(report.duplicates),
                len(report.dangling),
            )
        return report

    def repair_orphan(
        self,
        child_id: int,
        parent_id: int,
        *,
        acting_user_id: Optional[int] = None,
        attrs: Optional[EnrollmentAttrs] = None,
    ) -> Enrollment:
        """Link an orphan child to a parent with an approved enrollment.

        A pending application for the child is adopted (and re-pointed to
        ``parent_id``) rather than duplicated.
        """

        attrs = attrs or EnrollmentAttrs(regulation_accepted=True, admin_notes="Linked by consistency repair")
        with self._store.transaction() as tx:
            child = tx.find_child(child_id, for_update=True)
            if not child.is_active:
                raise ChildNotFound(f"Child {child_id} is archived")
            tx.find_parent(parent_id)
            for e in tx.list_enrollments_for_child(child_id):
                if e.status == EnrollmentStatus.APPROVED:
                    raise DuplicateActiveEnrollment(
                        f"Child {child_id} is not an orphan: already linked to parent {e.parent_id}"
                    )

            pending = tx.upsert_enrollment(
                child_id=child_id,
                parent_id=parent_id,
                status=EnrollmentStatus.PENDING,
                attrs=attrs,
            )
            approved = self._machine.within(tx).approve(pending.enrollment_id, decided_by=acting_user_id)

        logger.info(
            "repaired orphan child %s: enrollment %s approved for parent %s by user %s",
            child_id,
            approved.enrollment_id,
            parent_id,
            acting_user_id,
        )
        return approved
