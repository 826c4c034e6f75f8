from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..children.model import Child, ChildArchiveSnapshot
from ..common.validators import optional_text
from ..core.constants import ARCHIVED_APPLICATION_NOTE, DEFAULT_ARCHIVE_REASON
from ..core.enums import EnrollmentStatus
from ..core.exceptions import ChildNotFound, NotArchived
from ..enrollments.model import Enrollment
from ..enrollments.repository import AssociationStore
from ..enrollments.state_machine import EnrollmentStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveResult:
    child: Child
    archive_id: int
    enrollment: Optional[Enrollment]


@dataclass(frozen=True)
class RestoreResult:
    child: Child
    enrollment: Optional[Enrollment]


class ArchivalManager:
    """Moves a child in and out of active service as one unit of work.

    Archiving writes a snapshot, deactivates the child, archives its
    approved link and rejects any open application. Restoring reverses the last two steps. Either every step
    commits or none does.
    """

    def __init__(
        self,
        store: AssociationStore,
        machine: EnrollmentStateMachine,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._machine = machine
        self._clock = clock

    def archive_child(
        self,
        child_id: int,
        reason: Optional[str],
        acting_user_id: int,
        *,
        now: Optional[datetime] = None,
    ) -> ArchiveResult:
        now = now or self._clock()
        reason = optional_text(reason) or DEFAULT_ARCHIVE_REASON

        with self._store.transaction() as tx:
            child = tx.find_child(child_id, for_update=True)
            if not child.is_active:
                raise ChildNotFound(f"Child {child_id} not found or already archived")

            archive_id = tx.insert_archive_snapshot(
                child=child,
                archived_by=acting_user_id,
                archive_reason=reason,
                archived_at=now,
            )
            if not tx.mark_child_archived(
                child_id=child_id,
                archived_by=acting_user_id,
                archive_reason=reason,
                archived_at=now,
            ):
                raise ChildNotFound(f"Child {child_id} not found or already archived")

            archived_link = None
            machine = self._machine.within(tx)
            for link in tx.list_enrollments_for_child(child_id):
                if link.status == EnrollmentStatus.APPROVED:
                    archived_link = machine.archive(link.enrollment_id)
                elif link.status == EnrollmentStatus.PENDING:
                    # An open application must not be approved onto an archived child.
                    machine.reject(link.enrollment_id, ARCHIVED_APPLICATION_NOTE, decided_by=acting_user_id)

            archived_child = tx.find_child(child_id)

        logger.info(
            "child %s archived by user %s (snapshot %s, enrollment %s): %s",
            child_id,
            acting_user_id,
            archive_id,
            archived_link.enrollment_id if archived_link else None,
            reason,
        )
        return ArchiveResult(child=archived_child, archive_id=archive_id, enrollment=archived_link)

    def restore_child(self, child_id: int) -> RestoreResult:
        with self._store.transaction() as tx:
            child = tx.find_child(child_id, for_update=True)
            if child.is_active:
                raise NotArchived(f"Child {child_id} is active")

            if not tx.mark_child_restored(child_id):
                raise NotArchived(f"Child {child_id} is active")

            restored_link = None
            archived = [e for e in tx.list_enrollments_for_child(child_id) if e.status == EnrollmentStatus.ARCHIVED]
            if archived:
                # Newest first; older archived rows stay as history.
                restored_link = self._machine.within(tx).restore(archived[0].enrollment_id)

            restored_child = tx.find_child(child_id)

        logger.info(
            "child %s restored (enrollment %s)",
            child_id,
            restored_link.enrollment_id if restored_link else None,
        )
        return RestoreResult(child=restored_child, enrollment=restored_link)

    def list_archive_history(self, child_id: int) -> Sequence[ChildArchiveSnapshot]:
        self._store.find_child(child_id)
        return self._store.list_archive_snapshots(child_id)
