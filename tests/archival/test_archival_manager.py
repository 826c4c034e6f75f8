from __future__ import annotations

from datetime import datetime

import pytest

from creche_admin.children.model import ChildDetails
from creche_admin.core.constants import ARCHIVED_APPLICATION_NOTE, DEFAULT_ARCHIVE_REASON
from creche_admin.core.enums import EnrollmentStatus, Role
from creche_admin.core.exceptions import ChildNotFound, DuplicateActiveEnrollment, InvalidTransition, NotArchived


@pytest.fixture
def linked_child(store, machine):
    child = store.add_child("Noah", allergies="peanuts")
    parent = store.add_user("Sophie Leroy")
    e = machine.submit(child.child_id, parent.user_id)
    machine.approve(e.enrollment_id)
    return child, parent, e


def test_archive_child_snapshots_and_archives_link(store, archival, linked_child, fixed_now):
    child, parent, e = linked_child
    staff = store.add_user("Director", role=Role.ADMIN)

    result = archival.archive_child(child.child_id, "Moved to Lyon", staff.user_id)

    assert result.child.is_active is False
    assert result.child.archived_by == staff.user_id
    assert result.child.archived_at == fixed_now
    assert result.child.archive_reason == "Moved to Lyon"
    assert result.enrollment.enrollment_id == e.enrollment_id
    assert result.enrollment.status == EnrollmentStatus.ARCHIVED

    (snapshot,) = archival.list_archive_history(child.child_id)
    assert snapshot.archive_id == result.archive_id
    assert snapshot.details == ChildDetails.of(child)
    assert snapshot.archived_by == staff.user_id
    assert snapshot.archive_reason == "Moved to Lyon"

    assert not store.has_approved_link(child_id=child.child_id, parent_id=parent.user_id)
    assert store.list_children_for_parent(parent.user_id) == []


def test_archive_then_restore_brings_back_same_link(store, archival, linked_child):
    child, parent, e = linked_child

    archival.archive_child(child.child_id, None, acting_user_id=1)
    result = archival.restore_child(child.child_id)

    assert result.child.is_active is True
    assert result.child.archived_at is None
    assert result.child.archive_reason is None
    assert ChildDetails.of(result.child) == ChildDetails.of(child)
    assert result.enrollment.enrollment_id == e.enrollment_id
    assert result.enrollment.parent_id == parent.user_id
    assert store.find_enrollment_by_child(child.child_id).status == EnrollmentStatus.APPROVED


def test_blank_reason_uses_default(store, archival):
    child = store.add_child()

    result = archival.archive_child(child.child_id, "   ", acting_user_id=1)

    assert result.child.archive_reason == DEFAULT_ARCHIVE_REASON


def test_archive_child_without_enrollment_only_touches_child(store, archival):
    child = store.add_child()
    other = store.add_child("Other")
    parent = store.add_user()
    untouched = store.add_enrollment(other.child_id, parent.user_id, EnrollmentStatus.APPROVED)
    enrollments_before = dict(store.enrollments)

    result = archival.archive_child(child.child_id, "Family left", acting_user_id=1)

    assert result.enrollment is None
    assert store.enrollments == enrollments_before
    assert store.find_enrollment(untouched.enrollment_id).status == EnrollmentStatus.APPROVED
    assert store.find_child(other.child_id).is_active


def test_archive_unknown_or_archived_child(store, archival):
    child = store.add_child()
    archival.archive_child(child.child_id, None, acting_user_id=1)

    with pytest.raises(ChildNotFound):
        archival.archive_child(child.child_id, None, acting_user_id=1)
    with pytest.raises(ChildNotFound):
        archival.archive_child(404, None, acting_user_id=1)

    assert len(store.snapshots) == 1


@pytest.mark.parametrize("failing_step", ["mark_child_archived", "set_enrollment_status"])
def test_failure_midway_leaves_no_partial_effects(store, archival, linked_child, failing_step):
    child, _, e = linked_child
    before = store.state()
    store.fail_on[failing_step] = RuntimeError("lost connection")

    with pytest.raises(RuntimeError):
        archival.archive_child(child.child_id, "Moved", acting_user_id=1)

    assert store.state() == before
    assert store.snapshots == {}
    assert store.find_child(child.child_id).is_active
    assert store.find_enrollment(e.enrollment_id).status == EnrollmentStatus.APPROVED


def test_restore_requires_archived_child(store, archival):
    child = store.add_child()

    with pytest.raises(NotArchived):
        archival.restore_child(child.child_id)
    with pytest.raises(ChildNotFound):
        archival.restore_child(404)


def test_restore_without_link_reactivates_child_only(store, archival):
    child = store.add_child()
    archival.archive_child(child.child_id, None, acting_user_id=1)

    result = archival.restore_child(child.child_id)

    assert result.child.is_active
    assert result.enrollment is None


def test_restore_refuses_when_child_was_relinked_meanwhile(store, archival, linked_child):
    child, _, _ = linked_child
    archival.archive_child(child.child_id, None, acting_user_id=1)
    other_parent = store.add_user("Other guardian")
    store.add_enrollment(child.child_id, other_parent.user_id, EnrollmentStatus.APPROVED)

    with pytest.raises(DuplicateActiveEnrollment):
        archival.restore_child(child.child_id)

    assert store.find_child(child.child_id).is_active is False


def test_archive_history_is_newest_first(store, archival):
    child = store.add_child()

    first = archival.archive_child(child.child_id, "First leave", 1, now=datetime(2026, 3, 1, 10, 0))
    archival.restore_child(child.child_id)
    second = archival.archive_child(child.child_id, "Second leave", 1, now=datetime(2026, 6, 1, 10, 0))

    history = archival.list_archive_history(child.child_id)

    assert [s.archive_id for s in history] == [second.archive_id, first.archive_id]
    assert [s.archive_reason for s in history] == ["Second leave", "First leave"]


def test_archive_rejects_open_application(store, archival, machine):
    child = store.add_child()
    parent = store.add_user()
    staff = store.add_user("Director", role=Role.ADMIN)
    pending = machine.submit(child.child_id, parent.user_id)

    result = archival.archive_child(child.child_id, "Family moved", staff.user_id)

    assert result.enrollment is None
    closed = store.find_enrollment(pending.enrollment_id)
    assert closed.status == EnrollmentStatus.REJECTED
    assert closed.admin_notes == ARCHIVED_APPLICATION_NOTE
    assert closed.decided_by == staff.user_id

    with pytest.raises(InvalidTransition):
        machine.approve(pending.enrollment_id)

    restored = archival.restore_child(child.child_id)
    assert restored.child.is_active
    assert restored.enrollment is None


def test_archive_with_link_and_stray_application(store, archival, machine, linked_child):
    child, _, e = linked_child
    other_parent = store.add_user("Grandmother")
    stray = store.add_enrollment(child.child_id, other_parent.user_id, EnrollmentStatus.PENDING)

    result = archival.archive_child(child.child_id, None, acting_user_id=1)

    assert result.enrollment.enrollment_id == e.enrollment_id
    assert store.find_enrollment(stray.enrollment_id).status == EnrollmentStatus.REJECTED

    restored = archival.restore_child(child.child_id)
    assert restored.enrollment.enrollment_id == e.enrollment_id
    assert store.find_enrollment_by_child(child.child_id).status == EnrollmentStatus.APPROVED
