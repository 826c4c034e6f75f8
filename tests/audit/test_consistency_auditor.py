from __future__ import annotations

import pytest

from creche_admin.core.enums import EnrollmentStatus, Role
from creche_admin.core.exceptions import ChildNotFound, DuplicateActiveEnrollment, ParentNotFound


def test_find_orphans_is_exactly_the_active_unlinked_children(store, auditor):
    parent = store.add_user()
    no_rows = store.add_child("NoRows")
    only_pending = store.add_child("Pending")
    only_rejected = store.add_child("Rejected")
    archived_link = store.add_child("ArchivedLink")
    linked = store.add_child("Linked")
    inactive = store.add_child("Inactive", is_active=False)

    store.add_enrollment(only_pending.child_id, parent.user_id, EnrollmentStatus.PENDING)
    store.add_enrollment(only_rejected.child_id, parent.user_id, EnrollmentStatus.REJECTED)
    store.add_enrollment(archived_link.child_id, parent.user_id, EnrollmentStatus.ARCHIVED)
    store.add_enrollment(linked.child_id, parent.user_id, EnrollmentStatus.APPROVED)

    orphan_ids = {c.child_id for c in auditor.find_orphans()}

    assert orphan_ids == {
        no_rows.child_id,
        only_pending.child_id,
        only_rejected.child_id,
        archived_link.child_id,
    }
    assert inactive.child_id not in orphan_ids


def test_duplicate_active_links_are_listed(store, auditor):
    child = store.add_child()
    mum = store.add_user("Mum")
    dad = store.add_user("Dad")
    a = store.add_enrollment(child.child_id, mum.user_id, EnrollmentStatus.APPROVED)
    b = store.add_enrollment(child.child_id, dad.user_id, EnrollmentStatus.APPROVED)

    (dup,) = auditor.find_duplicate_active_links()

    assert dup.child_id == child.child_id
    assert dup.enrollment_ids == (a.enrollment_id, b.enrollment_id)
    assert dup.parent_ids == (mum.user_id, dad.user_id)


def test_dangling_links_are_classified(store, auditor):
    parent = store.add_user()
    staff = store.add_user("Staff", role=Role.STAFF)
    child = store.add_child()
    gone = store.add_child("Gone", is_active=False)

    missing_child = store.add_enrollment(777, parent.user_id, EnrollmentStatus.PENDING)
    missing_parent = store.add_enrollment(child.child_id, 888, EnrollmentStatus.REJECTED)
    staff_link = store.add_enrollment(child.child_id, staff.user_id, EnrollmentStatus.PENDING)
    stale = store.add_enrollment(gone.child_id, parent.user_id, EnrollmentStatus.APPROVED)
    store.add_enrollment(gone.child_id, parent.user_id, EnrollmentStatus.ARCHIVED)

    problems = {d.enrollment_id: d.problem for d in auditor.find_dangling_links()}

    assert problems == {
        missing_child.enrollment_id: "missing child",
        missing_parent.enrollment_id: "missing parent",
        staff_link.enrollment_id: "linked user is not a parent",
        stale.enrollment_id: "approved link on archived child",
    }


def test_scans_do_not_write(store, auditor):
    parent = store.add_user()
    child = store.add_child()
    store.add_child("Orphan")
    store.add_enrollment(child.child_id, parent.user_id, EnrollmentStatus.APPROVED)
    store.add_enrollment(child.child_id, parent.user_id, EnrollmentStatus.APPROVED)
    before = store.state()

    report = auditor.report()

    assert not report.is_clean
    assert store.state() == before
    assert store.commits == 0


def test_clean_store_reports_clean(store, machine, auditor):
    child = store.add_child()
    parent = store.add_user()
    machine.approve(machine.submit(child.child_id, parent.user_id).enrollment_id)

    report = auditor.report()

    assert report.is_clean
    assert report.to_dict() == {"clean": True, "orphans": [], "duplicates": [], "dangling": []}


def test_repair_orphan_links_child(store, auditor):
    child = store.add_child()
    parent = store.add_user()
    admin = store.add_user("Admin", role=Role.ADMIN)

    enrollment = auditor.repair_orphan(child.child_id, parent.user_id, acting_user_id=admin.user_id)

    assert enrollment.status == EnrollmentStatus.APPROVED
    assert enrollment.parent_id == parent.user_id
    assert enrollment.decided_by == admin.user_id
    assert enrollment.regulation_accepted is True
    assert auditor.find_orphans() == []
    assert store.has_approved_link(child_id=child.child_id, parent_id=parent.user_id)


def test_repair_orphan_adopts_pending_application(store, auditor):
    child = store.add_child()
    applicant = store.add_user("Applicant")
    guardian = store.add_user("Guardian")
    pending = store.add_enrollment(child.child_id, applicant.user_id, EnrollmentStatus.PENDING)

    enrollment = auditor.repair_orphan(child.child_id, guardian.user_id)

    assert enrollment.enrollment_id == pending.enrollment_id
    assert enrollment.parent_id == guardian.user_id
    assert len(store.list_enrollments_for_child(child.child_id)) == 1


def test_repair_orphan_refuses_linked_or_invalid_targets(store, auditor):
    parent = store.add_user()
    linked = store.add_child()
    store.add_enrollment(linked.child_id, parent.user_id, EnrollmentStatus.APPROVED)
    archived = store.add_child("Gone", is_active=False)
    orphan = store.add_child("Orphan")
    staff = store.add_user("Staff", role=Role.STAFF)
    before = store.state()

    with pytest.raises(DuplicateActiveEnrollment):
        auditor.repair_orphan(linked.child_id, parent.user_id)
    with pytest.raises(ChildNotFound):
        auditor.repair_orphan(archived.child_id, parent.user_id)
    with pytest.raises(ParentNotFound):
        auditor.repair_orphan(orphan.child_id, staff.user_id)

    assert store.state() == before
