from __future__ import annotations

from flask import Flask

from ..common.web import current_user_id, handle_domain, ok, payload, roles_required
from ..container import Container
from ..core.enums import STAFF_ROLES


def register(app: Flask, container: Container) -> None:
    archival = container.archival_manager

    @app.route("/api/children/<int:child_id>/archive", methods=["POST"], endpoint="archive_child")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not archive the child")
    def archive_child(child_id: int):
        result = archival.archive_child(child_id, payload().get("reason"), current_user_id())
        return ok(
            200,
            child=result.child.to_dict(),
            archive_id=result.archive_id,
            enrollment=result.enrollment.to_dict() if result.enrollment else None,
            message="Child archived",
        )

    @app.route("/api/children/<int:child_id>/restore", methods=["POST"], endpoint="restore_child")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not restore the child")
    def restore_child(child_id: int):
        result = archival.restore_child(child_id)
        return ok(
            200,
            child=result.child.to_dict(),
            enrollment=result.enrollment.to_dict() if result.enrollment else None,
            message="Child restored",
        )

    @app.route("/api/children/<int:child_id>/archives", methods=["GET"], endpoint="child_archives")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not load the archive history")
    def child_archives(child_id: int):
        snapshots = archival.list_archive_history(child_id)
        return ok(200, archives=[s.to_dict() for s in snapshots])
