from __future__ import annotations

from flask import Flask

from ..common.validators import require_id
from ..common.web import current_user_id, handle_domain, ok, payload, roles_required
from ..container import Container
from ..core.enums import Role


def register(app: Flask, container: Container) -> None:
    auditor = container.auditor
    admin_only = roles_required({Role.ADMIN})

    @app.route("/api/admin/audit", methods=["GET"], endpoint="audit_report")
    @admin_only
    @handle_domain("Audit failed")
    def audit_report():
        return ok(200, report=auditor.report().to_dict())

    @app.route("/api/admin/audit/orphans", methods=["GET"], endpoint="audit_orphans")
    @admin_only
    @handle_domain("Could not search for orphan children")
    def audit_orphans():
        orphans = auditor.find_orphans()
        return ok(200, orphans=[c.to_dict() for c in orphans], count=len(orphans))

    @app.route("/api/admin/audit/duplicates", methods=["GET"], endpoint="audit_duplicates")
    @admin_only
    @handle_domain("Could not search for duplicate links")
    def audit_duplicates():
        duplicates = auditor.find_duplicate_active_links()
        return ok(200, duplicates=[d.to_dict() for d in duplicates], count=len(duplicates))

    @app.route("/api/admin/audit/dangling", methods=["GET"], endpoint="audit_dangling")
    @admin_only
    @handle_domain("Could not search for dangling links")
    def audit_dangling():
        dangling = auditor.find_dangling_links()
        return ok(200, dangling=[d.to_dict() for d in dangling], count=len(dangling))

    @app.route("/api/admin/audit/orphans/<int:child_id>/repair", methods=["POST"], endpoint="repair_orphan")
    @admin_only
    @handle_domain("Could not repair the orphan child")
    def repair_orphan(child_id: int):
        parent_id = require_id(payload().get("parent_id"), "parent_id")
        enrollment = auditor.repair_orphan(child_id, parent_id, acting_user_id=current_user_id())
        return ok(200, enrollment=enrollment.to_dict(), message="Child linked to parent")
