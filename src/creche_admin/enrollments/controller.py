from __future__ import annotations

from flask import Flask, request

from ..common.web import (
    current_role,
    current_user_id,
    handle_domain,
    login_required,
    ok,
    payload,
    roles_required,
)
from ..container import Container
from ..core.enums import STAFF_ROLES, Role


def register(app: Flask, container: Container) -> None:
    enrollments = container.enrollment_service

    @app.route("/api/enrollments", methods=["POST"], endpoint="submit_enrollment")
    @login_required
    @handle_domain("Could not submit the enrollment")
    def submit_enrollment():
        enrollment = enrollments.submit(
            current_role=current_role(),
            current_user_id=current_user_id(),
            data=payload(),
        )
        return ok(201, enrollment=enrollment.to_dict(), message="Enrollment submitted")

    @app.route("/api/public/enrollments", methods=["POST"], endpoint="public_enrollment")
    @handle_domain("Could not submit the application")
    def public_enrollment():
        result = enrollments.public_intake(payload())
        return ok(
            201,
            parent=result.parent.to_public_dict(),
            child=result.child.to_dict(),
            enrollment=result.enrollment.to_dict(),
            message="Application received",
        )

    @app.route("/api/enrollments", methods=["GET"], endpoint="list_enrollments")
    @login_required
    @handle_domain("Could not list enrollments")
    def list_enrollments():
        result = enrollments.list_enrollments(
            current_role=current_role(),
            current_user_id=current_user_id(),
            status=request.args.get("status"),
            parent_id=request.args.get("parent_id"),
            page=request.args.get("page", 1),
            limit=request.args.get("limit"),
        )
        return ok(
            200,
            enrollments=[e.to_dict() for e in result["enrollments"]],
            pagination=result["pagination"],
        )

    @app.route("/api/enrollments/stats", methods=["GET"], endpoint="enrollment_stats")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not compute enrollment statistics")
    def enrollment_stats():
        return ok(200, stats=enrollments.stats(current_role=current_role()).to_dict())

    @app.route("/api/enrollments/<int:enrollment_id>", methods=["GET"], endpoint="get_enrollment")
    @login_required
    @handle_domain("Could not load the enrollment")
    def get_enrollment(enrollment_id: int):
        enrollment = enrollments.get(
            current_role=current_role(),
            current_user_id=current_user_id(),
            enrollment_id=enrollment_id,
        )
        return ok(200, enrollment=enrollment.to_dict())

    @app.route("/api/enrollments/<int:enrollment_id>/approve", methods=["POST"], endpoint="approve_enrollment")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not approve the enrollment")
    def approve_enrollment(enrollment_id: int):
        enrollment = enrollments.approve(
            current_role=current_role(),
            current_user_id=current_user_id(),
            enrollment_id=enrollment_id,
            admin_notes=payload().get("admin_notes", ""),
        )
        return ok(200, enrollment=enrollment.to_dict(), message="Enrollment approved")

    @app.route("/api/enrollments/<int:enrollment_id>/reject", methods=["POST"], endpoint="reject_enrollment")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not reject the enrollment")
    def reject_enrollment(enrollment_id: int):
        enrollment = enrollments.reject(
            current_role=current_role(),
            current_user_id=current_user_id(),
            enrollment_id=enrollment_id,
            admin_notes=payload().get("admin_notes", ""),
        )
        return ok(200, enrollment=enrollment.to_dict(), message="Enrollment rejected")

    @app.route("/api/enrollments/<int:enrollment_id>/appointment", methods=["POST"], endpoint="schedule_appointment")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not schedule the appointment")
    def schedule_appointment(enrollment_id: int):
        enrollment = enrollments.schedule_appointment(
            current_role=current_role(),
            enrollment_id=enrollment_id,
            data=payload(),
        )
        return ok(200, enrollment=enrollment.to_dict(), message="Appointment scheduled")

    @app.route("/api/children/<int:child_id>/enrollment", methods=["GET"], endpoint="child_enrollment")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not load the child's enrollment")
    def child_enrollment(child_id: int):
        enrollment = enrollments.current_for_child(current_role=current_role(), child_id=child_id)
        return ok(200, enrollment=enrollment.to_dict())

    @app.route("/api/parents/me/children", methods=["GET"], endpoint="my_children")
    @roles_required({Role.PARENT})
    @handle_domain("Could not list your children")
    def my_children():
        children = enrollments.children_of_parent(parent_id=current_user_id())
        return ok(200, children=[c.to_dict() for c in children])
