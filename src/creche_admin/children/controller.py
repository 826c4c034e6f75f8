from __future__ import annotations

from flask import Flask, request

from ..common.web import handle_domain, ok, payload, roles_required
from ..container import Container
from ..core.enums import STAFF_ROLES


def register(app: Flask, container: Container) -> None:
    children = container.child_service

    @app.route("/api/children", methods=["POST"], endpoint="create_child")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not register the child")
    def create_child():
        child = children.create_child(payload())
        return ok(201, child=child.to_dict(), message="Child registered")

    @app.route("/api/children", methods=["GET"], endpoint="list_children")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not list children")
    def list_children():
        rows = children.list_children(request.args.get("status", "active"))
        return ok(200, children=[c.to_dict() for c in rows], count=len(rows))

    @app.route("/api/children/stats", methods=["GET"], endpoint="child_stats")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not compute child statistics")
    def child_stats():
        return ok(200, stats=children.stats().to_dict())

    @app.route("/api/children/<int:child_id>", methods=["GET"], endpoint="get_child")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not load the child")
    def get_child(child_id: int):
        return ok(200, child=children.get_child(child_id).to_dict())

    @app.route("/api/children/<int:child_id>", methods=["PUT"], endpoint="update_child")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not update the child")
    def update_child(child_id: int):
        child = children.update_child(child_id, payload())
        return ok(200, child=child.to_dict(), message="Child updated")
