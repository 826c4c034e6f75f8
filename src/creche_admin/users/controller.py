from __future__ import annotations

import logging

from flask import Flask, session

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
from ..core.enums import STAFF_ROLES
from ..database.bootstrap import ping

logger = logging.getLogger(__name__)


def register(app: Flask, container: Container) -> None:
    @app.route("/api/health", methods=["GET"], endpoint="health")
    def health():
        try:
            ping(container.conn)
            database = "ok"
        except Exception:
            logger.exception("health check: database unreachable")
            database = "unreachable"
        return ok(200, status="ok", database=database)

    @app.route("/api/login", methods=["POST"], endpoint="login")
    @handle_domain("Login failed because of a server error")
    def login():
        data = payload()
        s_user = container.auth_service.authenticate(data.get("email", ""), data.get("password", ""))

        session.clear()
        session["user_id"] = s_user.user_id
        session["name"] = s_user.full_name
        session["role"] = s_user.role.value
        logger.info("user %s logged in as %s", s_user.user_id, s_user.role.value)
        return ok(200, user={"user_id": s_user.user_id, "full_name": s_user.full_name, "role": s_user.role.value})

    @app.route("/api/logout", methods=["POST"], endpoint="logout")
    def logout():
        session.clear()
        return ok(200, message="Logged out")

    @app.route("/api/me", methods=["GET"], endpoint="me")
    @login_required
    def me():
        return ok(
            200,
            user={"user_id": current_user_id(), "full_name": session.get("name"), "role": current_role().value},
        )

    @app.route("/api/users", methods=["POST"], endpoint="create_user")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not create the account")
    def create_user():
        data = payload()
        user_id = container.user_service.create_user(
            current_role=current_role(),
            full_name=data.get("full_name", ""),
            email=data.get("email", ""),
            password=data.get("password", ""),
            role=data.get("role", "parent"),
            phone=data.get("phone"),
        )
        return ok(201, user_id=user_id, message="Account created")

    @app.route("/api/users/parents", methods=["GET"], endpoint="list_parents")
    @roles_required(STAFF_ROLES)
    @handle_domain("Could not list parents")
    def list_parents():
        return ok(200, parents=[u.to_public_dict() for u in container.user_service.list_parents()])
