from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Iterable, Mapping

from flask import jsonify, request, session

from ..core.enums import Role
from ..core.exceptions import DomainError

logger = logging.getLogger(__name__)


def current_role() -> Role:
    return Role(session["role"])


def current_user_id() -> int:
    return int(session["user_id"])


def payload() -> Mapping[str, Any]:
    """JSON body, falling back to form fields for HTML dashboard posts."""

    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def ok(http_status: int = 200, **body):
    return jsonify({"success": True, **body}), http_status


def fail(exc: DomainError):
    return (
        jsonify({"success": False, "error": type(exc).__name__, "message": str(exc)}),
        exc.http_status,
    )


def server_error(message: str):
    logger.exception(message)
    return jsonify({"success": False, "error": "ServerError", "message": message}), 500


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"success": False, "error": "AuthenticationError", "message": "Please log in"}), 401
        return view(*args, **kwargs)

    return wrapper


def roles_required(roles: Iterable[Role]):
    allowed = frozenset(roles)

    def decorator(view):
        @wraps(view)
        @login_required
        def wrapper(*args, **kwargs):
            if current_role() not in allowed:
                return jsonify({"success": False, "error": "AuthorizationError", "message": "Forbidden"}), 403
            return view(*args, **kwargs)

        return wrapper

    return decorator


def handle_domain(message: str):
    """Render DomainError as its JSON status and anything else as a logged 500."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except DomainError as e:
                logger.info("%s %s -> %s: %s", request.method, request.path, type(e).__name__, e)
                return fail(e)
            except Exception:
                return server_error(message)

        return wrapper

    return decorator
