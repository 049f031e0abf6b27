# Overview: Request decorators for API routes: actor context and error translation.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import EngineError
from .services import tenant_service
from .validation import to_int


USER_ID_HEADER = "X-User-Id"


def _client_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr


def require_actor(f):
    """
    Establish the acting user for the request.

    Authentication happens upstream (gateway / identity provider), which
    forwards the authenticated user id in the X-User-Id header.

    MULTI-TENANT: Sets g.actor (an Actor with tenant_id, role, branch_id, ip).

    SECURITY: Returns 401 if the header is missing, malformed, or names an
    unknown or deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get(USER_ID_HEADER)
        if not raw_user_id:
            return jsonify({"error": "Authentication required"}), 401
        try:
            user_id = to_int(raw_user_id, USER_ID_HEADER, minimum=1)
            g.actor = tenant_service.actor_for_user(user_id, ip=_client_ip())
        except EngineError:
            return jsonify({"error": "Invalid or inactive user"}), 401

        return f(*args, **kwargs)

    return decorated_function


def engine_errors(action: str):
    """
    Translate service failures into JSON responses.

    EngineError -> its status code and to_dict() body.
    Anything else is logged and reported as a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except EngineError as exc:
                return jsonify(exc.to_dict()), exc.status_code
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator


def pagination_args(default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    page = to_int(request.args.get("page"), "page", required=False, minimum=1) or 1
    limit = to_int(request.args.get("limit"), "limit", required=False, minimum=1, maximum=max_limit) or default_limit
    return page, limit
