# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an authenticated actor forwarded by the upstream auth layer.

    Authentication and role checks happen before requests reach this
    service; the gateway forwards the caller's id in the X-Actor-Id header.
    Sets g.actor_id for the wrapped route.

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({
                "error": "authentication_required",
                "message": "Authentication required",
                "details": {},
            }), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
