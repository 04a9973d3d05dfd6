from functools import wraps
from flask import jsonify, request

from utils.audit import log_event
from utils.auth_context import current_actor


def require_roles(*role_names: str):
    """
    Route guard. 401 without a session, 403 unless the user holds at least
    one of ``role_names``: @require_roles(ADMIN, COACH).
    """
    allowed = frozenset(role_names)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return jsonify(error="Authentication required"), 401

            if not actor.roles & allowed:
                log_event("ACCESS_DENIED", user_id=actor.user_id, entity="route", entity_id=request.path,
                          metadata={"required": sorted(allowed)})
                return jsonify(error="Forbidden", code="not_authorized"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
