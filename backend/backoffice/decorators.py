# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


def _resolve_acting_user() -> User | None:
    # An upstream auth layer may already have placed the user on g
    user = getattr(g, "current_user", None)
    if user is not None:
        return user

    raw = request.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        return None
    user = db.session.get(User, int(raw))
    if user is None or not user.is_active:
        return None
    return user


def require_acting_user(f):
    """
    Require an identified acting user.

    Authentication happens upstream: the gateway either puts the User on
    g.current_user or forwards its id in the X-User-Id header. This only
    resolves it so services can attribute rows.

    Sets g.current_user. Returns 401 if the user is missing, unknown or
    deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _resolve_acting_user()
        if user is None:
            return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
