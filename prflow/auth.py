from __future__ import annotations

from flask import current_app, g, jsonify, request, session

from prflow.domain.contracts import Actor
from prflow.errors import AuthenticationError
from prflow.observability import ensure_request_id


ACTOR_HEADER = "X-User-Id"


def _trust_headers(app) -> bool:
    return bool(app.config.get("TRUST_ACTOR_HEADERS") or app.config.get("TESTING"))


def requested_user_id() -> int | None:
    """User id from the session or, where trusted, from the actor header."""
    raw = session.get("user_id")
    if raw in (None, "") and _trust_headers(current_app):
        raw = request.headers.get(ACTOR_HEADER)
    try:
        user_id = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return user_id if user_id > 0 else None


def register_auth(app) -> None:
    @app.before_request
    def _require_actor():
        if not app.config.get("AUTH_ENABLED", True):
            return None
        path = request.path or "/"
        if not path.startswith("/api/"):
            return None
        if requested_user_id() is None:
            error = AuthenticationError(details="no actor on request")
            return jsonify(error.to_response_payload(ensure_request_id())), error.http_status
        return None


def current_actor(db, directory) -> Actor:
    """Resolve the caller once per request from the identity directory."""
    if "actor" in g:
        return g.actor
    user_id = requested_user_id()
    user = directory.get_user(db, user_id) if user_id else None
    if not user:
        raise AuthenticationError(details=f"unknown user {user_id}", payload={"user_id": user_id})
    g.actor = Actor.from_user(user)
    return g.actor
