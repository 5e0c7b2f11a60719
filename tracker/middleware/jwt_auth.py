"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Every request under /api/v1/ (except health) must carry
``Authorization: Bearer <token>``. On success the identity tuple lands on
``flask.g``:

    g.jwt_user_id          acting user
    g.jwt_organization_id  organization scope for every query
    g.jwt_role             role evaluated by the access gate

Missing, expired or invalid tokens get 401 before any route runs.
"""

import logging

import jwt as pyjwt
from flask import g, jsonify, request

from tracker.services.jwt_service import decode_access_token
from tracker.services.transition_executor import Actor
from tracker.utils.errors import E

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def current_actor() -> Actor:
    """Identity tuple of the authenticated caller."""
    return Actor(
        user_id=g.jwt_user_id,
        role=g.jwt_role,
        organization_id=g.jwt_organization_id,
    )


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_organization_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Unauthorized", "code": E.UNAUTHORIZED}), 401

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return jsonify({"error": "Token expired", "code": E.UNAUTHORIZED}), 401
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return jsonify({"error": "Invalid token", "code": E.UNAUTHORIZED}), 401

        g.jwt_user_id = payload.get("sub")
        g.jwt_organization_id = payload.get("organization_id")
        g.jwt_role = payload.get("role")
        return None
