"""
Order Tracker — Workflow Engine
Blueprint registry and shared error mapping.

Every API blueprint calls ``register_error_handlers(bp)`` so service
exceptions map to the same status codes everywhere:

    ValidationError     → 400
    AuthorizationError  → 403
    NotFoundError       → 404
    ConflictError       → 409
    ConfigurationError  → 422
"""

import logging

from flask import g, request

from tracker.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Attach the standard service-exception handlers to ``bp``."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        logger.warning(
            "Forbidden: user=%s role=%s operation=%s path=%s",
            getattr(g, "jwt_user_id", None), error.role, error.operation, request.path,
        )
        return api_error(E.FORBIDDEN, "Forbidden: Insufficient permissions.")

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        logger.error("Workflow configuration error on %s: %s", request.path, error)
        return api_error(E.WORKFLOW_CONFIGURATION, str(error))

    return bp


def parse_limit(default: int, max_limit: int) -> int:
    """Read ``?limit=`` clamped to [1, max_limit]; falls back to ``default``."""
    try:
        limit = int(request.args.get("limit", default))
    except (ValueError, TypeError):
        return default
    return max(1, min(limit, max_limit))
