"""
Rate limiting configuration.

The Limiter instance is created in tracker/__init__.py with no default
limits; this module applies limits per blueprint, keyed by organization
when a JWT is present and by remote IP otherwise.

Usage:
    from tracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def organization_rate_limit_key():
    """Dynamic rate limit key: organization if authenticated, else remote IP."""
    organization_id = getattr(g, "jwt_organization_id", None)
    if organization_id:
        return f"org:{organization_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Item moves:       60/minute  (each call may touch hundreds of rows)
        - Configuration:    30/minute
        - Dashboards:       200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    limits = {
        "items": "60/minute",
        "workflow": "30/minute",
        "dashboard": "200/minute",
    }
    for bp_name, limit in limits.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit, key_func=organization_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — items: 60/min, workflow: 30/min, dashboard: 200/min"
    )
