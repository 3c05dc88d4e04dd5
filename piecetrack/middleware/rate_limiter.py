"""
Rate limiting configuration.

The Limiter instance is created in piecetrack/__init__.py with no default
limits; this module applies per-blueprint limits.

Usage:
    from piecetrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

PRODUCTION_LIMIT = "300/minute"


def rate_limit_key():
    """Key requests by actor when the caller identifies one, else by remote IP."""
    actor = flask_request.headers.get("X-Actor-Id")
    if actor:
        return f"actor:{actor}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per actor, falling back to remote IP):
        - production API: 300/minute, counted per HTTP method
        - health:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("production")
    if bp:
        limiter.limit(PRODUCTION_LIMIT, key_func=rate_limit_key, per_method=True)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — production: %s", PRODUCTION_LIMIT)
