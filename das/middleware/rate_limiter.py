"""
Rate limiting configuration.

The Limiter instance is created in das/__init__.py with no default limits;
this module applies limits to the routes that need them.

    - POST /api/actions/submit   ROUTING_RATE_LIMIT per client (each call forks a record)
    - approval writes            60/minute
    - health check               exempt

Usage:
    from das.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

APPROVAL_WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """Apply per-route limits.  Disabled in testing mode."""

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    routing_limit = app.config.get("ROUTING_RATE_LIMIT", "30 per minute")
    for endpoint in ("action_bp.submit_action", "action_bp.reroute_action"):
        view = app.view_functions.get(endpoint)
        if view is not None:
            limiter.limit(routing_limit, methods=["POST", "PUT"])(view)

    for endpoint in ("approval_bp.create_approval", "approval_bp.update_approval_status"):
        view = app.view_functions.get(endpoint)
        if view is not None:
            limiter.limit(APPROVAL_WRITE_LIMIT)(view)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: routing %s, approval writes %s", routing_limit, APPROVAL_WRITE_LIMIT,
    )
