"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in partnerhub/__init__.py with no default
limits; this module applies limits per route category.

Limits (per remote IP):
    - Public report endpoints: PUBLIC_REPORT_RATE_LIMIT (token guessing)
    - Health check:            exempt

Usage:
    from partnerhub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

PUBLIC_BLUEPRINTS = ("progress_report_public",)


def init_rate_limits(app, limiter):
    """Apply rate limits to registered blueprints. Disabled in testing mode."""
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    public_limit = app.config.get("PUBLIC_REPORT_RATE_LIMIT", "30 per minute")
    for bp_name in PUBLIC_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(public_limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: public report endpoints %s", public_limit)
