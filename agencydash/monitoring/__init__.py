# agencydash/monitoring/__init__.py
"""
Error tracking integration (Sentry).

Provides:
- Sentry initialization with Flask / SQLAlchemy / logging integrations
- Request context (admin user, website being managed)
- Manual capture helper for background work (cron)
"""

import os

import sentry_sdk
from flask import Flask, request
from flask_login import current_user
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration


def init_sentry(app: Flask) -> bool:
    """
    Initialize Sentry error tracking when SENTRY_DSN is configured.

    Returns True when Sentry is active.
    """
    sentry_dsn = app.config.get("SENTRY_DSN") or os.getenv("SENTRY_DSN")

    if not sentry_dsn:
        app.logger.info("Sentry DSN not configured - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[
            FlaskIntegration(transaction_style="url"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=app.config.get("SENTRY_LOG_LEVEL", None),
                event_level=app.config.get("SENTRY_EVENT_LEVEL", None),
            ),
        ],
        traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.1),
        environment=app.config.get("SENTRY_ENVIRONMENT", "production"),
        release=app.config.get("SENTRY_RELEASE", "unknown"),
        # Credentials travel in headers; never ship them
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        sample_rate=app.config.get("SENTRY_SAMPLE_RATE", 1.0),
        before_send=before_send_event,
    )

    app.logger.info(
        "Sentry initialized (environment=%s, traces_sample_rate=%s)",
        app.config.get("SENTRY_ENVIRONMENT", "production"),
        app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.1),
    )
    register_context_processors(app)
    return True


def before_send_event(event, hint):
    """Drop noise and group events by exception type + message prefix."""
    if event.get("request", {}).get("url", "").endswith("/__health__"):
        return None

    values = event.get("exception", {}).get("values") or [{}]
    exc_type = values[0].get("type", "Unknown")

    # Lookup misses and remote-site failures are user-facing results, not bugs
    if exc_type in ("NotFound", "NotFoundError", "NetworkUnreachable"):
        return None

    if "exception" in event:
        exc_value = (values[0].get("value") or "")[:100]
        event["fingerprint"] = [exc_type, exc_value]

    return event


def register_context_processors(app: Flask):
    @app.before_request
    def add_sentry_context():
        if current_user and getattr(current_user, "is_authenticated", False):
            sentry_sdk.set_user({"id": str(current_user.id)})

        website_id = (request.view_args or {}).get("website_id")
        if website_id is not None:
            sentry_sdk.set_tag("website_id", str(website_id))

        sentry_sdk.set_tag("endpoint", request.endpoint or "unknown")


def capture_exception(error: Exception, **extra_context):
    """Report a handled exception with extra context blocks attached."""
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(error)
