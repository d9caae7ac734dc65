# agencydash/__init__.py
from __future__ import annotations

import logging
import os as _os
from logging.handlers import RotatingFileHandler

import redis
from dotenv import load_dotenv
from flask import Flask, abort, jsonify, request
from flask_wtf.csrf import CSRFError

# Shared extensions (singletons) live in agencydash/extensions.py
from agencydash.extensions import csrf, db, limiter, login_manager, migrate

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _mask_uri(uri: str) -> str:
    """Hide password in logs."""
    if "@" in uri and "://" in uri:
        head, tail = uri.split("://", 1)
        creds, rest = tail.split("@", 1)
        if ":" in creds:
            user, _pwd = creds.split(":", 1)
            return f"{head}://{user}:***@{rest}"
    return uri


def _configure_logging(app: Flask) -> None:
    """stderr + rotating file on app.logger.

    The app is named "agencydash", so app.logger is also the parent of every
    agencydash.* module logger.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(formatter)
    handlers = [stderr_handler]

    if app.config.get("LOG_TO_FILE"):
        log_path = app.config["APP_ERROR_LOG"]
        try:
            _os.makedirs(_os.path.dirname(log_path) or ".", exist_ok=True)
            file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            app.logger.warning("File logging disabled (%s): %s", log_path, e)

    app.logger.handlers.clear()
    for h in handlers:
        app.logger.addHandler(h)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False


def _probe_redis(app: Flask, url: str) -> bool:
    if not url or url.startswith("memory://"):
        return False
    try:
        client = redis.from_url(url, decode_responses=True, socket_timeout=2)
        client.ping()
        return True
    except redis.RedisError as e:
        app.logger.warning("Redis probe failed: %s", e)
        return False


def _init_limiter(app: Flask) -> None:
    preferred = app.config.get("RATELIMIT_STORAGE_URI") or app.config.get("REDIS_URL") or ""
    storage_uri = preferred if _probe_redis(app, preferred) else "memory://"
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    limiter.init_app(app)
    app.logger.info("Rate limit storage: %s", _mask_uri(storage_uri))


def create_app(config_overrides: dict | None = None):
    app = Flask(__name__, instance_relative_config=False)

    # ---- Config: .env -> Config class -> overrides --------------------------
    load_dotenv()

    from agencydash.config import Config
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # ---- Error tracking -----------------------------------------------------
    from agencydash.monitoring import init_sentry
    init_sentry(app)

    # ---- DB / Extensions init ----------------------------------------------
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    _init_limiter(app)

    # ---- Flask-Login init ---------------------------------------------------
    login_manager.init_app(app)
    login_manager.session_protection = "strong"

    from agencydash import models  # noqa: F401  (register tables)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            return db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None

    app.logger.info("Logger initialized. DB: %s", _mask_uri(app.config["SQLALCHEMY_DATABASE_URI"]))

    # ---- Register blueprints -----------------------------------------------
    from agencydash.wp import wp_bp
    app.register_blueprint(wp_bp)
    app.logger.info("wp_bp registered")

    # ---- Cron runner (HTTP) -------------------------------------------------
    @app.route("/__cron__/run/<name>", methods=["GET", "POST"])
    @limiter.exempt
    def __cron_run(name):
        from agencydash.cron_tasks import run_daily, run_hourly

        tasks = {"hourly": run_hourly, "daily": run_daily}
        if name not in tasks:
            return ("unknown task", 404)

        key = request.args.get("key") or request.headers.get("X-Cron-Key")
        if not key or key != app.config.get("CRON_SECRET", ""):
            return abort(403)

        tasks[name](app, db)
        app.logger.info("[CRON] %s completed", name)
        return ("ok", 200)

    csrf.exempt(__cron_run)

    @app.route("/__health__")
    @limiter.exempt
    def __health__():
        return "ok", 200

    # ---- Flask CLI cron commands -------------------------------------------
    @app.cli.command("cron-hourly")
    def cron_hourly():
        from agencydash.cron_tasks import run_hourly
        run_hourly(app, db)

    @app.cli.command("cron-daily")
    def cron_daily():
        from agencydash.cron_tasks import run_daily
        run_daily(app, db)

    # ---- Error handlers -----------------------------------------------------
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF failed: %s", getattr(e, "description", str(e)))
        return jsonify({"error": "CSRF token missing or invalid"}), 400

    @app.errorhandler(404)
    def _404(err):
        return jsonify({"error": f"Not found: {request.path}"}), 404

    @app.errorhandler(429)
    def _429(err):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def _500(err):
        app.logger.error("Unhandled exception on %s", request.path, exc_info=getattr(err, "original_exception", None))
        return jsonify({"error": "Internal server error"}), 500

    return app
