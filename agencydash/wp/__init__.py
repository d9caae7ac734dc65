# agencydash/wp/__init__.py
"""Admin JSON endpoints for connecting, diagnosing and operating WordPress sites."""
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from agencydash.auth.decorators import require_admin_json
from agencydash.crypto_utils import EncryptionError
from agencydash.extensions import limiter
from agencydash.wp import manage
from agencydash.wp.errors import NetworkUnreachable, NotFoundError, RemoteAPIError
from agencydash.wp.wp_client import WPClient

wp_bp = Blueprint("wp_bp", __name__, url_prefix="/admin/wordpress")


# ---------- helpers ----------

def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data or {}


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer")


# ---------- error mapping ----------

@wp_bp.errorhandler(NotFoundError)
def _not_found(e):
    return jsonify({"error": str(e)}), 404


@wp_bp.errorhandler(ValueError)
def _bad_request(e):
    return jsonify({"error": str(e)}), 400


@wp_bp.errorhandler(RemoteAPIError)
def _remote_error(e):
    current_app.logger.warning("WordPress API error on %s: %s", request.path, e)
    return jsonify({"error": e.message, "status": e.status, "code": e.code}), 502


@wp_bp.errorhandler(NetworkUnreachable)
def _unreachable(e):
    current_app.logger.warning("WordPress site unreachable on %s: %s (%s)", request.path, e.message, e.kind)
    return jsonify({"error": e.message, "kind": e.kind}), 504


@wp_bp.errorhandler(EncryptionError)
def _vault_error(e):
    current_app.logger.error("Credential vault error on %s: %s", request.path, e)
    return jsonify({"error": "Stored credentials could not be decrypted"}), 500


# ---------- connection ----------

@wp_bp.post("/connect")
@require_admin_json
@limiter.limit("10 per minute")
def connect():
    data = _payload()
    website_id = data.get("website_id")
    if not website_id:
        raise ValueError("website_id is required")
    result = manage.connect_wordpress(
        int(website_id),
        site_url=data.get("site_url") or "",
        username=data.get("username") or "",
        app_password=data.get("app_password") or "",
        shared_secret=data.get("shared_secret"),
        ssh_host=data.get("ssh_host"),
        ssh_user=data.get("ssh_user"),
        ssh_key=data.get("ssh_key"),
        ssh_port=data.get("ssh_port"),
    )
    return jsonify(result), (201 if result["success"] else 400)


@wp_bp.post("/test")
@require_admin_json
@limiter.limit("20 per minute")
def test_credentials():
    data = _payload()
    report = manage.diagnose_credentials(
        site_url=data.get("site_url") or "",
        username=data.get("username") or "",
        app_password=data.get("app_password") or "",
        shared_secret=data.get("shared_secret"),
        ssh_host=data.get("ssh_host"),
        ssh_user=data.get("ssh_user"),
    )
    return jsonify(report.to_dict())


@wp_bp.get("/<int:website_id>/status")
@require_admin_json
def status(website_id: int):
    return jsonify(manage.get_wordpress_status(website_id))


@wp_bp.post("/<int:website_id>/disconnect")
@require_admin_json
def disconnect(website_id: int):
    return jsonify(manage.disconnect_wordpress(website_id))


@wp_bp.post("/<int:website_id>/test")
@require_admin_json
def test_connection(website_id: int):
    return jsonify(manage.test_existing_connection(website_id))


# ---------- diagnostics ----------

@wp_bp.get("/<int:website_id>/diagnostics")
@require_admin_json
@limiter.limit("20 per minute")
def diagnostics(website_id: int):
    # always 200; the report carries the outcome
    report = manage.diagnose_website(website_id)
    return jsonify(report.to_dict())


@wp_bp.get("/<int:website_id>/mu-plugin")
@require_admin_json
def mu_plugin(website_id: int):
    return jsonify(manage.check_mu_plugin_status(website_id))


@wp_bp.post("/<int:website_id>/deploy")
@require_admin_json
@limiter.limit("5 per minute")
def deploy(website_id: int):
    return jsonify(manage.deploy_companion_plugin(website_id))


@wp_bp.get("/<int:website_id>/site-health")
@require_admin_json
def site_health(website_id: int):
    client = WPClient.from_website_id(website_id)
    return jsonify(client.get_site_health())


@wp_bp.get("/<int:website_id>/debug-log")
@require_admin_json
def debug_log(website_id: int):
    lines = _int_arg("lines", 200)
    return jsonify(manage.get_debug_log_for_website(website_id, lines))


@wp_bp.post("/<int:website_id>/quick-action")
@require_admin_json
def quick_action(website_id: int):
    data = _payload()
    action = (data.get("action") or "").strip()
    if not action:
        raise ValueError("action is required")
    result = manage.run_quick_action(
        website_id,
        action,
        data.get("params") or {},
        user_id=current_user.id,
    )
    return jsonify(result)
