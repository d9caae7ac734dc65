# agencydash/wp/manage.py
"""
WordPress connection lifecycle and admin operations.

Everything here runs inside an app context. Remote errors from the operation
client propagate (the blueprint maps them to HTTP statuses); diagnostics
never raise.
"""
from __future__ import annotations

import secrets
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from agencydash.crypto_utils import EncryptionError
from agencydash.extensions import db
from agencydash.models import (
    INTEGRATION_WORDPRESS,
    Client,
    Integration,
    Website,
    WordPressCredential,
    WPActionLog,
)
from agencydash.wp.credentials import (
    WordPressCredentials,
    decrypt_credentials,
    encrypt_credentials,
    normalize_site_url,
)
from agencydash.wp.debug_log import entries_from_response, sort_summaries, summarize
from agencydash.wp.deploy import deploy_mu_plugin
from agencydash.wp.diagnostics import run_diagnostics
from agencydash.wp.errors import NetworkUnreachable, NotFoundError, RemoteAPIError
from agencydash.wp.types import PASS, STEP_MU_PLUGIN, ConnectionDiagnostics
from agencydash.wp.wp_client import REQUEST_TIMEOUT, WPClient, resolve_credential_row

QUICK_ACTIONS = ("clear_cache", "toggle_maintenance", "toggle_debug")

REVOCATION_NOTICE = (
    "The dashboard no longer stores these credentials, but they still work on the site. "
    "Revoke the Application Password in WordPress (Users > Profile > Application Passwords) "
    "and remove DASHBOARD_SHARED_SECRET from wp-config.php."
)


# ---------- helpers ----------

def _timeout() -> float:
    return float(current_app.config.get("WP_REQUEST_TIMEOUT", REQUEST_TIMEOUT))


def _client_for(creds: WordPressCredentials, http=None) -> WPClient:
    return WPClient(creds, http=http, timeout=_timeout())


def _website(website_id: int) -> Website:
    website = db.session.get(Website, website_id)
    if not website:
        raise NotFoundError("Website not found")
    return website


def _required(**fields) -> None:
    missing = [name for name, value in fields.items() if not (value or "").strip()]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")


def _host(url: Optional[str]) -> str:
    try:
        return (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return ""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ---------- health cache ----------

def record_health_check(
    row: WordPressCredential,
    report: Optional[ConnectionDiagnostics] = None,
    *,
    installed: Optional[bool] = None,
    version: Optional[str] = None,
) -> None:
    """Update the advisory health fields on a credential row (last writer wins).

    With a diagnostics report, the companion plugin fields only change when
    the run actually reached the mu_plugin step.
    """
    if report is not None:
        mu = report.step(STEP_MU_PLUGIN)
        if mu is not None:
            installed = mu.status == PASS
            version = report.facts.get("connector_version") if installed else None
        row.last_health_status = report.overall

    if installed is not None:
        row.mu_plugin_installed = bool(installed)
        row.mu_plugin_version = version if installed else None
    row.last_health_check = datetime.utcnow()

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Could not update health cache for credential %s", row.id, exc_info=True)


# ---------- connect / disconnect / status ----------

def connect_wordpress(
    website_id: int,
    *,
    site_url: str,
    username: str,
    app_password: str,
    shared_secret: Optional[str] = None,
    ssh_host: Optional[str] = None,
    ssh_user: Optional[str] = None,
    ssh_key: Optional[str] = None,
    ssh_port: Optional[int] = None,
    http=None,
) -> Dict[str, Any]:
    """Test, then persist a new WordPress connection for the website's client."""
    _required(site_url=site_url, username=username, app_password=app_password)
    website = _website(website_id)

    if Integration.active_wordpress_for_client(website.client_id):
        raise ValueError("WordPress is already connected for this client. Disconnect it first.")

    creds = WordPressCredentials(
        site_url=site_url,
        username=username.strip(),
        app_password=app_password.strip(),
        shared_secret=(shared_secret or "").strip() or secrets.token_hex(32),
        ssh_host=ssh_host or None,
        ssh_user=ssh_user or None,
        ssh_key=ssh_key or None,
        ssh_port=int(ssh_port or 22),
    )
    client = _client_for(creds, http)

    test = client.test_connection()
    if not test["success"]:
        current_app.logger.info("WP connect for website %s failed test: %s", website_id, test["error"])
        return {"success": False, "error": f"Connection failed: {test['error']}"}
    wp_user = test.get("user") or {}

    integration = Integration(
        client_id=website.client_id,
        type=INTEGRATION_WORDPRESS,
        is_active=True,
        meta={
            "site_url": creds.site_url,
            "wp_user_id": wp_user.get("id"),
            "wp_user_name": wp_user.get("name"),
            "connected_at": datetime.utcnow().isoformat(),
        },
    )
    db.session.add(integration)
    db.session.commit()

    try:
        row = WordPressCredential(integration_id=integration.id, **encrypt_credentials(creds))
        db.session.add(row)
        db.session.commit()
    except (SQLAlchemyError, EncryptionError) as e:
        db.session.rollback()
        db.session.delete(integration)
        db.session.commit()
        current_app.logger.error("WP connect: storing credentials failed, integration %s rolled back: %s",
                                 integration.id, e)
        return {"success": False, "error": f"Failed to store credentials: {e}"}

    try:
        mu = client.check_mu_plugin()
    except (RemoteAPIError, NetworkUnreachable) as e:
        current_app.logger.warning("WP connect: companion plugin check failed for %s: %s", creds.site_url, e)
        mu = {"installed": False, "version": None}
    record_health_check(row, installed=mu["installed"], version=mu.get("version"))

    current_app.logger.info("WordPress connected: website=%s integration=%s site=%s",
                            website_id, integration.id, creds.site_url)
    return {
        "success": True,
        "integration_id": integration.id,
        "shared_secret": creds.shared_secret,
        "mu_plugin_installed": bool(mu["installed"]),
        "wp_user": wp_user.get("name"),
    }


def disconnect_wordpress(website_id: int) -> Dict[str, Any]:
    """Forget the stored connection. Remote credentials are NOT revoked."""
    website = _website(website_id)
    integration = Integration.active_wordpress_for_client(website.client_id)
    if not integration:
        raise NotFoundError("WordPress integration not found")

    site_url = (integration.meta or {}).get("site_url")
    WordPressCredential.query.filter_by(integration_id=integration.id).delete()
    db.session.delete(integration)
    db.session.commit()

    current_app.logger.warning(
        "WordPress disconnected for website %s (%s); application password and shared secret "
        "remain valid on the remote site until revoked there",
        website_id, site_url,
    )
    return {"success": True, "remote_revocation_required": True, "message": REVOCATION_NOTICE}


def get_wordpress_status(website_id: int) -> Dict[str, Any]:
    """Cached connection state; no network I/O."""
    website = db.session.get(Website, website_id)
    if not website:
        return {"connected": False}
    integration = Integration.active_wordpress_for_client(website.client_id)
    if not integration:
        return {"connected": False}
    row = WordPressCredential.query.filter_by(integration_id=integration.id).first()
    if not row:
        return {"connected": False}

    meta = integration.meta or {}
    return {
        "connected": True,
        "integration_id": integration.id,
        "site_url": row.site_url,
        "wp_user": meta.get("wp_user_name"),
        "mu_plugin_installed": bool(row.mu_plugin_installed),
        "mu_plugin_version": row.mu_plugin_version,
        "last_health_check": _iso(row.last_health_check),
        "last_health_status": row.last_health_status,
        "connected_at": meta.get("connected_at"),
        "has_ssh": bool(row.ssh_host_encrypted and row.ssh_user_encrypted),
    }


# ---------- checks ----------

def test_existing_connection(website_id: int, *, http=None) -> Dict[str, Any]:
    client = WPClient.from_website_id(website_id, http=http)
    result = client.test_connection()
    if not result["success"]:
        return {"success": False, "error": result["error"]}
    return {"success": True, "user_name": (result.get("user") or {}).get("name")}


def check_mu_plugin_status(website_id: int, *, http=None) -> Dict[str, Any]:
    _, _, row = resolve_credential_row(website_id)
    client = _client_for(decrypt_credentials(row), http)
    result = client.check_mu_plugin()
    record_health_check(row, installed=result["installed"], version=result.get("version"))
    return {"success": True, **result}


def diagnose_website(website_id: int, *, http=None) -> ConnectionDiagnostics:
    _, _, row = resolve_credential_row(website_id)
    creds = decrypt_credentials(row)
    cfg = current_app.config
    report = run_diagnostics(
        creds,
        http=http,
        probe_timeout=float(cfg.get("WP_PROBE_TIMEOUT", 10)),
        auth_timeout=float(cfg.get("WP_AUTH_PROBE_TIMEOUT", 15)),
    )
    record_health_check(row, report)
    return report


def diagnose_credentials(
    *,
    site_url: str,
    username: str,
    app_password: str,
    shared_secret: Optional[str] = None,
    ssh_host: Optional[str] = None,
    ssh_user: Optional[str] = None,
    http=None,
) -> ConnectionDiagnostics:
    """Diagnose credentials before they are saved. Nothing is persisted."""
    _required(site_url=site_url, username=username, app_password=app_password)
    creds = WordPressCredentials(
        site_url=site_url,
        username=username.strip(),
        app_password=app_password.strip(),
        shared_secret=(shared_secret or "").strip(),
        ssh_host=ssh_host or None,
        ssh_user=ssh_user or None,
    )
    cfg = current_app.config
    return run_diagnostics(
        creds,
        http=http,
        probe_timeout=float(cfg.get("WP_PROBE_TIMEOUT", 10)),
        auth_timeout=float(cfg.get("WP_AUTH_PROBE_TIMEOUT", 15)),
    )


# ---------- actions ----------

def _dispatch_quick_action(client: WPClient, action: str, params: Dict[str, Any]):
    if action == "clear_cache":
        return client.clear_cache()
    if "enable" not in params:
        raise ValueError(f"{action} requires an 'enable' flag")
    enable = params["enable"]
    if isinstance(enable, str):
        enable = enable.strip().lower() in ("1", "true", "yes", "on")
    if action == "toggle_maintenance":
        return client.toggle_maintenance(bool(enable))
    return client.toggle_debug_mode(bool(enable))


def run_quick_action(
    website_id: int,
    action: str,
    params: Optional[Dict[str, Any]] = None,
    *,
    user_id: Optional[int] = None,
    http=None,
) -> Dict[str, Any]:
    """Run one maintenance action and keep an audit row in wp_action_logs."""
    if action not in QUICK_ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    params = dict(params or {})

    client = WPClient.from_website_id(website_id, http=http)
    log = WPActionLog(website_id=website_id, user_id=user_id, action=action, status="processing", params=params)
    db.session.add(log)
    db.session.commit()

    try:
        result = _dispatch_quick_action(client, action, params)
    except (RemoteAPIError, NetworkUnreachable, ValueError) as e:
        log.status = "failed"
        log.error = str(e)
        log.completed_at = datetime.utcnow()
        db.session.commit()
        current_app.logger.warning("WP quick action %s on website %s failed: %s", action, website_id, e)
        raise

    log.status = "completed"
    log.result = result
    log.completed_at = datetime.utcnow()
    db.session.commit()
    current_app.logger.info("WP quick action %s on website %s completed", action, website_id)
    return {"success": True, "action": action, "result": result, "log_id": log.id}


def deploy_companion_plugin(website_id: int, *, ssh_factory=None) -> Dict[str, Any]:
    _, _, row = resolve_credential_row(website_id)
    creds = decrypt_credentials(row)
    kwargs = {"timeout": int(current_app.config.get("WP_SSH_CONNECT_TIMEOUT", 10))}
    if ssh_factory is not None:
        kwargs["ssh_factory"] = ssh_factory
    result = deploy_mu_plugin(creds, current_app.config.get("WP_MU_PLUGIN_PATH") or None, **kwargs)
    current_app.logger.info("Companion plugin deploy for website %s: %s (%s)",
                            website_id, result["success"], result["method"])
    return result


# ---------- debug log ----------

def get_debug_log_for_website(website_id: int, lines: int = 200, *, http=None) -> Dict[str, Any]:
    client = WPClient.from_website_id(website_id, http=http)
    data = client.get_debug_log(lines)
    data = data if isinstance(data, dict) else {}
    entries = entries_from_response(data)
    return {
        "success": True,
        "entries": entries,
        "summary": summarize(entries),
        "file_size": data.get("file_size"),
        "last_modified": data.get("last_modified"),
        "truncated": bool(data.get("truncated")),
        "message": data.get("message"),
    }


def _sweep_targets() -> List[Tuple[Dict[str, Any], WordPressCredentials]]:
    """(summary context, decrypted creds) for every active WordPress integration with a matching website."""
    targets = []
    integrations = Integration.query.filter_by(type=INTEGRATION_WORDPRESS, is_active=True).all()
    for integration in integrations:
        row = WordPressCredential.query.filter_by(integration_id=integration.id).first()
        if not row:
            continue
        websites = Website.query.filter_by(client_id=integration.client_id).order_by(Website.id).all()
        if not websites:
            continue
        host = _host(row.site_url)
        website = next((w for w in websites if _host(w.url) == host), websites[0])
        try:
            creds = decrypt_credentials(row)
        except EncryptionError as e:
            current_app.logger.error("Debug log sweep: cannot decrypt credentials for integration %s: %s",
                                     integration.id, e)
            continue
        client = db.session.get(Client, integration.client_id)
        ctx = {
            "website_id": website.id,
            "website_name": website.name,
            "client_id": integration.client_id,
            "client_name": client.name if client else None,
            "site_url": row.site_url,
        }
        targets.append((ctx, creds))
    return targets


def get_all_debug_log_summaries(*, lines: Optional[int] = None, batch_size: Optional[int] = None,
                                http=None) -> List[Dict[str, Any]]:
    """Severity summaries for every connected site, worst first. Unreachable sites are skipped."""
    cfg = current_app.config
    lines = int(lines or cfg.get("WP_DEBUG_LOG_SWEEP_LINES", 500))
    batch_size = max(1, int(batch_size or cfg.get("WP_DEBUG_LOG_SWEEP_BATCH", 5)))
    timeout = _timeout()
    logger = current_app.logger

    def fetch(target):
        ctx, creds = target
        try:
            data = WPClient(creds, http=http, timeout=timeout).get_debug_log(lines)
        except (RemoteAPIError, NetworkUnreachable) as e:
            logger.warning("Debug log sweep: %s skipped: %s", normalize_site_url(creds.site_url), e)
            return None
        data = data if isinstance(data, dict) else {}
        return summarize(
            entries_from_response(data),
            last_modified=data.get("last_modified"),
            **ctx,
        )

    targets = _sweep_targets()
    summaries: List[Dict[str, Any]] = []
    with ThreadPoolExecutor(max_workers=batch_size) as pool:
        for summary in pool.map(fetch, targets):
            if summary is not None:
                summaries.append(summary)
    return sort_summaries(summaries)
