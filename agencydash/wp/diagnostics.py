# agencydash/wp/diagnostics.py
"""
Connection diagnostics: explain *why* a WordPress connection does not work.

Steps run strictly in order, each one gated on the previous, because the
remediation text of a later step depends on what an earlier step observed
(e.g. the Server header drives the header-stripping advice).

    site_reachable -> rest_api_available -> authentication (+ admin_role) -> mu_plugin

``run_diagnostics`` never raises; every failure becomes a report entry.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from agencydash.wp.credentials import WordPressCredentials
from agencydash.wp.errors import NetworkUnreachable
from agencydash.wp.remediation import (
    SSH_DEPLOY_HINT,
    classify,
    network_key,
    render,
)
from agencydash.wp.types import (
    FAIL,
    PASS,
    STEP_ADMIN_ROLE,
    STEP_AUTHENTICATION,
    STEP_MU_PLUGIN,
    STEP_REST_API,
    STEP_SITE_REACHABLE,
    ConnectionDiagnostics,
    DiagnosticStep,
)
from agencydash.wp.wp_client import (
    CUSTOM_BASE,
    STANDARD_BASE,
    WPConnection,
    classify_network_error,
    parse_error_body,
)

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10.0
AUTH_PROBE_TIMEOUT = 15.0


def _step(name: str, outcome: str, key: str, **ctx) -> DiagnosticStep:
    message, detail = render(key, **ctx)
    return DiagnosticStep(step=name, status=outcome, message=message, detail=detail)


def _looks_like_html(resp) -> bool:
    ctype = (resp.headers.get("Content-Type") or "").lower()
    if "text/html" in ctype:
        return True
    head = (resp.text or "").lstrip()[:20].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


def _is_json(resp) -> bool:
    return "json" in (resp.headers.get("Content-Type") or "").lower()


def _error_text(resp) -> str:
    err = parse_error_body(resp)
    if err["message"]:
        return f"{err['message']} ({err['code'] or resp.status_code})"
    return f"HTTP {resp.status_code}"


class _Run:
    """State shared between steps of one diagnostics run."""

    def __init__(self, creds: WordPressCredentials, http, probe_timeout: float, auth_timeout: float):
        self.creds = creds
        self.conn = WPConnection.from_credentials(creds)
        self.http = http
        self.probe_timeout = probe_timeout
        self.auth_timeout = auth_timeout
        self.report = ConnectionDiagnostics()
        self.host = urlparse(self.conn.site_url).netloc or self.conn.site_url
        self.server: Optional[str] = None

    def ctx(self, **extra) -> dict:
        base = {
            "site_url": self.conn.site_url,
            "host": self.host,
            "server": self.server,
            "username": self.creds.username,
        }
        base.update(extra)
        return base

    def add(self, name: str, outcome: str, key: str, **extra) -> str:
        self.report.steps.append(_step(name, outcome, key, **self.ctx(**extra)))
        return outcome

    def remember_server(self, resp) -> None:
        server = resp.headers.get("Server")
        if server:
            self.server = server
            self.report.facts["server_software"] = server

    # ---------- steps ----------

    def site_reachable(self) -> bool:
        url = self.conn.site_url
        try:
            resp = self.http.request("HEAD", url, allow_redirects=True, timeout=self.probe_timeout)
        except requests.exceptions.RequestException as e:
            err = classify_network_error(e, url)
            self.add(STEP_SITE_REACHABLE, FAIL, network_key(err), error=err.message, timeout=int(self.probe_timeout))
            return False
        except Exception as e:
            logger.exception("Diagnostics: unexpected error probing %s", url)
            self.add(STEP_SITE_REACHABLE, FAIL, "site_network", error=str(e))
            return False

        self.remember_server(resp)
        self.add(STEP_SITE_REACHABLE, PASS, "site_ok", status=resp.status_code)
        return True

    def rest_api_available(self) -> bool:
        url = self.conn.site_url + "/wp-json/"
        try:
            resp = self.http.request(
                "GET", url, headers={"Accept": "application/json"}, timeout=self.probe_timeout
            )
        except Exception as e:
            self.add(STEP_REST_API, FAIL, "rest_network", error=_describe(e, url))
            return False

        self.remember_server(resp)
        status = resp.status_code

        if 200 <= status < 300 and _is_json(resp):
            self.add(STEP_REST_API, PASS, "rest_ok", status=status)
            return True
        if status in (401, 403, 404):
            outcome, key = classify(STEP_REST_API, status)
            self.add(STEP_REST_API, outcome, key, status=status)
            return outcome != FAIL
        if _looks_like_html(resp):
            self.add(STEP_REST_API, FAIL, "rest_html", status=status)
            return False

        outcome, key = classify(STEP_REST_API, status)
        self.add(STEP_REST_API, outcome, key, status=status)
        return outcome != FAIL

    def authentication(self) -> bool:
        url = self.conn.site_url + STANDARD_BASE + "/users/me"
        try:
            resp = self.http.request(
                "GET", url, params={"context": "edit"},
                headers=self.conn.headers(), timeout=self.auth_timeout,
            )
        except Exception as e:
            self.add(STEP_AUTHENTICATION, FAIL, "auth_network", error=_describe(e, url))
            return False

        status = resp.status_code
        if not 200 <= status < 300:
            err = parse_error_body(resp)
            outcome, key = classify(STEP_AUTHENTICATION, status, err["code"], err["message"])
            self.add(STEP_AUTHENTICATION, outcome, key, status=status, error=_error_text(resp))
            return outcome != FAIL

        try:
            user = resp.json()
        except ValueError:
            self.add(STEP_AUTHENTICATION, FAIL, "auth_unexpected_status",
                     status=status, error="Response was not valid JSON.")
            return False
        if not isinstance(user, dict):
            user = {}

        username = user.get("username") or user.get("slug") or user.get("name") or self.creds.username
        roles = list(user.get("roles") or [])
        self.report.facts["wp_user"] = {"username": username, "roles": roles}
        self.add(STEP_AUTHENTICATION, PASS, "auth_ok", username=username)

        # admin_role never stops the pipeline
        if _is_admin(user):
            self.add(STEP_ADMIN_ROLE, PASS, "admin_ok", username=username)
        else:
            self.add(STEP_ADMIN_ROLE, FAIL, "admin_missing", username=username)
        return True

    def mu_plugin(self) -> None:
        url = self.conn.site_url + CUSTOM_BASE + "/site-health"
        ssh_hint = SSH_DEPLOY_HINT if self.creds.has_ssh else ""
        try:
            resp = self.http.request("GET", url, headers=self.conn.headers(), timeout=self.auth_timeout)
        except Exception as e:
            self.add(STEP_MU_PLUGIN, FAIL, "mu_network", error=_describe(e, url))
            return

        status = resp.status_code
        if 200 <= status < 300:
            try:
                data = resp.json() or {}
            except ValueError:
                data = {}
            version = (data.get("connector_version") if isinstance(data, dict) else None) or "unknown"
            self.report.facts["connector_version"] = version
            self.add(STEP_MU_PLUGIN, PASS, "mu_ok", version=version)
            return

        err = parse_error_body(resp)
        outcome, key = classify(STEP_MU_PLUGIN, status, err["code"], err["message"])
        self.add(STEP_MU_PLUGIN, outcome, key, status=status, error=_error_text(resp), ssh_hint=ssh_hint)


def _is_admin(user: dict) -> bool:
    caps = user.get("capabilities")
    if isinstance(caps, dict) and caps:
        return bool(caps.get("manage_options"))
    return "administrator" in (user.get("roles") or [])


def _describe(exc: Exception, url: str) -> str:
    if isinstance(exc, requests.exceptions.RequestException):
        err: NetworkUnreachable = classify_network_error(exc, url)
        return f"{err.kind}: {err.message}"
    return str(exc) or exc.__class__.__name__


def run_diagnostics(
    credentials: WordPressCredentials,
    *,
    http=None,
    probe_timeout: float = PROBE_TIMEOUT,
    auth_timeout: float = AUTH_PROBE_TIMEOUT,
) -> ConnectionDiagnostics:
    """Run the probe sequence against one site and return the full report."""
    started = time.monotonic()
    run = _Run(credentials, http or requests, probe_timeout, auth_timeout)

    pipeline: List[Tuple[str, Callable[[], bool]]] = [
        (STEP_SITE_REACHABLE, run.site_reachable),
        (STEP_REST_API, run.rest_api_available),
        (STEP_AUTHENTICATION, run.authentication),
    ]
    completed = True
    for name, probe in pipeline:
        if not probe():
            logger.info("Diagnostics for %s stopped at %s", run.conn.site_url, name)
            completed = False
            break
    if completed:
        run.mu_plugin()

    report = run.report
    report.duration_ms = int((time.monotonic() - started) * 1000)
    report.timestamp = datetime.now(timezone.utc)
    logger.info(
        "Diagnostics for %s: %s (%d steps, %d ms)",
        run.conn.site_url, report.overall, len(report.steps), report.duration_ms,
    )
    return report
