import itertools
from datetime import datetime, timezone

import pytest
import requests

from agencydash.wp.credentials import WordPressCredentials
from agencydash.wp.diagnostics import run_diagnostics
from agencydash.wp.remediation import HTACCESS_SNIPPET, NGINX_SNIPPET, SSH_DEPLOY_HINT, WPCONFIG_SNIPPET
from agencydash.wp.types import STEP_ORDER, ConnectionDiagnostics, DiagnosticStep, worst_status
from tests.helpers import ADMIN_USER, SITE, FakeHTTP, FakeResponse, healthy_site


def _statuses(report):
    return [(s.step, s.status) for s in report.steps]


def test_healthy_site_passes_every_step(wp_creds):
    report = run_diagnostics(wp_creds, http=healthy_site())

    assert _statuses(report) == [
        ("site_reachable", "pass"),
        ("rest_api_available", "pass"),
        ("authentication", "pass"),
        ("admin_role", "pass"),
        ("mu_plugin", "pass"),
    ]
    assert report.overall == "pass"
    assert report.facts["server_software"] == "Apache/2.4.58"
    assert report.facts["connector_version"] == "2.1.0"
    assert report.facts["wp_user"] == {"username": "admin", "roles": ["administrator"]}
    assert "v2.1.0" in report.step("mu_plugin").message


def test_dns_failure_stops_after_first_step(wp_creds):
    http = FakeHTTP().add("HEAD", SITE, requests.exceptions.ConnectionError(
        "HTTPSConnectionPool(host='example.com', port=443): Max retries exceeded with url: / "
        "(Caused by NameResolutionError(\"Failed to resolve 'example.com'\"))"
    ))
    report = run_diagnostics(wp_creds, http=http)

    assert len(report.steps) == 1
    step = report.steps[0]
    assert step.step == "site_reachable"
    assert step.status == "fail"
    assert "DNS" in step.detail
    assert report.overall == "fail"
    assert len(http.calls) == 1


def test_missing_companion_plugin_is_a_warning(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health",
             FakeResponse(404, json={"code": "rest_no_route", "message": "No route was found."}))
    report = run_diagnostics(wp_creds, http=http)

    assert len(report.steps) == 5
    assert report.step("mu_plugin").status == "warn"
    assert report.overall == "warn"
    assert report.ok
    assert SSH_DEPLOY_HINT.strip() not in report.step("mu_plugin").detail


def test_missing_companion_plugin_mentions_ssh_deploy_when_possible(wp_creds):
    creds = WordPressCredentials(
        site_url=SITE, username="admin", app_password="pw", shared_secret="x",
        ssh_host="10.0.0.5", ssh_user="deploy",
    )
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health", FakeResponse(404, json={"code": "rest_no_route"}))
    report = run_diagnostics(creds, http=http)
    assert SSH_DEPLOY_HINT.strip() in report.step("mu_plugin").detail


def test_stripped_header_on_apache_gives_htaccess_fix(wp_creds):
    http = healthy_site(server="Apache/2.4")
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={
        "code": "rest_not_logged_in", "message": "You are not currently logged in.", "data": {"status": 401}}))
    report = run_diagnostics(wp_creds, http=http)

    assert len(report.steps) == 3
    auth = report.step("authentication")
    assert auth.status == "fail"
    assert HTACCESS_SNIPPET in auth.detail
    assert WPCONFIG_SNIPPET in auth.detail
    assert "1. Install the companion plugin" in auth.detail
    assert report.step("mu_plugin") is None


def test_stripped_header_on_nginx_gives_nginx_fix(wp_creds):
    http = healthy_site(server="nginx/1.24.0")
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={}))
    auth = run_diagnostics(wp_creds, http=http).step("authentication")
    assert NGINX_SNIPPET in auth.detail
    assert HTACCESS_SNIPPET not in auth.detail


def test_wrong_application_password(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={
        "code": "incorrect_password", "message": "The provided password is an invalid application password."}))
    auth = run_diagnostics(wp_creds, http=http).step("authentication")
    assert auth.message == "Application Password rejected."
    assert "Application Passwords" in auth.detail


def test_unknown_username(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={
        "code": "invalid_username", "message": "Unknown username."}))
    auth = run_diagnostics(wp_creds, http=http).step("authentication")
    assert '"admin"' in auth.detail


def test_non_admin_user_fails_role_but_still_checks_plugin(wp_creds):
    http = healthy_site()
    editor = dict(ADMIN_USER, roles=["editor"], capabilities={"edit_posts": True})
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(200, json=editor))
    report = run_diagnostics(wp_creds, http=http)

    assert _statuses(report)[3:] == [("admin_role", "fail"), ("mu_plugin", "pass")]
    assert report.overall == "fail"


def test_admin_detected_from_roles_without_capabilities(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(200, json={"name": "A", "roles": ["administrator"]}))
    assert run_diagnostics(wp_creds, http=http).step("admin_role").status == "pass"


def test_secret_mismatch(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health", FakeResponse(403, json={
        "code": "rest_forbidden", "message": "Invalid dashboard secret.", "data": {"status": 403}}))
    mu = run_diagnostics(wp_creds, http=http).step("mu_plugin")
    assert mu.status == "fail"
    assert mu.message == "Dashboard secret mismatch."


def test_companion_forbidden_without_secret_wording(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health", FakeResponse(403, json={
        "code": "rest_forbidden", "message": "Administrator access required."}))
    mu = run_diagnostics(wp_creds, http=http).step("mu_plugin")
    assert mu.message.startswith("Companion plugin denied access")


def test_secret_not_configured(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health", FakeResponse(500, json={
        "code": "rest_config_error", "message": "DASHBOARD_SHARED_SECRET not configured in wp-config.php."}))
    mu = run_diagnostics(wp_creds, http=http).step("mu_plugin")
    assert mu.status == "fail"
    assert "DASHBOARD_SHARED_SECRET" in mu.detail


def test_companion_rate_limited_is_a_warning(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/dashboard/v1/site-health", FakeResponse(429, json={
        "code": "rest_rate_limited", "message": "Rate limit exceeded."}))
    report = run_diagnostics(wp_creds, http=http)
    assert report.step("mu_plugin").status == "warn"
    assert report.overall == "warn"


def test_rest_api_html_page_stops(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/", FakeResponse(200, text="<!DOCTYPE html><html><body>Coming soon</body></html>",
                                              headers={"Content-Type": "text/html; charset=UTF-8"}))
    report = run_diagnostics(wp_creds, http=http)
    assert _statuses(report) == [("site_reachable", "pass"), ("rest_api_available", "fail")]
    assert "HTML" in report.step("rest_api_available").message


def test_rest_api_not_found(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/", FakeResponse(404, text="Not Found", headers={"Content-Type": "text/plain"}))
    report = run_diagnostics(wp_creds, http=http)
    assert len(report.steps) == 2
    assert "Permalinks" in report.step("rest_api_available").detail


def test_unexpected_rest_status_warns_and_continues(wp_creds):
    http = healthy_site()
    http.add("GET", "/wp-json/", FakeResponse(500, json={"code": "internal", "message": "boom"}))
    report = run_diagnostics(wp_creds, http=http)
    assert report.step("rest_api_available").status == "warn"
    assert len(report.steps) == 5
    assert report.overall == "warn"


def test_unexpected_errors_become_report_entries(wp_creds):
    class Exploding:
        def request(self, method, url, **kwargs):
            raise RuntimeError("socket exploded")

    report = run_diagnostics(wp_creds, http=Exploding())
    assert _statuses(report) == [("site_reachable", "fail")]
    assert "socket exploded" in report.steps[0].detail


def test_auth_probe_sends_credentials(wp_creds):
    http = healthy_site()
    run_diagnostics(wp_creds, http=http, auth_timeout=7)
    call = http.last("/users/me")
    assert call["params"] == {"context": "edit"}
    assert call["headers"]["Authorization"].startswith("Basic ")
    assert call["timeout"] == 7
    assert http.last("/site-health")["headers"]["X-Dashboard-Secret"] == wp_creds.shared_secret


def test_same_responses_give_same_report(wp_creds):
    http = healthy_site(server="Apache/2.4")
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={"code": "rest_not_logged_in"}))
    first = run_diagnostics(wp_creds, http=http)
    second = run_diagnostics(wp_creds, http=http)
    assert [s.to_dict() for s in first.steps] == [s.to_dict() for s in second.steps]


def test_report_serialization(wp_creds):
    data = run_diagnostics(wp_creds, http=healthy_site()).to_dict()
    assert set(data) == {"overall", "steps", "duration_ms", "timestamp"}
    assert data["overall"] == "pass"
    assert data["duration_ms"] >= 0
    assert "detail" not in data["steps"][0]


def test_timestamp_marks_completion(wp_creds):
    class Clocked(FakeHTTP):
        finished_at = None

        def request(self, method, url, **kwargs):
            try:
                return super().request(method, url, **kwargs)
            finally:
                self.finished_at = datetime.now(timezone.utc)

    http = healthy_site(Clocked())
    report = run_diagnostics(wp_creds, http=http)
    assert report.timestamp >= http.finished_at


def test_stripped_header_without_server_header_lists_every_fix(wp_creds):
    http = FakeHTTP()
    http.add("HEAD", SITE, FakeResponse(200))
    http.add("GET", "/wp-json/", FakeResponse(200, json={"name": "Example"}))
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(401, json={
        "code": "rest_not_logged_in", "message": "You are not currently logged in."}))
    report = run_diagnostics(wp_creds, http=http)

    assert "server_software" not in report.facts
    auth = report.step("authentication")
    assert auth.status == "fail"
    assert auth.message.startswith("WordPress is not receiving the credentials")
    assert HTACCESS_SNIPPET in auth.detail
    assert NGINX_SNIPPET in auth.detail
    assert WPCONFIG_SNIPPET in auth.detail
    assert "detected server" not in auth.detail


@pytest.mark.parametrize("exc, message, detail", [
    (requests.exceptions.ConnectionError(
        "HTTPSConnectionPool(host='example.com', port=443): Max retries exceeded with url: / "
        "(Caused by NewConnectionError('Failed to establish a new connection: [Errno 111] Connection refused'))"),
     "Connection refused by example.com.", "port 443"),
    (requests.exceptions.ConnectTimeout("Connection to example.com timed out. (connect timeout=4)"),
     "Timed out connecting to example.com.", "within 4 seconds"),
    (requests.exceptions.SSLError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"),
     "TLS/SSL handshake with example.com failed.", "certificate"),
])
def test_unreachable_site_outcomes(wp_creds, exc, message, detail):
    http = FakeHTTP().add("HEAD", SITE, exc)
    report = run_diagnostics(wp_creds, http=http, probe_timeout=4)

    assert _statuses(report) == [("site_reachable", "fail")]
    assert report.steps[0].message == message
    assert detail in report.steps[0].detail


def _expected_overall(statuses):
    if "fail" in statuses:
        return "fail"
    if "warn" in statuses:
        return "warn"
    return "pass"


def test_overall_is_worst_step_for_every_prefix():
    for size in range(1, len(STEP_ORDER) + 1):
        for statuses in itertools.product(("pass", "warn", "fail"), repeat=size):
            report = ConnectionDiagnostics(steps=[
                DiagnosticStep(step=name, status=status, message="")
                for name, status in zip(STEP_ORDER, statuses)
            ])
            assert report.overall == _expected_overall(statuses)
            assert worst_status(statuses) == report.overall
            assert report.ok == (report.overall != "fail")
