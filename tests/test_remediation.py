import pytest

from agencydash.wp.errors import NetworkUnreachable
from agencydash.wp.remediation import (
    CATALOG,
    HTACCESS_SNIPPET,
    NGINX_SNIPPET,
    RULES,
    classify,
    header_stripping_detail,
    network_key,
    render,
    server_family,
)


@pytest.mark.parametrize("header, family", [
    ("Apache/2.4.58 (Ubuntu)", "apache"),
    ("LiteSpeed", "apache"),
    ("nginx/1.25.3", "nginx"),
    ("cloudflare", "unknown"),
    (None, "unknown"),
])
def test_server_family(header, family):
    assert server_family(header) == family


@pytest.mark.parametrize("step, status, code, message, expected", [
    ("authentication", 401, "incorrect_password", "", ("fail", "auth_bad_password")),
    ("authentication", 401, "invalid_application_password", "", ("fail", "auth_bad_password")),
    ("authentication", 401, "invalid_email", "", ("fail", "auth_bad_username")),
    ("authentication", 401, "rest_not_logged_in", "", ("fail", "auth_header_stripped")),
    ("authentication", 401, "", "", ("fail", "auth_header_stripped")),
    ("authentication", 403, "rest_forbidden", "", ("fail", "auth_forbidden")),
    ("authentication", 418, "", "", ("fail", "auth_unexpected_status")),
    ("mu_plugin", 403, "rest_forbidden", "Invalid dashboard SECRET.", ("fail", "mu_secret_mismatch")),
    ("mu_plugin", 403, "rest_forbidden", "Administrator access required.", ("fail", "mu_forbidden")),
    ("mu_plugin", 500, "rest_config_error", "", ("fail", "mu_secret_not_configured")),
    ("mu_plugin", 500, "internal_server_error", "", ("fail", "mu_unexpected_status")),
    ("mu_plugin", 404, "", "", ("warn", "mu_not_installed")),
    ("mu_plugin", 401, "", "", ("fail", "mu_auth_inconsistent")),
    ("rest_api_available", 404, "", "", ("fail", "rest_not_found")),
    ("rest_api_available", 503, "", "", ("warn", "rest_unexpected_status")),
])
def test_classify(step, status, code, message, expected):
    assert classify(step, status, code, message) == expected


def test_every_rule_has_catalog_text():
    for rule in RULES:
        assert rule.key in CATALOG


def test_render_fills_context_and_tolerates_missing_values():
    message, detail = render("site_timeout", host="example.com", timeout=10)
    assert message == "Timed out connecting to example.com."
    assert "10 seconds" in detail

    message, detail = render("auth_unexpected_status", status=418)
    assert "418" in message
    assert detail.endswith(": ")


def test_header_stripping_detail_without_server_lists_both_snippets():
    detail = header_stripping_detail(None)
    assert HTACCESS_SNIPPET in detail
    assert NGINX_SNIPPET in detail
    assert detail.index("1.") < detail.index("2.") < detail.index("3.")


def test_network_keys():
    for kind, key in [
        (NetworkUnreachable.DNS, "site_dns"),
        (NetworkUnreachable.REFUSED, "site_refused"),
        (NetworkUnreachable.TIMEOUT, "site_timeout"),
        (NetworkUnreachable.TLS, "site_tls"),
        (NetworkUnreachable.OTHER, "site_network"),
    ]:
        assert network_key(NetworkUnreachable(kind, "x")) == key
