# agencydash/wp/remediation.py
"""
Diagnostic classification and user-facing remediation text.

``RULES`` is the whole decision table: (step, HTTP status, body code or
message substring) -> (step status, message key). ``classify()`` is the only
place it is evaluated; ``render()`` turns a key into the message/detail pair
shown to site owners.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from agencydash.wp import companion
from agencydash.wp.errors import NetworkUnreachable
from agencydash.wp.types import (
    FAIL,
    STEP_AUTHENTICATION,
    STEP_MU_PLUGIN,
    STEP_REST_API,
    WARN,
)

HTACCESS_SNIPPET = "RewriteRule .* - [E=HTTP_AUTHORIZATION:%{HTTP:Authorization}]"
NGINX_SNIPPET = "fastcgi_param HTTP_AUTHORIZATION $http_authorization;"
WPCONFIG_SNIPPET = (
    "if (!isset($_SERVER['HTTP_AUTHORIZATION']) && isset($_SERVER['REDIRECT_HTTP_AUTHORIZATION'])) {\n"
    "    $_SERVER['HTTP_AUTHORIZATION'] = $_SERVER['REDIRECT_HTTP_AUTHORIZATION'];\n"
    "}"
)

SERVER_APACHE = "apache"
SERVER_NGINX = "nginx"
SERVER_UNKNOWN = "unknown"


def server_family(server_header: Optional[str]) -> str:
    """LiteSpeed honours .htaccess, so it is grouped with Apache."""
    s = (server_header or "").lower()
    if "apache" in s or "litespeed" in s:
        return SERVER_APACHE
    if "nginx" in s:
        return SERVER_NGINX
    return SERVER_UNKNOWN


# ---------- decision table ----------

@dataclass(frozen=True)
class Rule:
    step: str
    http_status: int
    outcome: str
    key: str
    codes: Tuple[str, ...] = ()
    contains: Optional[str] = None


RULES: Tuple[Rule, ...] = (
    # discovery root
    Rule(STEP_REST_API, 404, FAIL, "rest_not_found"),
    Rule(STEP_REST_API, 403, FAIL, "rest_forbidden"),
    Rule(STEP_REST_API, 401, FAIL, "rest_forbidden"),

    # users/me
    Rule(STEP_AUTHENTICATION, 401, FAIL, "auth_bad_password",
         codes=("invalid_application_password", "incorrect_password")),
    Rule(STEP_AUTHENTICATION, 401, FAIL, "auth_bad_username",
         codes=("invalid_username", "invalid_email")),
    Rule(STEP_AUTHENTICATION, 401, FAIL, "auth_header_stripped",
         codes=(companion.CODE_NOT_LOGGED_IN,)),
    # a 401 without a recognizable code is the same header stripping symptom
    Rule(STEP_AUTHENTICATION, 401, FAIL, "auth_header_stripped"),
    Rule(STEP_AUTHENTICATION, 403, FAIL, "auth_forbidden"),
    Rule(STEP_AUTHENTICATION, 404, FAIL, "auth_route_missing"),

    # companion plugin health
    Rule(STEP_MU_PLUGIN, 404, WARN, "mu_not_installed"),
    Rule(STEP_MU_PLUGIN, 403, FAIL, "mu_secret_mismatch", contains="secret"),
    Rule(STEP_MU_PLUGIN, 403, FAIL, "mu_forbidden"),
    Rule(STEP_MU_PLUGIN, 500, FAIL, "mu_secret_not_configured",
         codes=(companion.CODE_CONFIG_ERROR,)),
    Rule(STEP_MU_PLUGIN, 401, FAIL, "mu_auth_inconsistent"),
    Rule(STEP_MU_PLUGIN, 429, WARN, "mu_rate_limited", codes=(companion.CODE_RATE_LIMITED,)),
    Rule(STEP_MU_PLUGIN, 429, WARN, "mu_rate_limited"),
)

_FALLBACK = {
    STEP_REST_API: (WARN, "rest_unexpected_status"),
    STEP_AUTHENTICATION: (FAIL, "auth_unexpected_status"),
    STEP_MU_PLUGIN: (FAIL, "mu_unexpected_status"),
}


def _matches(rule: Rule, code: str, message: str) -> bool:
    if rule.codes and code not in rule.codes:
        return False
    if rule.contains and rule.contains not in message.lower():
        return False
    return True


def classify(step: str, http_status: int, code: str = "", message: str = "") -> Tuple[str, str]:
    """Return ``(step_status, message_key)`` for a non-2xx response.

    Rules with a body code are tried before substring rules, and both before
    status-only rules, so the stable code always wins over prose matching.
    """
    code = code or ""
    message = message or ""
    candidates = [r for r in RULES if r.step == step and r.http_status == http_status]
    candidates.sort(key=lambda r: (0 if r.codes else 1 if r.contains else 2))
    for rule in candidates:
        if _matches(rule, code, message):
            return rule.outcome, rule.key
    return _FALLBACK.get(step, (FAIL, "unexpected_status"))


# ---------- message catalog ----------

# key -> (message, detail); detail is formatted with the render() context
CATALOG: Dict[str, Tuple[str, Optional[str]]] = {
    "site_ok": ("Site is reachable (HTTP {status}).", None),
    "site_dns": (
        "DNS lookup failed for {host}.",
        "DNS resolution failed: the domain does not resolve to a server. Check the site URL for typos, "
        "confirm the domain has not expired, and verify its DNS A/AAAA records point at your host. "
        "Recently changed DNS can take up to 48 hours to propagate.",
    ),
    "site_refused": (
        "Connection refused by {host}.",
        "The server actively refused the connection. The web server may be stopped, or a firewall "
        "is blocking HTTPS (port 443). Check with your hosting provider that the site is online.",
    ),
    "site_timeout": (
        "Timed out connecting to {host}.",
        "The site did not answer within {timeout} seconds. The server may be overloaded or a firewall "
        "may be silently dropping requests. Try loading the site in a browser, then retry.",
    ),
    "site_tls": (
        "TLS/SSL handshake with {host} failed.",
        "The SSL certificate is invalid, expired, self-signed, or issued for another domain. "
        "Renew or reinstall the certificate (most hosts offer free Let's Encrypt certificates), "
        "or check that the site URL uses the correct scheme.",
    ),
    "site_network": (
        "Could not reach {host}.",
        "A network error occurred before the site responded: {error}",
    ),

    "rest_ok": ("WordPress REST API is available.", None),
    "rest_not_found": (
        "REST API not found (HTTP 404).",
        "{site_url}/wp-json/ returned 404. Either permalinks are set to \"Plain\" (go to Settings > "
        "Permalinks and choose \"Post name\", then save), the REST API has been disabled by a plugin, "
        "or this site is not running WordPress.",
    ),
    "rest_forbidden": (
        "REST API is blocked (HTTP {status}).",
        "Access to {site_url}/wp-json/ is being denied. A security plugin (Wordfence, iThemes Security, "
        "All In One WP Security, ...) or a server rule is blocking the REST API. Allow /wp-json/ in the "
        "plugin's settings or ask your host to lift the rule.",
    ),
    "rest_html": (
        "REST API returned an HTML page instead of JSON.",
        "{site_url}/wp-json/ answered with HTML (HTTP {status}). Common causes: the site is in "
        "maintenance mode, a redirect loop sends API calls to the homepage, or a security plugin or "
        "CDN is injecting a challenge or login page. Disable maintenance mode and check the firewall/CDN "
        "settings for /wp-json/.",
    ),
    "rest_unexpected_status": (
        "REST API answered with HTTP {status}.",
        "The API root responded but not with a normal success status. Continuing the checks; if later "
        "steps fail, start here.",
    ),
    "rest_network": (
        "Could not load the REST API root.",
        "The site responded to a plain request but {site_url}/wp-json/ failed: {error}",
    ),

    "auth_ok": ("Authenticated as {username}.", None),
    "auth_bad_password": (
        "Application Password rejected.",
        "WordPress does not accept this Application Password. Generate a new one in WordPress under "
        "Users > Profile > Application Passwords, paste it exactly (spaces are fine), and reconnect.",
    ),
    "auth_bad_username": (
        "WordPress username not found.",
        "No user named \"{username}\" exists on this site. Enter the literal WordPress username, not "
        "the email address or display name.",
    ),
    "auth_header_stripped": (
        "WordPress is not receiving the credentials (Authorization header stripped).",
        None,
    ),
    "auth_forbidden": (
        "Authentication blocked (HTTP 403).",
        "A security plugin or server rule is blocking authenticated REST requests. Allow Application "
        "Passwords and /wp-json/wp/v2/users/me in your security plugin's settings.",
    ),
    "auth_route_missing": (
        "User endpoint not found (HTTP 404).",
        "The REST API is only partially available: /wp-json/wp/v2/users/me is missing. A plugin is "
        "disabling the users endpoint; re-enable it or whitelist it for authenticated requests.",
    ),
    "auth_unexpected_status": (
        "Authentication check failed (HTTP {status}).",
        "Unexpected response from /wp-json/wp/v2/users/me: {error}",
    ),
    "auth_network": (
        "Authentication request failed.",
        "The authenticated request could not be completed: {error}",
    ),

    "admin_ok": ("User has administrator access.", None),
    "admin_missing": (
        "User {username} is not an administrator.",
        "The credentials work but the user lacks the manage_options capability. Edit the user in "
        "WordPress (Users > All Users) and change the role to Administrator, or connect with an "
        "administrator account.",
    ),

    "mu_ok": ("Companion plugin installed (v{version}).", None),
    "mu_not_installed": (
        "Companion plugin not installed.",
        "Basic content management works without it. To enable plugin, theme, cache and log tools, "
        "upload " + companion.CONNECTOR_FILENAME + " to wp-content/mu-plugins/ and add "
        "define('" + companion.SECRET_CONSTANT + "', '<your secret>'); to wp-config.php.{ssh_hint}",
    ),
    "mu_secret_mismatch": (
        "Dashboard secret mismatch.",
        "The companion plugin rejected the shared secret. The " + companion.SECRET_CONSTANT + " value in "
        "wp-config.php must match the secret saved for this connection exactly.",
    ),
    "mu_forbidden": (
        "Companion plugin denied access (HTTP 403).",
        "The companion plugin requires an administrator (manage_options). {error}",
    ),
    "mu_secret_not_configured": (
        "Companion plugin is installed but not configured.",
        "Add define('" + companion.SECRET_CONSTANT + "', '<your secret>'); to wp-config.php, above the "
        "line \"That's all, stop editing!\".",
    ),
    "mu_auth_inconsistent": (
        "Companion plugin did not receive the credentials (HTTP 401).",
        "Authentication works on the standard API but not on /wp-json/" + companion.NAMESPACE + "/. "
        "A caching layer or security plugin is handling these routes differently. Exclude /wp-json/ "
        "from page caching and check the security plugin's REST settings.",
    ),
    "mu_rate_limited": (
        "Companion plugin rate limit reached.",
        "Too many requests in the last minute (limit " + str(companion.RATE_LIMIT_MAX) + "). "
        "Wait a minute and run diagnostics again.",
    ),
    "mu_unexpected_status": (
        "Companion plugin check failed (HTTP {status}).",
        "{error}",
    ),
    "mu_network": (
        "Companion plugin check failed.",
        "The request to the companion plugin could not be completed: {error}",
    ),
    "unexpected_status": ("Unexpected response (HTTP {status}).", "{error}"),
}

SSH_DEPLOY_HINT = " SSH credentials are on file, so you can also deploy it automatically from this dashboard."

_NETWORK_KEYS = {
    NetworkUnreachable.DNS: "site_dns",
    NetworkUnreachable.REFUSED: "site_refused",
    NetworkUnreachable.TIMEOUT: "site_timeout",
    NetworkUnreachable.TLS: "site_tls",
    NetworkUnreachable.OTHER: "site_network",
}


def network_key(err: NetworkUnreachable) -> str:
    return _NETWORK_KEYS.get(err.kind, "site_network")


class _Context(dict):
    def __missing__(self, key):
        return ""


def render(key: str, **context) -> Tuple[str, Optional[str]]:
    """Return ``(message, detail)`` for a catalog key."""
    message, detail = CATALOG[key]
    ctx = _Context(context)
    if key == "auth_header_stripped":
        return message.format_map(ctx), header_stripping_detail(context.get("server"))
    return message.format_map(ctx), detail.format_map(ctx) if detail else None


def header_stripping_detail(server_header: Optional[str]) -> str:
    """Three fixes in priority order, tailored to the detected web server."""
    family = server_family(server_header)
    seen = f" (detected server: {server_header})" if server_header else ""

    if family == SERVER_APACHE:
        forward = (
            "2. Add this line to your .htaccess file, before the WordPress rules:\n"
            f"   {HTACCESS_SNIPPET}\n"
        )
    elif family == SERVER_NGINX:
        forward = (
            "2. Add this line to the PHP location block of your nginx site config, then reload nginx:\n"
            f"   {NGINX_SNIPPET}\n"
        )
    else:
        forward = (
            "2. Forward the header in your web server config.\n"
            f"   Apache/LiteSpeed (.htaccess, before the WordPress rules): {HTACCESS_SNIPPET}\n"
            f"   nginx (PHP location block): {NGINX_SNIPPET}\n"
        )

    return (
        "Your server is removing the Authorization header before WordPress sees it, so every "
        f"authenticated request looks anonymous{seen}. Fix it with one of these, in order:\n"
        f"1. Install the companion plugin ({companion.CONNECTOR_FILENAME}) in wp-content/mu-plugins/. "
        "It recovers the credentials from the fallback header the server leaves behind.\n"
        + forward +
        "3. Add this to wp-config.php, above \"That's all, stop editing!\":\n"
        f"{WPCONFIG_SNIPPET}"
    )
