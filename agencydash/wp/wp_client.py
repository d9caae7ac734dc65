# agencydash/wp/wp_client.py
"""
WordPress REST client for remote site management.

Authenticates with an Application Password (Basic Auth) and, for the
companion plugin's administrative surface, the X-Dashboard-Secret header.
State-changing calls carry X-Dashboard-Action: confirm; reads never do.
"""
from __future__ import annotations

import base64
import json
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import requests
from flask import current_app

from agencydash.extensions import db
from agencydash.models import Integration, Website, WordPressCredential
from agencydash.wp import companion
from agencydash.wp.credentials import WordPressCredentials, decrypt_credentials, normalize_site_url
from agencydash.wp.errors import (
    AuthorizationError,
    ConfigurationError,
    NetworkUnreachable,
    NotFoundError,
    RemoteAPIError,
)
from agencydash.wp.types import (
    DBHealthData,
    DebugLogResponse,
    PluginInfo,
    SiteHealthData,
    WPUser,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
DEBUG_LOG_MIN_LINES = 1
DEBUG_LOG_MAX_LINES = 2000

STANDARD_BASE = "/wp-json/wp/v2"
CUSTOM_BASE = f"/wp-json/{companion.NAMESPACE}"

_DNS_MARKERS = (
    "nameresolutionerror",
    "failed to resolve",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name resolution",
)
_REFUSED_MARKERS = ("connection refused", "econnrefused", "errno 111", "winerror 10061", "actively refused")
_TLS_MARKERS = ("certificate_verify_failed", "certificate verify failed", "ssl:", "sslerror", "tlsv1", "wrong version number")


# ---------- error helpers ----------

def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk an exception, its chained causes and urllib3's wrapped ``reason``."""
    seen = set()
    stack = [exc]
    while stack:
        cur = stack.pop()
        if cur is None or id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur
        stack.append(cur.__cause__)
        stack.append(cur.__context__)
        reason = getattr(cur, "reason", None)
        if isinstance(reason, BaseException):
            stack.append(reason)
        for arg in getattr(cur, "args", ()):
            if isinstance(arg, BaseException):
                stack.append(arg)


def classify_network_error(exc: BaseException, url: Optional[str] = None) -> NetworkUnreachable:
    """Map a transport exception to a tagged NetworkUnreachable.

    Pure function of the exception, so the same failure always lands in the
    same bucket.
    """
    causes = list(_iter_causes(exc))
    text = " ".join(str(c) for c in causes).lower()
    message = str(exc) or exc.__class__.__name__

    if any(isinstance(c, (requests.exceptions.Timeout, socket.timeout, TimeoutError)) for c in causes):
        return NetworkUnreachable(NetworkUnreachable.TIMEOUT, message, url)
    if any(isinstance(c, (requests.exceptions.SSLError, ssl.SSLError)) for c in causes) or any(
        m in text for m in _TLS_MARKERS
    ):
        return NetworkUnreachable(NetworkUnreachable.TLS, message, url)
    if any(isinstance(c, socket.gaierror) for c in causes) or any(m in text for m in _DNS_MARKERS):
        return NetworkUnreachable(NetworkUnreachable.DNS, message, url)
    if any(isinstance(c, ConnectionRefusedError) for c in causes) or any(m in text for m in _REFUSED_MARKERS):
        return NetworkUnreachable(NetworkUnreachable.REFUSED, message, url)
    return NetworkUnreachable(NetworkUnreachable.OTHER, message, url)


def parse_error_body(resp) -> Dict[str, str]:
    """Return ``{code, message}`` from a WP error body; empty strings when absent."""
    try:
        body = resp.json()
    except ValueError:
        return {"code": "", "message": ""}
    if not isinstance(body, dict):
        return {"code": "", "message": ""}
    return {
        "code": str(body.get("code") or ""),
        "message": str(body.get("message") or ""),
    }


def raise_for_response(resp) -> None:
    """Raise the typed error for a non-2xx response."""
    status = resp.status_code
    if 200 <= status < 300:
        return

    err = parse_error_body(resp)
    message = err["message"] or getattr(resp, "reason", "") or f"HTTP {status}"
    code = err["code"]

    if status in (401, 403):
        raise AuthorizationError(status, message, code)
    if status == 500 and code == companion.CODE_CONFIG_ERROR:
        raise ConfigurationError(status, message, code)
    raise RemoteAPIError(status, message, code)


def basic_auth_header(username: str, app_password: str) -> str:
    token = base64.b64encode(f"{username}:{app_password}".encode("utf-8")).decode("utf-8")
    return f"Basic {token}"


# ---------- tenant lookup ----------

def resolve_credential_row(website_id: int):
    """Return ``(website, integration, credential_row)`` or raise NotFoundError."""
    website = db.session.get(Website, website_id)
    if not website:
        logger.info("WP lookup: website %s does not exist", website_id)
        raise NotFoundError("Website not found")

    integration = Integration.active_wordpress_for_client(website.client_id)
    if not integration:
        logger.info("WP lookup: website %s has no active WordPress integration", website_id)
        raise NotFoundError("WordPress integration not found")

    row = WordPressCredential.query.filter_by(integration_id=integration.id).first()
    if not row:
        logger.error(
            "WP lookup: integration %s for website %s has no credential row",
            integration.id, website_id,
        )
        raise NotFoundError("WordPress credentials not found")
    return website, integration, row


# ---------- connection value ----------

@dataclass(frozen=True)
class WPConnection:
    """Everything derived from credentials, computed once."""

    site_url: str
    auth_header: str
    secret_header: str
    integration_id: Optional[int] = None

    @classmethod
    def from_credentials(cls, creds: WordPressCredentials) -> "WPConnection":
        return cls(
            site_url=normalize_site_url(creds.site_url),
            auth_header=basic_auth_header(creds.username, creds.app_password),
            secret_header=creds.shared_secret,
            integration_id=creds.integration_id,
        )

    def base(self, custom: bool) -> str:
        return self.site_url + (CUSTOM_BASE if custom else STANDARD_BASE)

    def headers(self, confirm: bool = False) -> Dict[str, str]:
        hdrs = {
            "Authorization": self.auth_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
            companion.SECRET_HEADER: self.secret_header,
            "Cache-Control": "no-cache",
        }
        if confirm:
            hdrs[companion.ACTION_HEADER] = companion.ACTION_CONFIRM
        return hdrs

    def __repr__(self) -> str:
        return f"WPConnection(site_url={self.site_url!r}, integration_id={self.integration_id!r})"


class WPClient:
    """
    Authenticated gateway to one WordPress site.

    - one HTTP round trip per call, no retries
    - typed errors propagate to the caller (RemoteAPIError / NetworkUnreachable)
    - ``http`` is anything with ``request(method, url, **kwargs)``; defaults to ``requests``
    """

    def __init__(self, credentials: WordPressCredentials, *, http=None, timeout: float = REQUEST_TIMEOUT):
        self.conn = WPConnection.from_credentials(credentials)
        self.credentials = credentials
        self._http = http or requests
        self._timeout = timeout

    # ---------- factory ----------

    @classmethod
    def from_website_id(cls, website_id: int, *, http=None) -> "WPClient":
        """website -> client (tenant) -> active wordpress integration -> credentials."""
        _, _, row = resolve_credential_row(website_id)
        timeout = float(current_app.config.get("WP_REQUEST_TIMEOUT", REQUEST_TIMEOUT))
        return cls(decrypt_credentials(row), http=http, timeout=timeout)

    @property
    def integration_id(self) -> Optional[int]:
        return self.conn.integration_id

    # ---------- internals ----------

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        custom: bool = False,
        confirm: bool = False,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = self.conn.base(custom) + endpoint
        try:
            resp = self._http.request(
                method,
                url,
                params=params,
                data=json.dumps(body) if body is not None else None,
                headers=self.conn.headers(confirm=confirm),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            err = classify_network_error(e, url)
            logger.warning("WP %s %s unreachable (%s): %s", method, url, err.kind, err.message)
            raise err from e

        if not 200 <= resp.status_code < 300:
            try:
                raise_for_response(resp)
            except RemoteAPIError as e:
                logger.warning("WP %s %s -> %s %s", method, url, e.status, e.code or e.message)
                raise

        if not resp.text:
            return {}
        try:
            return resp.json()
        except ValueError:
            # caching layers and maintenance pages answer 200 with HTML
            logger.warning("WP %s %s -> %s with a non-JSON body", method, url, resp.status_code)
            raise RemoteAPIError(resp.status_code, "Response was not valid JSON", "invalid_json")

    def _get(self, endpoint: str, *, custom: bool = False, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", endpoint, custom=custom, params=params)

    def _write(self, method: str, endpoint: str, *, custom: bool = False,
               body: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request(method, endpoint, custom=custom, confirm=True, body=body, params=params)

    @staticmethod
    def _listing(per_page: int, page: int, **extra) -> Dict[str, Any]:
        params: Dict[str, Any] = {"per_page": per_page, "page": page}
        params.update({k: v for k, v in extra.items() if v not in (None, "")})
        return params

    # ---------- connection ----------

    def test_connection(self) -> dict:
        """Who am I. Returns {success, user} or {success: False, error}."""
        try:
            user = self.me()
            return {"success": True, "user": user}
        except (RemoteAPIError, NetworkUnreachable) as e:
            return {"success": False, "error": str(e)}

    def me(self) -> WPUser:
        return self._get("/users/me", params={"context": "edit"})

    def check_mu_plugin(self) -> dict:
        """Companion plugin presence. Only a 404 means 'not installed'; other errors propagate."""
        try:
            health = self.get_site_health()
        except RemoteAPIError as e:
            if e.is_not_found:
                return {"installed": False, "version": None}
            raise
        version = health.get("connector_version") if isinstance(health, dict) else None
        return {"installed": True, "version": version}

    # ---------- companion: diagnostics ----------

    def get_site_health(self) -> SiteHealthData:
        return self._get("/site-health", custom=True)

    def get_debug_log(self, lines: int = 200) -> DebugLogResponse:
        lines = int(lines)
        if not DEBUG_LOG_MIN_LINES <= lines <= DEBUG_LOG_MAX_LINES:
            raise ValueError(f"lines must be between {DEBUG_LOG_MIN_LINES} and {DEBUG_LOG_MAX_LINES}")
        return self._get("/debug-log", custom=True, params={"lines": lines})

    def get_db_health(self) -> DBHealthData:
        return self._get("/db-health", custom=True)

    # ---------- companion: plugins / themes / core ----------

    def get_plugins(self) -> List[PluginInfo]:
        return self._get("/plugins", custom=True)

    def toggle_plugin(self, plugin: str, activate: bool) -> dict:
        return self._write("POST", "/plugins/toggle", custom=True, body={"plugin": plugin, "activate": bool(activate)})

    def update_plugin(self, plugin: str) -> dict:
        return self._write("POST", "/plugins/update", custom=True, body={"plugin": plugin})

    def get_themes(self) -> list:
        return self._get("/themes", custom=True)

    def activate_theme(self, stylesheet: str) -> dict:
        return self._write("POST", "/themes/activate", custom=True, body={"theme": stylesheet})

    def update_theme(self, theme: str) -> dict:
        return self._write("POST", "/themes/update", custom=True, body={"theme": theme})

    def update_core(self) -> dict:
        return self._write("POST", "/core/update", custom=True)

    # ---------- companion: maintenance ----------

    def clear_cache(self) -> dict:
        return self._write("POST", "/cache/clear", custom=True)

    def toggle_maintenance(self, enable: bool) -> dict:
        return self._write("POST", "/maintenance", custom=True, body={"enable": bool(enable)})

    def toggle_debug_mode(self, enable: bool) -> dict:
        return self._write("POST", "/debug-mode", custom=True, body={"enable": bool(enable)})

    # ---------- companion: commerce ----------

    def get_orders(self, per_page: int = 10, page: int = 1, status: str = "any") -> dict:
        return self._get("/woocommerce/orders", custom=True, params=self._listing(per_page, page, status=status))

    def get_order(self, order_id: int) -> dict:
        return self._get(f"/woocommerce/order/{int(order_id)}", custom=True)

    def get_store_stats(self) -> dict:
        return self._get("/woocommerce/stats", custom=True)

    def get_products(self, per_page: int = 20, page: int = 1, search: str = "", status: str = "publish") -> dict:
        return self._get(
            "/woocommerce/products", custom=True,
            params=self._listing(per_page, page, search=search, status=status),
        )

    def get_product(self, product_id: int) -> dict:
        return self._get(f"/woocommerce/product/{int(product_id)}", custom=True)

    def update_product(self, product_id: int, **fields) -> dict:
        if not fields:
            raise ValueError("update_product needs at least one field")
        return self._write("POST", "/woocommerce/product/update", custom=True,
                           body={"product_id": int(product_id), **fields})

    def update_order_status(self, order_id: int, status: str, note: Optional[str] = None) -> dict:
        body: Dict[str, Any] = {"order_id": int(order_id), "status": status}
        if note:
            body["note"] = note
        return self._write("POST", "/woocommerce/order/update", custom=True, body=body)

    # ---------- standard surface: posts ----------

    def get_posts(self, per_page: int = 100, page: int = 1, search: str = "", status: str = "publish") -> list:
        return self._get("/posts", params=self._listing(per_page, page, search=search, status=status))

    def get_post(self, post_id: int) -> dict:
        return self._get(f"/posts/{int(post_id)}", params={"context": "edit"})

    def create_post(self, title: str, content: str, status: str = "draft", **fields) -> dict:
        return self._write("POST", "/posts", body={"title": title, "content": content, "status": status, **fields})

    def update_post(self, post_id: int, **fields) -> dict:
        # WP accepts POST for update
        return self._write("POST", f"/posts/{int(post_id)}", body=fields)

    def delete_post(self, post_id: int) -> dict:
        return self._write("DELETE", f"/posts/{int(post_id)}", params={"force": "true"})

    def create_post_with_seo(self, title: str, content: str, status: str = "draft", *,
                             meta_title: Optional[str] = None, meta_description: Optional[str] = None,
                             focus_keyword: Optional[str] = None, **fields) -> dict:
        """Create a post plus SEO meta in one call through the companion plugin."""
        body: Dict[str, Any] = {"title": title, "content": content, "status": status, **fields}
        for key, value in (("meta_title", meta_title), ("meta_description", meta_description),
                           ("focus_keyword", focus_keyword)):
            if value:
                body[key] = value
        return self._write("POST", "/posts/create", custom=True, body=body)

    # ---------- standard surface: pages ----------

    def get_pages(self, per_page: int = 100, page: int = 1, search: str = "", status: str = "publish") -> list:
        return self._get("/pages", params=self._listing(per_page, page, search=search, status=status))

    def get_page(self, page_id: int) -> dict:
        return self._get(f"/pages/{int(page_id)}", params={"context": "edit"})

    def create_page(self, title: str, content: str, status: str = "draft", **fields) -> dict:
        return self._write("POST", "/pages", body={"title": title, "content": content, "status": status, **fields})

    def update_page(self, page_id: int, **fields) -> dict:
        return self._write("POST", f"/pages/{int(page_id)}", body=fields)

    def delete_page(self, page_id: int) -> dict:
        return self._write("DELETE", f"/pages/{int(page_id)}", params={"force": "true"})

    # ---------- standard surface: media ----------

    def get_media(self, per_page: int = 100, page: int = 1, search: str = "") -> list:
        return self._get("/media", params=self._listing(per_page, page, search=search))

    def get_media_item(self, media_id: int) -> dict:
        return self._get(f"/media/{int(media_id)}")

    def update_media_item(self, media_id: int, **fields) -> dict:
        allowed = {k: v for k, v in fields.items() if k in ("alt_text", "title", "caption", "description")}
        return self._write("POST", f"/media/{int(media_id)}", body=allowed)

    def delete_media_item(self, media_id: int) -> dict:
        return self._write("DELETE", f"/media/{int(media_id)}", params={"force": "true"})

    # ---------- standard surface: menus ----------

    def get_menus(self) -> list:
        return self._get("/menus", params={"context": "edit"})

    def get_menu_items(self, menu_id: int) -> list:
        return self._get("/menu-items", params={"menus": int(menu_id), "per_page": 100})

    def create_menu_item(self, title: str, menus: int, url: Optional[str] = None, **fields) -> dict:
        body: Dict[str, Any] = {"title": title, "menus": int(menus), "status": "publish", **fields}
        if url:
            body["url"] = url
        return self._write("POST", "/menu-items", body=body)

    def update_menu_item(self, item_id: int, **fields) -> dict:
        return self._write("POST", f"/menu-items/{int(item_id)}", body=fields)

    def delete_menu_item(self, item_id: int) -> dict:
        return self._write("DELETE", f"/menu-items/{int(item_id)}", params={"force": "true"})

    # ---------- companion: WordPress users ----------

    def get_users(self) -> list:
        return self._get("/users", custom=True)

    def create_user(self, username: str, email: str, role: str = "subscriber", *,
                    password: Optional[str] = None, first_name: Optional[str] = None,
                    last_name: Optional[str] = None) -> dict:
        body: Dict[str, Any] = {"username": username, "email": email, "role": role}
        for key, value in (("password", password), ("first_name", first_name), ("last_name", last_name)):
            if value:
                body[key] = value
        return self._write("POST", "/users/create", custom=True, body=body)

    def update_user(self, user_id: int, **fields) -> dict:
        return self._write("POST", "/users/update", custom=True, body={"user_id": int(user_id), **fields})

    def delete_user(self, user_id: int, reassign: int = 1) -> dict:
        return self._write("POST", "/users/delete", custom=True,
                           body={"user_id": int(user_id), "reassign": int(reassign)})

    def send_password_reset(self, user_id: int) -> dict:
        return self._write("POST", "/users/password-reset", custom=True, body={"user_id": int(user_id)})
