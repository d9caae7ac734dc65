# agencydash/wp/errors.py
"""Error taxonomy for the WordPress bridge.

The operation client raises these unmodified; the diagnostics engine catches
them and turns them into report entries.
"""
from __future__ import annotations

from typing import Optional


class WPError(Exception):
    """Base for everything the WordPress bridge raises."""
    pass


class NotFoundError(WPError):
    """Website -> integration -> credentials chain could not be resolved."""
    pass


class NetworkUnreachable(WPError):
    """The remote host could not be reached at all (no HTTP response).

    ``kind`` is one of ``dns``, ``refused``, ``timeout``, ``tls`` or ``network``.
    """

    DNS = "dns"
    REFUSED = "refused"
    TIMEOUT = "timeout"
    TLS = "tls"
    OTHER = "network"

    def __init__(self, kind: str, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.url = url

    @property
    def is_timeout(self) -> bool:
        return self.kind == self.TIMEOUT


class RemoteAPIError(WPError):
    """Non-2xx response from either REST surface."""

    def __init__(self, status: int, message: str, code: Optional[str] = None):
        super().__init__(f"WP API Error ({status}): {message}")
        self.status = status
        self.message = message
        self.code = code or ""

    @property
    def is_auth_failure(self) -> bool:
        return self.status == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status == 403

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


class AuthorizationError(RemoteAPIError):
    """401/403: bad credentials, missing capability, or shared secret mismatch."""

    @property
    def is_secret_mismatch(self) -> bool:
        return self.status == 403 and "secret" in self.message.lower()


class ConfigurationError(RemoteAPIError):
    """Companion plugin is installed but DASHBOARD_SHARED_SECRET is not defined."""
    pass
