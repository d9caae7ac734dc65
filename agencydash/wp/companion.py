# agencydash/wp/companion.py
"""
Reference behavior of the companion plugin's administrative REST surface
(``/wp-json/dashboard/v1``).

The plugin itself runs inside the managed WordPress install. This module pins
its contract in one place so the operation client, the diagnostics classifier
and the tests all agree on header names, error codes and gate ordering:

    1. caller is logged in                       -> 401 rest_not_logged_in
    2. caller holds manage_options               -> 403 rest_forbidden
    3. DASHBOARD_SHARED_SECRET is defined        -> 500 rest_config_error
    4. X-Dashboard-Secret matches it             -> 403 rest_forbidden
    5. caller IP under 60 requests / rolling 60s -> 429 rest_rate_limited
    6. (write routes) X-Dashboard-Action: confirm -> 400 rest_action_not_confirmed

Renaming any of the codes below breaks diagnostics classification.
"""
from __future__ import annotations

import hmac
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, Mapping, Optional, Tuple

from werkzeug.datastructures import Headers

NAMESPACE = "dashboard/v1"
CONNECTOR_FILENAME = "dashboard-connector.php"
SECRET_CONSTANT = "DASHBOARD_SHARED_SECRET"

SECRET_HEADER = "X-Dashboard-Secret"
ACTION_HEADER = "X-Dashboard-Action"
ACTION_CONFIRM = "confirm"

ADMIN_CAPABILITY = "manage_options"

# error codes
CODE_NOT_LOGGED_IN = "rest_not_logged_in"
CODE_FORBIDDEN = "rest_forbidden"
CODE_CONFIG_ERROR = "rest_config_error"
CODE_RATE_LIMITED = "rest_rate_limited"
CODE_NOT_CONFIRMED = "rest_action_not_confirmed"
CODE_NO_ROUTE = "rest_no_route"

RATE_LIMIT_MAX = 60
RATE_LIMIT_WINDOW = 60.0

# (method, route) -> is_write
ROUTES: Dict[Tuple[str, str], bool] = {
    ("GET", "/site-health"): False,
    ("GET", "/debug-log"): False,
    ("GET", "/plugins"): False,
    ("POST", "/plugins/toggle"): True,
    ("POST", "/plugins/update"): True,
    ("GET", "/themes"): False,
    ("POST", "/themes/activate"): True,
    ("POST", "/themes/update"): True,
    ("POST", "/core/update"): True,
    ("POST", "/cache/clear"): True,
    ("POST", "/maintenance"): True,
    ("POST", "/debug-mode"): True,
    ("GET", "/db-health"): False,
    ("GET", "/woocommerce/orders"): False,
    ("GET", "/woocommerce/order/<id>"): False,
    ("GET", "/woocommerce/stats"): False,
    ("GET", "/woocommerce/products"): False,
    ("GET", "/woocommerce/product/<id>"): False,
    ("POST", "/woocommerce/product/update"): True,
    ("POST", "/woocommerce/order/update"): True,
    ("POST", "/posts/create"): True,
    ("GET", "/users"): False,
    ("POST", "/users/create"): True,
    ("POST", "/users/update"): True,
    ("POST", "/users/delete"): True,
    ("POST", "/users/password-reset"): True,
}


class CompanionError(Exception):
    """A WP_Error as the companion plugin would return it."""

    def __init__(self, code: str, message: str, status: int):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": {"status": self.status}}


@dataclass
class CompanionUser:
    logged_in: bool = False
    capabilities: FrozenSet[str] = frozenset()


@dataclass
class CompanionRequest:
    user: CompanionUser
    headers: Headers = field(default_factory=Headers)
    remote_addr: str = "unknown"

    @classmethod
    def build(cls, user: CompanionUser, headers: Optional[Mapping[str, str]] = None,
              remote_addr: str = "unknown") -> "CompanionRequest":
        return cls(user=user, headers=Headers(dict(headers or {})), remote_addr=remote_addr)


class RateLimiter:
    """Per-IP rolling window counter."""

    def __init__(self, max_requests: int = RATE_LIMIT_MAX, window: float = RATE_LIMIT_WINDOW, clock=time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Record one request for ``key``; False when it exceeds the window budget."""
        now = self._clock()
        with self._lock:
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True


class CompanionGate:
    def __init__(self, shared_secret: Optional[str], limiter: Optional[RateLimiter] = None):
        # None/"" means the wp-config.php constant is not defined
        self.shared_secret = shared_secret or ""
        self.limiter = limiter or RateLimiter()

    def check_permissions(self, request: CompanionRequest) -> None:
        if not request.user.logged_in:
            raise CompanionError(CODE_NOT_LOGGED_IN, "Authentication required.", 401)

        if ADMIN_CAPABILITY not in request.user.capabilities:
            raise CompanionError(CODE_FORBIDDEN, "Administrator access required.", 403)

        if not self.shared_secret:
            raise CompanionError(
                CODE_CONFIG_ERROR,
                f"{SECRET_CONSTANT} not configured in wp-config.php.",
                500,
            )

        supplied = request.headers.get(SECRET_HEADER) or ""
        if not hmac.compare_digest(self.shared_secret.encode("utf-8"), supplied.encode("utf-8")):
            raise CompanionError(CODE_FORBIDDEN, "Invalid dashboard secret.", 403)

        if not self.limiter.hit(request.remote_addr):
            raise CompanionError(
                CODE_RATE_LIMITED,
                f"Rate limit exceeded. Maximum {self.limiter.max_requests} requests per minute.",
                429,
            )

    def check_write_permissions(self, request: CompanionRequest) -> None:
        self.check_permissions(request)

        if request.headers.get(ACTION_HEADER) != ACTION_CONFIRM:
            raise CompanionError(
                CODE_NOT_CONFIRMED,
                f"Write actions require {ACTION_HEADER}: {ACTION_CONFIRM} header.",
                400,
            )

    def authorize(self, method: str, route: str, request: CompanionRequest) -> None:
        """Apply the gate a route is registered with; unknown routes are 404."""
        key = (method.upper(), route)
        if key not in ROUTES:
            raise CompanionError(CODE_NO_ROUTE, "No route was found matching the URL and request method.", 404)
        if ROUTES[key]:
            self.check_write_permissions(request)
        else:
            self.check_permissions(request)
