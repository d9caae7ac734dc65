# agencydash/wp/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, TypedDict

# ---- diagnostics ----------------------------------------------------------

PASS = "pass"
WARN = "warn"
FAIL = "fail"

STEP_SITE_REACHABLE = "site_reachable"
STEP_REST_API = "rest_api_available"
STEP_AUTHENTICATION = "authentication"
STEP_ADMIN_ROLE = "admin_role"
STEP_MU_PLUGIN = "mu_plugin"

STEP_ORDER = (
    STEP_SITE_REACHABLE,
    STEP_REST_API,
    STEP_AUTHENTICATION,
    STEP_ADMIN_ROLE,
    STEP_MU_PLUGIN,
)

_SEVERITY = {PASS: 0, WARN: 1, FAIL: 2}


def worst_status(statuses) -> str:
    worst = PASS
    for s in statuses:
        if _SEVERITY[s] > _SEVERITY[worst]:
            worst = s
    return worst


@dataclass(frozen=True)
class DiagnosticStep:
    step: str
    status: str
    message: str
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"step": self.step, "status": self.status, "message": self.message}
        if self.detail:
            out["detail"] = self.detail
        return out


@dataclass
class ConnectionDiagnostics:
    steps: List[DiagnosticStep] = field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # facts observed along the way (server software, wp user, connector version)
    facts: Dict[str, object] = field(default_factory=dict)

    @property
    def overall(self) -> str:
        return worst_status(s.status for s in self.steps)

    @property
    def ok(self) -> bool:
        return self.overall != FAIL

    def step(self, name: str) -> Optional[DiagnosticStep]:
        for s in self.steps:
            if s.step == name:
                return s
        return None

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "steps": [s.to_dict() for s in self.steps],
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


# ---- response shapes (companion plugin) -----------------------------------

class WPUser(TypedDict, total=False):
    id: int
    name: str
    slug: str
    username: str
    email: str
    roles: List[str]
    capabilities: Dict[str, bool]


class ThemeInfo(TypedDict, total=False):
    name: str
    version: str
    template: str
    stylesheet: str
    is_child_theme: bool
    parent_theme: str


class SiteHealthData(TypedDict, total=False):
    connector_version: str
    wp_version: str
    php_version: str
    server_software: str
    mysql_version: str
    active_theme: ThemeInfo
    disk_usage: Dict[str, str]
    db_size: str
    max_upload_size: str
    memory_limit: str
    is_multisite: bool
    ssl_enabled: bool
    debug_mode: bool
    wp_cron_enabled: bool
    timezone: str
    permalink_structure: str
    site_url: str
    home_url: str


class PluginInfo(TypedDict, total=False):
    slug: str
    file: str
    name: str
    version: str
    status: str  # active | inactive | must-use
    update_available: bool
    update_version: Optional[str]
    author: str
    description: str


class DebugLogEntry(TypedDict, total=False):
    timestamp: str
    severity: str  # fatal | warning | notice | deprecated | unknown
    message: str
    file: Optional[str]
    line: Optional[int]
    raw: str


class DebugLogResponse(TypedDict, total=False):
    entries: List[DebugLogEntry]
    file_size: str
    last_modified: Optional[str]
    truncated: bool
    message: str


class DBHealthData(TypedDict, total=False):
    revisions: int
    transients: int
    expired_transients: int
    autoload_kb: int
    spam_comments: int
    db_size_mb: str
    total_posts: int
    total_pages: int
