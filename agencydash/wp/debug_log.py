# agencydash/wp/debug_log.py
"""Parsing and summarising of WordPress ``wp-content/debug.log`` output."""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from agencydash.wp.types import DebugLogEntry

SEVERITIES = ("fatal", "warning", "notice", "deprecated", "unknown")

_ENTRY_RE = re.compile(
    r"^\[([^\]]+)\]\s+(?:PHP\s+)?(Fatal error|Warning|Notice|Deprecated|Parse error|Strict Standards)?:?\s*(.*)$",
    re.IGNORECASE,
)
_LOCATION_RE = re.compile(r"\s+in\s+(.+?)\s+on\s+line\s+(\d+)")


def _severity(label: Optional[str]) -> str:
    s = (label or "").lower()
    if "fatal" in s or "parse" in s:
        return "fatal"
    if "warning" in s:
        return "warning"
    if "notice" in s or "strict" in s:
        return "notice"
    if "deprecated" in s:
        return "deprecated"
    return "unknown"


def parse_lines(lines: Iterable[str]) -> List[DebugLogEntry]:
    """Group raw log lines into entries.

    A line starting with ``[timestamp]`` opens an entry; anything else (stack
    traces, wrapped messages) is appended to the open one. Lines before the
    first timestamp are dropped.
    """
    entries: List[DebugLogEntry] = []
    current: Optional[DebugLogEntry] = None

    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        m = _ENTRY_RE.match(line)
        if m:
            if current:
                entries.append(current)
            message = m.group(3).strip()
            file = None
            lineno = None
            loc = _LOCATION_RE.search(message)
            if loc:
                file = loc.group(1)
                lineno = int(loc.group(2))
                message = _LOCATION_RE.sub("", message, count=1)
            current = {
                "timestamp": m.group(1),
                "severity": _severity(m.group(2)),
                "message": message,
                "file": file,
                "line": lineno,
                "raw": line.strip(),
            }
        elif current:
            current["message"] += "\n" + line.strip()
            current["raw"] += "\n" + line.strip()

    if current:
        entries.append(current)
    return entries


def entries_from_response(data: dict) -> List[DebugLogEntry]:
    """Older connector builds return raw ``lines``; current ones return parsed ``entries``."""
    if not isinstance(data, dict):
        return []
    if data.get("entries") is not None:
        return list(data["entries"])
    return parse_lines(data.get("lines") or [])


def count_by_severity(entries: Iterable[DebugLogEntry]) -> Dict[str, int]:
    counts = {s: 0 for s in SEVERITIES}
    for e in entries:
        sev = e.get("severity") or "unknown"
        counts[sev if sev in counts else "unknown"] += 1
    return counts


def summarize(entries: List[DebugLogEntry], **extra) -> dict:
    """Counts per severity plus the most recent fatal, for dashboards and cron."""
    counts = count_by_severity(entries)
    latest_fatal = None
    for e in reversed(entries):
        if e.get("severity") == "fatal":
            latest_fatal = {"timestamp": e.get("timestamp"), "message": (e.get("message") or "").split("\n")[0]}
            break
    out = {"counts": counts, "total": len(entries), "latest_fatal": latest_fatal}
    out.update(extra)
    return out


def sort_summaries(summaries: List[dict]) -> List[dict]:
    """Most fatals first, then most warnings."""
    return sorted(
        summaries,
        key=lambda s: (-s["counts"].get("fatal", 0), -s["counts"].get("warning", 0), s.get("site_url") or ""),
    )
