# agencydash/cron_tasks.py
from __future__ import annotations

from datetime import datetime

from agencydash.crypto_utils import EncryptionError
from agencydash.models import INTEGRATION_WORDPRESS, Integration, WordPressCredential
from agencydash.monitoring import capture_exception
from agencydash.wp.credentials import decrypt_credentials
from agencydash.wp.errors import NetworkUnreachable, RemoteAPIError
from agencydash.wp.manage import get_all_debug_log_summaries, record_health_check
from agencydash.wp.wp_client import WPClient


# =========================
# Core CRON entrypoints
# =========================

def run_hourly(app, db):
    """Refresh the companion plugin health cache for every connected site."""
    app.logger.info("[CRON] hourly tick at %s", datetime.utcnow().isoformat())
    with app.app_context():
        checked = refresh_mu_plugin_cache(app)
    app.logger.info("[CRON] hourly: %d site(s) checked", checked)


def run_daily(app, db):
    """Debug log sweep across all sites; logs the worst offenders."""
    app.logger.info("[CRON] daily tick at %s", datetime.utcnow().isoformat())
    with app.app_context():
        summaries = get_all_debug_log_summaries()

    for s in summaries:
        counts = s["counts"]
        if counts.get("fatal"):
            app.logger.warning(
                "[CRON] %s: %d fatal, %d warning (latest fatal: %s)",
                s.get("site_url"), counts["fatal"], counts.get("warning", 0),
                (s.get("latest_fatal") or {}).get("message"),
            )
        else:
            app.logger.info("[CRON] %s: %d warning, %d notice",
                            s.get("site_url"), counts.get("warning", 0), counts.get("notice", 0))
    app.logger.info("[CRON] daily: %d debug log(s) summarised", len(summaries))


# =========================
# WordPress health cache
# =========================

def refresh_mu_plugin_cache(app) -> int:
    """
    Ask each active WordPress site whether the companion plugin is there.
    Returns how many sites answered.
    """
    timeout = float(app.config.get("WP_REQUEST_TIMEOUT", 30))
    checked = 0
    integrations = Integration.query.filter_by(type=INTEGRATION_WORDPRESS, is_active=True).all()

    for integration in integrations:
        row = WordPressCredential.query.filter_by(integration_id=integration.id).first()
        if not row:
            continue
        try:
            client = WPClient(decrypt_credentials(row), timeout=timeout)
            result = client.check_mu_plugin()
        except (RemoteAPIError, NetworkUnreachable) as e:
            app.logger.warning("[CRON] companion check failed for %s: %s", row.site_url, e)
            continue
        except EncryptionError as e:
            app.logger.error("[CRON] cannot decrypt credentials for integration %s", integration.id)
            capture_exception(e, integration={"id": integration.id})
            continue

        record_health_check(row, installed=result["installed"], version=result.get("version"))
        checked += 1
    return checked
