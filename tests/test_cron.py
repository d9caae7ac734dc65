import requests

from agencydash.cron_tasks import refresh_mu_plugin_cache, run_daily
from agencydash.extensions import db
from agencydash.models import WordPressCredential
from agencydash.monitoring import before_send_event
from tests.helpers import FakeHTTP, FakeResponse, healthy_site


def test_health_endpoint(client):
    r = client.get("/__health__")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_path_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.get_json() == {"error": "Not found: /nope"}


def test_cron_endpoint_requires_key(app, client):
    app.config["CRON_SECRET"] = "k3y"
    assert client.post("/__cron__/run/hourly").status_code == 403
    assert client.post("/__cron__/run/hourly?key=wrong").status_code == 403
    assert client.post("/__cron__/run/weekly?key=k3y").status_code == 404


def test_cron_endpoint_runs_hourly(app, client, connected_website, monkeypatch):
    app.config["CRON_SECRET"] = "k3y"
    http = healthy_site()
    monkeypatch.setattr(requests, "request", http.request)

    r = client.post("/__cron__/run/hourly", headers={"X-Cron-Key": "k3y"})
    assert r.status_code == 200
    assert WordPressCredential.query.one().mu_plugin_installed is True


def test_refresh_skips_unreachable_sites(app, connected_website, monkeypatch):
    http = FakeHTTP().add("GET", "/site-health", requests.exceptions.ConnectTimeout("timed out"))
    monkeypatch.setattr(requests, "request", http.request)

    assert refresh_mu_plugin_cache(app) == 0
    assert WordPressCredential.query.one().last_health_check is None


def test_refresh_skips_sites_answering_html(app, connected_website, monkeypatch):
    http = FakeHTTP().add("GET", "/site-health", FakeResponse(
        200, text="<!DOCTYPE html><html><body>Maintenance</body></html>", headers={"Content-Type": "text/html"}))
    monkeypatch.setattr(requests, "request", http.request)

    assert refresh_mu_plugin_cache(app) == 0
    assert WordPressCredential.query.one().last_health_check is None


def test_refresh_reports_undecryptable_credentials(app, connected_website, monkeypatch):
    captured = []
    monkeypatch.setattr("agencydash.cron_tasks.capture_exception", lambda e, **ctx: captured.append((e, ctx)))
    row = WordPressCredential.query.one()
    row.app_password_encrypted = "gAAAAAnot-a-real-token"
    db.session.commit()

    assert refresh_mu_plugin_cache(app) == 0
    assert len(captured) == 1
    assert captured[0][1]["integration"]["id"] == row.integration_id


def test_run_daily_logs_fatal_sites(app, connected_website, monkeypatch, caplog):
    http = FakeHTTP().add("GET", "/debug-log", FakeResponse(200, json={
        "entries": [{"timestamp": "t", "severity": "fatal", "message": "Allowed memory size exhausted"}]}))
    monkeypatch.setattr(requests, "request", http.request)
    app.logger.propagate = True

    with caplog.at_level("INFO", logger="agencydash"):
        run_daily(app, db)

    assert "Allowed memory size exhausted" in caplog.text
    assert "1 debug log(s) summarised" in caplog.text


def test_sentry_filter_drops_expected_failures():
    def event(exc_type):
        return {"exception": {"values": [{"type": exc_type, "value": "x"}]}}

    assert before_send_event(event("NetworkUnreachable"), {}) is None
    assert before_send_event(event("NotFoundError"), {}) is None
    assert before_send_event({"request": {"url": "https://dash.example.com/__health__"}}, {}) is None

    kept = before_send_event(event("EncryptionError"), {})
    assert kept["fingerprint"] == ["EncryptionError", "x"]
