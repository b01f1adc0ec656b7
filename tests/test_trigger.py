import threading
from datetime import datetime, timezone

import pytest
import requests

from ideadrip.config import DispatchSettings
from ideadrip.errors import AuthorizationError, PopulationLoadFailure
from ideadrip.models import RunSummary
from ideadrip.server import TRIGGER_PATH, build_server
from ideadrip.trigger import authorize, handle_trigger

NOW = datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)


class CountingRunner:
    def __init__(self, summary=None, exc=None):
        self.summary = summary or RunSummary(users_checked=3, generated=1, sent=1, skipped=2)
        self.exc = exc
        self.calls = []

    def __call__(self, now):
        self.calls.append(now)
        if self.exc is not None:
            raise self.exc
        return self.summary


def test_authorize_requires_exact_bearer_secret():
    authorize("Bearer hunter2", "hunter2")
    for header in (None, "", "hunter2", "Bearer hunter", "bearer hunter2", "Basic hunter2"):
        with pytest.raises(AuthorizationError):
            authorize(header, "hunter2")


def test_unset_secret_rejects_everything():
    with pytest.raises(AuthorizationError):
        authorize("Bearer ", "")
    with pytest.raises(AuthorizationError):
        authorize(None, "")


def test_rejected_trigger_never_runs():
    runner = CountingRunner()
    status, payload = handle_trigger("Bearer wrong", secret="hunter2", runner=runner, notify=False)
    assert status == 401
    assert payload == {"error": "Unauthorized"}
    assert runner.calls == []


def test_non_ascii_credential_is_rejected_not_crashed():
    runner = CountingRunner()
    status, payload = handle_trigger("Bearer hé", secret="hunter2", runner=runner, notify=False)
    assert (status, payload) == (401, {"error": "Unauthorized"})
    assert runner.calls == []

    # a non-ASCII secret still matches itself
    status, _ = handle_trigger("Bearer sécret", secret="sécret", runner=runner, notify=False)
    assert status == 200


def test_accepted_trigger_returns_summary():
    runner = CountingRunner()
    status, payload = handle_trigger("Bearer hunter2", secret="hunter2", runner=runner, now=NOW, notify=False)

    assert status == 200
    assert runner.calls == [NOW]
    assert payload["success"] is True
    assert payload["message"] == "Cron job completed"
    assert payload["summary"]["usersChecked"] == 3
    assert payload["summary"]["skipped"] == 2
    assert payload["timestamp"].endswith("Z")


def test_population_failure_is_a_500():
    runner = CountingRunner(exc=PopulationLoadFailure("db down"))
    status, payload = handle_trigger("Bearer hunter2", secret="hunter2", runner=runner, notify=False)
    assert status == 500
    assert payload == {"error": "Failed to process cron job", "message": "db down"}


def test_alert_fires_on_abort(monkeypatch):
    seen = []
    monkeypatch.setattr("ideadrip.alerts.alert_run_aborted", lambda exc: seen.append(exc))
    runner = CountingRunner(exc=PopulationLoadFailure("db down"))
    handle_trigger("Bearer hunter2", secret="hunter2", runner=runner)
    assert len(seen) == 1


@pytest.fixture
def live_server():
    runner = CountingRunner()
    httpd = build_server(DispatchSettings(cron_secret="hunter2"), runner, host="127.0.0.1", port=0, notify=False)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    host, port = httpd.server_address[:2]
    yield f"http://{host}:{port}", runner
    httpd.shutdown()
    httpd.server_close()


def test_http_trigger_end_to_end(live_server):
    base, runner = live_server

    denied = requests.post(base + TRIGGER_PATH, timeout=5)
    assert denied.status_code == 401
    assert runner.calls == []

    ok = requests.post(base + TRIGGER_PATH, headers={"Authorization": "Bearer hunter2"}, timeout=5)
    assert ok.status_code == 200
    assert ok.json()["summary"]["sent"] == 1
    assert len(runner.calls) == 1


def test_http_health_and_unknown_paths(live_server):
    base, _ = live_server
    assert requests.get(base + "/healthz", timeout=5).json() == {"ok": True}
    assert requests.post(base + "/api/other", timeout=5).status_code == 404
