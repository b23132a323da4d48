from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gmail_triage.auth import MailboxSession
from gmail_triage.config import DecisionAction, TriageSettings
from gmail_triage.exceptions import RemoteError
from gmail_triage.review import ReviewService
from gmail_triage.webapp import create_app, get_orchestrator, get_review_service

from factories import make_labeled, make_snapshot

SENDER = "deals@shop.com"


@pytest.fixture
def app(config, store):
    """App bound to a temporary store."""
    return create_app(config=config, store=store)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def saved_snapshot(store):
    """Persist three emails from one sender, two suggested for trash."""
    snapshot = make_snapshot(
        [
            make_labeled("e1", DecisionAction.TRASH),
            make_labeled("e2", DecisionAction.KEEP),
            make_labeled("e3", DecisionAction.TRASH),
        ]
    )
    store.save_snapshot(snapshot)
    return snapshot


def _override_review(app, store, failing=()) -> MagicMock:
    """Route review actions through a fake Gmail client."""

    gmail = MagicMock()
    gmail.session = MailboxSession("tok")

    def _trash(message_id):
        if message_id in failing:
            raise RemoteError(500, "backend error", service="Gmail")

    gmail.trash_message = MagicMock(side_effect=_trash)
    app.dependency_overrides[get_review_service] = lambda: ReviewService(store, gmail)
    return gmail


def test_health(client) -> None:
    """Health endpoint returns ok."""

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_home_renders_saved_settings(client, store) -> None:
    """The settings form is filled from the stored document."""

    store.save_settings(TriageSettings(query="is:unread", batch_size=4))

    resp = client.get("/")

    assert resp.status_code == 200
    assert 'value="is:unread"' in resp.text
    assert 'value="4"' in resp.text
    assert "Not connected" in resp.text


def test_save_settings(client, store) -> None:
    """Saving the form persists it."""

    resp = client.post(
        "/settings",
        data={"groq_api_key": " key ", "batch_size": "5", "max_messages": "", "query": "older_than:1y"},
    )

    assert resp.status_code == 200
    assert "Saved." in resp.text
    settings = store.load_settings()
    assert settings.groq_api_key == "key"
    assert settings.batch_size == 5
    assert settings.max_messages == 50
    assert settings.query == "older_than:1y"


def test_invalid_settings_become_status_text(client, store) -> None:
    """Invalid numbers are reported on the page, not as an HTTP error."""

    resp = client.post("/settings", data={"batch_size": "0"})

    assert resp.status_code == 200
    assert "Invalid input" in resp.text
    assert store.load_settings().batch_size == 10


def test_connect_and_disconnect(app, client) -> None:
    """A posted token starts a session; disconnect invalidates it."""

    resp = client.post("/connect", data={"access_token": ""})
    assert "No access token returned" in resp.text
    assert app.state.session is None

    resp = client.post("/connect", data={"access_token": "tok"})
    assert "Gmail connected" in resp.text
    session = app.state.session
    assert session.is_active

    resp = client.post("/disconnect")
    assert "Disconnected." in resp.text
    assert app.state.session is None
    assert session.is_active is False


def test_scan_renders_groups(app, client, store) -> None:
    """Scan saves the form, runs the orchestrator and shows the groups."""

    snapshot = make_snapshot(
        [make_labeled("e1", DecisionAction.TRASH), make_labeled("e2", DecisionAction.TRASH)]
    )
    orchestrator = MagicMock()

    def _scan(settings):
        store.save_snapshot(snapshot)
        return snapshot

    orchestrator.scan.side_effect = _scan
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    resp = client.post("/scan", data={"query": "category:promotions", "max_messages": "2"})

    assert resp.status_code == 200
    assert "Done. Scanned: 2" in resp.text
    assert SENDER in resp.text
    assert "Trash suggested (2)" in resp.text

    settings = orchestrator.scan.call_args.args[0]
    assert settings.query == "category:promotions"
    assert settings.max_messages == 2


def test_scan_without_connection_reports_status(client, store) -> None:
    """A scan before connecting shows the auth message and keeps the settings."""

    resp = client.post("/scan", data={"groq_api_key": "k", "query": "is:unread"})

    assert resp.status_code == 200
    assert "Not connected to Gmail yet. Connect Gmail first." in resp.text
    assert store.load_settings().query == "is:unread"


def test_unexpected_error_becomes_status_text(app, client) -> None:
    """Unexpected failures are shown instead of a 500."""

    orchestrator = MagicMock()
    orchestrator.scan.side_effect = ValueError("boom")
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    resp = client.post("/scan", data={})

    assert resp.status_code == 200
    assert "Unexpected error: boom" in resp.text


def test_load_last(client, saved_snapshot) -> None:
    """Load last renders the stored snapshot."""

    resp = client.post("/load-last")

    assert "Loaded last scan. Scanned: 3" in resp.text
    assert "Keep: 1 • Trash: 2 • Review: 0" in resp.text


def test_load_last_without_snapshot(client) -> None:
    """Load last before any scan reports that nothing is saved."""

    resp = client.post("/load-last")

    assert "No last scan saved yet." in resp.text


def test_keep_email(client, store, saved_snapshot) -> None:
    """Keep overrides the decision and shows the subject."""

    resp = client.post("/emails/e1/keep")

    assert "Kept: Subject e1" in resp.text
    email = store.load_snapshot().find_email("e1")
    assert email.decision.action == DecisionAction.KEEP
    assert email.decision.reason == "manually kept"


def test_trash_email_requires_confirmation(app, client, store, saved_snapshot) -> None:
    """An unconfirmed trash renders a confirmation page and calls nothing."""

    gmail = _override_review(app, store)

    resp = client.post("/emails/e2/trash")

    assert "Move this email to Trash?" in resp.text
    assert 'name="confirmed" value="true"' in resp.text
    gmail.trash_message.assert_not_called()


def test_trash_email_confirmed(app, client, store, saved_snapshot) -> None:
    """A confirmed trash calls Gmail and marks the email."""

    gmail = _override_review(app, store)

    resp = client.post("/emails/e2/trash", data={"confirmed": "true"})

    assert "Trashed." in resp.text
    assert "TRASHED" in resp.text
    gmail.trash_message.assert_called_once_with("e2")
    assert store.load_snapshot().find_email("e2").trashed is True


def test_trash_email_failure_is_reported(app, client, store, saved_snapshot) -> None:
    """A failed single trash is shown as status text."""

    _override_review(app, store, failing={"e2"})

    resp = client.post("/emails/e2/trash", data={"confirmed": "true"})

    assert "Trash failed: Gmail API error 500: backend error" in resp.text
    assert store.load_snapshot().find_email("e2").trashed is False


def test_trash_suggested_confirm_then_run(app, client, store, saved_snapshot) -> None:
    """Bulk trash asks first, then reports succeeded/attempted."""

    gmail = _override_review(app, store, failing={"e3"})

    resp = client.post("/groups/trash-suggested", data={"sender": SENDER})
    assert f"Trash 2 emails from {SENDER}? (Moves to Trash)" in resp.text
    gmail.trash_message.assert_not_called()

    resp = client.post("/groups/trash-suggested", data={"sender": SENDER, "confirmed": "true"})
    assert "Trashed 1/2 emails." in resp.text
    assert "1 failed" in resp.text


def test_trash_suggested_nothing_to_do(app, client, store) -> None:
    """A group without suggestions reports it without a confirmation."""

    store.save_snapshot(make_snapshot([make_labeled("e1", DecisionAction.KEEP)]))
    _override_review(app, store)

    resp = client.post("/groups/trash-suggested", data={"sender": SENDER})

    assert "No TRASH suggestions here." in resp.text


def test_api_scan_requires_connection(client) -> None:
    """The JSON scan reports missing auth as 401."""

    resp = client.post("/api/scan", json={"groq_api_key": "k"})

    assert resp.status_code == 401
    assert resp.json()["error"] == "authentication_required"


def test_api_scan_invalid_payload(client) -> None:
    """Invalid settings in the JSON scan are a 422."""

    resp = client.post("/api/scan", json={"batch_size": 0})

    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_settings"


def test_api_scan_returns_view(app, client, store) -> None:
    """The JSON scan merges the payload over saved settings and returns the view."""

    store.save_settings(TriageSettings(groq_api_key="k", batch_size=4))
    snapshot = make_snapshot([make_labeled("e1", DecisionAction.TRASH)])
    orchestrator = MagicMock()
    orchestrator.scan.return_value = snapshot
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    resp = client.post("/api/scan", json={"query": "category:promotions", "max_messages": 2})

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["total"] == 1
    assert payload["groups"][0]["sender"] == SENDER
    assert payload["groups"][0]["pending_trash"] == 1

    settings = orchestrator.scan.call_args.args[0]
    assert (settings.groq_api_key, settings.batch_size, settings.max_messages) == ("k", 4, 2)


def test_api_scan_remote_error(app, client) -> None:
    """Remote failures in the JSON scan are a 502 with the upstream status."""

    orchestrator = MagicMock()
    orchestrator.scan.side_effect = RemoteError(429, "slow down", service="Groq")
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    resp = client.post("/api/scan", json={})

    assert resp.status_code == 502
    assert resp.json()["status"] == 429


def test_api_snapshot(client, saved_snapshot) -> None:
    """The snapshot API returns the stored view."""

    resp = client.get("/api/snapshot")

    assert resp.status_code == 200
    assert resp.json()["counts"] == {"total": 3, "keep": 1, "trash": 2, "review": 0}


def test_api_snapshot_missing(client) -> None:
    """The snapshot API is a 404 before any scan."""

    resp = client.get("/api/snapshot")

    assert resp.status_code == 404


def test_progress_api(client) -> None:
    """Progress starts idle."""

    resp = client.get("/api/scan/progress")

    assert resp.json() == {"state": "idle", "processed": 0, "total": 0, "message": ""}
