"""FastAPI web frontend for Gmail AI Triage.

Objective:
    Provide the graphical surface of the app: a settings form, connect /
    disconnect controls, scan and load-last buttons, and the grouped results
    with per-email and per-group actions. A small JSON API exposes the same
    scan, the current snapshot view and scan progress.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``GET /`` -> :func:`home`
            - ``POST /settings`` -> :func:`save_settings`
            - ``POST /connect`` / ``POST /disconnect``
            - ``POST /scan`` -> :func:`scan_html`
            - ``POST /load-last`` -> :func:`load_last`
            - ``POST /emails/{email_id}/keep`` / ``POST /emails/{email_id}/trash``
            - ``POST /groups/trash-suggested``
            - ``POST /api/scan``, ``GET /api/snapshot``, ``GET /api/scan/progress``
        - wires templates via :class:`fastapi.templating.Jinja2Templates`
    - :func:`get_orchestrator` / :func:`get_review_service`:
        - build request-scoped components bound to the current session.

Error handling:
    Every action is wrapped by :func:`_attempt`; failures become status text
    on the page and never an HTTP 500.

Operational notes:
    - The Gmail token is posted to ``/connect`` by Google's browser token
      client embedded in the page (or pasted by hand). It lives only in
      ``app.state.session``.
    - For tests, :func:`get_orchestrator` and :func:`get_review_service` are
      overridden via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from .auth import GMAIL_SCOPE, MailboxSession
from .classifier import EmailClassifier
from .config import AppConfig, TriageSettings, get_config
from .exceptions import AuthError, RemoteError, TriageError
from .gmail_client import GmailClient
from .models import ScanProgress, ScanSnapshot, TrashOutcome
from .orchestrator import TriageOrchestrator
from .presenter import build_snapshot_view, summary_line
from .review import ReviewService
from .storage import TriageStore, create_store

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

QUERY_CHIPS = [
    ("Promotions", "category:promotions"),
    ("Social", "category:social"),
    ("GitHub", "from:notifications@github.com"),
    ("Older than 1y", "older_than:1y"),
    ("Unread", "is:unread"),
]


def _attempt(action: Callable[[], str]) -> str:
    """Run a UI action and turn any failure into status text.

    Args:
        action: Callable returning the success status text.

    Returns:
        str: Status text.
    """
    try:
        return action()
    except ValidationError as e:
        return "Invalid input: " + "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
    except TriageError as e:
        return str(e)
    except Exception as e:
        logger.exception("Unexpected error while handling action")
        return f"Unexpected error: {e}"


def _settings_from_form(
    google_client_id: str,
    groq_api_key: str,
    groq_model: str,
    batch_size: str,
    max_messages: str,
    query: str,
) -> TriageSettings:
    """Validate the settings form. Blank numeric fields take their defaults."""
    data: dict[str, Any] = {
        "google_client_id": google_client_id,
        "groq_api_key": groq_api_key,
        "groq_model": groq_model or TriageSettings.model_fields["groq_model"].default,
        "query": query,
    }
    if batch_size.strip():
        data["batch_size"] = batch_size.strip()
    if max_messages.strip():
        data["max_messages"] = max_messages.strip()
    return TriageSettings.model_validate(data)


def get_gmail_client(request: Request) -> GmailClient:
    """Gmail client bound to the session held by the app."""
    return GmailClient(request.app.state.config, request.app.state.session)


def get_orchestrator(request: Request) -> TriageOrchestrator:
    """Create a :class:`TriageOrchestrator` for this request.

    Progress is published to ``app.state.progress`` so ``/api/scan/progress``
    can be polled while a scan runs.

    Returns:
        TriageOrchestrator: Orchestrator bound to the current session.
    """
    state = request.app.state

    def _on_progress(progress: ScanProgress) -> None:
        state.progress = progress

    return TriageOrchestrator(
        config=state.config,
        store=state.store,
        gmail_client=get_gmail_client(request),
        classifier=state.classifier,
        on_progress=_on_progress,
    )


def get_review_service(request: Request) -> ReviewService:
    """Create a :class:`ReviewService` for this request."""
    return ReviewService(request.app.state.store, get_gmail_client(request))


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[TriageStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Process configuration (loaded from env if None).
        store: Settings/snapshot store (built from config if None).

    Returns:
        FastAPI: FastAPI app.
    """
    config = config or get_config()

    app = FastAPI(title="Gmail AI Triage")
    app.state.config = config
    app.state.store = store or create_store(config)
    app.state.classifier = EmailClassifier(config)
    app.state.session = None
    app.state.status = ""
    app.state.showing_snapshot = False
    app.state.progress = ScanProgress()
    app.state.scan_lock = threading.Lock()

    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    def _connected() -> bool:
        session: Optional[MailboxSession] = app.state.session
        return session is not None and session.is_active

    def _render(request: Request, status_code: int = 200) -> Any:
        snapshot: Optional[ScanSnapshot] = None
        if app.state.showing_snapshot:
            snapshot = app.state.store.load_snapshot()
        view = build_snapshot_view(snapshot) if snapshot is not None else None

        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "settings": app.state.store.load_settings(),
                "connected": _connected(),
                "status": app.state.status,
                "view": view,
                "summary": summary_line(view) if view is not None else "",
                "chips": QUERY_CHIPS,
                "gmail_scope": GMAIL_SCOPE,
            },
            status_code=status_code,
        )

    def _render_confirm(
        request: Request, message: str, action: str, fields: dict[str, str]
    ) -> Any:
        return templates.TemplateResponse(
            request,
            "confirm.html",
            {"message": message, "action": action, "fields": fields},
        )

    def _set_status(text: str) -> None:
        logger.info(f"Status: {text}")
        app.state.status = text

    def _scan(orchestrator: TriageOrchestrator, settings: Optional[TriageSettings]) -> ScanSnapshot:
        if not app.state.scan_lock.acquire(blocking=False):
            raise TriageError("A scan is already running.")
        try:
            return orchestrator.scan(settings)
        finally:
            app.state.scan_lock.release()

    def _trash_status(outcome: TrashOutcome, single: bool) -> str:
        if single:
            if outcome.succeeded:
                return "Trashed."
            return "Trash failed: " + "; ".join(outcome.failures.values())
        text = f"Trashed {outcome.ratio} emails."
        if outcome.failures:
            text += f" {len(outcome.failures)} failed; see the server log for details."
        return text

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint. Performs no external calls."""
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request) -> Any:
        """Render the page with the saved settings and current status."""
        return _render(request)

    @app.post("/settings", response_class=HTMLResponse)
    def save_settings(
        request: Request,
        google_client_id: str = Form(default=""),
        groq_api_key: str = Form(default=""),
        groq_model: str = Form(default=""),
        batch_size: str = Form(default=""),
        max_messages: str = Form(default=""),
        query: str = Form(default=""),
    ) -> Any:
        """Save the settings form."""

        def action() -> str:
            settings = _settings_from_form(
                google_client_id, groq_api_key, groq_model, batch_size, max_messages, query
            )
            app.state.store.save_settings(settings)
            return "Saved."

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/connect", response_class=HTMLResponse)
    def connect(request: Request, access_token: str = Form(default="")) -> Any:
        """Start a Gmail session from a token obtained in the browser."""

        def action() -> str:
            previous: Optional[MailboxSession] = app.state.session
            app.state.session = MailboxSession.connect(access_token)
            if previous is not None:
                previous.invalidate()
            return "Gmail connected. You can scan now."

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/disconnect", response_class=HTMLResponse)
    def disconnect(request: Request) -> Any:
        """Invalidate the Gmail session."""
        session: Optional[MailboxSession] = app.state.session
        if session is not None:
            session.invalidate()
        app.state.session = None
        _set_status("Disconnected.")
        return _render(request)

    @app.post("/scan", response_class=HTMLResponse)
    def scan_html(
        request: Request,
        google_client_id: str = Form(default=""),
        groq_api_key: str = Form(default=""),
        groq_model: str = Form(default=""),
        batch_size: str = Form(default=""),
        max_messages: str = Form(default=""),
        query: str = Form(default=""),
        orchestrator: TriageOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        """Save the settings form, then run a scan and render the results."""

        def action() -> str:
            settings = _settings_from_form(
                google_client_id, groq_api_key, groq_model, batch_size, max_messages, query
            )
            snapshot = _scan(orchestrator, settings)
            app.state.showing_snapshot = True
            return (
                f"Done. Scanned: {snapshot.total}\nQuery: {snapshot.query}\n"
                f"Time: {snapshot.generated_at.isoformat()}"
            )

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/load-last", response_class=HTMLResponse)
    def load_last(
        request: Request,
        review: ReviewService = Depends(get_review_service),
    ) -> Any:
        """Render the persisted snapshot without rescanning."""

        def action() -> str:
            snapshot = review.load_last()
            if snapshot is None:
                return "No last scan saved yet."
            app.state.showing_snapshot = True
            return (
                f"Loaded last scan. Scanned: {snapshot.total}\nQuery: {snapshot.query}\n"
                f"Time: {snapshot.generated_at.isoformat()}"
            )

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/emails/{email_id}/keep", response_class=HTMLResponse)
    def keep_email(
        request: Request,
        email_id: str,
        review: ReviewService = Depends(get_review_service),
    ) -> Any:
        """Override an email's decision to keep."""

        def action() -> str:
            snapshot = review.keep(email_id)
            email = snapshot.find_email(email_id)
            app.state.showing_snapshot = True
            return f"Kept: {email.subject if email and email.subject else email_id}"

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/emails/{email_id}/trash", response_class=HTMLResponse)
    def trash_email(
        request: Request,
        email_id: str,
        confirmed: bool = Form(default=False),
        review: ReviewService = Depends(get_review_service),
    ) -> Any:
        """Trash one email after explicit confirmation."""
        if not confirmed:
            snapshot = review.load_last()
            email = snapshot.find_email(email_id) if snapshot is not None else None
            if email is not None:
                return _render_confirm(
                    request,
                    f"Move this email to Trash?\n{email.subject or '(no subject)'}\nFrom: {email.sender}",
                    f"/emails/{email_id}/trash",
                    {},
                )

        def action() -> str:
            outcome = review.trash(email_id)
            app.state.showing_snapshot = True
            return _trash_status(outcome, single=True)

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/groups/trash-suggested", response_class=HTMLResponse)
    def trash_suggested(
        request: Request,
        sender: str = Form(...),
        confirmed: bool = Form(default=False),
        review: ReviewService = Depends(get_review_service),
    ) -> Any:
        """Trash a group's suggested emails after explicit confirmation."""
        if not confirmed:
            snapshot = review.load_last()
            ids = review.suggested_ids(snapshot, sender) if snapshot is not None else []
            if not ids:
                _set_status("No TRASH suggestions here.")
                return _render(request)
            return _render_confirm(
                request,
                f"Trash {len(ids)} emails from {sender}? (Moves to Trash)",
                "/groups/trash-suggested",
                {"sender": sender},
            )

        def action() -> str:
            outcome = review.trash_suggested(sender)
            app.state.showing_snapshot = True
            if not outcome.attempted:
                return "No TRASH suggestions here."
            return _trash_status(outcome, single=False)

        _set_status(_attempt(action))
        return _render(request)

    @app.post("/api/scan")
    def scan_api(
        payload: Optional[dict[str, Any]] = None,
        orchestrator: TriageOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        """Run a scan via JSON API.

        Expected request body (all keys optional, merged over saved settings):
            ``{"query": "category:promotions", "max_messages": 2, "batch_size": 10}``

        Returns:
            Any: Snapshot view, or an error payload.
        """
        try:
            saved = app.state.store.load_settings()
            settings = TriageSettings.model_validate({**saved.model_dump(), **(payload or {})})
            snapshot = _scan(orchestrator, settings)
        except ValidationError as e:
            return JSONResponse({"error": "invalid_settings", "detail": e.errors()}, status_code=422)
        except AuthError as e:
            return JSONResponse({"error": "authentication_required", "message": str(e)}, status_code=401)
        except RemoteError as e:
            return JSONResponse(
                {"error": "remote_error", "status": e.status, "message": str(e)},
                status_code=502,
            )
        except TriageError as e:
            return JSONResponse({"error": "scan_failed", "message": str(e)}, status_code=409)

        app.state.showing_snapshot = True
        return build_snapshot_view(snapshot).model_dump(mode="json")

    @app.get("/api/snapshot")
    def snapshot_api() -> Any:
        """Return the view of the persisted snapshot."""
        snapshot = app.state.store.load_snapshot()
        if snapshot is None:
            return JSONResponse({"error": "no_snapshot"}, status_code=404)
        return build_snapshot_view(snapshot).model_dump(mode="json")

    @app.get("/api/scan/progress")
    def progress_api() -> dict[str, Any]:
        """Return the progress of the running (or last) scan."""
        return app.state.progress.model_dump(mode="json")

    return app


app = create_app()
