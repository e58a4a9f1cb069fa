"""Read-only web dashboard over the orchestrator state file."""

from dataclasses import asdict
from pathlib import Path

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from issue_orchestrator.core.state import load_state, summarize
from issue_orchestrator.models import RunState
from issue_orchestrator.web.dashboard import get_dashboard_html


def _load(request: Request) -> RunState | None:
    # Re-read on every request so the page follows a run in another process
    return load_state(request.app.state.state_file)


# ── Handlers ──────────────────────────────────────────────────────────────────


async def index(request: Request):
    return HTMLResponse(get_dashboard_html())


async def api_status(request: Request):
    state = _load(request)
    if state is None:
        return JSONResponse({"started_at": None, "updated_at": None, "counts": None, "total": 0})

    counts = summarize(state)
    total = sum(counts.values())
    progress = (counts["completed"] / total * 100) if total > 0 else 0
    return JSONResponse({
        "started_at": state.started_at,
        "updated_at": state.updated_at,
        "counts": counts,
        "total": total,
        "progress_pct": round(progress, 1),
    })


async def api_list_issues(request: Request):
    state = _load(request)
    if state is None:
        return JSONResponse([])
    status_filter = request.query_params.get("status")
    issues = [
        asdict(state.issues[number])
        for number in sorted(state.issues)
        if status_filter is None or state.issues[number].status == status_filter
    ]
    return JSONResponse(issues)


async def api_get_issue(request: Request):
    number = request.path_params["number"]
    state = _load(request)
    if state is None or number not in state.issues:
        return JSONResponse({"error": "Issue not found"}, status_code=404)
    return JSONResponse(asdict(state.issues[number]))


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(state_file: str | Path) -> Starlette:
    routes = [
        Route("/", index),
        Route("/api/status", api_status),
        Route("/api/issues", api_list_issues),
        Route("/api/issues/{number:int}", api_get_issue),
    ]
    app = Starlette(routes=routes)
    app.state.state_file = Path(state_file)
    return app


def run_server(state_file: str | Path, host: str = "127.0.0.1", port: int = 8787):
    app = create_app(state_file)
    uvicorn.run(app, host=host, port=port)
