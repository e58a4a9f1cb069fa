"""Durable per-issue run state, stored as one JSON document.

All status changes go through the mark_* helpers so the invariant
"completed implies no error" holds in every saved state.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from issue_orchestrator.models import (
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    ISSUE_STATUSES,
    PENDING,
    SPLIT,
    IssueRunState,
    RunState,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_state() -> RunState:
    now = _now()
    return RunState(version=STATE_VERSION, started_at=now, updated_at=now, issues={})


def load_state(path: str | Path) -> RunState | None:
    """Read state from disk. A missing or unreadable file means "no state"."""
    path = Path(path)
    try:
        content = path.read_text()
    except OSError:
        return None
    if not content.strip():
        return None

    try:
        return _state_from_dict(json.loads(content))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return None


def save_state(state: RunState, path: str | Path) -> None:
    """Stamp updated_at and write the whole state via a temp file and rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    state.updated_at = _now()

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(_state_to_dict(state), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def get_or_create(state: RunState, number: int, title: str | None = None) -> IssueRunState:
    """Return the issue's state, creating a pending entry on first reference."""
    issue_state = state.issues.get(number)
    if issue_state is None:
        issue_state = IssueRunState(number=number, title=title)
        state.issues[number] = issue_state
    elif title and not issue_state.title:
        issue_state.title = title
    return issue_state


# ── Transitions ─────────────────────────────────────────────────────────────


def mark_in_progress(
    issue_state: IssueRunState,
    branch: str | None = None,
    base_branch: str | None = None,
) -> IssueRunState:
    issue_state.status = IN_PROGRESS
    issue_state.error = None
    if branch is not None:
        issue_state.branch = branch
    if base_branch is not None:
        issue_state.base_branch = base_branch
    return issue_state


def mark_completed(issue_state: IssueRunState, pr_number: int | None = None) -> IssueRunState:
    issue_state.status = COMPLETED
    issue_state.error = None
    issue_state.pr_number = pr_number
    issue_state.completed_at = _now()
    return issue_state


def mark_failed(issue_state: IssueRunState, error: str) -> IssueRunState:
    issue_state.status = FAILED
    issue_state.error = error
    return issue_state


def mark_split(issue_state: IssueRunState, sub_issues: list[int]) -> IssueRunState:
    issue_state.status = SPLIT
    issue_state.error = None
    issue_state.sub_issues = list(sub_issues)
    return issue_state


def summarize(state: RunState) -> dict[str, int]:
    """Per-status issue counts, every status present."""
    counts = {status: 0 for status in ISSUE_STATUSES}
    for issue_state in state.issues.values():
        counts[issue_state.status] = counts.get(issue_state.status, 0) + 1
    return counts


# ── Serialization ───────────────────────────────────────────────────────────


def _state_to_dict(state: RunState) -> dict:
    return {
        "version": state.version,
        "started_at": state.started_at,
        "updated_at": state.updated_at,
        "issues": {
            str(number): asdict(issue_state)
            for number, issue_state in sorted(state.issues.items())
        },
    }


def _state_from_dict(data: dict) -> RunState:
    issues = {}
    for key, raw in (data.get("issues") or {}).items():
        status = raw.get("status", PENDING)
        if status not in ISSUE_STATUSES:
            raise ValueError(f"unknown status {status!r} for issue {key}")
        issue_state = IssueRunState(
            number=int(raw.get("number", key)),
            title=raw.get("title"),
            status=status,
            branch=raw.get("branch"),
            base_branch=raw.get("base_branch"),
            pr_number=raw.get("pr_number"),
            error=raw.get("error"),
            completed_at=raw.get("completed_at"),
            sub_issues=raw.get("sub_issues"),
        )
        if issue_state.status == COMPLETED:
            issue_state.error = None
        issues[int(key)] = issue_state

    return RunState(
        version=int(data.get("version", STATE_VERSION)),
        started_at=data["started_at"],
        updated_at=data.get("updated_at", data["started_at"]),
        issues=issues,
    )
