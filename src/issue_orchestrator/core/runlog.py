"""Structured JSONL log of one orchestrator run.

One file per run under .iorch/logs/, one JSON object per line.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any


class RunLog:
    """Append-only event sink. RunLog(None) discards everything."""

    def __init__(self, logs_dir: str | Path | None):
        self.path: Path | None = None
        if logs_dir is not None:
            ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
            self.path = Path(logs_dir) / f"{ts}.jsonl"
        self._handle: IO[str] | None = None

    def open(self) -> "RunLog":
        if self.path is not None and self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "a")
        return self

    def close(self):
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "RunLog":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def log(self, event: str, **fields: Any):
        if self._handle is None:
            return
        record = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event}
        record.update({k: v for k, v in fields.items() if v is not None})
        self._handle.write(json.dumps(record) + "\n")
        self._handle.flush()

    # ── Event helpers ───────────────────────────────────────────────────────

    def run_start(self, **metadata):
        self.log("run_start", metadata=metadata or None)

    def run_complete(self, **metadata):
        self.log("run_complete", metadata=metadata or None)

    def issue_start(self, issue_number: int, title: str, branch: str, base_branch: str):
        self.log(
            "issue_start",
            issue_number=issue_number,
            issue_title=title,
            branch=branch,
            base_branch=base_branch,
        )

    def issue_complete(self, issue_number: int, pr_number: int | None, duration_ms: int):
        self.log("issue_complete", issue_number=issue_number, pr_number=pr_number, duration_ms=duration_ms)

    def issue_failed(self, issue_number: int, error: str):
        self.log("issue_failed", issue_number=issue_number, error=error)

    def issue_split(self, issue_number: int, sub_issues: list[int]):
        self.log("issue_split", issue_number=issue_number, metadata={"sub_issues": sub_issues})

    def agent_output(self, issue_number: int, output: str):
        self.log("agent_output", issue_number=issue_number, output=output)

    def verify_pass(self, issue_number: int, step: str):
        self.log("verify_pass", issue_number=issue_number, verify_step=step)

    def verify_fail(self, issue_number: int, step: str, error: str):
        self.log("verify_fail", issue_number=issue_number, verify_step=step, error=error)

    def branch_created(self, issue_number: int, branch: str, base_branch: str):
        self.log("branch_created", issue_number=issue_number, branch=branch, base_branch=base_branch)

    def worktree_created(self, issue_number: int, worktree_path: str, branch: str):
        self.log("worktree_created", issue_number=issue_number, worktree_path=worktree_path, branch=branch)

    def worktree_removed(self, issue_number: int, worktree_path: str):
        self.log("worktree_removed", issue_number=issue_number, worktree_path=worktree_path)

    def pr_created(self, issue_number: int, pr_number: int | None):
        self.log("pr_created", issue_number=issue_number, pr_number=pr_number)
