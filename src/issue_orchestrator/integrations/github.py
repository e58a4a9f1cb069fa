"""GitHub operations through the gh CLI: issues, sub-issues, pull requests, merges."""

import json
import logging
import re
import subprocess
import time
from pathlib import Path

from issue_orchestrator.models import (
    COMPLETED,
    Issue,
    MergeCandidate,
    ProposedSplit,
    PullRequestResult,
    RunState,
    TrackerError,
)

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ("squash", "merge", "rebase")
MERGE_RETRY_DELAY = 3.0


class GitHubError(TrackerError):
    """Raised when a gh command fails in a way the caller cannot recover from."""


def _exec(cmd: list[str], cwd: str | Path | None = None) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise GitHubError(f"{cmd[0]} executable not found") from e


class GitHubTracker:
    """Issue tracker backed by the current repository's GitHub remote."""

    def __init__(self, allowed_authors: list[str] | None = None, repo_root: str | Path | None = None):
        self.allowed_authors = list(allowed_authors or [])
        self.repo_root = repo_root

    def _gh(self, args: list[str]) -> subprocess.CompletedProcess:
        return _exec(["gh"] + args, cwd=self.repo_root)

    def current_user(self) -> str:
        r = self._gh(["api", "user", "--jq", ".login"])
        if r.returncode != 0:
            raise GitHubError(f"Could not determine GitHub user: {r.stderr.strip()}")
        return r.stdout.strip()

    def fetch_open_issues(self) -> list[Issue]:
        """Open issues by the allowed authors (default: the authenticated user), deduplicated."""
        authors = self.allowed_authors or [self.current_user()]
        logger.info("Filtering issues by author(s): %s", ", ".join(authors))

        seen: set[int] = set()
        issues = []
        for author in authors:
            r = self._gh([
                "issue", "list",
                "--state", "open",
                "--limit", "200",
                "--author", author,
                "--json", "number,title,body,state,labels",
            ])
            if r.returncode != 0:
                raise GitHubError(f"gh issue list failed: {r.stderr.strip()}")
            for raw in json.loads(r.stdout or "[]"):
                if raw["number"] in seen:
                    continue
                seen.add(raw["number"])
                issues.append(_issue_from_json(raw))
        return issues

    def create_sub_issues(
        self,
        parent: Issue,
        splits: list[ProposedSplit],
        parent_deps: list[int],
    ) -> list[Issue]:
        """Create one issue per split, chained so each depends on the previous one."""
        created: list[Issue] = []
        previous: int | None = None

        for split in splits:
            if previous is not None:
                deps = [previous]
            else:
                deps = [d for d in parent_deps if d != parent.number]

            deps_line = ""
            if deps:
                deps_line = "> **Depends on:** " + ", ".join(f"#{d}" for d in deps) + "\n\n"
            body = f"{deps_line}> **Part of** #{parent.number}\n\n{split.body}"

            r = self._gh(["issue", "create", "--title", split.title, "--body", body])
            match = re.search(r"(\d+)\s*$", r.stdout.strip())
            if r.returncode != 0 or not match:
                raise GitHubError(f"Failed to create sub-issue '{split.title}': {r.stderr.strip()}")

            number = int(match.group(1))
            created.append(Issue(number=number, title=split.title, body=body))
            previous = number
            logger.info("Created sub-issue #%s: %s", number, split.title)

        return created

    def create_pr(
        self,
        title: str,
        body: str,
        base_branch: str,
        branch: str,
        worktree_path: str | Path,
    ) -> PullRequestResult:
        """Push the branch from its worktree and open a pull request."""
        push = _exec(["git", "push", "-u", "origin", branch], cwd=worktree_path)
        if push.returncode != 0:
            return PullRequestResult(ok=False, error=f"Failed to push branch: {push.stderr.strip()}")

        base = base_branch.removeprefix("origin/")
        pr = self._gh([
            "pr", "create",
            "--title", title,
            "--body", body,
            "--base", base,
            "--head", branch,
        ])
        if pr.returncode != 0:
            return PullRequestResult(ok=False, error=f"Failed to create PR: {pr.stderr.strip()}")

        match = re.search(r"(\d+)\s*$", pr.stdout.strip())
        pr_number = int(match.group(1)) if match else None
        logger.info("PR created: %s", pr.stdout.strip())
        return PullRequestResult(ok=True, pr_number=pr_number)

    # ── Finalize support ────────────────────────────────────────────────────

    def discover_mergeable_prs(self, state: RunState, default_base: str = "main") -> list[MergeCandidate]:
        """Completed issues whose pull request is still open."""
        candidates = []
        for issue_state in state.issues.values():
            if issue_state.status != COMPLETED or not issue_state.pr_number or not issue_state.branch:
                continue
            r = self._gh(["pr", "view", str(issue_state.pr_number), "--json", "state", "--jq", ".state"])
            if r.returncode != 0 or r.stdout.strip() != "OPEN":
                continue
            candidates.append(
                MergeCandidate(
                    issue_number=issue_state.number,
                    pr_number=issue_state.pr_number,
                    branch=issue_state.branch,
                    base_branch=(issue_state.base_branch or default_base).removeprefix("origin/"),
                )
            )
        return candidates

    def merge_pr(
        self,
        pr_number: int,
        strategy: str = "squash",
        dry_run: bool = False,
        sleep=time.sleep,
    ) -> PullRequestResult:
        """Merge a PR, retrying once since GitHub may still be processing a push."""
        if strategy not in MERGE_STRATEGIES:
            raise ValueError(f"Unknown merge strategy: {strategy}")
        if dry_run:
            logger.info("[DRY RUN] Would merge PR #%s with --%s", pr_number, strategy)
            return PullRequestResult(ok=True, pr_number=pr_number)

        args = ["pr", "merge", str(pr_number), f"--{strategy}", "--delete-branch"]
        r = self._gh(args)
        if r.returncode != 0:
            logger.info("Merge failed, retrying in %.0fs", MERGE_RETRY_DELAY)
            sleep(MERGE_RETRY_DELAY)
            r = self._gh(args)
        if r.returncode != 0:
            return PullRequestResult(ok=False, pr_number=pr_number, error=r.stderr.strip())
        return PullRequestResult(ok=True, pr_number=pr_number)


def determine_merge_order(prs: list[MergeCandidate]) -> list[MergeCandidate]:
    """Stacked PRs merge base-first; unrelated PRs go in issue-number order."""
    by_branch = {pr.branch: pr for pr in prs}
    visited: set[str] = set()
    result: list[MergeCandidate] = []

    for start in sorted(prs, key=lambda p: p.issue_number):
        chain = []
        in_chain: set[str] = set()
        pr = start
        while pr is not None and pr.branch not in visited:
            if pr.branch in in_chain:
                raise ValueError(f"Cycle detected in PR dependency graph at {pr.branch}")
            in_chain.add(pr.branch)
            chain.append(pr)
            pr = by_branch.get(pr.base_branch)
        for pr in reversed(chain):
            visited.add(pr.branch)
            result.append(pr)

    return result


def _issue_from_json(raw: dict) -> Issue:
    labels = [label["name"] if isinstance(label, dict) else str(label) for label in raw.get("labels") or []]
    return Issue(
        number=int(raw["number"]),
        title=raw.get("title", ""),
        body=raw.get("body") or "",
        state=str(raw.get("state", "open")).lower(),
        labels=labels,
    )
