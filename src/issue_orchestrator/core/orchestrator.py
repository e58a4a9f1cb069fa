"""The issue loop: assess, split or implement, verify, open a PR, persist.

Issues run one at a time in dependency order. Every state transition is
saved before the next risky step, so an interrupted run resumes by redoing
at most the issue that was in flight.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import click

from issue_orchestrator.config import OrchestratorConfig
from issue_orchestrator.core.agents import AgentRunner
from issue_orchestrator.core.graph import build_graph, topological_sort
from issue_orchestrator.core.runlog import RunLog
from issue_orchestrator.core.state import (
    get_or_create,
    mark_completed,
    mark_failed,
    mark_in_progress,
    mark_split,
    save_state,
)
from issue_orchestrator.core.verify import commands_for, verify_with_fixes, with_retries
from issue_orchestrator.core.worktrees import WorkspaceManager
from issue_orchestrator.display import heading
from issue_orchestrator.models import (
    COMPLETED,
    FAILED,
    SPLIT,
    DependencyGraph,
    GraphNode,
    Issue,
    IssueRunState,
    ProposedSplit,
    PullRequestResult,
    RunState,
    TrackerError,
)

logger = logging.getLogger(__name__)

ERROR_TAIL = 2000


class IssueNotInPlan(Exception):
    """Raised when --single or --from names an issue outside the execution order."""

    def __init__(self, issue_number: int):
        super().__init__(f"Issue #{issue_number} not found in execution order")
        self.issue_number = issue_number


class IssueTracker(Protocol):
    def fetch_open_issues(self) -> list[Issue]: ...

    def create_sub_issues(self, parent: Issue, splits: list[ProposedSplit], parent_deps: list[int]) -> list[Issue]: ...

    def create_pr(
        self, title: str, body: str, base_branch: str, branch: str, worktree_path: str | Path
    ) -> PullRequestResult: ...


@dataclass
class OrchestratorFlags:
    dry_run: bool = False
    skip_split: bool = False
    skip_e2e: bool = False
    no_verify: bool = False
    single: bool = False
    single_issue: int | None = None
    from_issue: int | None = None


@dataclass
class RunReport:
    order: list[int] = field(default_factory=list)
    completed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    split: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def processed(self) -> list[int]:
        return self.completed + self.failed + self.split


def build_pr_body(issue: Issue, config: OrchestratorConfig, flags: OrchestratorFlags) -> str:
    checklist = [f"- [x] `{v.cmd}` passes" for v in config.verify]
    if config.e2e:
        checklist.append("- [ ] E2E (skipped)" if flags.skip_e2e else f"- [x] `{config.e2e.run}` passes")
    if flags.no_verify:
        checklist = ["- [ ] Verification skipped (--no-verify)"]

    return (
        "## Summary\n\n"
        f"Closes #{issue.number}\n\n"
        "## Changes\n\n"
        f"See issue #{issue.number} for full details.\n\n"
        "## Verification\n\n"
        + "\n".join(checklist)
        + "\n\n---\nAutomated by iorch"
    )


def select_window(order: list[int], state: RunState, flags: OrchestratorFlags) -> list[int]:
    """Slice of the execution order this run will walk."""
    target = flags.single_issue if flags.single_issue is not None else flags.from_issue
    if target is not None:
        if target not in order:
            raise IssueNotInPlan(target)
        start = order.index(target)
        if flags.single_issue is not None:
            return [target]
        return order[start:]

    for i, num in enumerate(order):
        issue_state = state.issues.get(num)
        if issue_state is None or issue_state.status != COMPLETED:
            return order[i:]
    return []


def next_actionable(window: list[int], state: RunState) -> int | None:
    """First issue in the window that a run would work on rather than skip."""
    for num in window:
        issue_state = state.issues.get(num)
        if issue_state is None or issue_state.status not in (COMPLETED, SPLIT):
            return num
    return None


def _tail(text: str | None) -> str:
    text = (text or "").strip()
    return text[-ERROR_TAIL:]


class Orchestrator:
    """Drives issues through the pipeline. Collaborators are injected."""

    def __init__(
        self,
        config: OrchestratorConfig,
        repo_root: str | Path,
        state: RunState,
        state_file: str | Path,
        tracker: IssueTracker,
        agents: AgentRunner,
        workspaces: WorkspaceManager,
        run_log: RunLog | None = None,
        flags: OrchestratorFlags | None = None,
    ):
        self.config = config
        self.repo_root = Path(repo_root)
        self.state = state
        self.state_file = Path(state_file)
        self.tracker = tracker
        self.agents = agents
        self.workspaces = workspaces
        self.run_log = run_log or RunLog(None)
        self.flags = flags or OrchestratorFlags()

    def save(self):
        save_state(self.state, self.state_file)

    def run(self, issues: list[Issue]) -> RunReport:
        """Walk the execution order. Raises CircularDependencyError or IssueNotInPlan before any work."""
        graph = build_graph(issues, self.config)
        order = topological_sort(graph).unwrap()
        window = select_window(order, self.state, self.flags)
        report = RunReport(order=order)

        if self.flags.dry_run:
            DryRunner(self.config, self.repo_root, self.state, self.agents, self.flags).run(graph, window)
            return report

        if not window:
            logger.info("Nothing to do: all %s issues are completed", len(order))
            return report

        first = next_actionable(window, self.state)
        if first is None:
            first = window[0]
        logger.info(
            "Starting from issue #%s: %s (position %s/%s)%s",
            first,
            graph[first].issue.title,
            order.index(first) + 1,
            len(order),
            " (single issue mode)" if self.flags.single else "",
        )
        self.run_log.run_start(total_issues=len(order), window=window)

        for num in window:
            node = graph[num]
            issue_state = get_or_create(self.state, num, node.issue.title)
            if issue_state.status == COMPLETED:
                logger.info("Skipping #%s (already completed)", num)
                report.skipped.append(num)
                continue
            if issue_state.status == SPLIT:
                logger.info("Skipping #%s (split into sub-issues)", num)
                report.skipped.append(num)
                continue

            heading(f"ISSUE #{num}: {node.issue.title} ({order.index(num) + 1}/{len(order)})")
            try:
                self._process(node, graph, issue_state)
            except Exception as e:
                logger.exception("Unexpected error while processing #%s", num)
                self._fail(issue_state, f"Unexpected error: {e}")

            if issue_state.status == COMPLETED:
                report.completed.append(num)
            elif issue_state.status == SPLIT:
                report.split.append(num)
            else:
                report.failed.append(num)

            if self.flags.single:
                logger.info("Finished #%s. Run again to process the next issue.", num)
                break

        self.run_log.run_complete(
            completed=len(report.completed),
            failed=len(report.failed),
            split=len(report.split),
        )
        return report

    # ── One issue ───────────────────────────────────────────────────────────

    def _process(self, node: GraphNode, graph: DependencyGraph, issue_state: IssueRunState):
        num = node.issue_id
        started = time.monotonic()

        mark_in_progress(issue_state, branch=node.branch)
        self.save()

        unmet = [
            dep for dep in node.depends_on
            if dep in graph and (dep not in self.state.issues or self.state.issues[dep].status != COMPLETED)
        ]
        if unmet:
            self._fail(issue_state, "Unmet dependencies: " + ", ".join(f"#{d}" for d in unmet))
            return

        if not self.flags.skip_split and self._split_if_needed(node, issue_state):
            return

        workspace = self.workspaces.create(node.branch, self._dependency_branches(node, graph), num)
        if not workspace.ok:
            self._fail(issue_state, workspace.error or "Worktree creation failed")
            return

        mark_in_progress(issue_state, branch=node.branch, base_branch=workspace.base_branch)
        self.save()
        self.run_log.issue_start(num, node.issue.title, node.branch, workspace.base_branch)
        logger.info(
            "Worktree at %s on branch %s (base: %s)",
            workspace.worktree_path, node.branch, workspace.base_branch,
        )

        try:
            error = self._implement_verify_publish(node, workspace.worktree_path, workspace.base_branch, issue_state)
        except Exception:
            self.workspaces.remove(workspace.worktree_path, node.branch, num, delete_branch_after=True)
            raise

        if error is not None:
            self._fail(issue_state, error)
            self.workspaces.remove(workspace.worktree_path, node.branch, num, delete_branch_after=True)
            return

        # The branch stays: the pull request and any dependents build on it
        self.workspaces.remove(workspace.worktree_path, node.branch, num)
        self.run_log.issue_complete(num, issue_state.pr_number, int((time.monotonic() - started) * 1000))
        if issue_state.pr_number:
            logger.info("Issue #%s completed -> PR #%s", num, issue_state.pr_number)
        else:
            logger.info("Issue #%s completed on branch %s", num, node.branch)

    def _split_if_needed(self, node: GraphNode, issue_state: IssueRunState) -> bool:
        num = node.issue_id
        assessment = self.agents.assess_size(node.issue, self.repo_root)
        logger.info("Assessment: %s", assessment.reasoning)
        if not assessment.should_split or not assessment.proposed_splits:
            return False

        logger.warning("Issue #%s needs splitting into %s sub-issues", num, len(assessment.proposed_splits))
        try:
            created = self.tracker.create_sub_issues(node.issue, assessment.proposed_splits, node.depends_on)
        except TrackerError as e:
            self._fail(issue_state, f"Failed to create sub-issues: {e}")
            return True

        sub_issues = [issue.number for issue in created]
        mark_split(issue_state, sub_issues)
        self.save()
        self.run_log.issue_split(num, sub_issues)
        logger.info(
            "Split into %s; they run once the tracker lists them",
            ", ".join(f"#{n}" for n in sub_issues),
        )
        return True

    def _dependency_branches(self, node: GraphNode, graph: DependencyGraph) -> list[str]:
        """Branches of completed prerequisites, in the order the issue lists them."""
        branches = []
        for dep in node.depends_on:
            dep_state = self.state.issues.get(dep)
            if dep in graph:
                branches.append(graph[dep].branch)
            elif dep_state and dep_state.status == COMPLETED and dep_state.branch:
                branches.append(dep_state.branch)
        return branches

    def _implement_verify_publish(
        self,
        node: GraphNode,
        worktree_path: str,
        base_branch: str,
        issue_state: IssueRunState,
    ) -> str | None:
        """Returns an error message, or None once the issue is completed."""
        num = node.issue_id
        attempts = self.config.retries.implement + 1

        def on_implement_failure(result, attempt):
            logger.warning("Implementation attempt %s/%s failed: %s", attempt, attempts, result.error)

        implemented = with_retries(
            lambda: self.agents.implement(node.issue, node.branch, base_branch, worktree_path),
            on_implement_failure,
            max_attempts=attempts,
        )
        if not implemented.ok:
            return f"Implementation failed after {attempts} attempts: {implemented.error}"

        if self.flags.no_verify:
            logger.info("Verification skipped (--no-verify)")
        else:
            logger.info("Running verification pipeline...")
            verified = verify_with_fixes(
                commands_for(self.config, skip_e2e=self.flags.skip_e2e),
                worktree_path,
                self.run_log,
                num,
                self.agents.fix_verification_failure,
                self.config.retries.verify,
            )
            if not verified.ok:
                return (
                    f"Verification failed at {verified.failed_step} after "
                    f"{self.config.retries.verify + 1} attempts: {_tail(verified.error)}"
                )
            logger.info("All verification gates passed")

        logger.info("Creating pull request...")
        pr = self.tracker.create_pr(
            node.issue.title,
            build_pr_body(node.issue, self.config, self.flags),
            base_branch,
            node.branch,
            worktree_path,
        )
        if not pr.ok:
            return pr.error or "PR creation failed"
        if pr.pr_number:
            self.run_log.pr_created(num, pr.pr_number)

        mark_completed(issue_state, pr.pr_number)
        self.save()
        return None

    def _fail(self, issue_state: IssueRunState, error: str):
        logger.error("#%s failed: %s", issue_state.number, error)
        mark_failed(issue_state, error)
        self.save()
        self.run_log.issue_failed(issue_state.number, error)


# ── Dry run ─────────────────────────────────────────────────────────────────


@dataclass
class DryRunSummary:
    total: int = 0
    direct: int = 0
    would_split: int = 0


class DryRunner:
    """Previews what a run would do. Only the read-only assessment agent is called."""

    def __init__(
        self,
        config: OrchestratorConfig,
        repo_root: str | Path,
        state: RunState,
        agents: AgentRunner,
        flags: OrchestratorFlags,
    ):
        self.config = config
        self.repo_root = Path(repo_root)
        self.state = state
        self.agents = agents
        self.flags = flags

    def verify_steps(self) -> list[str]:
        return [c.name for c in commands_for(self.config, skip_e2e=self.flags.skip_e2e)]

    def run(self, graph: DependencyGraph, window: list[int]) -> DryRunSummary:
        if self.flags.single:
            first = next_actionable(window, self.state)
            window = [first] if first is not None else window[:1]
        summary = DryRunSummary()
        order = list(graph)

        heading("DRY RUN: FULL PATH ASSESSMENT")
        for num in window:
            node = graph[num]
            issue_state = self.state.issues.get(num)
            if issue_state and issue_state.status in (COMPLETED, SPLIT):
                click.echo(click.style(f"  ✓ #{num} {node.issue.title} ({issue_state.status})", dim=True))
                continue

            summary.total += 1
            base = ", ".join(f"#{d}" for d in node.depends_on) or self.config.base_branch
            click.echo()
            click.echo(f"#{num} {node.issue.title}")
            click.echo(f"  Branch: {node.branch}")
            click.echo(f"  Base: {base}")
            if issue_state and issue_state.status == FAILED:
                click.echo(f"  Previously failed: {issue_state.error}")

            if self.flags.skip_split:
                summary.direct += 1
                click.echo("  Split assessment skipped (--skip-split)")
            else:
                assessment = self.agents.assess_size(node.issue, self.repo_root)
                if assessment.should_split:
                    summary.would_split += 1
                    click.echo(f"  WOULD SPLIT into {len(assessment.proposed_splits)} sub-issues:")
                    for split in assessment.proposed_splits:
                        click.echo(f"    -> {split.title}")
                else:
                    summary.direct += 1
                    click.echo("  Direct implementation (no split needed)")
                click.echo(f"  Reason: {assessment.reasoning}")

            if self.flags.no_verify:
                click.echo("  Verify: skipped (--no-verify)")
            else:
                click.echo(f"  Verify: {' -> '.join(self.verify_steps()) or '(none configured)'}")

        heading("DRY RUN SUMMARY")
        click.echo(f"  Issues in plan: {len(order)}")
        click.echo(f"  To process: {summary.total}")
        click.echo(f"  Direct implementation: {summary.direct}")
        click.echo(f"  Would be split: {summary.would_split}")
        click.echo("Dry run complete. No changes made.")
        return summary
