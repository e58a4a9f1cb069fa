"""CLI entry point for the issue orchestrator."""

import logging
import sys
from pathlib import Path

import click

from issue_orchestrator.config import (
    ConfigError,
    RepositoryNotFoundError,
    ensure_tool_dir,
    find_repo_root,
    load_config,
    logs_dir,
    migrate_legacy_state,
    readable_state_file,
    state_file_path,
)
from issue_orchestrator.core.agents import AgentRunner
from issue_orchestrator.core.graph import CircularDependencyError, build_graph, compute_tiers, topological_sort
from issue_orchestrator.core.orchestrator import IssueNotInPlan, Orchestrator, OrchestratorFlags
from issue_orchestrator.core.runlog import RunLog
from issue_orchestrator.core.state import init_state, load_state, save_state
from issue_orchestrator.core.worktrees import WorkspaceManager
from issue_orchestrator.display import print_execution_plan, print_status, print_tiers
from issue_orchestrator.integrations.github import (
    MERGE_STRATEGIES,
    GitHubError,
    GitHubTracker,
    determine_merge_order,
)
from issue_orchestrator.integrations.markdown import MarkdownTracker

logger = logging.getLogger(__name__)


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _load_context():
    try:
        repo_root = find_repo_root()
        config = load_config(repo_root)
    except (RepositoryNotFoundError, ConfigError) as e:
        _fail(str(e))
    return repo_root, config


def _tracker_for(config, repo_root, markdown):
    if markdown:
        return MarkdownTracker(markdown)
    return GitHubTracker(config.allowed_authors, repo_root=repo_root)


def _fetch(tracker):
    try:
        return tracker.fetch_open_issues()
    except (GitHubError, OSError) as e:
        _fail(f"Could not fetch issues: {e}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose):
    """iorch - Issue Orchestrator CLI"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )


# ── Run Commands ──────────────────────────────────────────────────────────────


@main.command("run")
@click.option("--dry-run", is_flag=True, help="Preview the plan and split decisions without changes")
@click.option("--reset", is_flag=True, help="Discard saved state and start fresh")
@click.option("--skip-split", is_flag=True, help="Implement every issue without size assessment")
@click.option("--skip-e2e", is_flag=True, help="Skip the end-to-end verification step")
@click.option("--no-verify", is_flag=True, help="Skip verification entirely")
@click.option(
    "--single",
    type=int,
    is_flag=False,
    flag_value=0,
    default=None,
    help="Process one issue: the given number, or the next unfinished one",
)
@click.option("--issue", "issue", type=int, default=None, help="Same as --single N")
@click.option("--from", "from_issue", type=int, default=None, help="Start at this issue number")
@click.option(
    "--markdown",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read issues from a markdown checklist instead of GitHub",
)
def run_command(dry_run, reset, skip_split, skip_e2e, no_verify, single, issue, from_issue, markdown):
    """Implement open issues in dependency order."""
    repo_root, config = _load_context()

    single_issue = issue if issue is not None else (single or None)
    flags = OrchestratorFlags(
        dry_run=dry_run,
        # A checklist file has nowhere to put sub-issues
        skip_split=skip_split or markdown is not None,
        skip_e2e=skip_e2e,
        no_verify=no_verify,
        single=single is not None or issue is not None,
        single_issue=single_issue,
        from_issue=from_issue,
    )

    state_file = state_file_path(repo_root)
    if dry_run:
        # Read-only: an unmigrated legacy file is previewed in place
        state = None if reset else load_state(readable_state_file(repo_root))
    else:
        ensure_tool_dir(repo_root)
        if migrate_legacy_state(repo_root):
            click.echo("Migrated legacy state file into .iorch/state/")
        state = None if reset else load_state(state_file)
    if state is None:
        state = init_state()
        if not dry_run:
            save_state(state, state_file)
    else:
        click.echo(f"Resuming from existing state ({len(state.issues)} issues tracked)")

    tracker = _tracker_for(config, repo_root, markdown)
    issues = _fetch(tracker)
    if not issues:
        click.echo("No open issues found.")
        return
    click.echo(f"Found {len(issues)} open issues")

    graph = build_graph(issues, config)
    schedule = topological_sort(graph)
    if not schedule.ok:
        _fail(schedule.error.message)
    print_execution_plan(schedule.order, graph, config.base_branch)

    with RunLog(None if dry_run else logs_dir(repo_root)) as run_log:
        orchestrator = Orchestrator(
            config,
            repo_root,
            state,
            state_file,
            tracker,
            AgentRunner(config, run_log=run_log),
            WorkspaceManager(config, repo_root, run_log),
            run_log,
            flags,
        )
        try:
            report = orchestrator.run(issues)
        except (CircularDependencyError, IssueNotInPlan) as e:
            _fail(str(e))

    if dry_run:
        return

    print_status(state)
    if run_log.path:
        click.echo(f"\nRun log: {run_log.path}")
    if not report.ok:
        click.echo(f"{len(report.failed)} issue(s) failed: " + ", ".join(f"#{n}" for n in report.failed), err=True)
        sys.exit(1)


@main.command("status")
def status_command():
    """Show per-issue progress from the saved state."""
    repo_root, _ = _load_context()
    state = load_state(readable_state_file(repo_root))
    if state is None:
        click.echo("No orchestrator state found. Run `iorch run` first.")
        return
    print_status(state)


@main.command("plan")
@click.option(
    "--markdown",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read issues from a markdown checklist instead of GitHub",
)
def plan_command(markdown):
    """Print the execution order and dependency tiers."""
    repo_root, config = _load_context()
    issues = _fetch(_tracker_for(config, repo_root, markdown))
    if not issues:
        click.echo("No open issues found.")
        return

    graph = build_graph(issues, config)
    try:
        order = topological_sort(graph).unwrap()
    except CircularDependencyError as e:
        _fail(str(e))
    print_execution_plan(order, graph, config.base_branch)
    print_tiers(compute_tiers(graph), graph)


@main.command("finalize")
@click.option(
    "--strategy",
    type=click.Choice(MERGE_STRATEGIES),
    default="squash",
    show_default=True,
    help="How GitHub merges each PR",
)
@click.option("--dry-run", is_flag=True, help="Show the merge order without merging")
def finalize_command(strategy, dry_run):
    """Merge the PRs of completed issues, stacked PRs base-first."""
    repo_root, config = _load_context()
    state = load_state(readable_state_file(repo_root))
    if state is None:
        click.echo("No orchestrator state found.")
        return

    tracker = GitHubTracker(config.allowed_authors, repo_root=repo_root)
    try:
        prs = determine_merge_order(tracker.discover_mergeable_prs(state, config.base_branch))
    except (GitHubError, ValueError) as e:
        _fail(str(e))

    if not prs:
        click.echo("No open PRs to merge.")
        return

    click.echo(f"Merge order ({len(prs)} PRs):")
    for i, pr in enumerate(prs, start=1):
        click.echo(f"  {i}. PR #{pr.pr_number} (#{pr.issue_number}) {pr.branch} -> {pr.base_branch}")

    for pr in prs:
        result = tracker.merge_pr(pr.pr_number, strategy=strategy, dry_run=dry_run)
        if not result.ok:
            # Later PRs may be stacked on this one
            _fail(f"Merging PR #{pr.pr_number} failed: {result.error}")
        if not dry_run:
            click.echo(f"  Merged PR #{pr.pr_number}")


# ── Worktree Commands ────────────────────────────────────────────────────────


@main.group("worktree")
def worktree_group():
    """Manage orchestrator worktrees."""
    pass


@worktree_group.command("list")
def worktree_list():
    """List worktrees under the orchestrator worktree directory."""
    repo_root, config = _load_context()
    wts = WorkspaceManager(config, repo_root).list_worktrees()
    if not wts:
        click.echo("No worktrees found.")
        return
    for wt in wts:
        click.echo(f"  {wt.branch} at {wt.path}")


@worktree_group.command("clean")
def worktree_clean():
    """Remove all orchestrator worktrees left behind by interrupted runs."""
    repo_root, config = _load_context()
    removed = WorkspaceManager(config, repo_root).clean()
    if not removed:
        click.echo("No worktrees to clean up.")
        return
    for path in removed:
        click.echo(f"  Removed: {path}")


# ── Dashboard Command ────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
@click.option("--open/--no-open", default=True, help="Open browser automatically")
def ui_command(host, port, open):
    """Launch the read-only status dashboard."""
    import webbrowser

    from issue_orchestrator.web.app import run_server

    repo_root, _ = _load_context()
    url = f"http://{host}:{port}"
    click.echo(f"Starting dashboard at {url}")
    if open:
        webbrowser.open(url)
    run_server(state_file_path(repo_root), host=host, port=port)
