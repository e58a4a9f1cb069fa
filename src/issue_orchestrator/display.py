"""Terminal rendering for plans and run status."""

import click

from issue_orchestrator.core.state import summarize
from issue_orchestrator.models import COMPLETED, FAILED, SPLIT, DependencyGraph, RunState

STATUS_ICONS = {
    COMPLETED: click.style("✓", fg="green"),
    FAILED: click.style("✗", fg="red"),
    SPLIT: click.style("↔", fg="yellow"),
}
DEFAULT_ICON = click.style("○", dim=True)


def heading(text: str):
    click.echo()
    click.echo(click.style(f"── {text} ──", bold=True))


def _deps_label(deps: list[int]) -> str:
    return ", ".join(f"#{d}" for d in deps)


def print_execution_plan(order: list[int], graph: DependencyGraph, base_branch: str):
    heading("EXECUTION PLAN")
    for i, num in enumerate(order, start=1):
        node = graph[num]
        if node.depends_on:
            deps = f" (deps: {_deps_label(node.depends_on)})"
        else:
            deps = f" (no deps, branches from {base_branch})"
        click.echo(f"  {i:2d}. #{num} {node.issue.title}{deps}")
        click.echo(click.style(f"      -> branch: {node.branch}", dim=True))
    click.echo(f"\n  Total: {len(order)} issues")


def print_tiers(tiers: list[list[int]], graph: DependencyGraph):
    heading("DEPENDENCY TIERS")
    for t, tier in enumerate(tiers):
        after = "" if t == 0 else f", after tier {t - 1}"
        click.echo(f"  Tier {t} ({len(tier)} issue(s){after}):")
        for num in tier:
            node = graph[num]
            deps = f" (deps: {_deps_label(node.depends_on)})" if node.depends_on else " (no deps)"
            click.echo(f"    #{num} {node.issue.title}{deps}")
    total = sum(len(tier) for tier in tiers)
    click.echo(f"\n  Total: {total} issues across {len(tiers)} tier(s)")


def print_status(state: RunState):
    heading("ORCHESTRATOR STATUS")
    counts = summarize(state)
    click.echo(f"  Started: {state.started_at}")
    click.echo(f"  Updated: {state.updated_at}")
    click.echo(
        f"  Progress: {counts['completed']} completed, {counts['failed']} failed, "
        f"{counts['split']} split, {counts['in_progress']} in progress, {counts['pending']} pending\n"
    )

    for number in sorted(state.issues):
        entry = state.issues[number]
        icon = STATUS_ICONS.get(entry.status, DEFAULT_ICON)
        title = f" {entry.title}" if entry.title else ""
        extra = ""
        if entry.pr_number:
            extra = f" -> PR #{entry.pr_number}"
        elif entry.sub_issues:
            extra = f" -> {_deps_label(entry.sub_issues)}"
        click.echo(f"  {icon} #{entry.number}{title} [{entry.status}]{extra}")
        if entry.error:
            click.echo(click.style(f"      {entry.error}", fg="red"))
