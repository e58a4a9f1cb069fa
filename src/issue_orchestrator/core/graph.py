"""Dependency graph: parse "Depends on #N" markers, build the graph, and schedule it.

Pure functions, no I/O.
"""

import re
from dataclasses import dataclass, field

from issue_orchestrator.config import OrchestratorConfig
from issue_orchestrator.models import DependencyGraph, GraphNode, Issue

MAX_SLUG_LENGTH = 50

_DEPENDS_ON = re.compile(r"depends\s+on", re.IGNORECASE)
_ISSUE_REF = re.compile(r"#(\d+)")
_ISSUE_PREFIX = re.compile(r"^\[\d+\]\s*")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class CircularDependencyError(Exception):
    """Raised by ScheduleResult.unwrap() when the graph has a cycle."""

    def __init__(self, cycle: "CircularDependency"):
        super().__init__(cycle.message)
        self.cycle = cycle


@dataclass
class CircularDependency:
    issue_ids: list[int]
    graph_size: int

    @property
    def message(self) -> str:
        path = " -> ".join(f"#{n}" for n in self.issue_ids)
        return f"Circular dependency detected among {self.graph_size} issues: {path}"


@dataclass
class ScheduleResult:
    order: list[int] = field(default_factory=list)
    error: CircularDependency | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> list[int]:
        if self.error is not None:
            raise CircularDependencyError(self.error)
        return self.order


def parse_dependencies(body: str | None) -> list[int]:
    """Issue numbers named on the first line that mentions "depends on"."""
    for line in (body or "").splitlines():
        if _DEPENDS_ON.search(line):
            return [int(n) for n in _ISSUE_REF.findall(line)]
    return []


def slugify(title: str) -> str:
    """Branch-safe slug: lowercase, alnum runs joined by '-', at most 50 chars."""
    slug = _ISSUE_PREFIX.sub("", title.lower())
    slug = _NON_ALNUM.sub("-", slug)
    return slug[:MAX_SLUG_LENGTH].strip("-")


def branch_name_for(issue: Issue, config: OrchestratorConfig) -> str:
    return f"{config.branch_prefix}{issue.number}-{slugify(issue.title)}"


def build_graph(issues: list[Issue], config: OrchestratorConfig) -> DependencyGraph:
    graph: DependencyGraph = {}
    for issue in issues:
        graph[issue.number] = GraphNode(
            issue=issue,
            branch=branch_name_for(issue, config),
            depends_on=parse_dependencies(issue.body),
        )
    return graph


def topological_sort(graph: DependencyGraph) -> ScheduleResult:
    """Order issues so in-graph prerequisites come first.

    Depth-first with an explicit stack. Ids missing from the graph are skipped.
    Roots are visited in graph insertion order, so independent issues keep
    their input order.
    """
    finalized: set[int] = set()
    on_stack: set[int] = set()
    order: list[int] = []

    for root in graph:
        if root in finalized:
            continue

        stack = [(root, iter(graph[root].depends_on))]
        on_stack.add(root)

        while stack:
            node, prereqs = stack[-1]
            for dep in prereqs:
                if dep not in graph or dep in finalized:
                    continue
                if dep in on_stack:
                    path = [n for n, _ in stack]
                    cycle = path[path.index(dep):] + [dep]
                    return ScheduleResult(error=CircularDependency(cycle, len(graph)))
                on_stack.add(dep)
                stack.append((dep, iter(graph[dep].depends_on)))
                break
            else:
                stack.pop()
                on_stack.discard(node)
                finalized.add(node)
                order.append(node)

    return ScheduleResult(order=order)


def compute_tiers(graph: DependencyGraph) -> list[list[int]]:
    """Group issues into tiers; every in-graph prerequisite sits in an earlier tier."""
    tier_of: dict[int, int] = {}
    for num in topological_sort(graph).unwrap():
        deps = [d for d in graph[num].depends_on if d in graph]
        tier_of[num] = max((tier_of[d] for d in deps), default=-1) + 1

    tiers: list[list[int]] = []
    for num in graph:
        tier = tier_of[num]
        while len(tiers) <= tier:
            tiers.append([])
        tiers[tier].append(num)
    return tiers
