"""Data models for the issue orchestrator."""

from dataclasses import dataclass, field

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"
SPLIT = "split"

ISSUE_STATUSES = (PENDING, IN_PROGRESS, COMPLETED, FAILED, SPLIT)


class TrackerError(Exception):
    """Raised when an issue source cannot carry out a request."""


@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)


@dataclass
class GraphNode:
    issue: Issue
    branch: str
    depends_on: list[int] = field(default_factory=list)

    @property
    def issue_id(self) -> int:
        return self.issue.number


DependencyGraph = dict[int, GraphNode]


@dataclass
class IssueRunState:
    number: int
    title: str | None = None
    status: str = PENDING
    branch: str | None = None
    base_branch: str | None = None
    pr_number: int | None = None
    error: str | None = None
    completed_at: str | None = None
    sub_issues: list[int] | None = None


@dataclass
class RunState:
    started_at: str
    updated_at: str
    version: int = 1
    issues: dict[int, IssueRunState] = field(default_factory=dict)


@dataclass
class ProposedSplit:
    title: str
    body: str


@dataclass
class Assessment:
    should_split: bool
    reasoning: str
    proposed_splits: list[ProposedSplit] = field(default_factory=list)


@dataclass
class AgentResult:
    ok: bool
    output: str


@dataclass
class ImplementResult:
    ok: bool
    error: str | None = None


@dataclass
class VerifyResult:
    ok: bool
    failed_step: str | None = None
    error: str | None = None
    passed: list[str] = field(default_factory=list)


@dataclass
class PullRequestResult:
    ok: bool
    pr_number: int | None = None
    error: str | None = None


@dataclass
class MergeCandidate:
    issue_number: int
    pr_number: int
    branch: str
    base_branch: str
