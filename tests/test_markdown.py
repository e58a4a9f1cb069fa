"""Tests for the markdown checklist issue source."""

import tempfile
from pathlib import Path

import pytest

from issue_orchestrator.config import OrchestratorConfig
from issue_orchestrator.core.graph import build_graph, topological_sort
from issue_orchestrator.integrations.markdown import MarkdownTracker, parse_markdown_issues
from issue_orchestrator.models import Issue, ProposedSplit, TrackerError

ROADMAP = """# Roadmap

## Backend
### Auth
- [x] Session storage
- [ ] **Login** endpoint, depends on #1
  - [ ] Rate limit `POST /login`
  - [x] Hash passwords

## Frontend
- [ ] Login page depends on #2
- [X] Style guide
"""


class TestParse:
    def test_empty(self):
        assert parse_markdown_issues("") == []

    def test_no_checklist(self):
        assert parse_markdown_issues("# Title\n\nSome text.\n\n## Section\n") == []

    def test_all_checked(self):
        assert parse_markdown_issues("- [x] Done\n- [X] Also done") == []

    def test_numbering_counts_checked_items(self):
        issues = parse_markdown_issues("- [x] First\n- [ ] Second\n- [x] Third\n- [ ] Fourth")
        assert [(i.number, i.title) for i in issues] == [(2, "Second"), (4, "Fourth")]
        assert all(i.state == "open" for i in issues)

    def test_sections_become_labels(self):
        issues = parse_markdown_issues(ROADMAP)
        assert [i.labels for i in issues] == [["Backend"], ["Frontend"]]

    def test_items_before_any_section_have_no_labels(self):
        assert parse_markdown_issues("- [ ] Top-level task")[0].labels == []

    def test_markdown_stripped_from_title(self):
        login = parse_markdown_issues(ROADMAP)[0]
        assert login.title == "Login endpoint, depends on #1"

    def test_body_has_context_and_nested_items(self):
        body = parse_markdown_issues(ROADMAP)[0].body
        assert body.startswith("## Backend\n### Auth")
        assert "  - [ ] Rate limit POST /login" in body
        assert "  - [x] Hash passwords" in body

    def test_section_resets_sub_section(self):
        body = parse_markdown_issues(ROADMAP)[1].body
        assert "### Auth" not in body

    def test_inline_dependencies_feed_the_graph(self):
        issues = parse_markdown_issues(ROADMAP)
        graph = build_graph(issues, OrchestratorConfig())
        assert graph[2].depends_on == [1]
        assert graph[3].depends_on == [2]
        # #1 is already checked off, so it is a dangling reference
        assert topological_sort(graph).unwrap() == [2, 3]


class TestMarkdownTracker:
    @pytest.fixture
    def roadmap_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ROADMAP.md"
            path.write_text(ROADMAP)
            yield path

    def test_fetch_reads_file(self, roadmap_file):
        assert [i.number for i in MarkdownTracker(roadmap_file).fetch_open_issues()] == [2, 3]

    def test_cannot_split(self, roadmap_file):
        with pytest.raises(TrackerError, match="split #2 by hand"):
            MarkdownTracker(roadmap_file).create_sub_issues(Issue(2, "Login"), [ProposedSplit("a", "b")], [])

    def test_pr_keeps_local_branch(self, roadmap_file):
        result = MarkdownTracker(roadmap_file).create_pr("T", "B", "main", "feat/2-login", "/wt")
        assert result.ok
        assert result.pr_number is None
