"""Tests for the gh-backed tracker, with subprocess patched out."""

import json
from unittest.mock import MagicMock, patch

import pytest

from issue_orchestrator.core.state import get_or_create, init_state, mark_completed
from issue_orchestrator.integrations.github import GitHubError, GitHubTracker, determine_merge_order
from issue_orchestrator.models import Issue, MergeCandidate, ProposedSplit, TrackerError

RUN = "issue_orchestrator.integrations.github.subprocess.run"


def _proc(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestFetchOpenIssues:
    @patch(RUN)
    def test_defaults_to_current_user(self, mock_run):
        mock_run.side_effect = [
            _proc("octocat\n"),
            _proc(json.dumps([
                {"number": 1, "title": "One", "body": "b", "state": "OPEN", "labels": [{"name": "bug"}]},
            ])),
        ]
        issues = GitHubTracker().fetch_open_issues()
        assert issues == [Issue(number=1, title="One", body="b", state="open", labels=["bug"])]
        assert "--author" in mock_run.call_args.args[0]
        assert "octocat" in mock_run.call_args.args[0]

    @patch(RUN)
    def test_multiple_authors_deduplicated(self, mock_run):
        mock_run.side_effect = [
            _proc(json.dumps([{"number": 1, "title": "One", "body": None}])),
            _proc(json.dumps([{"number": 1, "title": "One"}, {"number": 2, "title": "Two"}])),
        ]
        issues = GitHubTracker(allowed_authors=["a", "b"]).fetch_open_issues()
        assert [i.number for i in issues] == [1, 2]
        assert issues[0].body == ""

    @patch(RUN, return_value=_proc(returncode=1, stderr="not logged in"))
    def test_gh_failure_raises(self, mock_run):
        with pytest.raises(GitHubError, match="not logged in"):
            GitHubTracker(allowed_authors=["a"]).fetch_open_issues()

    @patch(RUN, side_effect=FileNotFoundError("gh"))
    def test_missing_gh(self, mock_run):
        with pytest.raises(GitHubError, match="not found"):
            GitHubTracker(allowed_authors=["a"]).fetch_open_issues()


class TestCreateSubIssues:
    @patch(RUN)
    def test_chained_dependencies(self, mock_run):
        mock_run.side_effect = [
            _proc("https://github.com/o/r/issues/20\n"),
            _proc("https://github.com/o/r/issues/21\n"),
        ]
        parent = Issue(number=5, title="Big")
        created = GitHubTracker().create_sub_issues(
            parent, [ProposedSplit("A", "do a"), ProposedSplit("B", "do b")], [3, 5]
        )

        assert [i.number for i in created] == [20, 21]
        first_body = mock_run.call_args_list[0].args[0][-1]
        second_body = mock_run.call_args_list[1].args[0][-1]
        assert first_body.startswith("> **Depends on:** #3\n")
        assert "> **Part of** #5" in first_body
        assert second_body.startswith("> **Depends on:** #20\n")
        assert second_body.endswith("do b")

    @patch(RUN)
    def test_first_sub_issue_without_parent_deps(self, mock_run):
        mock_run.return_value = _proc("https://github.com/o/r/issues/20")
        GitHubTracker().create_sub_issues(Issue(number=5, title="Big"), [ProposedSplit("A", "a")], [])
        body = mock_run.call_args.args[0][-1]
        assert body.startswith("> **Part of** #5")

    @patch(RUN, return_value=_proc(returncode=1, stderr="label missing"))
    def test_failure_raises(self, mock_run):
        with pytest.raises(GitHubError, match="Failed to create sub-issue 'A'") as exc_info:
            GitHubTracker().create_sub_issues(Issue(number=5, title="Big"), [ProposedSplit("A", "a")], [])
        # The orchestrator handles every tracker the same way
        assert isinstance(exc_info.value, TrackerError)


class TestCreatePr:
    @patch(RUN)
    def test_push_then_create(self, mock_run):
        mock_run.side_effect = [_proc(), _proc("https://github.com/o/r/pull/77\n")]
        result = GitHubTracker().create_pr("Title", "Body", "origin/feat/1-x", "feat/2-y", "/wt")

        assert result.ok
        assert result.pr_number == 77
        push, create = mock_run.call_args_list
        assert push.args[0] == ["git", "push", "-u", "origin", "feat/2-y"]
        assert push.kwargs["cwd"] == "/wt"
        base = create.args[0][create.args[0].index("--base") + 1]
        assert base == "feat/1-x"

    @patch(RUN, return_value=_proc(returncode=1, stderr="rejected"))
    def test_push_failure(self, mock_run):
        result = GitHubTracker().create_pr("T", "B", "main", "feat/1-x", "/wt")
        assert not result.ok
        assert "Failed to push branch: rejected" == result.error
        assert mock_run.call_count == 1

    @patch(RUN)
    def test_create_failure(self, mock_run):
        mock_run.side_effect = [_proc(), _proc(returncode=1, stderr="already exists")]
        result = GitHubTracker().create_pr("T", "B", "main", "feat/1-x", "/wt")
        assert not result.ok
        assert "already exists" in result.error


class TestFinalize:
    def test_merge_order_stacks_base_first(self):
        prs = [
            MergeCandidate(3, 103, "feat/3-c", "feat/2-b"),
            MergeCandidate(1, 101, "feat/1-a", "main"),
            MergeCandidate(2, 102, "feat/2-b", "feat/1-a"),
            MergeCandidate(4, 104, "feat/4-d", "main"),
        ]
        assert [p.issue_number for p in determine_merge_order(prs)] == [1, 2, 3, 4]

    def test_base_pr_with_higher_number_merges_first(self):
        prs = [
            MergeCandidate(1, 101, "feat/1-a", "feat/5-e"),
            MergeCandidate(5, 105, "feat/5-e", "main"),
        ]
        assert [p.issue_number for p in determine_merge_order(prs)] == [5, 1]

    def test_merge_order_cycle(self):
        prs = [MergeCandidate(1, 101, "a", "b"), MergeCandidate(2, 102, "b", "a")]
        with pytest.raises(ValueError, match="Cycle"):
            determine_merge_order(prs)

    @patch(RUN)
    def test_discover_only_open_prs(self, mock_run):
        state = init_state()
        for number, pr in ((1, 11), (2, 12)):
            issue_state = get_or_create(state, number)
            issue_state.branch = f"feat/{number}-x"
            issue_state.base_branch = "origin/main"
            mark_completed(issue_state, pr_number=pr)
        get_or_create(state, 3)

        mock_run.side_effect = [_proc("OPEN\n"), _proc("MERGED\n")]
        candidates = GitHubTracker().discover_mergeable_prs(state)

        assert candidates == [MergeCandidate(1, 11, "feat/1-x", "main")]
        assert mock_run.call_count == 2

    @patch(RUN)
    def test_merge_retries_once(self, mock_run):
        mock_run.side_effect = [_proc(returncode=1, stderr="not mergeable yet"), _proc()]
        sleep = MagicMock()
        result = GitHubTracker().merge_pr(12, strategy="rebase", sleep=sleep)

        assert result.ok
        sleep.assert_called_once()
        assert mock_run.call_args_list[0] == mock_run.call_args_list[1]
        assert "--rebase" in mock_run.call_args.args[0]

    @patch(RUN)
    def test_merge_gives_up(self, mock_run):
        mock_run.return_value = _proc(returncode=1, stderr="conflict")
        result = GitHubTracker().merge_pr(12, sleep=lambda s: None)
        assert not result.ok
        assert result.error == "conflict"

    @patch(RUN)
    def test_merge_dry_run(self, mock_run):
        assert GitHubTracker().merge_pr(12, dry_run=True).ok
        mock_run.assert_not_called()

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            GitHubTracker().merge_pr(12, strategy="octopus")
