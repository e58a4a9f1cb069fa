"""Tests for the agent runner and claude CLI invocation."""

import json
from unittest.mock import MagicMock, patch

import pytest

from issue_orchestrator.config import E2EConfig, OrchestratorConfig, VerifyCommand
from issue_orchestrator.core import agents as agents_mod
from issue_orchestrator.core.agents import AgentRunner, parse_assessment
from issue_orchestrator.integrations import claude as claude_mod
from issue_orchestrator.models import AgentResult, Issue


class FakeProgress:
    events: list = []

    def start(self, message):
        FakeProgress.events.append(("start", message))

    def stop(self):
        FakeProgress.events.append(("stop", None))


class RecordingInvoker:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeRunLog:
    def __init__(self):
        self.outputs = []

    def agent_output(self, issue_number, output):
        self.outputs.append((issue_number, output))


@pytest.fixture
def config():
    return OrchestratorConfig(
        verify=[VerifyCommand("lint", "make lint"), VerifyCommand("test", "make test")],
        e2e=E2EConfig(run="make e2e"),
    )


@pytest.fixture
def issue():
    return Issue(number=7, title="Add search", body="Search across titles.\n\nDepends on #3")


def _runner(config, invoker, run_log=None):
    FakeProgress.events = []
    return AgentRunner(config, invoke=invoker, make_progress=FakeProgress, run_log=run_log)


class TestParseAssessment:
    def test_valid_no_split(self):
        a = parse_assessment('{"should_split": false, "reasoning": "small", "proposed_splits": []}')
        assert a.should_split is False
        assert a.reasoning == "small"
        assert a.proposed_splits == []

    def test_valid_split_with_surrounding_text(self):
        text = "Here you go:\n" + json.dumps({
            "should_split": True,
            "reasoning": "two systems",
            "proposed_splits": [{"title": "Part A", "body": "a"}, {"title": "Part B", "body": "b"}],
        }) + "\nThanks"
        a = parse_assessment(text)
        assert a.should_split is True
        assert [s.title for s in a.proposed_splits] == ["Part A", "Part B"]

    def test_no_json(self):
        a = parse_assessment("I think it is fine")
        assert a.should_split is False
        assert "No JSON" in a.reasoning

    def test_bad_json(self):
        a = parse_assessment("{should_split: yes}")
        assert a.should_split is False
        assert "Failed to parse" in a.reasoning

    def test_wrong_shape(self):
        a = parse_assessment('{"split": true}')
        assert a.should_split is False
        assert a.proposed_splits == []

    def test_split_without_proposals_is_not_a_split(self):
        a = parse_assessment('{"should_split": true, "reasoning": "big", "proposed_splits": []}')
        assert a.should_split is False

    def test_split_entry_without_title(self):
        a = parse_assessment('{"should_split": true, "reasoning": "r", "proposed_splits": [{"body": "x"}]}')
        assert a.should_split is False
        assert a.proposed_splits == []


class TestAssessSize:
    def test_uses_assess_model_without_edit_permissions(self, config, issue):
        invoker = RecordingInvoker(AgentResult(True, '{"should_split": false, "reasoning": "ok"}'))
        runner = _runner(config, invoker)

        assessment = runner.assess_size(issue, "/repo")

        assert assessment.should_split is False
        call = invoker.calls[0]
        assert call["model"] == "haiku"
        assert call["cwd"] == "/repo"
        assert "permission_mode" not in call
        assert "~3 new files" in call["prompt"]
        assert "~500 lines" in call["prompt"]
        assert "ISSUE #7: Add search" in call["prompt"]
        assert FakeProgress.events[-1] == ("stop", None)

    def test_agent_failure_degrades_to_no_split(self, config, issue):
        runner = _runner(config, RecordingInvoker(AgentResult(False, "")))
        assessment = runner.assess_size(issue, "/repo")
        assert assessment.should_split is False
        assert assessment.proposed_splits == []

    def test_agent_crash_degrades_to_no_split(self, config, issue):
        runner = _runner(config, RecordingInvoker(FileNotFoundError("claude")))
        assert runner.assess_size(issue, "/repo").should_split is False
        assert FakeProgress.events[-1] == ("stop", None)


class TestImplement:
    def test_success(self, config, issue):
        invoker = RecordingInvoker(AgentResult(True, "done"))
        run_log = FakeRunLog()
        runner = _runner(config, invoker, run_log)

        result = runner.implement(issue, "feat/7-add-search", "feat/3-index", "/wt")

        assert result.ok
        call = invoker.calls[0]
        assert call["model"] == "sonnet"
        assert call["cwd"] == "/wt"
        assert call["permission_mode"] == "acceptEdits"
        assert call["allowed_tools"] == config.allowed_tools
        assert "Do NOT create a pull request" in call["prompt"]
        assert "feat/7-add-search" in call["prompt"]
        assert "Based on: feat/3-index" in call["prompt"]
        assert "- make e2e" in call["prompt"]
        assert run_log.outputs == [(7, "done")]

    def test_failure_still_logs_output(self, config, issue):
        run_log = FakeRunLog()
        runner = _runner(config, RecordingInvoker(AgentResult(False, "partial")), run_log)

        result = runner.implement(issue, "feat/7-add-search", "main", "/wt")

        assert not result.ok
        assert "non-zero" in result.error
        assert run_log.outputs == [(7, "partial")]


class TestFixVerificationFailure:
    def test_prompt_names_step_and_error(self, config):
        invoker = RecordingInvoker(AgentResult(True, "fixed"))
        run_log = FakeRunLog()
        runner = _runner(config, invoker, run_log)

        runner.fix_verification_failure(7, "test", "AssertionError: 1 != 2", "/wt")

        call = invoker.calls[0]
        assert '"test" failed for issue #7' in call["prompt"]
        assert "AssertionError: 1 != 2" in call["prompt"]
        assert "- make lint" in call["prompt"]
        assert "- make test" in call["prompt"]
        assert call["permission_mode"] == "acceptEdits"
        assert run_log.outputs == [(7, "fixed")]

    def test_never_raises(self, config):
        runner = _runner(config, RecordingInvoker(PermissionError("denied")), FakeRunLog())
        runner.fix_verification_failure(7, "lint", "E501", "/wt")


class TestLogProgress:
    def test_stop_without_start_is_noop(self):
        agents_mod.LogProgress().stop()

    def test_logs_start_and_duration(self, caplog):
        progress = agents_mod.LogProgress()
        with caplog.at_level("INFO"):
            progress.start("Thinking")
            progress.stop()
        assert "Thinking..." in caplog.text
        assert "Thinking done" in caplog.text


class TestClaudeCommand:
    def test_build_command(self):
        assert claude_mod.build_command("sonnet", "acceptEdits", "Bash Edit") == [
            "claude", "-p", "--model", "sonnet",
            "--permission-mode", "acceptEdits",
            "--allowedTools", "Bash Edit",
        ]

    def test_build_command_minimal(self):
        assert claude_mod.build_command("haiku") == ["claude", "-p", "--model", "haiku"]

    @patch("issue_orchestrator.integrations.claude.subprocess.run")
    def test_prompt_goes_through_stdin(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="out", stderr="")
        result = claude_mod.run_agent("do the thing", "sonnet", "/wt")

        assert result == AgentResult(ok=True, output="out")
        args, kwargs = mock_run.call_args
        assert "do the thing" not in args[0]
        assert kwargs["input"] == "do the thing"
        assert kwargs["cwd"] == "/wt"
        assert kwargs["env"]["CLAUDECODE"] == ""

    @patch("issue_orchestrator.integrations.claude.subprocess.run")
    def test_non_zero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="rate limited")
        assert claude_mod.run_agent("p", "sonnet", "/wt").ok is False

    @patch("issue_orchestrator.integrations.claude.subprocess.run", side_effect=FileNotFoundError("claude"))
    def test_missing_cli(self, mock_run):
        result = claude_mod.run_agent("p", "sonnet", "/wt")
        assert result.ok is False
