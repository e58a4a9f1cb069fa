"""Agent runs for an issue: size assessment, implementation, and verification fixes."""

import json
import logging
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from issue_orchestrator.config import OrchestratorConfig
from issue_orchestrator.core.runlog import RunLog
from issue_orchestrator.integrations.claude import run_agent
from issue_orchestrator.models import AgentResult, Assessment, ImplementResult, Issue, ProposedSplit

logger = logging.getLogger(__name__)

EDIT_PERMISSION_MODE = "acceptEdits"
MAX_NEW_FILES = 3
MAX_NEW_LINES = 500
OUTPUT_TAIL = 500

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

AgentInvoker = Callable[..., AgentResult]


class Progress(Protocol):
    def start(self, message: str) -> None: ...

    def stop(self) -> None: ...


class LogProgress:
    """Reports the start and duration of a long agent call through logging."""

    def __init__(self):
        self._message = ""
        self._started: float | None = None

    def start(self, message: str):
        self._message = message
        self._started = time.monotonic()
        logger.info("%s...", message)

    def stop(self):
        if self._started is None:
            return
        elapsed = time.monotonic() - self._started
        logger.info("%s done (%.0fs)", self._message, elapsed)
        self._started = None


# ── Prompt Construction ──────────────────────────────────────────────────────


def build_assessment_prompt(issue: Issue) -> str:
    return (
        "You are assessing whether a GitHub issue is too large for a single coding agent "
        "session to implement.\n\n"
        "A single agent session can reliably handle:\n"
        f"- Up to ~{MAX_NEW_FILES} new files\n"
        f"- Up to ~{MAX_NEW_LINES} lines of new code\n"
        "- One coherent feature or system\n\n"
        "If the issue requires MORE than that, propose splitting it into smaller "
        "sub-issues that can each be done in one session.\n\n"
        f"ISSUE #{issue.number}: {issue.title}\n\n"
        f"{issue.body}\n\n"
        "Respond in EXACTLY this JSON format (no markdown, no code fences):\n"
        "{\n"
        '  "should_split": true/false,\n'
        '  "reasoning": "one sentence explanation",\n'
        '  "proposed_splits": [\n'
        '    {"title": "Sub-issue title", "body": "Sub-issue description with acceptance criteria"}\n'
        "  ]\n"
        "}\n\n"
        "If should_split is false, proposed_splits should be an empty array.\n"
        "Be conservative: only split if it is genuinely too large. Most issues with clear "
        "acceptance criteria can be done in one pass."
    )


def _verify_list(config: OrchestratorConfig) -> str:
    lines = [f"- {v.cmd}" for v in config.verify]
    if config.e2e:
        lines.append(f"- {config.e2e.run}")
    return "\n".join(lines) or "(no verification commands configured)"


def build_implementation_prompt(
    issue: Issue,
    branch_name: str,
    base_branch: str,
    config: OrchestratorConfig,
    workspace_path: str | Path,
) -> str:
    parts = []
    parts.append(f"You are implementing GitHub issue #{issue.number}: {issue.title}")
    parts.append(f"\n## Issue Description\n\n{issue.body}")
    parts.append(
        "\n## Context\n\n"
        f"- You are on branch: {branch_name}\n"
        f"- Based on: {base_branch}\n"
        f"- Project root: {workspace_path}"
    )
    parts.append(
        "\n## Instructions\n\n"
        "1. Read CLAUDE.md (if present) for project conventions and quality requirements\n"
        "2. Explore existing code related to this feature before writing new code\n"
        "3. Implement the feature described in the issue\n"
        "4. Write tests for new functionality\n"
        "5. Follow existing patterns in the codebase\n"
        f"6. Make atomic commits with descriptive messages referencing #{issue.number}\n"
        "7. Ensure all verification commands pass before finishing:\n"
        f"{_verify_list(config)}"
    )
    parts.append("\nDo NOT create a pull request. Just implement, test, and commit.")
    return "\n".join(parts)


def build_fix_prompt(
    issue_number: int,
    failed_step: str,
    error_output: str,
    config: OrchestratorConfig,
) -> str:
    return (
        f'The verification step "{failed_step}" failed for issue #{issue_number}.\n\n'
        f"Error output:\n{error_output}\n\n"
        "Please fix the issues and ensure all verification commands pass:\n"
        f"{_verify_list(config)}\n\n"
        f"Commit your fixes referencing #{issue_number}."
    )


def parse_assessment(text: str) -> Assessment:
    """Pull the JSON object out of an agent reply; any problem means "do not split"."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return Assessment(False, "No JSON found in assessment response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return Assessment(False, f"Failed to parse assessment: {e}")

    if not isinstance(data, dict) or not isinstance(data.get("should_split"), bool):
        return Assessment(False, "Assessment response missing a boolean should_split")

    splits = []
    for raw in data.get("proposed_splits") or []:
        if not isinstance(raw, dict) or not raw.get("title"):
            return Assessment(False, "Assessment proposed a split without a title")
        splits.append(ProposedSplit(title=str(raw["title"]), body=str(raw.get("body", ""))))

    return Assessment(
        should_split=data["should_split"] and bool(splits),
        reasoning=str(data.get("reasoning", "")),
        proposed_splits=splits,
    )


# ── Agent Runner ─────────────────────────────────────────────────────────────


class AgentRunner:
    """Runs the coding agent for the three jobs the orchestrator needs.

    The invoker, progress reporter and run log are injected so tests can
    substitute fakes for the claude CLI.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        invoke: AgentInvoker = run_agent,
        make_progress: Callable[[], Progress] = LogProgress,
        run_log: RunLog | None = None,
    ):
        self.config = config
        self.invoke = invoke
        self.make_progress = make_progress
        self.run_log = run_log or RunLog(None)

    def _run(self, label: str, **kwargs) -> AgentResult:
        progress = self.make_progress()
        progress.start(label)
        try:
            return self.invoke(**kwargs)
        except OSError as e:
            logger.error("%s: agent could not run: %s", label, e)
            return AgentResult(ok=False, output="")
        finally:
            progress.stop()

    def assess_size(self, issue: Issue, repo_root: str | Path) -> Assessment:
        result = self._run(
            f"Assessing #{issue.number} size",
            prompt=build_assessment_prompt(issue),
            model=self.config.models.assess,
            cwd=str(repo_root),
        )
        if not result.ok:
            return Assessment(False, "Assessment agent failed; implementing without split")
        return parse_assessment(result.output)

    def implement(
        self,
        issue: Issue,
        branch_name: str,
        base_branch: str,
        workspace_path: str | Path,
    ) -> ImplementResult:
        prompt = build_implementation_prompt(issue, branch_name, base_branch, self.config, workspace_path)
        result = self._run(
            f"Agent implementing #{issue.number}",
            prompt=prompt,
            model=self.config.models.implement,
            cwd=str(workspace_path),
            permission_mode=EDIT_PERMISSION_MODE,
            allowed_tools=self.config.allowed_tools,
        )

        logger.debug("Agent output tail for #%s:\n%s", issue.number, result.output[-OUTPUT_TAIL:])
        self.run_log.agent_output(issue.number, result.output)

        if not result.ok:
            return ImplementResult(ok=False, error="Claude agent failed (exit non-zero)")
        return ImplementResult(ok=True)

    def fix_verification_failure(
        self,
        issue_number: int,
        failed_step: str,
        error_output: str,
        workspace_path: str | Path,
    ):
        """Ask the agent to repair a failed check. Success is judged by re-running verification."""
        result = self._run(
            f"Agent fixing verification for #{issue_number}",
            prompt=build_fix_prompt(issue_number, failed_step, error_output, self.config),
            model=self.config.models.implement,
            cwd=str(workspace_path),
            permission_mode=EDIT_PERMISSION_MODE,
            allowed_tools=self.config.allowed_tools,
        )
        self.run_log.agent_output(issue_number, result.output)
