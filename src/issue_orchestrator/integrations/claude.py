"""Claude CLI invocation. The prompt goes through stdin to avoid argv limits and quoting."""

import logging
import os
import subprocess
from pathlib import Path

from issue_orchestrator.models import AgentResult

logger = logging.getLogger(__name__)


def build_command(
    model: str,
    permission_mode: str | None = None,
    allowed_tools: str | None = None,
) -> list[str]:
    cmd = ["claude", "-p", "--model", model]
    if permission_mode:
        cmd += ["--permission-mode", permission_mode]
    if allowed_tools:
        cmd += ["--allowedTools", allowed_tools]
    return cmd


def run_agent(
    prompt: str,
    model: str,
    cwd: str | Path,
    permission_mode: str | None = None,
    allowed_tools: str | None = None,
) -> AgentResult:
    """Run one non-interactive agent session and wait for it to exit."""
    cmd = build_command(model, permission_mode, allowed_tools)
    # Unset so a nested session does not think it is running inside the parent one
    env = {**os.environ, "CLAUDECODE": ""}
    try:
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            input=prompt,
            capture_output=True,
            text=True,
            env=env,
        )
    except OSError as e:
        logger.error("Could not start claude CLI: %s", e)
        return AgentResult(ok=False, output=str(e))

    if proc.returncode != 0 and proc.stderr:
        logger.debug("claude exited %s: %s", proc.returncode, proc.stderr.strip()[-500:])
    return AgentResult(ok=proc.returncode == 0, output=proc.stdout)
