"""Verification commands and the bounded fix loop around them."""

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from issue_orchestrator.config import OrchestratorConfig, VerifyCommand
from issue_orchestrator.core.runlog import RunLog
from issue_orchestrator.models import VerifyResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retries(
    fn: Callable[[], T],
    fixer: Callable[[T, int], None] | None,
    max_attempts: int,
    succeeded: Callable[[T], bool] = lambda result: bool(getattr(result, "ok", result)),
) -> T:
    """Call fn up to max_attempts times, running fixer between failed attempts.

    Returns the last result. The fixer gets the failed result and the attempt
    number that just failed (1-based).
    """
    attempt = 0
    while True:
        attempt += 1
        result = fn()
        if succeeded(result) or attempt >= max(1, max_attempts):
            return result
        logger.info("Attempt %s/%s failed, retrying", attempt, max_attempts)
        if fixer is not None:
            fixer(result, attempt)


def commands_for(config: OrchestratorConfig, skip_e2e: bool = False) -> list[VerifyCommand]:
    """Configured checks in order, with the e2e suite last unless skipped."""
    commands = list(config.verify)
    if config.e2e and not skip_e2e:
        commands.append(VerifyCommand(name=config.e2e.name, cmd=config.e2e.run))
    return commands


def run_verify(
    commands: list[VerifyCommand],
    cwd: str | Path,
    run_log: RunLog,
    issue_number: int,
) -> VerifyResult:
    """Run each command through the shell in cwd; stop at the first failure."""
    passed = []
    for command in commands:
        logger.info("Running %s: %s", command.name, command.cmd)
        try:
            proc = subprocess.run(
                command.cmd,
                shell=True,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            output, returncode = str(e), -1
        else:
            output, returncode = proc.stdout or "", proc.returncode

        if returncode != 0:
            logger.warning("%s failed (exit %s)", command.name, returncode)
            run_log.verify_fail(issue_number, command.name, output)
            return VerifyResult(ok=False, failed_step=command.name, error=output, passed=passed)

        run_log.verify_pass(issue_number, command.name)
        passed.append(command.name)

    return VerifyResult(ok=True, passed=passed)


def verify_with_fixes(
    commands: list[VerifyCommand],
    cwd: str | Path,
    run_log: RunLog,
    issue_number: int,
    fix: Callable[[int, str, str, str | Path], None],
    retries: int,
) -> VerifyResult:
    """Verify, letting the agent fix failures; each retry re-runs every command."""

    def attempt() -> VerifyResult:
        return run_verify(commands, cwd, run_log, issue_number)

    def fixer(result: VerifyResult, n: int):
        logger.info("Verification step %s failed, asking the agent to fix it", result.failed_step)
        fix(issue_number, result.failed_step or "", result.error or "", cwd)

    return with_retries(attempt, fixer, max_attempts=retries + 1)
