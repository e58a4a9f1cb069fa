"""Git worktree lifecycle for issues: one isolated checkout and branch per attempt."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from issue_orchestrator.config import OrchestratorConfig
from issue_orchestrator.core.runlog import RunLog
from issue_orchestrator.integrations.git import (
    GitError,
    WorktreeInfo,
    branch_exists,
    delete_branch,
    merge,
    merge_abort,
    remote_branch_exists,
    worktree_add,
    worktree_list,
    worktree_prune,
    worktree_remove,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceResult:
    ok: bool
    worktree_path: str
    branch_name: str
    base_branch: str
    error: str | None = None


class WorkspaceManager:
    def __init__(self, config: OrchestratorConfig, repo_root: str | Path, run_log: RunLog | None = None):
        self.config = config
        self.repo_root = Path(repo_root)
        self.run_log = run_log or RunLog(None)

    @property
    def worktree_root(self) -> Path:
        return (self.repo_root / self.config.worktree_dir).resolve()

    def worktree_path_for(self, branch_name: str) -> Path:
        return self.worktree_root / branch_name.replace("/", "-")

    def resolve_base(self, branch: str) -> str | None:
        """Local branch if present, else its origin/ tracking branch, else None."""
        if branch_exists(self.repo_root, branch):
            return branch
        if remote_branch_exists(self.repo_root, branch):
            return f"origin/{branch}"
        return None

    def create(
        self,
        branch_name: str,
        dependency_branches: list[str],
        issue_number: int,
    ) -> WorkspaceResult:
        """Create a fresh worktree on branch_name, replacing leftovers from earlier runs.

        The base is the last dependency branch that resolves, else the configured
        base branch. Other dependency branches are merged in afterwards.
        """
        wt_path = self.worktree_path_for(branch_name)
        self._discard_leftover(wt_path)

        resolved = []
        for dep in dependency_branches:
            ref = self.resolve_base(dep)
            if ref is None:
                logger.warning("Dependency branch %s not found; not basing #%s on it", dep, issue_number)
                continue
            resolved.append(ref)
        base_branch = resolved[-1] if resolved else self.config.base_branch

        result = WorkspaceResult(
            ok=False, worktree_path=str(wt_path), branch_name=branch_name, base_branch=base_branch
        )

        try:
            if delete_branch(self.repo_root, branch_name):
                logger.info("Deleted stale branch %s from an earlier run", branch_name)
            wt_path.parent.mkdir(parents=True, exist_ok=True)
            worktree_add(self.repo_root, wt_path, branch_name, base_branch)
        except GitError as e:
            result.error = f"Failed to create worktree for {branch_name}: {e}"
            return result

        self.run_log.worktree_created(issue_number, str(wt_path), branch_name)
        self.run_log.branch_created(issue_number, branch_name, base_branch)

        for other in resolved[:-1]:
            try:
                merge(wt_path, other, f"Merge dependency branch {other}")
            except GitError as e:
                logger.error("Merging %s into %s failed: %s", other, branch_name, e)
                try:
                    merge_abort(wt_path)
                except GitError:
                    logger.debug("merge --abort failed in %s", wt_path)
                self.remove(str(wt_path), branch_name, issue_number, delete_branch_after=True)
                result.error = f"Merge conflict merging {other} into {branch_name} (based on {base_branch})"
                return result

        result.ok = True
        return result

    def remove(
        self,
        worktree_path: str,
        branch_name: str,
        issue_number: int,
        delete_branch_after: bool = False,
    ) -> bool:
        """Best-effort removal. Failures are logged; the next create() cleans up anyway."""
        wt_path = Path(worktree_path)
        removed = True
        try:
            worktree_remove(self.repo_root, wt_path, force=True)
        except GitError as e:
            logger.debug("git worktree remove failed for %s: %s", wt_path, e)
            if wt_path.exists():
                shutil.rmtree(wt_path, ignore_errors=True)
            try:
                worktree_prune(self.repo_root)
            except GitError as prune_error:
                logger.warning("git worktree prune failed: %s", prune_error)
            removed = not wt_path.exists()

        if delete_branch_after:
            try:
                delete_branch(self.repo_root, branch_name)
            except GitError as e:
                logger.warning("Could not delete branch %s: %s", branch_name, e)
                removed = False

        self.run_log.worktree_removed(issue_number, str(wt_path))
        return removed

    def list_worktrees(self) -> list[WorktreeInfo]:
        """Worktrees registered under the orchestrator's worktree directory."""
        root = str(self.worktree_root)
        return [
            wt for wt in worktree_list(self.repo_root)
            if str(Path(wt.path).resolve()).startswith(root)
        ]

    def clean(self) -> list[str]:
        """Remove every orchestrator worktree and any orphaned directories."""
        removed = []
        for wt in self.list_worktrees():
            try:
                worktree_remove(self.repo_root, wt.path, force=True)
                removed.append(wt.path)
            except GitError as e:
                logger.warning("Could not remove worktree %s: %s", wt.path, e)

        if self.worktree_root.exists():
            for leftover in self.worktree_root.iterdir():
                if leftover.is_dir():
                    shutil.rmtree(leftover, ignore_errors=True)
                    removed.append(str(leftover))
        worktree_prune(self.repo_root)
        return removed

    def _discard_leftover(self, wt_path: Path):
        try:
            worktree_remove(self.repo_root, wt_path, force=True)
            logger.info("Removed leftover worktree %s", wt_path)
        except GitError:
            pass  # Nothing registered at this path
        if wt_path.exists():
            shutil.rmtree(wt_path, ignore_errors=True)
        try:
            worktree_prune(self.repo_root)
        except GitError as e:
            logger.debug("git worktree prune failed: %s", e)
