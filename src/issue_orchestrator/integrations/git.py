"""Git subprocess wrappers for worktree and branch operations."""

import subprocess
from dataclasses import dataclass
from pathlib import Path


class GitError(Exception):
    """Raised when a git command fails."""


@dataclass
class WorktreeInfo:
    path: str
    branch: str
    head: str
    is_bare: bool = False


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
    except FileNotFoundError as e:
        raise GitError(f"git executable not found: {e}") from e


def worktree_add(
    repo_path: str | Path,
    worktree_path: str | Path,
    branch: str,
    base_branch: str = "main",
) -> str:
    """Create a new worktree on a fresh branch cut from base_branch."""
    return run_git(["worktree", "add", "-b", branch, str(worktree_path), base_branch], cwd=repo_path)


def worktree_list(repo_path: str | Path) -> list[WorktreeInfo]:
    """List all worktrees in porcelain format."""
    output = run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    worktrees = []
    current: dict = {}

    def flush():
        worktrees.append(
            WorktreeInfo(
                path=current.get("worktree", ""),
                branch=current.get("branch", "").replace("refs/heads/", ""),
                head=current.get("HEAD", ""),
                is_bare=current.get("bare", False),
            )
        )

    for line in output.split("\n"):
        if not line:
            if current:
                flush()
                current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[len("worktree "):]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[len("HEAD "):]
        elif line.startswith("branch "):
            current["branch"] = line[len("branch "):]
        elif line == "bare":
            current["bare"] = True

    if current:
        flush()

    return worktrees


def worktree_remove(repo_path: str | Path, worktree_path: str | Path, force: bool = False) -> str:
    """Remove a git worktree."""
    args = ["worktree", "remove", str(worktree_path)]
    if force:
        args.append("--force")
    return run_git(args, cwd=repo_path)


def worktree_prune(repo_path: str | Path) -> str:
    """Drop administrative entries for worktrees whose directories are gone."""
    return run_git(["worktree", "prune"], cwd=repo_path)


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a local branch exists."""
    try:
        run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def remote_branch_exists(repo_path: str | Path, branch: str, remote: str = "origin") -> bool:
    """Check if a remote-tracking branch exists locally (no fetch)."""
    try:
        run_git(["rev-parse", "--verify", "--quiet", f"refs/remotes/{remote}/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def delete_branch(repo_path: str | Path, branch: str, force: bool = True) -> bool:
    """Delete a local branch. Returns False without error if it does not exist."""
    if not branch_exists(repo_path, branch):
        return False
    flag = "-D" if force else "-d"
    run_git(["branch", flag, branch], cwd=repo_path)
    return True


def merge(cwd: str | Path, branch: str, message: str) -> str:
    """Merge branch into the current HEAD of cwd without opening an editor."""
    return run_git(["merge", branch, "--no-edit", "-m", message], cwd=cwd)


def merge_abort(cwd: str | Path) -> str:
    return run_git(["merge", "--abort"], cwd=cwd)
