"""Configuration loading: repo discovery, .iorch/orchestrator.json, and environment overrides."""

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

TOOL_DIR = ".iorch"
TOOL_NAME = "orchestrator"
LEGACY_STATE_FILE = ".orchestrator-state.json"
GITIGNORE_ENTRIES = "worktrees/\nstate/\nlogs/\n"


class ConfigError(Exception):
    """Raised when the orchestrator config file cannot be used."""


class RepositoryNotFoundError(Exception):
    """Raised when no git repository encloses the starting directory."""


@dataclass
class VerifyCommand:
    name: str
    cmd: str


@dataclass
class E2EConfig:
    run: str
    name: str = "e2e"


@dataclass
class ModelConfig:
    implement: str = "sonnet"
    assess: str = "haiku"


@dataclass
class RetryConfig:
    implement: int = 1
    verify: int = 1


@dataclass
class OrchestratorConfig:
    branch_prefix: str = "feat/"
    base_branch: str = "main"
    worktree_dir: str = f"{TOOL_DIR}/worktrees"
    models: ModelConfig = field(default_factory=ModelConfig)
    retries: RetryConfig = field(default_factory=RetryConfig)
    allowed_tools: str = "Bash Edit Write Read Glob Grep"
    verify: list[VerifyCommand] = field(default_factory=list)
    e2e: E2EConfig | None = None
    allowed_authors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "OrchestratorConfig":
        """Build a config from the on-disk JSON shape, falling back to defaults per key."""
        config = cls()

        for key in ("branch_prefix", "base_branch", "worktree_dir", "allowed_tools"):
            if key in data:
                setattr(config, key, str(data[key]))

        models = data.get("models") or {}
        config.models = ModelConfig(
            implement=models.get("implement", config.models.implement),
            assess=models.get("assess", config.models.assess),
        )

        retries = data.get("retries") or {}
        try:
            config.retries = RetryConfig(
                implement=int(retries.get("implement", config.retries.implement)),
                verify=int(retries.get("verify", config.retries.verify)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"retries must be integers: {e}") from e

        try:
            config.verify = [
                VerifyCommand(name=v.get("name") or f"verify-{i}", cmd=v["cmd"])
                for i, v in enumerate(data.get("verify") or [], start=1)
            ]
        except (KeyError, AttributeError) as e:
            raise ConfigError("each verify entry needs a 'cmd'") from e

        e2e = data.get("e2e")
        if e2e:
            if "run" not in e2e:
                raise ConfigError("e2e config needs a 'run' command")
            config.e2e = E2EConfig(run=e2e["run"], name=e2e.get("name", "e2e"))

        config.allowed_authors = list(data.get("allowed_authors") or [])
        return config

    def apply_env(self) -> "OrchestratorConfig":
        if prefix := os.environ.get("IORCH_BRANCH_PREFIX"):
            self.branch_prefix = prefix

        if base := os.environ.get("IORCH_BASE_BRANCH"):
            self.base_branch = base

        if wt_dir := os.environ.get("IORCH_WORKTREE_DIR"):
            self.worktree_dir = wt_dir

        if model := os.environ.get("IORCH_IMPLEMENT_MODEL"):
            self.models.implement = model

        if model := os.environ.get("IORCH_ASSESS_MODEL"):
            self.models.assess = model

        return self


def find_repo_root(start_dir: str | Path | None = None) -> Path:
    """Walk up from start_dir until a directory containing .git is found."""
    start = Path(start_dir or os.environ.get("IORCH_REPO_PATH") or Path.cwd()).resolve()
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    raise RepositoryNotFoundError(f"No git repository found starting from {start}")


def config_file_path(repo_root: str | Path) -> Path:
    return Path(repo_root) / TOOL_DIR / f"{TOOL_NAME}.json"


def load_config(repo_root: str | Path) -> OrchestratorConfig:
    """Defaults, then .iorch/orchestrator.json, then IORCH_* environment variables."""
    path = config_file_path(repo_root)
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")
    return OrchestratorConfig.from_dict(data).apply_env()


def ensure_tool_dir(repo_root: str | Path) -> Path:
    """Create .iorch/ with its .gitignore. Only runs that change the repo call this."""
    tool_dir = Path(repo_root) / TOOL_DIR
    tool_dir.mkdir(parents=True, exist_ok=True)
    gitignore = tool_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text(GITIGNORE_ENTRIES)
    return tool_dir


def state_file_path(repo_root: str | Path) -> Path:
    """Path of the orchestrator state file. Creates nothing; save_state makes the directory."""
    return Path(repo_root) / TOOL_DIR / "state" / f"{TOOL_NAME}.json"


def readable_state_file(repo_root: str | Path) -> Path:
    """The state file to read from: the current one, else a legacy file not yet migrated."""
    path = state_file_path(repo_root)
    legacy = Path(repo_root) / LEGACY_STATE_FILE
    if not path.exists() and legacy.exists():
        return legacy
    return path


def logs_dir(repo_root: str | Path) -> Path:
    path = ensure_tool_dir(repo_root) / "logs"
    path.mkdir(exist_ok=True)
    return path


def migrate_legacy_state(repo_root: str | Path, legacy_path: str | Path | None = None) -> bool:
    """Copy a legacy single-file state forward once. Never overwrites the new location."""
    legacy = Path(legacy_path) if legacy_path else Path(repo_root) / LEGACY_STATE_FILE
    new_path = state_file_path(repo_root)
    if legacy.exists() and not new_path.exists():
        ensure_tool_dir(repo_root)
        new_path.parent.mkdir(exist_ok=True)
        shutil.copyfile(legacy, new_path)
        return True
    return False
