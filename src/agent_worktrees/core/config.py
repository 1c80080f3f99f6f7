"""Configuration loading and validation."""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.validators import validate_branch_name, validate_ref

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("agent-worktrees.yaml")


class OrphanPolicy(str, Enum):
    """What the reconciler does with a worktree nobody has a record for."""
    ADOPT = "adopt"      # assume ownership: record becomes active
    REMOVE = "remove"    # treat as foreign/stale: remove through the gateway
    REPORT = "report"    # mark orphaned and leave it for an operator


class GatewayConfig(BaseModel):
    """Repository gateway settings."""
    kind: Literal["git", "memory"] = "git"
    # Upper bound for any single git invocation (seconds)
    command_timeout: float = 60.0
    default_author: str = "Agent Worktrees <agent-worktrees@localhost>"

    @field_validator('command_timeout')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"command_timeout must be > 0, got {v}")
        return v

    @field_validator('default_author')
    @classmethod
    def validate_author(cls, v: str) -> str:
        if "<" not in v or not v.rstrip().endswith(">"):
            raise ValueError(
                f"default_author must look like 'Name <email>', got '{v}'"
            )
        return v


class LockConfig(BaseModel):
    """Structural lock settings."""
    # None waits forever
    acquire_timeout: Optional[float] = 300.0
    poll_interval: float = 0.05


class ReconcilerConfig(BaseModel):
    """Cleanup reconciler settings."""
    orphan_policy: OrphanPolicy = OrphanPolicy.REPORT
    # In-progress records younger than this are left alone
    stale_after_seconds: float = 900.0
    # Failed retries of a stuck operation before escalating to orphaned
    max_retries: int = 1
    run_on_startup: bool = False

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_retries must be >= 1, got {v}")
        return v


class WorktreeSettings(BaseSettings):
    """Main configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_WT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    repository: Path = Field(default=Path("."))
    worktree_root: Path = Field(default=Path("~/.agent-workspaces/worktrees"))
    # Registry and lock files; defaults to <worktree_root>/<repository name>
    state_dir: Optional[Path] = None
    branch_prefix: str = "agent/"
    default_base_ref: str = "HEAD"
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)

    @field_validator('repository', 'worktree_root')
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator('state_dir', 'log_dir')
    @classmethod
    def expand_optional_path(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return None
        return Path(v).expanduser().resolve()

    @field_validator('branch_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        # Prefix must yield a valid branch once an identifier is appended
        validate_branch_name(v + "x")
        return v

    @field_validator('default_base_ref')
    @classmethod
    def validate_base_ref(cls, v: str) -> str:
        return validate_ref(v)

    @property
    def managed_root(self) -> Path:
        """Directory holding this repository's agent worktrees."""
        return self.worktree_root / self.repository.name

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir or self.managed_root


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached config if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def _load_config_from_file(config_path: Path) -> WorktreeSettings:
    """Internal loader (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)

    # Relative paths in the file are relative to the file, not the cwd
    base = config_path.parent
    for key in ("repository", "worktree_root", "state_dir", "log_dir"):
        value = data.get(key)
        if isinstance(value, str) and not value.startswith("~") and not Path(value).is_absolute():
            data[key] = str(base / value)

    return WorktreeSettings(**data)


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> WorktreeSettings:
    """Load configuration from a YAML file.

    Uses mtime-based caching: returns cached config if the file hasn't changed.
    A missing file yields defaults (plus any AGENT_WT_* environment overrides).
    """
    config_path = Path(config_path)
    if not config_path.exists():
        logger.debug(f"Config file not found: {config_path}. Using default configuration.")
        return WorktreeSettings()

    resolved = config_path.resolve()
    result = _get_cached_or_load(resolved, _load_config_from_file)
    return result if result is not None else WorktreeSettings()


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} references in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "gateway.default_author")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used, which may cause errors."
            )
            return data
        return value
    return data
