"""
Engine Configuration

Layered configuration: built-in defaults, then JSON files, then environment.

Files searched in order (later files win, nested keys are deep-merged):
    config/default.json
    config/local.json
    .smart-context-config.json

Environment Variables:
    PROJECT_ROOT: Root of the project being analyzed (default: cwd)
    SMART_CONTEXT_TOKEN_BUDGET: context.default_token_budget
    SMART_CONTEXT_MIN_RELEVANCE: context.min_relevance_score
    SMART_CONTEXT_CACHE_TTL: context.cache_ttl_seconds
    SMART_CONTEXT_DB_PATH: database.path
    SMART_CONTEXT_GIT_COMMIT_LIMIT: git.default_commit_limit
    SMART_CONTEXT_LOG_LEVEL: logging.level
    SMART_CONTEXT_LOG_FORMAT: logging.format (json or console)
"""

from typing import Dict, Any, Optional, List
from pathlib import Path
import json
import os

import pydantic
from pydantic import BaseModel, Field
import structlog

from smart_context.domain.errors import ValidationError

logger = structlog.get_logger(__name__)

CONFIG_FILENAMES = [
    Path("config") / "default.json",
    Path("config") / "local.json",
    Path(".smart-context-config.json"),
]

ENV_MAPPINGS = {
    "SMART_CONTEXT_TOKEN_BUDGET": "context.default_token_budget",
    "SMART_CONTEXT_MIN_RELEVANCE": "context.min_relevance_score",
    "SMART_CONTEXT_CACHE_TTL": "context.cache_ttl_seconds",
    "SMART_CONTEXT_DB_PATH": "database.path",
    "SMART_CONTEXT_GIT_COMMIT_LIMIT": "git.default_commit_limit",
    "SMART_CONTEXT_LOG_LEVEL": "logging.level",
    "SMART_CONTEXT_LOG_FORMAT": "logging.format",
    "PROJECT_ROOT": "project_root",
}


class ContextConfig(BaseModel):
    """Scoring and assembly knobs"""
    default_token_budget: int = Field(default=6000, ge=0)
    min_relevance_score: float = Field(default=0.15, ge=0.0, le=1.0)
    progressive_cutoff: float = Field(default=0.6, ge=0.0, le=1.0)
    fallback_count: int = Field(default=5, ge=1)
    recency_window_hours: int = Field(default=48, ge=1)
    signal_timeout_seconds: float = Field(default=2.0, gt=0)
    cache_ttl_seconds: int = Field(default=300, ge=0)
    cache_max_entries: int = Field(default=128, ge=1)
    default_model: str = Field(default="claude-3-opus")


class LearningConfig(BaseModel):
    """Outcome deltas applied by the feedback loop"""
    success_used_delta: float = Field(default=0.15, ge=-1.0, le=1.0)
    success_unused_delta: float = Field(default=-0.05, ge=-1.0, le=1.0)
    failure_used_delta: float = Field(default=0.05, ge=-1.0, le=1.0)
    failure_unused_delta: float = Field(default=-0.10, ge=-1.0, le=1.0)
    confidence_step: float = Field(default=0.05, ge=0.0, le=1.0)
    relationship_step: float = Field(default=0.1, ge=0.0, le=1.0)


class DatabaseConfig(BaseModel):
    """Embedded store and queue settings"""
    path: str = Field(default="./data/context.db", description="Snapshot file, ':memory:' disables snapshots")
    max_concurrent_operations: int = Field(default=3, ge=1)
    operation_timeout_seconds: float = Field(default=5.0, gt=0)
    snapshot_interval_seconds: float = Field(default=30.0, gt=0)
    handle_exit_signals: bool = Field(
        default=False, description="Snapshot and close on SIGINT/SIGTERM when no server manages shutdown"
    )


class GitConfig(BaseModel):
    default_commit_limit: int = Field(default=100, ge=1)
    command_timeout_seconds: float = Field(default=10.0, gt=0)
    recent_cache_ttl_seconds: int = Field(default=60, ge=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(default="json")
    service_name: str = Field(default="smart-context")


class EngineConfig(BaseModel):
    """Complete engine configuration"""
    project_root: str = Field(default_factory=os.getcwd)
    context: ContextConfig = Field(default_factory=ContextConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get(self, dotted_path: str, default: Any = None) -> Any:
        """Look up a value by dotted path, e.g. 'context.min_relevance_score'"""

        current: Any = self
        for part in dotted_path.split("."):
            if isinstance(current, BaseModel) and part in type(current).model_fields:
                current = getattr(current, part)
            elif isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """Merge source into a copy of target, recursing into nested dicts"""

    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _coerce(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _set_nested(data: Dict[str, Any], dotted_path: str, value: Any) -> None:
    parts = dotted_path.split(".")
    current = data
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def apply_environment_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay SMART_CONTEXT_* variables onto raw config data"""

    environ = os.environ if environ is None else environ
    result = dict(data)
    for env_var, dotted_path in ENV_MAPPINGS.items():
        raw = environ.get(env_var)
        if raw is None or raw == "":
            continue
        # Paths stay strings even when they look numeric
        value = raw if dotted_path in ("database.path", "project_root", "logging.level", "logging.format") else _coerce(raw)
        _set_nested(result, dotted_path, value)
    return result


def load_config(
    base_dir: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """Load configuration from files, environment and explicit overrides"""

    base_dir = Path(base_dir) if base_dir else Path.cwd()
    data: Dict[str, Any] = {}
    loaded: List[str] = []

    for filename in CONFIG_FILENAMES:
        config_path = base_dir / filename
        if not config_path.exists():
            continue
        try:
            file_data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"Failed to load config from {config_path}: {e}", field=str(filename)) from e
        if not isinstance(file_data, dict):
            raise ValidationError(f"Config file {config_path} must contain a JSON object", field=str(filename))
        data = deep_merge(data, file_data)
        loaded.append(str(config_path))

    data = apply_environment_overrides(data, environ)
    if overrides:
        data = deep_merge(data, overrides)

    try:
        config = EngineConfig.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"Invalid configuration value for '{field}': {first.get('msg')}", field=field) from e

    logger.debug("Configuration loaded", files=loaded, project_root=config.project_root)
    return config
