"""Configuration for the transcript relay.

Settings come from, in increasing precedence: dataclass defaults, an optional
YAML file, and ``TRANSCRIPT_RELAY_*`` environment variables.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .session_resolver import SESSION_FILE_PATTERN

logger = logging.getLogger(__name__)

ENV_PREFIX = "TRANSCRIPT_RELAY_"
ENV_OVERRIDES = ("log_level", "state_file", "tmux_session", "webhook_url", "project_path")


class ConfigError(ValueError):
    """Raised when configuration cannot be loaded or fails validation."""


@dataclass
class RelayConfig:
    """Configuration for the transcript monitor.

    Attributes:
        project_path: Working directory of the monitored agent.
        claude_projects_dir: Root holding one log directory per project.
        state_file: Checkpoint file path.
        poll_interval_seconds: Seconds between monitor cycles.
        flush_interval_seconds: Seconds between checkpoint flushes.
        uuid_ttl_seconds: How long a delivered record id is remembered.
        store_max_uuids: Cap on persisted record ids.
        cache_max_entries: Cap on the in-memory dedup cache.
        cleanup_interval_seconds: Seconds between expired-id sweeps.
        session_check_interval_seconds: Seconds between forced session rescans.
        project_path_check_interval_seconds: Seconds between working-directory checks.
        plan_check_interval_seconds: Seconds between terminal plan checks.
        plan_cooldown_seconds: Quiet period before re-sending the same plan prompt.
        plan_max_length: Characters of a plan document included in a message.
        plan_capture_lines: Terminal lines inspected for a plan prompt.
        memory_check_interval_seconds: Seconds between memory samples.
        memory_threshold_mb: Resident size above which caches are dropped.
        split_threshold: Messages up to this length are sent whole.
        max_chunk_size: Maximum length of one sent chunk.
        chunk_delay_seconds: Pause between chunks of one message.
        read_chunk_size: Reader buffer size in bytes.
        session_file_pattern: Regex for session transcript file names.
        subagent_dir: Sub-log directory name inside a session directory.
        tmux_session: tmux session running the agent, if any.
        webhook_url: Webhook to deliver to; deliveries are only logged if unset.
        log_dir: Directory for the rotating JSON log.
        log_level: Console log level.
    """

    project_path: str = ""
    claude_projects_dir: str = "~/.claude/projects"
    state_file: str = "/tmp/transcript-relay-state.json"
    poll_interval_seconds: float = 1.0
    flush_interval_seconds: float = 60
    uuid_ttl_seconds: float = 3600
    store_max_uuids: int = 10000
    cache_max_entries: int = 1000
    cleanup_interval_seconds: float = 300
    session_check_interval_seconds: float = 10
    project_path_check_interval_seconds: float = 5
    plan_check_interval_seconds: float = 5
    plan_cooldown_seconds: float = 300
    plan_max_length: int = 5000
    plan_capture_lines: int = 100
    memory_check_interval_seconds: float = 10
    memory_threshold_mb: float = 200
    split_threshold: int = 12000
    max_chunk_size: int = 15000
    chunk_delay_seconds: float = 0.3
    read_chunk_size: int = 8192
    session_file_pattern: str = SESSION_FILE_PATTERN
    subagent_dir: str = "subagents"
    tmux_session: str | None = None
    webhook_url: str | None = None
    log_dir: str = "/tmp/transcript_relay_logs"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.project_path:
            self.project_path = os.getcwd()

    def validate(self) -> "RelayConfig":
        """Check value ranges.

        Raises:
            ConfigError: If any value is out of range.
        """
        if self.poll_interval_seconds < 0.1:
            raise ConfigError("poll_interval_seconds must be at least 0.1")
        if self.max_chunk_size < 100:
            raise ConfigError("max_chunk_size must be at least 100")
        if self.split_threshold > self.max_chunk_size:
            raise ConfigError("split_threshold cannot exceed max_chunk_size")
        if self.read_chunk_size <= 0:
            raise ConfigError("read_chunk_size must be positive")
        if self.cache_max_entries <= 0 or self.store_max_uuids <= 0:
            raise ConfigError("cache_max_entries and store_max_uuids must be positive")
        if self.uuid_ttl_seconds <= 0:
            raise ConfigError("uuid_ttl_seconds must be positive")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"Unknown log_level: {self.log_level}")
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


def _check_type(name: str, value: Any, expected: Any) -> Any:
    """Check one value against its field annotation; ints widen to floats."""
    optional = expected == (str | None)
    if optional and value is None:
        return None
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    accepted = str if optional else expected
    if isinstance(value, bool) or not isinstance(value, accepted):
        raise ConfigError(
            f"{name} must be of type {accepted.__name__}, got {type(value).__name__}: {value!r}"
        )
    return value


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> RelayConfig:
    """Build a validated RelayConfig.

    Args:
        path: Optional YAML file.
        overrides: Values that win over everything else (e.g. CLI flags);
            None values are ignored.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: On an unreadable file, unknown keys or invalid values.
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_yaml(Path(path)))
        logger.debug(f"Loaded configuration from {path}")

    env = os.environ if environ is None else environ
    for name in ENV_OVERRIDES:
        value = env.get(ENV_PREFIX + name.upper())
        if value:
            values[name] = value

    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    known = {f.name: f.type for f in fields(RelayConfig)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    values = {name: _check_type(name, value, known[name]) for name, value in values.items()}

    try:
        config = RelayConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e
    return config.validate()
