"""Configuration for coach-sync.

Configuration is stored in ~/.coach-sync/config.toml
The local replica is stored in ~/.coach-sync/replica.db (SQLite)

Environment variables override the file:
- COACH_SYNC_DIR: data directory
- COACH_SYNC_REMOTE_URL: remote project URL
- COACH_SYNC_API_KEY: remote API key
- COACH_SYNC_LOG_LEVEL: logging level name
"""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_coach_sync_dir() -> Path:
    """Get the coach-sync data directory.

    Priority:
    1. COACH_SYNC_DIR environment variable
    2. ~/.coach-sync/
    """
    env_dir = os.environ.get("COACH_SYNC_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".coach-sync"


def _toml_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class RemoteConfig:
    """Connection to the managed data platform."""

    url: str = ""
    api_key: str = ""
    timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "api_key": self.api_key,
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteConfig:
        try:
            timeout = max(0.1, float(data.get("timeout", 10.0)))
        except (TypeError, ValueError):
            timeout = 10.0
        return cls(
            url=str(data.get("url", "")),
            api_key=str(data.get("api_key", "")),
            timeout=timeout,
        )


@dataclass(frozen=True)
class SyncSettings:
    """Queue replay and reconnect behaviour."""

    debounce_seconds: float = 1.0
    max_retries: int = 5
    max_operation_age_days: int = 7
    drain_batch_size: int = 500

    @property
    def max_operation_age(self) -> timedelta:
        return timedelta(days=self.max_operation_age_days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "debounce_seconds": self.debounce_seconds,
            "max_retries": self.max_retries,
            "max_operation_age_days": self.max_operation_age_days,
            "drain_batch_size": self.drain_batch_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        return cls(
            debounce_seconds=max(0.0, float(data.get("debounce_seconds", 1.0))),
            max_retries=max(1, int(data.get("max_retries", 5))),
            max_operation_age_days=max(1, int(data.get("max_operation_age_days", 7))),
            drain_batch_size=max(1, int(data.get("drain_batch_size", 500))),
        )


@dataclass(frozen=True)
class ReachabilityConfig:
    """Connectivity probing. An empty probe_url probes the remote URL."""

    probe_url: str = ""
    probe_interval: float = 15.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "probe_url": self.probe_url,
            "probe_interval": self.probe_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReachabilityConfig:
        return cls(
            probe_url=str(data.get("probe_url", "")),
            probe_interval=max(1.0, float(data.get("probe_interval", 15.0))),
        )


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "WARNING"

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        level = str(data.get("level", "WARNING")).upper()
        if level not in _LOG_LEVELS:
            level = "WARNING"
        return cls(level=level)


@dataclass
class SyncConfig:
    """Top-level coach-sync configuration.

    Storage location: ~/.coach-sync/config.toml
    Replica location: ~/.coach-sync/replica.db
    """

    data_dir: Path = field(default_factory=get_coach_sync_dir)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    reachability: ReachabilityConfig = field(default_factory=ReachabilityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    version: str = "1.0"

    @classmethod
    def load(cls, config_path: Path | None = None) -> SyncConfig:
        """Load configuration from file (defaults if missing), then apply env overrides."""
        if config_path is None:
            data_dir = get_coach_sync_dir()
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)

        config = cls.from_dict(data, data_dir=data_dir)
        return config.with_env_overrides()

    @classmethod
    def from_dict(cls, data: dict[str, Any], data_dir: Path | None = None) -> SyncConfig:
        return cls(
            data_dir=data_dir or get_coach_sync_dir(),
            remote=RemoteConfig.from_dict(data.get("remote", {})),
            sync=SyncSettings.from_dict(data.get("sync", {})),
            reachability=ReachabilityConfig.from_dict(data.get("reachability", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
            version=str(data.get("version", "1.0")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "data_dir": str(self.data_dir),
            "remote": self.remote.to_dict(),
            "sync": self.sync.to_dict(),
            "reachability": self.reachability.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def with_env_overrides(self) -> SyncConfig:
        remote = self.remote
        url = os.environ.get("COACH_SYNC_REMOTE_URL")
        api_key = os.environ.get("COACH_SYNC_API_KEY")
        if url or api_key:
            remote = RemoteConfig(
                url=url or remote.url,
                api_key=api_key or remote.api_key,
                timeout=remote.timeout,
            )

        log_config = self.logging
        level = os.environ.get("COACH_SYNC_LOG_LEVEL")
        if level:
            log_config = LoggingConfig.from_dict({"level": level})

        return SyncConfig(
            data_dir=self.data_dir,
            remote=remote,
            sync=self.sync,
            reachability=self.reachability,
            logging=log_config,
            version=self.version,
        )

    def save(self) -> None:
        """Save configuration to TOML file (atomic write via temp+rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        lines = [
            "# coach-sync configuration",
            f"version = {_toml_str(self.version)}",
            "",
            "# Managed data platform",
            "[remote]",
            f"url = {_toml_str(self.remote.url)}",
            f"api_key = {_toml_str(self.remote.api_key)}",
            f"timeout = {float(self.remote.timeout)}",
            "",
            "# Offline queue replay",
            "[sync]",
            f"debounce_seconds = {float(self.sync.debounce_seconds)}",
            f"max_retries = {self.sync.max_retries}",
            f"max_operation_age_days = {self.sync.max_operation_age_days}",
            f"drain_batch_size = {self.sync.drain_batch_size}",
            "",
            "# Connectivity probing",
            "[reachability]",
            f"probe_url = {_toml_str(self.reachability.probe_url)}",
            f"probe_interval = {float(self.reachability.probe_interval)}",
            "",
            "[logging]",
            f"level = {_toml_str(self.logging.level)}",
        ]

        # Atomic write: write to temp file, then rename
        content = "\n".join(lines) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=str(self.data_dir), suffix=".toml.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(self.config_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Saved configuration to %s", self.config_path)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    @property
    def replica_db_path(self) -> Path:
        return self.data_dir / "replica.db"

    @property
    def probe_url(self) -> str:
        if self.reachability.probe_url:
            return self.reachability.probe_url
        return f"{self.remote.url.rstrip('/')}/rest/v1/" if self.remote.url else ""
