"""Tests for config.py: TOML configuration with env overrides."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from coach_sync.config import (
    LoggingConfig,
    RemoteConfig,
    SyncConfig,
    SyncSettings,
    get_coach_sync_dir,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "COACH_SYNC_DIR",
        "COACH_SYNC_REMOTE_URL",
        "COACH_SYNC_API_KEY",
        "COACH_SYNC_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_default_values(self, tmp_path: Path) -> None:
        config = SyncConfig(data_dir=tmp_path)

        assert not config.remote.is_configured
        assert config.sync.max_retries == 5
        assert config.sync.max_operation_age == timedelta(days=7)
        assert config.logging.level == "WARNING"
        assert config.replica_db_path == tmp_path / "replica.db"
        assert config.probe_url == ""

    def test_data_dir_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COACH_SYNC_DIR", str(tmp_path))
        assert get_coach_sync_dir() == tmp_path

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = SyncConfig.load(tmp_path / "config.toml")

        assert config.data_dir == tmp_path
        assert config.sync == SyncSettings()


class TestPersistence:
    def test_save_and_load_roundtrip(self, tmp_path: Path) -> None:
        config = SyncConfig(
            data_dir=tmp_path,
            remote=RemoteConfig(url="https://project.example.co", api_key='k"ey', timeout=3.5),
            sync=SyncSettings(debounce_seconds=0.5, max_retries=3),
            logging=LoggingConfig(level="DEBUG"),
        )
        config.save()

        loaded = SyncConfig.load(config.config_path)

        assert loaded.remote == config.remote
        assert loaded.sync == config.sync
        assert loaded.logging.level == "DEBUG"
        assert list(tmp_path.glob("*.tmp")) == []

    def test_save_creates_directory(self, tmp_path: Path) -> None:
        config = SyncConfig(data_dir=tmp_path / "nested")
        config.save()
        assert config.config_path.exists()

    def test_probe_url_defaults_to_rest_root(self, tmp_path: Path) -> None:
        config = SyncConfig(
            data_dir=tmp_path, remote=RemoteConfig(url="https://project.example.co/")
        )
        assert config.probe_url == "https://project.example.co/rest/v1/"


class TestValidation:
    def test_values_are_clamped(self) -> None:
        settings = SyncSettings.from_dict(
            {"debounce_seconds": -2, "max_retries": 0, "drain_batch_size": -5}
        )
        assert settings.debounce_seconds == 0.0
        assert settings.max_retries == 1
        assert settings.drain_batch_size == 1

    def test_bad_timeout_falls_back(self) -> None:
        assert RemoteConfig.from_dict({"timeout": "soon"}).timeout == 10.0
        assert RemoteConfig.from_dict({"timeout": 0}).timeout == 0.1

    def test_unknown_log_level(self) -> None:
        assert LoggingConfig.from_dict({"level": "chatty"}).level == "WARNING"
        assert LoggingConfig.from_dict({"level": "info"}).level == "INFO"


class TestEnvOverrides:
    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        SyncConfig(
            data_dir=tmp_path, remote=RemoteConfig(url="https://file.example.co", api_key="file")
        ).save()
        monkeypatch.setenv("COACH_SYNC_API_KEY", "env-key")
        monkeypatch.setenv("COACH_SYNC_LOG_LEVEL", "error")

        config = SyncConfig.load(tmp_path / "config.toml")

        assert config.remote.url == "https://file.example.co"
        assert config.remote.api_key == "env-key"
        assert config.logging.level == "ERROR"

    def test_load_uses_env_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COACH_SYNC_DIR", str(tmp_path))
        monkeypatch.setenv("COACH_SYNC_REMOTE_URL", "https://env.example.co")

        config = SyncConfig.load()

        assert config.data_dir == tmp_path
        assert config.remote.is_configured
