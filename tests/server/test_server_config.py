from collections.abc import Generator
from pathlib import Path

import pytest
import yaml

from stowage.server.config import ServerConfig

ENV_VARS = (
    "STOWAGE_HOST",
    "STOWAGE_PORT",
    "STOWAGE_STORAGE_DIR",
    "STOWAGE_DATABASE_URL",
    "STOWAGE_TRASH_RETENTION_DAYS",
    "STOWAGE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


def test_server_config_defaults(tmp_path: Path) -> None:
    """Test loading configuration with defaults."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    config = ServerConfig.load(config_dir)

    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert config.storage_dir == "storage"
    assert config.trash.retention_days == 30
    assert config.limits.max_archive_files == 10000
    assert config.db_url == "sqlite+aiosqlite:///storage/stowage.db"

    # Verify NO config file was created (read-only)
    assert not (config_dir / "config.yaml").exists()


def test_server_config_load_from_file(tmp_path: Path) -> None:
    """Test loading nested sections from config.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    data = {
        "host": "127.0.0.1",
        "port": 9090,
        "storage_dir": str(tmp_path / "data"),
        "trash": {"retention_days": 7, "batch_size": 50},
        "limits": {"max_selection_items": 10},
    }
    with open(config_dir / "config.yaml", "w") as f:
        yaml.safe_dump(data, f)

    config = ServerConfig.load(config_dir)

    assert config.host == "127.0.0.1"
    assert config.port == 9090
    assert config.storage_root == tmp_path / "data"
    assert config.trash.retention_days == 7
    assert config.trash.batch_size == 50
    assert config.trash.sweep_interval_seconds == 3600
    assert config.limits.max_selection_items == 10


def test_server_config_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    with open(config_dir / "config.yaml", "w") as f:
        yaml.safe_dump({"port": 9090, "trash": {"retention_days": 7}}, f)

    monkeypatch.setenv("STOWAGE_PORT", "7070")
    monkeypatch.setenv("STOWAGE_TRASH_RETENTION_DAYS", "1")
    monkeypatch.setenv("STOWAGE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

    config = ServerConfig.load(config_dir)

    assert config.port == 7070
    assert config.trash.retention_days == 1
    assert config.db_url == "sqlite+aiosqlite:///:memory:"


def test_server_config_without_directory() -> None:
    config = ServerConfig.load(None)
    assert config.port == 8080
