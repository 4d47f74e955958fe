"""Server configuration.

Configuration is read from ``<config_dir>/config.yaml`` when present and
then overridden by ``STOWAGE_*`` environment variables. The file is never
written by the server.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from mashumaro.mixins.dict import DataClassDictMixin

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"

GIB = 1024 * 1024 * 1024


@dataclass
class TrashConfig(DataClassDictMixin):
    """Retention settings for soft-deleted items."""

    retention_days: int = 30
    """Items stay in the trash this long before the sweep removes them."""

    sweep_interval_seconds: int = 3600
    """Delay between two runs of the background sweep."""

    batch_size: int = 1000
    """Maximum number of expired items removed per sweep."""


@dataclass
class LimitsConfig(DataClassDictMixin):
    """Hard limits enforced by the item services."""

    max_archive_bytes: int = 2 * GIB
    max_archive_files: int = 10000
    max_selection_items: int = 100
    max_upload_bytes: int = 2 * GIB
    max_tree_depth: int = 10000


@dataclass
class ServerConfig(DataClassDictMixin):
    """Top level server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    storage_dir: str = "storage"
    database_url: str | None = None
    """Async SQLAlchemy URL. Defaults to a SQLite file in ``storage_dir``."""

    log_level: str = "INFO"

    trash: TrashConfig = field(default_factory=TrashConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @property
    def storage_root(self) -> Path:
        return Path(self.storage_dir)

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.storage_root / 'stowage.db'}"

    @classmethod
    def load(cls, config_dir: Path | str | None = None) -> "ServerConfig":
        """Load the configuration from ``config_dir`` and the environment."""
        data: dict = {}
        if config_dir is not None:
            config_file = Path(config_dir) / CONFIG_FILE_NAME
            if config_file.exists():
                with open(config_file, "r") as f:
                    data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {config_file}")

        config = cls.from_dict(data)

        if host := os.getenv("STOWAGE_HOST"):
            config.host = host
        if port := os.getenv("STOWAGE_PORT"):
            config.port = int(port)
        if storage_dir := os.getenv("STOWAGE_STORAGE_DIR"):
            config.storage_dir = storage_dir
        if database_url := os.getenv("STOWAGE_DATABASE_URL"):
            config.database_url = database_url
        if retention := os.getenv("STOWAGE_TRASH_RETENTION_DAYS"):
            config.trash.retention_days = int(retention)
        if log_level := os.getenv("STOWAGE_LOG_LEVEL"):
            config.log_level = log_level

        return config
