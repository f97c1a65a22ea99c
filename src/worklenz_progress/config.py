"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".worklenz_progress" / "progress.db")
    host: str = "127.0.0.1"
    port: int = 8788
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("WLP_DB_PATH"):
            config.db_path = Path(db)

        if host := os.environ.get("WLP_HOST"):
            config.host = host

        if port := os.environ.get("WLP_PORT"):
            config.port = int(port)

        if level := os.environ.get("WLP_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
