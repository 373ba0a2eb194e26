"""Server configuration defaults, config file loading, and environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 41787


def get_data_dir() -> Path:
    env = os.environ.get("SXN_DATA_DIR")
    if env:
        return Path(env)
    return Path.home() / ".sxn"


@dataclass
class Config:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def load_config(path: Path | None = None) -> Config:
    """Load the ``server`` section of a JSON config file with env var overrides."""
    config = Config()

    if path and path.exists():
        try:
            data = json.loads(path.read_text())
            section = data.get("server", {}) if isinstance(data, dict) else {}
            if isinstance(section, dict):
                if "host" in section:
                    config.host = section["host"]
                if "port" in section:
                    config.port = section["port"]
        except (json.JSONDecodeError, OSError):
            pass

    port_env = os.environ.get("SXN_PORT")
    if port_env:
        config.port = int(port_env)

    return config
