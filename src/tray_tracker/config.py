from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tray_tracker.exceptions import ConfigurationError

MAX_BATCH_SIZE = 500
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRAYTRACKER_", case_sensitive=False)

    mongodb_uri: Optional[str] = None
    default_db: Optional[str] = None
    batch_size: Optional[int] = None
    log_level: Optional[str] = None
    audit_log: Optional[str] = None
    rules_file: Optional[str] = None


class FileConfig(BaseModel):
    mongodb_uri: Optional[str] = None
    default_db: Optional[str] = None
    batch_size: Optional[int] = None
    log_level: Optional[str] = None
    audit_log: Optional[str] = None
    rules_file: Optional[str] = None


class RuntimeConfig(BaseModel):
    mongodb_uri: str = Field(..., description="MongoDB connection string")
    default_db: str = Field(..., description="Default database")
    batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE, description="Writes per batch commit")
    log_level: str = Field("INFO", description="Logging level")
    audit_log: Optional[Path] = None
    rules_file: Optional[Path] = None


DEFAULT_CONFIG_PATH = Path.cwd() / ".traytracker.yml"
LOCAL_CONFIG_PATH = Path.cwd() / ".traytracker.local.yml"


def load_file_config(path: Path = DEFAULT_CONFIG_PATH) -> FileConfig:
    if not path.exists():
        return FileConfig()

    data = yaml.safe_load(path.read_text()) or {}
    return FileConfig(**data)


def _first(*values):
    for value in values:
        if value is not None and value != "":
            return value
    return None


def load_runtime_config(
    path: Path = DEFAULT_CONFIG_PATH,
    mongodb_uri: Optional[str] = None,
    default_db: Optional[str] = None,
) -> RuntimeConfig:
    """Load configuration with priority: arguments > env vars > local file > main file."""
    file_config = load_file_config(path)

    # Local override file is gitignored, for pointing at a scratch database
    local_path = path.parent / ".traytracker.local.yml" if path != DEFAULT_CONFIG_PATH else LOCAL_CONFIG_PATH
    local_config = load_file_config(local_path)

    env_config = EnvConfig()

    layers = (env_config, local_config, file_config)
    mongodb_uri = _first(mongodb_uri, *(layer.mongodb_uri for layer in layers))
    default_db = _first(default_db, *(layer.default_db for layer in layers))
    batch_size = _first(*(layer.batch_size for layer in layers))
    log_level = _first(*(layer.log_level for layer in layers))
    audit_log = _first(*(layer.audit_log for layer in layers))
    rules_file = _first(*(layer.rules_file for layer in layers))

    if not mongodb_uri:
        raise ConfigurationError(
            "Missing MongoDB URI. Set in .traytracker.yml, .traytracker.local.yml, or TRAYTRACKER_MONGODB_URI."
        )
    if not default_db:
        raise ConfigurationError(
            "Missing default DB. Set in .traytracker.yml, .traytracker.local.yml, or TRAYTRACKER_DEFAULT_DB."
        )
    if batch_size is not None and not 1 <= batch_size <= MAX_BATCH_SIZE:
        raise ConfigurationError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}.")
    level = (log_level or "INFO").upper()
    if level not in LOG_LEVELS:
        raise ConfigurationError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level}.")

    return RuntimeConfig(
        mongodb_uri=mongodb_uri,
        default_db=default_db,
        batch_size=batch_size or MAX_BATCH_SIZE,
        log_level=level,
        audit_log=Path(audit_log) if audit_log else None,
        rules_file=Path(rules_file) if rules_file else None,
    )


def write_default_config(path: Path = DEFAULT_CONFIG_PATH) -> Path:
    if path.exists():
        return path

    content = {
        "mongodb_uri": "mongodb://localhost:27017",
        "default_db": "traytracker",
        "batch_size": MAX_BATCH_SIZE,
        "log_level": "INFO",
        "audit_log": "",
        "rules_file": "",
    }
    path.write_text(yaml.safe_dump(content, sort_keys=False))
    return path
