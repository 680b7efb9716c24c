"""
EDMS Configuration — Load and validate edms.yaml at startup.

Usage:
    from edms.engine.config import load_config, get_config

Environment overrides:
    EDMS_JWT_SECRET   — replaces security.jwt_secret
    EDMS_DATABASE_URL — replaces database.url
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from edms.engine.errors import EDMSConfigError

CONFIG_FILE_NAME = "edms.yaml"

DEFAULT_ALLOWED_CONTENT_TYPES = [
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "text/plain",
]


# ---------------------------------------------------------------------------
# Pydantic models for edms.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///edms.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


class SecurityConfig(BaseModel):
    jwt_secret: str = Field(default="", validate_default=True)
    jwt_issuer: str = "edms"
    jwt_audience: str = "edms-clients"
    token_lifetime_hours: int = Field(default=8, ge=1)

    @field_validator("jwt_secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("jwt_secret must be at least 32 characters long")
        return v


class StorageConfig(BaseModel):
    path: str = "uploads"
    max_file_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_content_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_CONTENT_TYPES)
    )


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".edms/logs"
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level '{v}'")
        return v


class PaginationConfig(BaseModel):
    default_page_size: int = Field(default=20, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=100)


class EDMSConfig(BaseModel):
    """Root model for edms.yaml."""
    name: str = "EDMS"
    version: str = "1.0.0"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    security: SecurityConfig
    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()
    pagination: PaginationConfig = PaginationConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[EDMSConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for edms.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILE_NAME).exists():
            return parent
    return current


def build_config(raw: dict) -> EDMSConfig:
    """
    Validate a raw (already parsed) config mapping.

    Environment overrides are applied before validation so a missing
    secret in the file can be supplied by EDMS_JWT_SECRET.

    Raises:
        EDMSConfigError: on any validation failure.
    """
    platform_data = raw.get("platform", {}) or {}
    security = dict(raw.get("security", {}) or {})
    database = dict(raw.get("database", {}) or {})

    if os.environ.get("EDMS_JWT_SECRET"):
        security["jwt_secret"] = os.environ["EDMS_JWT_SECRET"]
    if os.environ.get("EDMS_DATABASE_URL"):
        database["url"] = os.environ["EDMS_DATABASE_URL"]

    config_data = {
        "name": platform_data.get("name", "EDMS"),
        "version": platform_data.get("version", "1.0.0"),
        "environment": platform_data.get("environment", "dev"),
        "database": database,
        "security": security,
        "storage": raw.get("storage", {}) or {},
        "logging": raw.get("logging", {}) or {},
        "pagination": raw.get("pagination", {}) or {},
    }

    try:
        return EDMSConfig(**config_data)
    except ValidationError as e:
        raise EDMSConfigError(
            f"Invalid configuration: {e.error_count()} error(s)",
            validation_errors=[
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ],
        ) from e


def load_config(config_path: Optional[str] = None) -> EDMSConfig:
    """
    Load and validate edms.yaml.

    Args:
        config_path: Explicit path to edms.yaml. If None, auto-discovers
                     from the working directory upwards.

    Returns:
        Validated EDMSConfig instance (also stored as the module singleton).
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILE_NAME)

    path = Path(config_path)
    raw: dict = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise EDMSConfigError(f"Cannot parse {path}: {e}", path=str(path)) from e
        if not isinstance(raw, dict):
            raise EDMSConfigError(f"{path} must contain a mapping", path=str(path))

    _config = build_config(raw)
    return _config


def get_config() -> EDMSConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    global _config
    _config = None
