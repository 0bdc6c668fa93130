"""
Configuration — service settings and the YAML client configuration tree.

Two layers:
    • Settings   — process-level options from environment variables or .env
                   (which config file to load, which log preset to use).
    • AppConfig  — connection parameters for the three backing services,
                   loaded from a YAML document and frozen after load.

Usage:
    from backend.app.core.config import get_settings, load_config

    settings = get_settings()
    cfg = load_config(settings.CONFIG_PATH)
    print(cfg.mysql.host)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.app.core.errors import ConfigDecodeError, ConfigReadError

DEFAULT_CONFIG_PATH = "./config/dev.yaml"


class Settings(BaseSettings):
    """
    Process-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    SERVICE_NAME: str = "backend"
    ENVIRONMENT: str = "development"  # development | production
    CONFIG_PATH: str = DEFAULT_CONFIG_PATH

    # ── Logging ──
    LOG_PRESET: str = "dev"  # dev | prod
    LOG_LEVEL: Optional[str] = None  # overrides the preset level when set

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


# ═══════════════════════════════════════════════════════════════════════════
# Client configuration tree
# ═══════════════════════════════════════════════════════════════════════════

class _FrozenModel(BaseModel):
    """Frozen after load; null YAML values keep the zero-value."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # `key:` with no value in YAML keeps the zero-value
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class LeafConfig(_FrozenModel):
    """Flat set of connection parameters for one backing service."""

    required_fields: ClassVar[Tuple[str, ...]] = ()

    def missing_fields(self) -> Tuple[str, ...]:
        """Required fields that are still zero-valued."""
        return tuple(name for name in self.required_fields if not getattr(self, name))


class InfluxDBConfig(LeafConfig):
    host: str = ""
    token: str = ""
    database: str = ""

    required_fields: ClassVar[Tuple[str, ...]] = ("host", "database")


class MinIOConfig(LeafConfig):
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    use_ssl: bool = False
    region: str = ""

    required_fields: ClassVar[Tuple[str, ...]] = (
        "endpoint", "access_key_id", "secret_access_key",
    )


class MySQLConfig(LeafConfig):
    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    database: str = ""
    charset: str = ""
    max_open_conns: int = 0
    max_idle_conns: int = 0
    max_lifetime: int = 0  # minutes

    required_fields: ClassVar[Tuple[str, ...]] = ("host", "port", "user", "database")


class AppConfig(_FrozenModel):
    """Root of the configuration tree; one section per backing service."""

    influxdb: InfluxDBConfig = Field(default_factory=InfluxDBConfig)
    minio: MinIOConfig = Field(default_factory=MinIOConfig)
    mysql: MySQLConfig = Field(default_factory=MySQLConfig)


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    """
    Load the client configuration tree from a YAML file.

    An empty path falls back to DEFAULT_CONFIG_PATH. Absent fields keep
    their zero-values; unknown keys are ignored.

    Raises:
        ConfigReadError: the file is missing or unreadable.
        ConfigDecodeError: the document is not YAML or has the wrong shape.
    """
    path = str(path) if path else DEFAULT_CONFIG_PATH

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigReadError(path, e.strerror or str(e)) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigDecodeError(path, f"invalid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigDecodeError(
            path, f"expected a mapping at top level, got {type(data).__name__}",
        )

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigDecodeError(path, str(e), fields=fields) from e
