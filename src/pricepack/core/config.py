"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from pricepack.core.exceptions import ConfigError
from pricepack.core.models import IdentityPolicy, StorageBackend

# Conventional libpq-style variables, honored below the PRICEPACK_ prefix.
_POSTGRES_ENV_VARS = {
    "POSTGRES_HOST": "postgres_host",
    "POSTGRES_PORT": "postgres_port",
    "POSTGRES_USER": "postgres_user",
    "POSTGRES_PASSWORD": "postgres_password",
    "POSTGRES_DB": "postgres_db",
}


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str = "./data/pricepack.db"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "validator"
    postgres_password: str = "val1dat0r"
    postgres_db: str = "project-sem-1"

    @field_validator("sqlite_path")
    @classmethod
    def sqlite_path_is_file(cls, v: str) -> str:
        """Each ingest session opens its own connection, so memory DBs won't do."""
        if v == ":memory:" or v.startswith("file::memory:"):
            raise ValueError("sqlite_path must point to a file, not an in-memory database")
        return v

    @field_validator("postgres_port")
    @classmethod
    def port_in_range(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("postgres_port must be between 1 and 65535")
        return v

    @property
    def postgres_conninfo(self) -> str:
        """libpq keyword/value connection string."""
        return (
            f"host={self.postgres_host} port={self.postgres_port} "
            f"user={self.postgres_user} password={self.postgres_password} "
            f"dbname={self.postgres_db} sslmode=disable"
        )


class IngestConfig(BaseModel):
    """Upload handling configuration."""

    model_config = ConfigDict(frozen=True)

    id_policy: IdentityPolicy = IdentityPolicy.GENERATE
    max_upload_bytes: int = 10 << 20

    @field_validator("max_upload_bytes")
    @classmethod
    def limit_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_upload_bytes must be >= 1")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8080


class PricePackConfig(BaseModel):
    """Root configuration for pricepack."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    ingest: IngestConfig = IngestConfig()
    api: APIConfig = APIConfig()
    log_level: str = "INFO"

    @model_validator(mode="after")
    def log_level_known(self) -> PricePackConfig:
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log_level: {self.log_level}")
        return self


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICEPACK_",
) -> PricePackConfig:
    """Build the runtime configuration.

    Sources, later ones winning:

    1. Built-in defaults
    2. YAML file (``config_path``, else ``$PRICEPACK_CONFIG``, else ./pricepack.yml)
    3. POSTGRES_HOST / POSTGRES_PORT / POSTGRES_USER / POSTGRES_PASSWORD / POSTGRES_DB
    4. Prefixed variables, ``__`` separating nesting levels:
       PRICEPACK_INGEST__ID_POLICY=source  ->  ingest.id_policy = "source"

    Any failure, including model validation, surfaces as ``ConfigError``.
    """
    try:
        settings: dict = {}
        path = _find_config_file(config_path)
        if path is not None:
            settings = _read_yaml(path)
        settings = _merge_postgres_env(settings)
        settings = _merge_env_vars(settings, env_prefix)
        return PricePackConfig.model_validate(settings)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _find_config_file(explicit: str | None) -> Path | None:
    if explicit is not None:
        origin, candidate = "config_path", explicit
    elif os.environ.get("PRICEPACK_CONFIG"):
        origin, candidate = "PRICEPACK_CONFIG", os.environ["PRICEPACK_CONFIG"]
    else:
        default = Path("pricepack.yml")
        return default if default.is_file() else None

    path = Path(candidate)
    if not path.is_file():
        raise ConfigError(
            f"Config file not found ({origin}): {candidate}",
            context={"field": origin, "value": candidate},
        )
    return path


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config {path}: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"YAML config must be a mapping, got {type(data).__name__}",
            context={"field": "config_file", "value": str(path)},
        )
    return data


def _merge_postgres_env(base: dict) -> dict:
    """Overlay the conventional POSTGRES_* variables onto storage settings."""
    overrides = {
        field: _auto_cast(value) if field == "postgres_port" else value
        for env_key, field in _POSTGRES_ENV_VARS.items()
        if (value := os.environ.get(env_key))
    }
    if not overrides:
        return dict(base)
    return _set_path(base, ["storage"], {**(base.get("storage") or {}), **overrides})


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay ``<prefix>SECTION__KEY`` environment variables onto ``base``.

    Values go through ``_auto_cast``. ``base`` is not mutated.
    """
    result = dict(base)
    for key, value in sorted(os.environ.items()):
        if not key.startswith(prefix):
            continue
        path = key[len(prefix) :].lower().split("__")
        if path == ["config"]:
            continue
        result = _set_path(result, path, _auto_cast(value))
    return result


def _set_path(tree: dict, path: list[str], value) -> dict:
    """Return a copy of ``tree`` with ``value`` stored at ``path``."""
    head, *rest = path
    updated = dict(tree)
    if rest:
        child = tree.get(head)
        updated[head] = _set_path(child if isinstance(child, dict) else {}, rest, value)
    else:
        updated[head] = value
    return updated


def _auto_cast(value: str) -> str | int | float | bool:
    """Environment strings -> bool / int / float where they look like one."""
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value
