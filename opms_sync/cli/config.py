"""Configuration for the sync worker, the CLI and the API server.

Sources, highest precedence first:

1. OPMS_SYNC_<SECTION>_<KEY> environment variables
   (``OPMS_SYNC_WORKER_BATCH_SIZE=25``)
2. The YAML file named by ``--config`` or OPMS_SYNC_CONFIG_PATH, else
   ./opms-sync.yaml, else ~/.opms-sync/config.yaml
3. Model defaults

YAML values may reference the environment as ``${VAR}`` or
``${VAR:-fallback}``, which keeps the NetSuite token out of the file.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "OPMS_SYNC_"
CONFIG_PATH_ENV = "OPMS_SYNC_CONFIG_PATH"

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def resolve_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-fallback}`` references.

    Unset variables without a fallback expand to an empty string.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m.group("name"), m.group("fallback") or ""), value
    )


def _expand(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    if isinstance(data, dict):
        return {key: _expand(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand(value) for value in data]
    return data


class ServerConfig(BaseModel):
    """HTTP server settings for ``opms-sync serve``."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class WorkerConfig(BaseModel):
    """Dispatcher settings for ``opms-sync worker run``."""

    worker_id: str | None = None
    batch_size: int = Field(50, ge=1)
    poll_interval_seconds: float = Field(5.0, gt=0)
    stale_after_seconds: int = Field(900, ge=1)
    rate_limit_per_second: float = Field(10.0, ge=0)


class RetryConfig(BaseModel):
    """Backoff for retryable failures."""

    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = Field(2000, ge=0)
    max_delay_ms: int = Field(30000, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def max_not_below_base(self) -> "RetryConfig":
        """Ensure the backoff cap is not below the base delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class SyncConfig(BaseModel):
    """Business switches for OPMS -> NetSuite item sync."""

    enabled: bool = True
    dry_run: bool = False
    tax_schedule_id: str | None = None
    queue_retention_days: int = Field(7, ge=0)
    change_log_retention_days: int = Field(30, ge=0)


class ErpConfig(BaseModel):
    """NetSuite RESTlet connection settings."""

    base_url: str = ""
    token: str = ""
    timeout_seconds: float = Field(30.0, gt=0)
    pull_delay_ms: int = Field(100, ge=0)


class OpmsSyncConfig(BaseModel):
    """Top-level configuration for the OPMS sync worker and API."""

    server: ServerConfig = ServerConfig()
    worker: WorkerConfig = WorkerConfig()
    retry: RetryConfig = RetryConfig()
    sync: SyncConfig = SyncConfig()
    erp: ErpConfig = ErpConfig()


def _candidate_paths() -> list[Path]:
    return [
        Path.cwd() / "opms-sync.yaml",
        Path.cwd() / "opms-sync.yml",
        Path.home() / ".opms-sync" / "config.yaml",
        Path.home() / ".opms-sync" / "config.yml",
    ]


def _locate(config_path: str | None) -> Path | None:
    """Pick the config file, or None to run on defaults.

    Raises:
        FileNotFoundError: If an explicitly named file does not exist.
    """
    named = config_path or os.environ.get(CONFIG_PATH_ENV, "").strip()
    if named:
        path = Path(named).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return path
    return next((p for p in _candidate_paths() if p.exists()), None)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping of sections")
    return data


def _split_env_key(key: str) -> tuple[str, str] | None:
    """Map OPMS_SYNC_WORKER_BATCH_SIZE to ("worker", "batch_size").

    Returns None for variables that name no known section and field, such
    as OPMS_SYNC_API_KEY or OPMS_SYNC_WEBHOOK_SECRET.
    """
    suffix = key[len(ENV_PREFIX):].lower()
    for section, info in OpmsSyncConfig.model_fields.items():
        if suffix.startswith(section + "_"):
            field = suffix[len(section) + 1:]
            if field in info.annotation.model_fields:
                return section, field
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay OPMS_SYNC_<SECTION>_<KEY> variables onto parsed YAML.

    Values stay strings; pydantic coerces them to each field's type.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        target = _split_env_key(key)
        if target is None:
            continue
        section, field = target
        if not isinstance(data.get(section), dict):
            data[section] = {}
        data[section][field] = value
    return data


def load_config(config_path: str | None = None) -> OpmsSyncConfig:
    """Load and validate configuration.

    Args:
        config_path: Explicit config file; overrides OPMS_SYNC_CONFIG_PATH
            and the default locations.

    Returns:
        Validated OpmsSyncConfig. With no file anywhere, defaults plus
        environment overrides.

    Raises:
        FileNotFoundError: If an explicitly named file does not exist.
        ValueError: If the YAML top level is not a mapping.
        pydantic.ValidationError: If a value fails validation.
    """
    path = _locate(config_path)
    data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        data = _expand(_read_yaml(path))
    return OpmsSyncConfig(**_apply_env_overrides(data))
