"""Configuration loader for TemplateFlow runtime settings.

Settings come from ``profiles.yaml`` (sections ``cache``, ``store``,
``upload`` and ``engine``) with environment variable overrides so the same
file can be shared between machines.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from templateflow.core.errors import ConfigError
from templateflow.core.logger import get_logger
from templateflow.core.profiles import ensure_work_dirs, resolve_config_path

LOGGER = get_logger()

DEFAULT_CACHE_TTL_SEC = 24 * 60 * 60
DEFAULT_CHUNK_SIZE = 128 * 1024
DEFAULT_TEMPLATE_PREFIX = "templates"
DEFAULT_TIMEOUT = 30.0

CACHE_DIR_ENV = "TEMPLATEFLOW_CACHE_DIR"
CACHE_TTL_ENV = "TEMPLATEFLOW_CACHE_TTL_SEC"
STORE_URL_ENV = "TEMPLATEFLOW_STORE_URL"
STORE_ROOT_ENV = "TEMPLATEFLOW_STORE_ROOT"
STORE_TOKEN_ENV = "TEMPLATEFLOW_STORE_TOKEN"
TIMEOUT_ENV = "TEMPLATEFLOW_TIMEOUT_SEC"
RETRY_ATTEMPTS_ENV = "TEMPLATEFLOW_RETRY_ATTEMPTS"
RETRY_BACKOFF_MS_ENV = "TEMPLATEFLOW_RETRY_BACKOFF_MS"
QUALITY_HINT_ENV = "TEMPLATEFLOW_QUALITY_HINT"


@dataclass(slots=True)
class RetryConfig:
    """Retry parameters for object store HTTP requests."""

    max_attempts: int = 3
    backoff_ms: int = 200
    max_backoff_ms: int = 2000

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "RetryConfig":
        if not data:
            return cls()
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            backoff_ms=int(data.get("backoff_ms", 200)),
            max_backoff_ms=int(data.get("max_backoff_ms", 2000)),
        )


@dataclass(slots=True)
class StoreSettings:
    """Where templates and generated documents are stored.

    Exactly one of ``base_url`` (HTTP object gateway) or ``root`` (local
    directory store) is used; ``base_url`` wins when both are set.
    """

    base_url: str | None = None
    root: Path | None = None
    access_token: str | None = None
    timeout_sec: float = DEFAULT_TIMEOUT
    retries: RetryConfig = field(default_factory=RetryConfig)
    verify_tls: bool = True
    trust_env: bool = False
    proxies: Mapping[str, str] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "StoreSettings":
        data = data or {}
        proxies_raw = data.get("proxies")
        proxies: Mapping[str, str] | None = None
        if isinstance(proxies_raw, Mapping):
            proxies = {str(k): _expand_env(v) for k, v in proxies_raw.items()}
        root = _expand_env(data.get("root"))
        return cls(
            base_url=_expand_env(data.get("base_url")),
            root=Path(root).expanduser() if root else None,
            access_token=_expand_env(data.get("access_token")),
            timeout_sec=_as_float(data.get("timeout_sec", DEFAULT_TIMEOUT), "store.timeout_sec"),
            retries=RetryConfig.from_mapping(_ensure_mapping(data.get("retries"))),
            verify_tls=bool(data.get("verify_tls", True)),
            trust_env=bool(data.get("trust_env", False)),
            proxies=proxies,
        )


@dataclass(slots=True)
class CacheSettings:
    directory: Path | None = None
    ttl_seconds: int = DEFAULT_CACHE_TTL_SEC
    prefix: str = DEFAULT_TEMPLATE_PREFIX
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "CacheSettings":
        data = data or {}
        directory = _expand_env(data.get("directory"))
        return cls(
            directory=Path(directory).expanduser() if directory else None,
            ttl_seconds=_as_int(data.get("ttl_seconds", DEFAULT_CACHE_TTL_SEC), "cache.ttl_seconds"),
            prefix=str(data.get("prefix", DEFAULT_TEMPLATE_PREFIX)),
            chunk_size=_as_int(data.get("chunk_size", DEFAULT_CHUNK_SIZE), "cache.chunk_size"),
        )

    def resolved_directory(self) -> Path:
        if self.directory is not None:
            return self.directory
        return ensure_work_dirs()["cache"]


@dataclass(slots=True)
class UploadSettings:
    quality_hint: str | None = None
    timeout_sec: float | None = None
    kind: str = "documents"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "UploadSettings":
        data = data or {}
        timeout = data.get("timeout_sec")
        hint = data.get("quality_hint")
        return cls(
            quality_hint=str(hint) if hint else None,
            timeout_sec=_as_float(timeout, "upload.timeout_sec") if timeout is not None else None,
            kind=str(data.get("kind", "documents")),
        )


@dataclass(slots=True)
class AppConfig:
    """Resolved configuration for the generation pipeline."""

    cache: CacheSettings = field(default_factory=CacheSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    mapping_file: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AppConfig":
        engine = _ensure_mapping(data.get("engine")) or {}
        mapping_file = engine.get("mapping_file")
        return cls(
            cache=CacheSettings.from_mapping(_ensure_mapping(data.get("cache"))),
            store=StoreSettings.from_mapping(_ensure_mapping(data.get("store"))),
            upload=UploadSettings.from_mapping(_ensure_mapping(data.get("upload"))),
            mapping_file=resolve_config_path(str(mapping_file)) if mapping_file else None,
        )


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load ``profiles.yaml`` (if present) and apply environment overrides.

    Args:
        path: Optional override for the config file path.

    Returns:
        Parsed ``AppConfig`` instance.

    Raises:
        ConfigError: If the file exists but cannot be parsed or is invalid.
    """

    cfg_path = resolve_config_path(path or "profiles.yaml")
    if cfg_path.exists():
        config = AppConfig.from_mapping(_load_yaml(cfg_path))
    elif path is not None:
        raise ConfigError(f"profiles.yaml not found at {cfg_path}")
    else:
        LOGGER.info("config.load profiles_missing path=%s using defaults", cfg_path)
        config = AppConfig()
    return apply_env_overrides(config)


def apply_env_overrides(config: AppConfig) -> AppConfig:
    cache_dir = _read_env(CACHE_DIR_ENV)
    if cache_dir:
        config.cache.directory = Path(cache_dir).expanduser()
    ttl = _read_env_int(CACHE_TTL_ENV)
    if ttl is not None:
        config.cache.ttl_seconds = ttl

    store_url = _read_env(STORE_URL_ENV)
    if store_url:
        config.store.base_url = store_url
    store_root = _read_env(STORE_ROOT_ENV)
    if store_root:
        config.store.root = Path(store_root).expanduser()
    token = _read_env(STORE_TOKEN_ENV)
    if token:
        config.store.access_token = token
    timeout = _read_env_float(TIMEOUT_ENV)
    if timeout is not None:
        config.store.timeout_sec = timeout
    attempts = _read_env_int(RETRY_ATTEMPTS_ENV)
    if attempts is not None:
        config.store.retries.max_attempts = max(1, attempts)
    backoff = _read_env_int(RETRY_BACKOFF_MS_ENV)
    if backoff is not None:
        config.store.retries.backoff_ms = backoff

    hint = _read_env(QUALITY_HINT_ENV)
    if hint:
        config.upload.quality_hint = hint

    if config.cache.ttl_seconds <= 0:
        raise ConfigError("cache.ttl_seconds must be positive")
    if config.cache.chunk_size <= 0:
        raise ConfigError("cache.chunk_size must be positive")
    return config


def _read_env(key: str) -> str | None:
    value = os.getenv(key)
    if value is None:
        return None
    return value.strip()


def _read_env_int(key: str) -> int | None:
    value = _read_env(key)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {key} must be an integer") from exc


def _read_env_float(key: str) -> float | None:
    value = _read_env(key)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {key} must be a number") from exc


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer") from exc


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number") from exc


def _ensure_mapping(value: Any) -> Mapping[str, Any] | None:
    if isinstance(value, Mapping):
        return value
    return None


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        expanded = os.path.expandvars(value)
        if "${" in value and "}" in value and expanded == value:
            raise ConfigError(f"Environment variable not set for value: {value}")
        return expanded
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("profiles.yaml must contain a mapping at the top level")
    return data


__all__ = [
    "AppConfig",
    "CacheSettings",
    "RetryConfig",
    "StoreSettings",
    "UploadSettings",
    "load_config",
    "apply_env_overrides",
    "CACHE_DIR_ENV",
    "CACHE_TTL_ENV",
    "STORE_URL_ENV",
    "STORE_ROOT_ENV",
    "STORE_TOKEN_ENV",
    "TIMEOUT_ENV",
    "RETRY_ATTEMPTS_ENV",
    "RETRY_BACKOFF_MS_ENV",
    "QUALITY_HINT_ENV",
]
