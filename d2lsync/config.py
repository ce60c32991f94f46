"""Configuration management for the directory synchronisation service."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml


DEFAULT_URI_BASE = "https://test.brightspace.com"

DEFAULT_QUERIES: Dict[str, str] = {
    "journal_max_id": "SELECT MAX(sequence_number) FROM journal",
    "journal": (
        "SELECT sequence_number, user_id FROM journal "
        "WHERE sequence_number > ? ORDER BY sequence_number LIMIT ?"
    ),
    "user": (
        "SELECT preferred_first_name, first_name, middle_name, last_name, "
        "user_name, org_defined_id, email, role FROM users WHERE id = ?"
    ),
}

_QUERY_ENV = {
    "journal_max_id": "D2L_QUERY_JOURNAL_MAX_ID",
    "journal": "D2L_QUERY_JOURNAL",
    "user": "D2L_QUERY_USER",
}


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class SyncSettings:
    """Everything the engine needs, resolved once at startup."""

    app_id: str
    app_key: bytes
    user_id: str
    user_key: bytes
    uri_base: str = DEFAULT_URI_BASE
    source_path: Path = Path("data/source.sqlite3")
    checkpoint_path: Path = Path("data/checkpoint")
    batch_size: int = 100
    poll_interval: float = 1.0
    backoff_interval: float = 60.0
    http_timeout: float = 360.0
    queries: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_QUERIES))

    def with_checkpoint_path(self, path: Path) -> "SyncSettings":
        return replace(self, checkpoint_path=path)


def _required(environ: Mapping[str, str], name: str) -> str:
    value = (environ.get(name) or "").strip()
    if not value:
        raise ConfigurationError(f"{name} environment variable is required")
    return value


def _as_int(value: object, name: str) -> int:
    try:
        number = int(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer value {value!r} for {name}") from exc
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {number}")
    return number


def _as_float(value: object, name: str) -> float:
    try:
        number = float(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid number {value!r} for {name}") from exc
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative, got {number}")
    return number


def _as_path(value: object, base_path: Optional[Path]) -> Path:
    raw = Path(str(value)).expanduser()
    if not raw.is_absolute() and base_path is not None:
        raw = base_path / raw
    return raw.resolve(strict=False)


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load optional, non-secret settings from a YAML file."""

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Unable to read configuration file {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(
    environ: Mapping[str, str],
    config_path: Optional[Path] = None,
) -> SyncSettings:
    """Build :class:`SyncSettings` from a YAML file and the environment.

    Credentials only come from the environment. Any other key may be set in
    the file; environment variables take precedence over it.
    """

    if config_path is None and environ.get("D2L_CONFIG"):
        config_path = Path(environ["D2L_CONFIG"]).expanduser()

    file_values: Dict[str, object] = {}
    base_path: Optional[Path] = None
    if config_path is not None:
        file_values = load_config_file(config_path)
        base_path = config_path.resolve(strict=False).parent

    def pick(key: str, env_name: str) -> object | None:
        env_value = environ.get(env_name)
        if env_value is not None and env_value.strip() != "":
            return env_value.strip()
        return file_values.get(key)

    overrides: Dict[str, object] = {}

    uri_base = pick("uri_base", "D2L_URI_BASE")
    if uri_base is not None:
        cleaned = str(uri_base).strip().rstrip("/")
        if not cleaned:
            raise ConfigurationError("uri_base must not be empty")
        overrides["uri_base"] = cleaned

    source_path = pick("source_path", "D2L_SOURCE_PATH")
    if source_path is not None:
        overrides["source_path"] = _as_path(source_path, base_path)

    checkpoint_path = pick("checkpoint_path", "D2L_CHECKPOINT_PATH")
    if checkpoint_path is not None:
        overrides["checkpoint_path"] = _as_path(checkpoint_path, base_path)

    batch_size = pick("batch_size", "D2L_BATCH_SIZE")
    if batch_size is not None:
        overrides["batch_size"] = _as_int(batch_size, "batch_size")

    for key, env_name in (
        ("poll_interval", "D2L_POLL_INTERVAL"),
        ("backoff_interval", "D2L_BACKOFF_INTERVAL"),
        ("http_timeout", "D2L_HTTP_TIMEOUT"),
    ):
        value = pick(key, env_name)
        if value is not None:
            overrides[key] = _as_float(value, key)

    file_queries = file_values.get("queries") or {}
    if not isinstance(file_queries, dict):
        raise ConfigurationError("'queries' must be a mapping of query name to SQL")
    unknown = set(file_queries) - set(DEFAULT_QUERIES)
    if unknown:
        raise ConfigurationError(f"Unknown queries in configuration: {', '.join(sorted(unknown))}")
    queries = dict(DEFAULT_QUERIES)
    for name, env_name in _QUERY_ENV.items():
        value = environ.get(env_name) or file_queries.get(name)
        if value:
            queries[name] = str(value)
    overrides["queries"] = queries

    return SyncSettings(
        app_id=_required(environ, "D2L_APP_ID"),
        app_key=_required(environ, "D2L_APP_KEY").encode("utf-8"),
        user_id=_required(environ, "D2L_USR_ID"),
        user_key=_required(environ, "D2L_USR_KEY").encode("utf-8"),
        **overrides,
    )


__all__ = [
    "ConfigurationError",
    "DEFAULT_QUERIES",
    "DEFAULT_URI_BASE",
    "SyncSettings",
    "load_config_file",
    "load_settings",
]
