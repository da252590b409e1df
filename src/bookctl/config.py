from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import platformdirs
import tomllib
import tomli_w

APP_NAME = "bookctl"
URI_ENV_VAR = "BOOKCTL_MONGO_URI"
DEFAULT_URI = "mongodb://localhost:27017"
DEFAULT_DB_NAME = "plp_bookstore"
DEFAULT_COLLECTION = "books"
DEFAULT_TIMEOUT_MS = 30_000

_URI_SCHEMES = {"mongodb", "mongodb+srv"}


class ConfigError(ValueError):
    """Raised when config values are invalid."""


@dataclass(slots=True)
class AppConfig:
    mongo_uri: str = DEFAULT_URI
    db_name: str = DEFAULT_DB_NAME
    collection: str = DEFAULT_COLLECTION
    timeout_ms: int = DEFAULT_TIMEOUT_MS


def config_dir() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME))


def config_path() -> Path:
    return config_dir() / "config.toml"


def validate_mongo_uri(uri: str) -> str:
    normalized = uri.strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in _URI_SCHEMES or not parsed.netloc:
        raise ConfigError(f"Invalid MongoDB URI: {uri!r}")
    return normalized


def validate_name(value: str, *, key: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ConfigError(f"Config key {key!r} must not be empty.")
    # MongoDB rejects these characters in database names, '$' in collection names.
    forbidden = '/\\. "$' if key == "db_name" else "$"
    if any(ch in normalized for ch in forbidden):
        raise ConfigError(f"Invalid value for {key!r}: {value!r}")
    return normalized


def _read_raw_config() -> dict[str, Any]:
    path = config_path()
    if not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse config file at {path}: {exc}") from exc


def load_config() -> AppConfig:
    raw = _read_raw_config()
    mongo_uri = raw.get("mongo_uri", DEFAULT_URI)
    db_name = raw.get("db_name", DEFAULT_DB_NAME)
    collection = raw.get("collection", DEFAULT_COLLECTION)
    timeout_ms = raw.get("timeout_ms", DEFAULT_TIMEOUT_MS)

    if not isinstance(mongo_uri, str):
        raise ConfigError("Config key 'mongo_uri' must be a string.")
    mongo_uri = validate_mongo_uri(mongo_uri)

    if not isinstance(db_name, str):
        raise ConfigError("Config key 'db_name' must be a string.")
    db_name = validate_name(db_name, key="db_name")

    if not isinstance(collection, str):
        raise ConfigError("Config key 'collection' must be a string.")
    collection = validate_name(collection, key="collection")

    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0:
        raise ConfigError("Config key 'timeout_ms' must be a positive integer.")

    return AppConfig(
        mongo_uri=mongo_uri,
        db_name=db_name,
        collection=collection,
        timeout_ms=timeout_ms,
    )


def save_config(config: AppConfig) -> None:
    config_dir().mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {
        "mongo_uri": config.mongo_uri,
        "db_name": config.db_name,
        "collection": config.collection,
        "timeout_ms": config.timeout_ms,
    }
    config_path().write_text(tomli_w.dumps(payload), encoding="utf-8")


def set_mongo_uri(uri: str) -> AppConfig:
    cfg = load_config()
    cfg.mongo_uri = validate_mongo_uri(uri)
    save_config(cfg)
    return cfg


def set_db_name(name: str) -> AppConfig:
    cfg = load_config()
    cfg.db_name = validate_name(name, key="db_name")
    save_config(cfg)
    return cfg


def set_collection(name: str) -> AppConfig:
    cfg = load_config()
    cfg.collection = validate_name(name, key="collection")
    save_config(cfg)
    return cfg


def resolve_mongo_uri(uri_override: str | None, cfg: AppConfig) -> str:
    if uri_override:
        return validate_mongo_uri(uri_override)
    from_env = os.getenv(URI_ENV_VAR)
    if from_env and from_env.strip():
        return validate_mongo_uri(from_env)
    return cfg.mongo_uri


def redact_uri(uri: str) -> str:
    """Hide the password part of a connection string for display."""
    parsed = urlparse(uri)
    if parsed.password is None:
        return uri
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@", 1)
    return parsed._replace(netloc=netloc).geturl()
