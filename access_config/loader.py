"""
Configuration loader (``access_config.loader``).

Responsibility
--------------
Loads the hub YAML document and parses it into the frozen dataclasses of
``access_config.schema``.  Callers go through
``access_config.get_active_config()``; nothing else should call this
module directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys never get silent defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from access_config.schema import (
    MAX_LIST_LIMIT,
    DatabaseConfig,
    HandlerConfig,
    HubConfig,
    LoggingConfig,
    PaginationConfig,
    SystemCatalogConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
        pool_recycle=int(data.get("pool_recycle", 1800)),
    )


def parse_handlers(data: dict[str, Any]) -> HandlerConfig:
    config = HandlerConfig(
        timeout_seconds=float(data.get("timeout_seconds", 30.0)),
        max_workers=int(data.get("max_workers", 8)),
    )
    if config.timeout_seconds <= 0:
        raise ValueError(f"handlers.timeout_seconds must be positive, got {config.timeout_seconds}")
    if config.max_workers < 1:
        raise ValueError(f"handlers.max_workers must be at least 1, got {config.max_workers}")
    return config


def parse_system_catalog(data: dict[str, Any]) -> SystemCatalogConfig:
    return SystemCatalogConfig(
        catalog_id=str(data.get("catalog_id", "system")),
        resource_update_flow_id=str(data.get("resource_update_flow_id", "resource-update")),
    )


def parse_pagination(data: dict[str, Any]) -> PaginationConfig:
    config = PaginationConfig(
        default_limit=int(data.get("default_limit", 50)),
        max_limit=int(data.get("max_limit", MAX_LIST_LIMIT)),
    )
    if not 1 <= config.max_limit <= MAX_LIST_LIMIT:
        raise ValueError(f"pagination.max_limit must be within 1..{MAX_LIST_LIMIT}")
    if not 1 <= config.default_limit <= config.max_limit:
        raise ValueError("pagination.default_limit must be within 1..max_limit")
    return config


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    config = LoggingConfig(level=str(data.get("level", "INFO")).upper())
    if not isinstance(logging.getLevelName(config.level), int):
        raise ValueError(f"logging.level is not a logging level: {config.level}")
    return config


def parse_hub_config(data: dict[str, Any]) -> HubConfig:
    """Parse a loaded hub document into a ``HubConfig``."""
    admin_group_id = str(data["admin_group_id"])
    try:
        UUID(admin_group_id)
    except ValueError:
        raise ValueError(f"admin_group_id must be a UUID, got {admin_group_id!r}") from None

    return HubConfig(
        config_id=str(data["config_id"]),
        admin_group_id=admin_group_id,
        database=parse_database(data["database"]),
        handlers=parse_handlers(data.get("handlers") or {}),
        system_catalog=parse_system_catalog(data.get("system_catalog") or {}),
        pagination=parse_pagination(data.get("pagination") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
