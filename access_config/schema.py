"""
Hub configuration schema.

Frozen dataclasses the loader parses ``hub.yaml`` into.  Values here are
the only settings the kernel reads; nothing else consults the environment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

MAX_LIST_LIMIT = 200


@dataclass(frozen=True)
class DatabaseConfig:
    """Database URL and pool settings (pool settings apply to PostgreSQL)."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class HandlerConfig:
    """Catalog handler execution limits."""

    timeout_seconds: float = 30.0
    max_workers: int = 8


@dataclass(frozen=True)
class SystemCatalogConfig:
    """Ids of the built-in catalog that hosts resource-update approvals."""

    catalog_id: str = "system"
    resource_update_flow_id: str = "resource-update"


@dataclass(frozen=True)
class PaginationConfig:
    default_limit: int = 50
    max_limit: int = MAX_LIST_LIMIT


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    @property
    def level_number(self) -> int:
        return logging.getLevelName(self.level.upper())


@dataclass(frozen=True)
class HubConfig:
    """Root configuration object returned by ``get_active_config()``."""

    config_id: str
    admin_group_id: str
    database: DatabaseConfig
    handlers: HandlerConfig = field(default_factory=HandlerConfig)
    system_catalog: SystemCatalogConfig = field(default_factory=SystemCatalogConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
