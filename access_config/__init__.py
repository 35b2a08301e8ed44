"""
access_config -- single public entrypoint for hub configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``HubConfig``.  YAML loading
    is internal and never exposed to callers.

Architecture position:
    Configuration.  This package sits beside ``access_kernel``; the kernel
    domain never imports it.  Services receive the values they need
    (admin group id, handler timeout, system catalog ids, list limits) as
    plain constructor arguments from the composition root.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` -- a required key is missing.
    - ``ValueError`` -- a value is malformed or out of range.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``access_config_loaded`` log entry with the config id and the SHA-256
    checksum of the parsed document.
"""

from __future__ import annotations

import logging
from pathlib import Path

from access_config.loader import load_yaml_file, parse_hub_config
from access_config.schema import (
    DatabaseConfig,
    HandlerConfig,
    HubConfig,
    LoggingConfig,
    PaginationConfig,
    SystemCatalogConfig,
)

_logger = logging.getLogger("access_kernel.config")

# Default configuration shipped with the package
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "hub.yaml"


def get_active_config(path: Path | str | None = None) -> HubConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a hub YAML file.  Defaults to the
            ``defaults/hub.yaml`` shipped with this package.

    Returns:
        HubConfig -- frozen, validated configuration.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value fails validation.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    config = parse_hub_config(load_yaml_file(config_path))

    _logger.info(
        "access_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_path": str(config_path),
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "HandlerConfig",
    "HubConfig",
    "LoggingConfig",
    "PaginationConfig",
    "SystemCatalogConfig",
    "get_active_config",
]
