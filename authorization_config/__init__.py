"""
authorization_config -- single public entrypoint for kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``authorization_kernel``.  The kernel MUST
    NEVER import from ``authorization_config``; ``bridges`` translates the
    loaded settings into kernel policy values and the Database handle.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Environment override order for the database URL:
      AUTHORIZATION_DATABASE_URL, then DATABASE_URL, then the YAML value.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``authorization_config_loaded`` log entry with config_id, version and
    checksum.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from authorization_config.loader import load_config
from authorization_config.schema import (
    AuthorizationKernelConfig,
    DatabaseSettings,
    RetrySettings,
    UtilizationSettings,
)

_logger = logging.getLogger("authorization_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

_DATABASE_URL_VARIABLES = ("AUTHORIZATION_DATABASE_URL", "DATABASE_URL")


def get_active_config(path: Path | None = None) -> AuthorizationKernelConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML document to load.  Defaults to the packaged defaults.yaml.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the document has unknown keys or bad values.
    """
    config = load_config(path or DEFAULT_CONFIG_PATH)

    source = "yaml"
    for variable in _DATABASE_URL_VARIABLES:
        url = os.environ.get(variable)
        if url:
            config = replace(config, database=replace(config.database, url=url))
            source = variable
            break

    _logger.info(
        "authorization_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "database_url_source": source,
            "expiring_threshold_percent": config.utilization.expiring_threshold_percent,
            "near_limit_percent": config.utilization.near_limit_percent,
        },
    )
    return config


__all__ = [
    "AuthorizationKernelConfig",
    "DatabaseSettings",
    "DEFAULT_CONFIG_PATH",
    "RetrySettings",
    "UtilizationSettings",
    "get_active_config",
    "load_config",
]
