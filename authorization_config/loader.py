"""
Configuration Loader (``authorization_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the typed
``authorization_config.schema`` dataclasses.  Runtime callers go through
``authorization_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys raise ``ValueError``; a typo never silently falls back to a
  default.
* Missing sections and keys take the schema defaults.
* Percent thresholds must lie in (0, 100].
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from authorization_config.schema import (
    AuthorizationKernelConfig,
    DatabaseSettings,
    RetrySettings,
    UtilizationSettings,
)

_KNOWN_STATUSES = frozenset(
    {"requested", "approved", "active", "expiring", "expired", "denied", "cancelled"}
)

_TOP_LEVEL_KEYS = frozenset({"config_id", "version", "database", "utilization", "retry"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _check_keys(section: str, data: Any, allowed: frozenset[str]) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    return data


def _field_names(cls: type) -> frozenset[str]:
    return frozenset(f.name for f in fields(cls))


def _percent(name: str, value: Any) -> int:
    value = int(value)
    if not 0 < value <= 100:
        raise ValueError(f"{name} must be in (0, 100], got {value}")
    return value


def parse_database(data: Any) -> DatabaseSettings:
    data = _check_keys("database", data, _field_names(DatabaseSettings))
    return DatabaseSettings(**data)


def parse_utilization(data: Any) -> UtilizationSettings:
    """Parse the utilization section, validating thresholds and statuses."""
    data = _check_keys("utilization", data, _field_names(UtilizationSettings))
    defaults = UtilizationSettings()

    statuses = tuple(
        str(s).lower() for s in data.get("overlap_statuses", defaults.overlap_statuses)
    )
    unknown = sorted(set(statuses) - _KNOWN_STATUSES)
    if unknown:
        raise ValueError(f"Unknown overlap statuses: {', '.join(unknown)}")

    window = int(data.get("default_expiring_window_days", defaults.default_expiring_window_days))
    if window < 0:
        raise ValueError("default_expiring_window_days must be >= 0")

    return UtilizationSettings(
        expiring_threshold_percent=_percent(
            "expiring_threshold_percent",
            data.get("expiring_threshold_percent", defaults.expiring_threshold_percent),
        ),
        near_limit_percent=_percent(
            "near_limit_percent",
            data.get("near_limit_percent", defaults.near_limit_percent),
        ),
        overlap_statuses=statuses,
        default_expiring_window_days=window,
    )


def parse_retry(data: Any) -> RetrySettings:
    data = _check_keys("retry", data, _field_names(RetrySettings))
    settings = RetrySettings(**data)
    if settings.max_attempts < 1:
        raise ValueError("retry.max_attempts must be >= 1")
    if settings.backoff_seconds < 0:
        raise ValueError("retry.backoff_seconds must be >= 0")
    return settings


def parse_config(data: dict[str, Any]) -> AuthorizationKernelConfig:
    """Parse a whole configuration document."""
    data = _check_keys("<root>", data, _TOP_LEVEL_KEYS)
    return AuthorizationKernelConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        database=parse_database(data.get("database")),
        utilization=parse_utilization(data.get("utilization")),
        retry=parse_retry(data.get("retry")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> AuthorizationKernelConfig:
    return parse_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
