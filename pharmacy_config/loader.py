"""
Configuration Loader (``pharmacy_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``pharmacy_config.schema``.  Runtime code obtains configuration through
``pharmacy_config.get_active_config()`` only.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id``  -> ``KeyError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from pharmacy_config.schema import (
    DatabaseConfig,
    EngineConfig,
    LoggingConfig,
    ReturnPolicyConfig,
    SequenceConfig,
    StoreCallConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(cls: type, data: dict[str, Any] | None, section: str):
    """Build ``cls`` from a YAML mapping, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"section '{section}' must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"unknown keys in section '{section}': {sorted(unknown)}")
    return cls(**data)


def parse_return_policy(data: dict[str, Any] | None) -> ReturnPolicyConfig:
    return _parse_section(ReturnPolicyConfig, data, "returns")


def parse_store_calls(data: dict[str, Any] | None) -> StoreCallConfig:
    return _parse_section(StoreCallConfig, data, "store_calls")


def parse_sequence(data: dict[str, Any] | None) -> SequenceConfig:
    return _parse_section(SequenceConfig, data, "sequence")


def parse_database(data: dict[str, Any] | None) -> DatabaseConfig:
    return _parse_section(DatabaseConfig, data, "database")


def parse_logging(data: dict[str, Any] | None) -> LoggingConfig:
    return _parse_section(LoggingConfig, data, "logging")


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a complete configuration set.

    Preconditions:
        - ``data`` contains ``config_id``.
    Postconditions:
        - Sections absent from ``data`` take schema defaults.
        - ``checksum`` is the checksum of ``data``.
    """
    known = {"config_id", "version", "returns", "store_calls", "sequence", "database", "logging"}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"unknown top-level keys: {sorted(unknown)}")
    return EngineConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        returns=parse_return_policy(data.get("returns")),
        store_calls=parse_store_calls(data.get("store_calls")),
        sequence=parse_sequence(data.get("sequence")),
        database=parse_database(data.get("database")),
        logging=parse_logging(data.get("logging")),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path) -> EngineConfig:
    return parse_engine_config(load_yaml_file(path))
