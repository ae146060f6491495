"""
pharmacy_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It loads a YAML set (the packaged default unless a path
    or the ``PHARMACY_RETURNS_CONFIG`` environment variable names another)
    and returns a frozen ``EngineConfig``.

Architecture position:
    Configuration.  Imports only PyYAML and the standard library; the
    kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the named configuration set does not exist.
    - ``ValueError`` -- schema validation failures.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pharmacy_config.loader import load_engine_config
from pharmacy_config.schema import (
    DatabaseConfig,
    EngineConfig,
    LoggingConfig,
    ReturnPolicyConfig,
    SequenceConfig,
    StoreCallConfig,
)

_logger = logging.getLogger("pharmacy_kernel.config")

CONFIG_ENV_VAR = "PHARMACY_RETURNS_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "EngineConfig",
    "LoggingConfig",
    "ReturnPolicyConfig",
    "SequenceConfig",
    "StoreCallConfig",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then ``$PHARMACY_RETURNS_CONFIG``,
    then the packaged ``sets/default.yaml``.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    config = load_engine_config(Path(path))
    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config
