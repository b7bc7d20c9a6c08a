"""
trade_config -- single public entrypoint for trading-core configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a validated ``TradeConfiguration``;
    ``trade_config.bridges`` turns it into the kernel's
    ``TradePolicySnapshot`` and service credential verifier.

Architecture position:
    Configuration -- sits above ``trade_kernel`` and below
    ``trade_services``.  The kernel MUST NEVER import from
    ``trade_config``.

Sources, in order:
    1. ``trade_config/defaults.yaml`` (always loaded).
    2. The file passed as ``path``, else the file named by the
       ``TRADE_CONFIG_PATH`` environment variable, overlaid section by
       section on the defaults.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ConfigValidationError`` -- the merged configuration is invalid.

Audit relevance:
    Every successful call emits a ``TRADE_CONFIG_TRACE`` log entry with the
    config id, version and checksum, tying guarded writes back to the
    configuration that governed them.
"""

from __future__ import annotations

import os
from pathlib import Path

from trade_config.loader import load_yaml_file, merge_sections, parse_configuration
from trade_config.schema import TradeConfiguration
from trade_config.validator import validate_configuration
from trade_kernel.exceptions import ConfigValidationError
from trade_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "TRADE_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> TradeConfiguration:
    """The ONLY public configuration entrypoint.

    Raises:
        FileNotFoundError: If the override file does not exist.
        ConfigValidationError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    override = path or os.environ.get(CONFIG_PATH_ENV)
    if override:
        data = merge_sections(data, load_yaml_file(Path(override)))

    config = parse_configuration(data)
    validation = validate_configuration(config)
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"detail": warning})
    if not validation.is_valid:
        raise ConfigValidationError(validation.errors)

    _logger.info(
        "TRADE_CONFIG_TRACE",
        extra={
            "trace_type": "TRADE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "override_path": str(override) if override else None,
            "critical_operation_count": len(config.guard.critical_operations),
            "approval_chain_count": len(config.approval_chains),
        },
    )
    return config


__all__ = ["TradeConfiguration", "get_active_config"]
