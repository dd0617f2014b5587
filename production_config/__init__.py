"""
production_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``production_kernel`` and below
    ``production_ingestion`` / ``production_services``.  The kernel never
    imports from here; it receives StageMap and DeductionPolicy values.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation: every mapped list points at a catalog stage, and the
      deduction stage exists in the catalog.
    - Loaded once: the returned config is frozen; callers hold it for the
      lifetime of the process (the FastAPI app stores it on app.state).

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``StageMapError`` -- stage table inconsistent.

Audit relevance:
    Every successful call logs ``production_config_loaded`` with the
    config id, version, checksum and mapping sizes, tying behaviour back to
    the exact YAML that governed it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from production_config.loader import load_yaml_file, parse_config
from production_config.schema import (
    BoardConfig,
    DatabaseConfig,
    ProductionConfig,
    WebhookConfig,
)
from production_kernel.exceptions import StageMapError
from production_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

__all__ = [
    "BoardConfig",
    "DatabaseConfig",
    "ProductionConfig",
    "WebhookConfig",
    "get_active_config",
]


def get_active_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProductionConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to $PRODUCTION_CONFIG_PATH,
            then production_config/sets/default.yaml.
        environ: Environment mapping for secrets; defaults to os.environ.

    Returns:
        A validated, frozen ProductionConfig.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        StageMapError: If the stage table is inconsistent.
    """
    env = os.environ if environ is None else environ
    path = config_path or Path(env.get("PRODUCTION_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    config = parse_config(load_yaml_file(path), env)

    errors = config.stage_map.validate(required_stages=(config.policy.deduction_stage,))
    if errors:
        raise StageMapError(errors)

    logger.info(
        "production_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "stage_count": len(config.stage_map.stages),
            "mapped_list_count": len(config.stage_map.list_to_stage),
            "deduction_stage": config.policy.deduction_stage,
            "size_fallback": config.policy.size_fallback.value,
            "webhook_configured": not config.webhook.missing(),
            "board_configured": not config.board.missing(),
        },
    )
    return config
