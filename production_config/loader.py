"""
Configuration Loader (``production_config.loader``).

Responsibility
--------------
Loads the YAML configuration set and parses it into the frozen
``production_config.schema`` dataclasses, overlaying secrets and
connection strings from the environment.

Architecture position
---------------------
**Config layer**.  Consumed by ``production_config.get_active_config()``;
nothing else should call it at runtime.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Secrets never come from YAML: the webhook secret, callback URL and board
  credentials are read from the environment only.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the YAML
  content for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown size_fallback value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from production_config.schema import (
    BoardConfig,
    DatabaseConfig,
    ProductionConfig,
    WebhookConfig,
)
from production_kernel.domain.policy import DEFAULT_DEDUCTION_STAGE, DeductionPolicy, SizeFallback
from production_kernel.domain.stage_map import StageDefinition, StageMap

DEFAULT_DATABASE_URL = "sqlite:///production.db"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_stage_map(data: dict[str, Any]) -> StageMap:
    """Parse the stage catalog and the board list mapping."""
    stages = tuple(
        StageDefinition(slug=entry["slug"], label=entry.get("label", entry["slug"]))
        for entry in data["stages"]
    )
    board_lists = {
        str(list_id): slug for list_id, slug in (data.get("board_lists") or {}).items()
    }
    return StageMap(
        stages=stages,
        list_to_stage=board_lists,
        resolve_by_name=bool(data.get("resolve_by_list_name", False)),
    )


def parse_policy(data: dict[str, Any]) -> DeductionPolicy:
    """Parse the ledger section."""
    return DeductionPolicy(
        deduction_stage=data.get("deduction_stage", DEFAULT_DEDUCTION_STAGE),
        size_fallback=SizeFallback(data.get("size_fallback", SizeFallback.GENERIC_WHEN_NO_EXACT.value)),
        allow_negative_stock=bool(data.get("allow_negative_stock", True)),
    )


def parse_database(data: dict[str, Any], environ: Mapping[str, str]) -> DatabaseConfig:
    timeout = data.get("statement_timeout_ms", 15_000)
    return DatabaseConfig(
        url=environ.get("DATABASE_URL") or data.get("url") or DEFAULT_DATABASE_URL,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        statement_timeout_ms=int(timeout) if timeout is not None else None,
    )


def parse_webhook(data: dict[str, Any], environ: Mapping[str, str]) -> WebhookConfig:
    return WebhookConfig(
        secret=environ.get("TRELLO_WEBHOOK_SECRET") or None,
        callback_url=environ.get("TRELLO_WEBHOOK_CALLBACK_URL") or None,
        path=data.get("path", "/webhooks/trello"),
        signature_header=data.get("signature_header", "X-Trello-Webhook"),
    )


def parse_board(data: dict[str, Any], environ: Mapping[str, str]) -> BoardConfig:
    return BoardConfig(
        api_base=data.get("api_base", "https://api.trello.com/1").rstrip("/"),
        api_key=environ.get("TRELLO_API_KEY") or None,
        token=environ.get("TRELLO_TOKEN") or None,
        timeout_seconds=float(data.get("timeout_seconds", 10.0)),
    )


def parse_config(data: dict[str, Any], environ: Mapping[str, str]) -> ProductionConfig:
    """
    Build a ProductionConfig from parsed YAML and an environment mapping.

    Postconditions:
        - The result is not yet validated; get_active_config() validates.
    """
    return ProductionConfig(
        config_id=data.get("config_id", "default"),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        database=parse_database(data.get("database") or {}, environ),
        webhook=parse_webhook(data.get("webhook") or {}, environ),
        board=parse_board(data.get("board") or {}, environ),
        stage_map=parse_stage_map(data),
        policy=parse_policy(data.get("ledger") or {}),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
