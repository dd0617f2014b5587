"""
Production configuration schema.

Frozen dataclasses parsed from the YAML configuration set plus the
environment overlay.  The kernel consumes only the StageMap and
DeductionPolicy value objects; everything else configures the edges
(database engine, webhook verification, board client).
"""

from __future__ import annotations

from dataclasses import dataclass

from production_kernel.domain.policy import DeductionPolicy
from production_kernel.domain.stage_map import StageMap


@dataclass(frozen=True)
class DatabaseConfig:
    """Store connection settings."""

    url: str
    echo: bool = False
    pool_size: int = 20
    statement_timeout_ms: int | None = 15_000


@dataclass(frozen=True)
class WebhookConfig:
    """Inbound webhook verification settings."""

    secret: str | None
    callback_url: str | None
    path: str = "/webhooks/trello"
    signature_header: str = "X-Trello-Webhook"

    def missing(self) -> list[str]:
        """Names of the settings that are not provisioned."""
        missing = []
        if not self.secret:
            missing.append("TRELLO_WEBHOOK_SECRET")
        if not self.callback_url:
            missing.append("TRELLO_WEBHOOK_CALLBACK_URL")
        return missing


@dataclass(frozen=True)
class BoardConfig:
    """Outbound board API settings."""

    api_base: str = "https://api.trello.com/1"
    api_key: str | None = None
    token: str | None = None
    timeout_seconds: float = 10.0

    def missing(self) -> list[str]:
        missing = []
        if not self.api_key:
            missing.append("TRELLO_API_KEY")
        if not self.token:
            missing.append("TRELLO_TOKEN")
        return missing


@dataclass(frozen=True)
class ProductionConfig:
    """
    The complete runtime configuration.

    Guarantees:
        - stage_map has passed validation, and policy.deduction_stage is in
          its catalog.
        - checksum identifies the YAML source (environment secrets are
          deliberately excluded).
    """

    config_id: str
    version: int
    checksum: str
    database: DatabaseConfig
    webhook: WebhookConfig
    board: BoardConfig
    stage_map: StageMap
    policy: DeductionPolicy
