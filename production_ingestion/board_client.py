"""
Board API client.

Fetches card data (description, current list) from the board's REST API
over httpx with a bounded timeout.  Failures are classified for the caller:

    timeout, transport error, other 4xx/5xx  -> BoardUnavailableError (retry)
    404 on a card                            -> CardNotFoundError (ack)
    missing API key or token                 -> BoardNotConfiguredError

Also provides ``BoardLineItemSource``, the LineItemSource the deduction
ledger uses to read a job's product list from its card description.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import httpx

from production_config.schema import BoardConfig
from production_kernel.domain.bom_parser import parse_card_description
from production_kernel.domain.dtos import BOMLineItem, JobView
from production_kernel.exceptions import (
    BoardNotConfiguredError,
    BoardUnavailableError,
    CardNotFoundError,
    ProductListMissingError,
)
from production_kernel.logging_config import get_logger

logger = get_logger("ingestion.board_client")


class BoardClient:
    """Read-only access to board cards."""

    def __init__(
        self,
        config: BoardConfig,
        transport: httpx.BaseTransport | None = None,
    ):
        self._config = config
        self._client = httpx.Client(
            base_url=config.api_base,
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BoardClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def get_card(self, card_id: str, fields: Sequence[str] = ("desc",)) -> dict[str, Any]:
        """
        Fetch a card.

        Args:
            card_id: Board card id.
            fields: Card fields to request (``desc``, ``idList``, ...).

        Returns:
            The decoded card object.

        Raises:
            BoardNotConfiguredError, BoardUnavailableError, CardNotFoundError.
        """
        card = self._get_json(f"/cards/{card_id}", fields, card_id=card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        return card

    def get_list_name(self, list_id: str) -> str | None:
        """Display name of a board list, None if the list does not exist."""
        board_list = self._get_json(f"/lists/{list_id}", ("name",), list_id=list_id)
        if board_list is None:
            return None
        name = board_list.get("name")
        return name if isinstance(name, str) else None

    def _get_json(
        self, path: str, fields: Sequence[str], **log_fields: str
    ) -> dict[str, Any] | None:
        """GET a board object; None on 404."""
        missing = self._config.missing()
        if missing:
            raise BoardNotConfiguredError(missing)

        params = {
            "key": self._config.api_key,
            "token": self._config.token,
            "fields": ",".join(fields),
        }
        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("board_request_timeout", extra=log_fields)
            raise BoardUnavailableError(f"timeout: {type(exc).__name__}")
        except httpx.TransportError as exc:
            logger.warning(
                "board_request_failed",
                extra={**log_fields, "error": type(exc).__name__},
            )
            raise BoardUnavailableError(f"transport error: {type(exc).__name__}")

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            # 401/403 included: credentials rejected, retry once fixed
            logger.warning(
                "board_request_rejected",
                extra={**log_fields, "status_code": response.status_code},
            )
            raise BoardUnavailableError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError:
            raise BoardUnavailableError("response is not JSON", status_code=response.status_code)
        if not isinstance(payload, dict):
            raise BoardUnavailableError("response is not an object", status_code=response.status_code)
        return payload

    def get_card_description(self, card_id: str) -> str:
        card = self.get_card(card_id, fields=("desc",))
        return card.get("desc") or ""


@contextmanager
def board_client_scope(
    config: BoardConfig, client: BoardClient | None = None
) -> Iterator[BoardClient]:
    """Yield the injected client, or a new BoardClient that is closed on exit."""
    if client is not None:
        yield client
        return
    with BoardClient(config) as owned:
        yield owned


class BoardLineItemSource:
    """LineItemSource reading the product list block of the job's card."""

    def __init__(self, client: BoardClient):
        self._client = client

    def line_items_for(self, job: JobView) -> list[BOMLineItem] | None:
        if not job.trello_card_id:
            raise ProductListMissingError(job.id)
        description = self._client.get_card_description(job.trello_card_id)
        items = parse_card_description(description)
        logger.debug(
            "card_product_list_read",
            extra={
                "job_id": str(job.id),
                "card_id": job.trello_card_id,
                "line_item_count": len(items) if items else 0,
            },
        )
        return items
