"""Shared constants, payload builders and fakes for the test suite."""

from typing import Any
from uuid import uuid4

from production_kernel.exceptions import CardNotFoundError

TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_CALLBACK_URL = "https://production.example.test/webhooks/trello"

# Board list ids from production_config/sets/default.yaml
ORDERS_LIST_ID = "65f1a0c2e4b0a1d2c3e4f503"
LAYOUTS_RECEIVED_LIST_ID = "65f1a0c2e4b0a1d2c3e4f509"
PRINTING_LIST_ID = "65f1a0c2e4b0a1d2c3e4f50a"
PRESSING_LIST_ID = "65f1a0c2e4b0a1d2c3e4f50b"
UNMAPPED_LIST_ID = "65f1a0c2e4b0a1d2c3e4ffff"

TSHIRT_DESCRIPTION = """Customer: Acme Running Club
Deadline: Friday

---PRODUCT LIST---
T-Shirt
4, M
6, L
---END LIST---
"""


def card_moved_payload(
    card_id: str,
    list_after_id: str,
    list_before_id: str = ORDERS_LIST_ID,
    action_id: str | None = None,
    list_after_name: str | None = None,
) -> dict[str, Any]:
    """A board "card moved" delivery."""
    return {
        "action": {
            "id": action_id or uuid4().hex[:24],
            "type": "updateCard",
            "data": {
                "card": {"id": card_id, "name": "Order"},
                "listBefore": {"id": list_before_id, "name": "Before"},
                "listAfter": {"id": list_after_id, "name": list_after_name or "After"},
            },
        },
        "model": {"id": "board-1"},
    }


class FakeBoardClient:
    """In-memory stand-in for BoardClient.

    cards maps card id -> {"desc": ..., "idList": ...}.  Set ``error`` to make
    every call raise it.  ``closed`` records whether the owner closed it.
    """

    def __init__(self, cards: dict[str, dict[str, Any]] | None = None):
        self.cards = cards or {}
        self.list_names: dict[str, str] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeBoardClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def get_card(self, card_id: str, fields=("desc",)) -> dict[str, Any]:
        self.calls.append(card_id)
        if self.error is not None:
            raise self.error
        if card_id not in self.cards:
            raise CardNotFoundError(card_id)
        return dict(self.cards[card_id])

    def get_card_description(self, card_id: str) -> str:
        return self.get_card(card_id).get("desc") or ""

    def get_list_name(self, list_id: str) -> str | None:
        return self.list_names.get(list_id)
