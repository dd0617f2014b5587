"""
Board event classification.

Decides whether a verified delivery is a card move the kernel must act on.
Only ``updateCard`` actions carrying both ``data.card.id`` and
``data.listAfter.id`` are relevant; a ``listBefore`` equal to ``listAfter``
is a card edit, not a move.  Everything else is acknowledged and dropped.

Classification is pure: no store access, no logging side effects beyond
debug lines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from production_kernel.logging_config import get_logger

logger = get_logger("ingestion.classifier")

CARD_MOVE_ACTION = "updateCard"


@dataclass(frozen=True)
class RelevantEvent:
    """A card moved between board lists."""

    action_id: str | None
    action_type: str
    card_id: str
    list_after_id: str
    list_after_name: str | None = None
    list_before_id: str | None = None


@dataclass(frozen=True)
class IrrelevantEvent:
    """A well-formed delivery the kernel ignores."""

    reason: str


@dataclass(frozen=True)
class BadRequestEvent:
    """A body that is not a JSON object."""

    reason: str


ClassifiedEvent = Union[RelevantEvent, IrrelevantEvent, BadRequestEvent]


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def classify_body(raw_body: bytes) -> ClassifiedEvent:
    """Decode a raw delivery body and classify it."""
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        return BadRequestEvent(f"invalid JSON: {exc}")
    return classify_payload(payload)


def classify_payload(payload: Any) -> ClassifiedEvent:
    """Classify an already decoded delivery."""
    if not isinstance(payload, dict):
        return BadRequestEvent("payload is not a JSON object")

    action = _section(payload, "action")
    action_type = action.get("type")
    if action_type != CARD_MOVE_ACTION:
        return IrrelevantEvent(f"action type {action_type!r} is not {CARD_MOVE_ACTION}")

    data = _section(action, "data")
    card_id = _non_empty_str(_section(data, "card").get("id"))
    if card_id is None:
        return IrrelevantEvent("no card id")

    list_after = _section(data, "listAfter")
    list_after_id = _non_empty_str(list_after.get("id"))
    if list_after_id is None:
        return IrrelevantEvent("card update without a list change")

    list_before_id = _non_empty_str(_section(data, "listBefore").get("id"))
    if list_before_id == list_after_id:
        return IrrelevantEvent("card stayed in the same list")

    event = RelevantEvent(
        action_id=_non_empty_str(action.get("id")),
        action_type=action_type,
        card_id=card_id,
        list_after_id=list_after_id,
        list_after_name=_non_empty_str(list_after.get("name")),
        list_before_id=list_before_id,
    )
    logger.debug(
        "card_move_classified",
        extra={
            "card_id": card_id,
            "list_before_id": list_before_id,
            "list_after_id": list_after_id,
        },
    )
    return event
