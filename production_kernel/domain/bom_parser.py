"""
BOM text parser -- product list block on a board card.

Responsibility:
    Finds the delimited product list inside a card description and parses it
    into BOMLineItem rows.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Card format:

    ---PRODUCT LIST---
    T-Shirt (STD)
    4, M
    6, L

    Hoodie
    2, XL
    ---END LIST---

Grouping rules:
    - Blank lines are ignored.
    - A separator line (three or more dashes) resets the current header.
    - A quantity row is either "quantity, size" (the first field starts with
      a digit, a sign or a decimal point) or a bare number.  It attaches to
      the most recent header.
    - Any other line starts a new product-type header.  A trailing
      parenthetical ("T-Shirt (STD)") is stripped; the rest must match a
      usage rate product type exactly.  A header that is only a
      parenthetical clears the current header.

Failure modes:
    None.  A missing or malformed block yields None; bad rows (zero,
    negative, non-numeric, non-finite or unstorably large quantity, or no
    header yet) are dropped one by one without failing the parse.
"""

from __future__ import annotations

import re

from production_kernel.db.types import quantity_fits, quantity_from_str
from production_kernel.domain.dtos import BOMLineItem
from production_kernel.logging_config import get_logger

logger = get_logger("domain.bom_parser")

PRODUCT_LIST_START = "---PRODUCT LIST---"
PRODUCT_LIST_END = "---END LIST---"

_SEPARATOR = re.compile(r"^-{3,}.*$")
_ROW_START = re.compile(r"^[+\-]?[0-9.]")
_PLAIN_NUMBER = re.compile(r"^[+\-]?(?:\d+(?:\.\d*)?|\.\d+)$")
_HEADER_SUFFIX = re.compile(r"\s*\(.*?\)\s*$")


def extract_product_list(description: str | None) -> str | None:
    """
    Return the text between the start and end markers.

    Marker lines are matched case-insensitively after trimming.  Returns None
    when the start marker is missing, the end marker is missing, or the end
    marker precedes the start marker.
    """
    if not description:
        return None

    lines = description.splitlines()
    start = end = None
    for index, line in enumerate(lines):
        marker = line.strip().upper()
        if marker == PRODUCT_LIST_START and start is None:
            start = index
        elif marker == PRODUCT_LIST_END and start is not None:
            end = index
            break

    if start is None or end is None:
        return None
    return "\n".join(lines[start + 1:end])


def _split_quantity_row(line: str) -> tuple[str, str | None] | None:
    """Split a "quantity, size" row, or return None for a header line.

    With a comma, the first field only has to look numeric ("4x, M" is a
    row with a bad quantity).  Without one, the whole line must be a plain
    number, so headers like "3/4 Sleeve Tee" stay headers.
    """
    quantity_text, comma, size_text = line.partition(",")
    quantity_text = quantity_text.strip()
    if comma:
        if not _ROW_START.match(quantity_text):
            return None
        return quantity_text, size_text.strip() or None
    if _PLAIN_NUMBER.match(quantity_text):
        return quantity_text, None
    return None


def parse_product_list(section: str) -> list[BOMLineItem]:
    """
    Parse the product list section into line items, in card order.

    Args:
        section: Text between the markers (or any text in the same format).

    Returns:
        Ordered BOMLineItem list; may be empty.
    """
    items: list[BOMLineItem] = []
    header: str | None = None

    for raw_line in section.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if _SEPARATOR.match(line):
            header = None
            continue

        row = _split_quantity_row(line)
        if row is None:
            header = _HEADER_SUFFIX.sub("", line).strip() or None
            continue

        quantity_text, size = row
        quantity = quantity_from_str(quantity_text)
        if quantity is None or quantity <= 0:
            logger.debug("product_row_dropped", extra={"row": line, "reason": "invalid_quantity"})
            continue
        if not quantity_fits(quantity):
            logger.debug("product_row_dropped", extra={"row": line, "reason": "quantity_out_of_range"})
            continue
        if header is None:
            logger.debug("product_row_dropped", extra={"row": line, "reason": "no_header"})
            continue

        items.append(BOMLineItem(product_type=header, size=size, quantity=quantity))

    return items


def parse_card_description(description: str | None) -> list[BOMLineItem] | None:
    """
    Extract and parse a card's product list.

    Returns:
        None when the card has no product list block, otherwise the parsed
        line items (possibly empty).
    """
    section = extract_product_list(description)
    if section is None:
        return None
    return parse_product_list(section)

