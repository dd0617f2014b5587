"""
Webhook signature verification.

The board signs every delivery with HMAC-SHA1 over the registered callback
URL followed by the raw request body, and sends the base64 digest in the
``X-Trello-Webhook`` header.

Contract:
    - Runs on the exact raw bytes, before any JSON parsing.
    - Constant-time comparison (hmac.compare_digest).
    - Fail closed: an unprovisioned secret or callback URL rejects every
      delivery with WebhookNotConfiguredError instead of accepting it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

from production_kernel.exceptions import (
    SignatureMismatchError,
    SignatureMissingError,
    WebhookNotConfiguredError,
)

SIGNATURE_HEADER = "X-Trello-Webhook"


def _digest(raw_body: bytes, secret: str, callback_url: str) -> bytes:
    return hmac.new(
        secret.encode("utf-8"),
        callback_url.encode("utf-8") + raw_body,
        hashlib.sha1,
    ).digest()


def compute_signature(raw_body: bytes, secret: str, callback_url: str) -> str:
    """Base64 HMAC-SHA1 of callback_url + raw_body, as the board sends it."""
    return base64.b64encode(_digest(raw_body, secret, callback_url)).decode("ascii")


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
    callback_url: str | None,
    header_name: str = SIGNATURE_HEADER,
) -> None:
    """Authenticate a delivery.

    Args:
        raw_body: Request body bytes exactly as received.
        signature_header: Value of the signature header, or None.
        secret: Shared webhook secret.
        callback_url: Callback URL registered with the board.
        header_name: Header name, used only in the error message.

    Raises:
        WebhookNotConfiguredError: secret or callback URL is not set.
        SignatureMissingError: no (or a blank) signature header.
        SignatureMismatchError: header is not valid base64, or the digest
            does not match.
    """
    missing = []
    if not secret:
        missing.append("TRELLO_WEBHOOK_SECRET")
    if not callback_url:
        missing.append("TRELLO_WEBHOOK_CALLBACK_URL")
    if missing:
        raise WebhookNotConfiguredError(missing)

    if signature_header is None or not signature_header.strip():
        raise SignatureMissingError(header_name)

    try:
        provided = base64.b64decode(signature_header.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise SignatureMismatchError("header is not valid base64")

    expected = _digest(raw_body, secret, callback_url)
    if not hmac.compare_digest(expected, provided):
        raise SignatureMismatchError()
