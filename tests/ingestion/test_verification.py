"""
Tests for webhook signature verification.

The digest is HMAC-SHA1 over callback URL + raw body, base64 encoded.
"""

import base64
import hashlib
import hmac

import pytest

from production_ingestion.verification import compute_signature, verify_signature
from production_kernel.exceptions import (
    AuthError,
    SignatureMismatchError,
    SignatureMissingError,
    WebhookNotConfiguredError,
)
from tests.support import TEST_CALLBACK_URL, TEST_WEBHOOK_SECRET

BODY = b'{"action": {"type": "updateCard"}}'


class TestComputeSignature:

    def test_matches_reference_construction(self):
        expected = base64.b64encode(
            hmac.new(
                TEST_WEBHOOK_SECRET.encode(),
                TEST_CALLBACK_URL.encode() + BODY,
                hashlib.sha1,
            ).digest()
        ).decode()
        assert compute_signature(BODY, TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL) == expected

    def test_callback_url_is_part_of_the_digest(self):
        assert compute_signature(BODY, TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL) != compute_signature(
            BODY, TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL + "/other"
        )


class TestVerifySignature:

    def test_valid_signature(self, sign):
        verify_signature(BODY, sign(BODY), TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)

    def test_surrounding_whitespace_tolerated(self, sign):
        verify_signature(BODY, f"  {sign(BODY)} ", TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing_header(self, header):
        with pytest.raises(SignatureMissingError) as exc_info:
            verify_signature(BODY, header, TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)
        assert exc_info.value.header_name == "X-Trello-Webhook"

    def test_tampered_body(self, sign):
        with pytest.raises(SignatureMismatchError):
            verify_signature(BODY + b" ", sign(BODY), TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)

    def test_wrong_secret(self, sign):
        with pytest.raises(SignatureMismatchError):
            verify_signature(BODY, sign(BODY, secret="other"), TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)

    def test_not_base64(self):
        with pytest.raises(SignatureMismatchError) as exc_info:
            verify_signature(BODY, "not base64!!", TEST_WEBHOOK_SECRET, TEST_CALLBACK_URL)
        assert exc_info.value.reason == "header is not valid base64"

    @pytest.mark.parametrize(
        "secret, callback_url, missing",
        [
            (None, TEST_CALLBACK_URL, ["TRELLO_WEBHOOK_SECRET"]),
            (TEST_WEBHOOK_SECRET, "", ["TRELLO_WEBHOOK_CALLBACK_URL"]),
            ("", None, ["TRELLO_WEBHOOK_SECRET", "TRELLO_WEBHOOK_CALLBACK_URL"]),
        ],
    )
    def test_fails_closed_when_unconfigured(self, sign, secret, callback_url, missing):
        with pytest.raises(WebhookNotConfiguredError) as exc_info:
            verify_signature(BODY, sign(BODY), secret, callback_url)
        assert exc_info.value.missing == missing

    def test_auth_errors_share_a_base(self):
        assert issubclass(SignatureMissingError, AuthError)
        assert issubclass(SignatureMismatchError, AuthError)
