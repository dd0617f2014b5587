"""
Tests for WebhookPipeline: the verify -> classify -> transition -> deduct
flow and the HTTP answer each outcome maps to.

Answer table:
    401  bad or missing signature (nothing written)
    400  body is not a JSON object
    500  unconfigured secret, board unavailable, store failure (retry)
    200  ignored events, success, permanent business failures
"""

import decimal
import json
from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from production_ingestion.pipeline import WebhookPipeline, status_for_error
from production_kernel.exceptions import (
    BoardUnavailableError,
    BOMResolutionError,
    InsufficientStockError,
    JobNotFoundError,
    MalformedPayloadError,
    QuantityOutOfRangeError,
    SignatureMismatchError,
    StoreError,
    WebhookNotConfiguredError,
)
from production_kernel.models.inventory import DeductionTransaction, Material, StockMovement
from production_kernel.models.job import Job
from production_kernel.selectors.job_selector import JobSelector
from production_kernel.services.deduction_ledger import DeductionLedger
from tests.support import (
    LAYOUTS_RECEIVED_LIST_ID,
    PRINTING_LIST_ID,
    TSHIRT_DESCRIPTION,
    UNMAPPED_LIST_ID,
    card_moved_payload,
)


def _body(payload) -> bytes:
    return json.dumps(payload).encode()


def _counts(session) -> tuple[int, int]:
    transactions = session.execute(select(func.count()).select_from(DeductionTransaction)).scalar_one()
    movements = session.execute(select(func.count()).select_from(StockMovement)).scalar_one()
    return transactions, movements


def _stage(session, job_id) -> str:
    session.expire_all()
    return session.get(Job, job_id).production_stage


@pytest.fixture
def pipeline(config, session_factory, board, clock):
    return WebhookPipeline(config, session_factory, board, clock)


@pytest.fixture
def deliver(pipeline, sign):
    """Sign and deliver a payload."""

    def _deliver(payload, signature=None):
        body = _body(payload)
        return pipeline.handle(body, signature if signature is not None else sign(body))

    return _deliver


@pytest.fixture
def tracked_card(make_job, board):
    """A job in orders whose card holds the T-Shirt product list."""
    job = make_job(card_id="card-1")
    board.cards["card-1"] = {"desc": TSHIRT_DESCRIPTION}
    return job


class TestStatusForError:

    @pytest.mark.parametrize(
        "exc, status",
        [
            (SignatureMismatchError(), 401),
            (MalformedPayloadError("bad"), 400),
            (WebhookNotConfiguredError(["TRELLO_WEBHOOK_SECRET"]), 500),
            (BoardUnavailableError("timeout"), 500),
            (StoreError("webhook", "OperationalError"), 500),
            (JobNotFoundError(card_id="card-1"), 200),
            (BOMResolutionError([("Hoodie", "M")]), 200),
            (InsufficientStockError("m-1", "Cotton fabric", Decimal("1"), Decimal("5")), 200),
            (QuantityOutOfRangeError("1E+40"), 200),
        ],
    )
    def test_mapping(self, exc, status):
        assert status_for_error(exc) == status


class TestFullFlow:

    def test_move_to_printing_deducts_once(self, session, deliver, tracked_card, tshirt_bom):
        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert outcome.status_code == 200
        assert outcome.body == {"ok": True}
        assert outcome.disposition == "deducted"
        assert outcome.transition.changed
        assert outcome.deduction.requirements[0].required_qty == Decimal("5.6")

        assert _stage(session, tracked_card.id) == "printing"
        assert session.get(Material, tshirt_bom.id).qty_on_hand == Decimal("94.4")
        assert _counts(session) == (1, 1)

    def test_duplicate_delivery_is_absorbed(self, session, deliver, tracked_card, tshirt_bom, clock):
        payload = card_moved_payload("card-1", PRINTING_LIST_ID, action_id="act-1")
        deliver(payload)
        clock.tick()
        second = deliver(payload)

        assert second.status_code == 200
        assert second.disposition == "already_deducted"
        assert not second.transition.changed
        assert _counts(session) == (1, 1)
        assert len(JobSelector(session).stage_history(tracked_card.id)) == 1
        session.expire_all()
        assert session.get(Material, tshirt_bom.id).qty_on_hand == Decimal("94.4")

    def test_move_to_other_stage_does_not_deduct(self, session, deliver, tracked_card, tshirt_bom, board):
        outcome = deliver(card_moved_payload("card-1", LAYOUTS_RECEIVED_LIST_ID))

        assert outcome.disposition == "transitioned"
        assert outcome.deduction is None
        assert board.calls == []
        assert _stage(session, tracked_card.id) == "layouts_received"
        assert _counts(session) == (0, 0)

    def test_back_and_forth_never_deducts_twice(self, session, deliver, tracked_card, tshirt_bom, clock):
        deliver(card_moved_payload("card-1", PRINTING_LIST_ID))
        clock.tick()
        deliver(card_moved_payload("card-1", LAYOUTS_RECEIVED_LIST_ID, list_before_id=PRINTING_LIST_ID))
        clock.tick()
        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID, list_before_id=LAYOUTS_RECEIVED_LIST_ID))

        assert outcome.transition.changed
        assert outcome.disposition == "already_deducted"
        assert _counts(session) == (1, 1)
        assert len(JobSelector(session).stage_history(tracked_card.id)) == 3

    def test_log_trail_carries_identifiers(self, deliver, tracked_card, tshirt_bom, captured_logs):
        deliver(card_moved_payload("card-1", PRINTING_LIST_ID, action_id="act-9"))

        logs = captured_logs()
        received = [r for r in logs if r["message"] == "webhook_received"][0]
        processed = [r for r in logs if r["message"] == "webhook_processed"][0]
        assert received["correlation_id"] == processed["correlation_id"]
        assert processed["action_id"] == "act-9"
        assert processed["card_id"] == "card-1"
        assert processed["job_id"] == str(tracked_card.id)
        assert processed["disposition"] == "deducted"


class TestAuthentication:

    def test_bad_signature_writes_nothing(self, session, deliver, tracked_card, tshirt_bom, captured_logs):
        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID), signature="AAAA")

        assert outcome.status_code == 401
        assert outcome.body == {"error": "signature_mismatch"}
        assert outcome.disposition == "rejected"
        assert _stage(session, tracked_card.id) == "orders"
        assert _counts(session) == (0, 0)
        assert JobSelector(session).stage_history(tracked_card.id) == []
        assert any(r["message"] == "webhook_signature_rejected" for r in captured_logs())

    def test_missing_signature(self, pipeline, tracked_card):
        outcome = pipeline.handle(_body(card_moved_payload("card-1", PRINTING_LIST_ID)), None)
        assert outcome.status_code == 401
        assert outcome.error_code == "signature_missing"

    def test_signature_checked_before_parsing(self, pipeline):
        outcome = pipeline.handle(b"not json", "AAAA")
        assert outcome.status_code == 401

    def test_unconfigured_secret_is_retryable(self, config, session_factory, board, sign, tracked_card):
        unconfigured = replace(config, webhook=replace(config.webhook, secret=None))
        body = _body(card_moved_payload("card-1", PRINTING_LIST_ID))

        outcome = WebhookPipeline(unconfigured, session_factory, board).handle(body, sign(body))

        assert outcome.status_code == 500
        assert outcome.body == {"error": "webhook_not_configured"}


class TestIgnored:

    def test_malformed_body(self, pipeline, sign):
        outcome = pipeline.handle(b"{oops", sign(b"{oops"))
        assert outcome.status_code == 400
        assert outcome.body == {"error": "malformed_payload"}

    def test_irrelevant_event(self, deliver):
        payload = card_moved_payload("card-1", PRINTING_LIST_ID)
        payload["action"]["type"] = "commentCard"
        outcome = deliver(payload)
        assert (outcome.status_code, outcome.disposition) == (200, "irrelevant_event")

    def test_unmapped_list_changes_nothing(self, session, deliver, tracked_card, board):
        outcome = deliver(card_moved_payload("card-1", UNMAPPED_LIST_ID))

        assert outcome.status_code == 200
        assert outcome.body == {"ok": True}
        assert outcome.disposition == "unmapped_list"
        assert _stage(session, tracked_card.id) == "orders"
        assert board.calls == []

    def test_untracked_card(self, deliver, db_engine):
        outcome = deliver(card_moved_payload("card-unknown", PRINTING_LIST_ID))
        assert (outcome.status_code, outcome.disposition) == (200, "untracked_card")

    def test_list_resolved_by_name_when_enabled(self, session, config, session_factory, board, sign, tracked_card):
        by_name = replace(config, stage_map=replace(config.stage_map, resolve_by_name=True))
        body = _body(card_moved_payload("card-1", UNMAPPED_LIST_ID, list_after_name="Pressing"))

        outcome = WebhookPipeline(by_name, session_factory, board).handle(body, sign(body))

        assert outcome.disposition == "transitioned"
        assert _stage(session, tracked_card.id) == "pressing"


class TestDeductionFailures:

    def test_bom_missing_is_acknowledged(self, session, deliver, tracked_card):
        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert outcome.status_code == 200
        assert outcome.disposition == "failed"
        assert outcome.error_code == "bom_missing"
        assert outcome.transition.changed
        assert _stage(session, tracked_card.id) == "printing"
        assert _counts(session) == (0, 0)

    def test_card_without_product_list_is_acknowledged(self, deliver, tracked_card, tshirt_bom, board):
        board.cards["card-1"] = {"desc": "No list yet"}
        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))
        assert (outcome.status_code, outcome.error_code) == (200, "product_list_missing")

    def test_low_stock_still_deducts(self, session, deliver, tracked_card, make_material, make_rate, captured_logs):
        fabric = make_material("Cotton fabric", qty_on_hand="1", unit="m")
        make_rate("T-Shirt", None, fabric, "0.5")

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert (outcome.status_code, outcome.disposition) == (200, "deducted")
        assert _stage(session, tracked_card.id) == "printing"
        assert _counts(session) == (1, 1)
        assert session.get(Material, fabric.id).qty_on_hand == Decimal("-4")
        assert any(r["message"] == "stock_below_zero" for r in captured_logs())

    def test_insufficient_stock_is_acknowledged_when_not_allowed(
        self, session, config, session_factory, board, clock, sign, tracked_card, make_material, make_rate,
    ):
        fabric = make_material("Cotton fabric", qty_on_hand="1", unit="m")
        make_rate("T-Shirt", None, fabric, "0.5")
        strict = replace(config, policy=replace(config.policy, allow_negative_stock=False))
        body = _body(card_moved_payload("card-1", PRINTING_LIST_ID))

        outcome = WebhookPipeline(strict, session_factory, board, clock).handle(body, sign(body))

        assert (outcome.status_code, outcome.error_code) == (200, "insufficient_stock")
        assert _stage(session, tracked_card.id) == "printing"
        assert _counts(session) == (0, 0)

    def test_all_zero_rates_is_acknowledged_without_marker(self, session, deliver, tracked_card, make_material, make_rate):
        fabric = make_material("Cotton fabric")
        make_rate("T-Shirt", "M", fabric, "0")
        make_rate("T-Shirt", "L", fabric, "0")

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert (outcome.status_code, outcome.error_code) == (200, "bom_missing")
        assert _counts(session) == (0, 0)

    def test_large_storable_quantity_is_processed(self, session, deliver, tracked_card, tshirt_bom, board):
        board.cards["card-1"] = {
            "desc": "---PRODUCT LIST---\nT-Shirt\n99999999999999999999, M\n---END LIST---"
        }

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert (outcome.status_code, outcome.disposition) == (200, "deducted")
        assert outcome.deduction.requirements[0].required_qty == Decimal("49999999999999999999.5")
        assert _counts(session) == (1, 1)

    def test_unstorable_quantity_row_is_dropped(self, session, deliver, tracked_card, tshirt_bom, board):
        board.cards["card-1"] = {
            "desc": "---PRODUCT LIST---\nT-Shirt\n" + "1" + "0" * 29 + ", M\n---END LIST---"
        }

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert (outcome.status_code, outcome.error_code) == (200, "product_list_missing")
        assert _counts(session) == (0, 0)

    def test_total_beyond_storage_is_acknowledged(self, session, deliver, tracked_card, make_material, make_rate, board):
        ink = make_material("Plastisol ink")
        make_rate("Poster", None, ink, "10")
        board.cards["card-1"] = {
            "desc": "---PRODUCT LIST---\nPoster\n" + "1" + "0" * 28 + "\n---END LIST---"
        }

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert outcome.status_code == 200
        assert outcome.body == {"ok": True}
        assert outcome.error_code == "quantity_out_of_range"
        assert _stage(session, tracked_card.id) == "printing"
        assert _counts(session) == (0, 0)

    def test_arithmetic_error_is_acknowledged(self, session, deliver, tracked_card, tshirt_bom, monkeypatch):
        def overflow(self, job_id):
            raise decimal.Overflow("above Emax")

        monkeypatch.setattr(DeductionLedger, "deduct_for_job", overflow)

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert (outcome.status_code, outcome.error_code) == (200, "quantity_out_of_range")
        assert outcome.transition.changed
        assert _counts(session) == (0, 0)

    def test_board_down_then_retry(self, session, deliver, tracked_card, tshirt_bom, board, clock):
        payload = card_moved_payload("card-1", PRINTING_LIST_ID)
        board.error = BoardUnavailableError("timeout")

        first = deliver(payload)

        assert first.status_code == 500
        assert first.body == {"error": "board_unavailable"}
        assert _stage(session, tracked_card.id) == "printing"
        assert _counts(session) == (0, 0)

        board.error = None
        clock.tick()
        retry = deliver(payload)

        assert retry.status_code == 200
        assert not retry.transition.changed
        assert retry.disposition == "deducted"
        assert _counts(session) == (1, 1)

    def test_store_failure_is_retryable(self, deliver, tracked_card, tshirt_bom, monkeypatch):
        def broken(self, job_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(DeductionLedger, "deduct_for_job", broken)

        outcome = deliver(card_moved_payload("card-1", PRINTING_LIST_ID))

        assert outcome.status_code == 500
        assert outcome.body == {"error": "store_error"}
