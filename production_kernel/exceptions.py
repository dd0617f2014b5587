"""
Typed Exception Hierarchy for the Production Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Webhook deliveries must be answered with exactly one of two intents:
"acknowledged, do not retry" or "failed, please retry".  Operator actions
must return a structured error the UI can branch on.  Both decisions are
made by catching exception TYPES and reading their CODE, never by parsing
message strings.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Codes are lower-snake strings because several of them ("bom_missing",
"job_not_found", "insufficient_stock") are returned verbatim to the operator
UI and compared there.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProductionKernelError:

    ProductionKernelError (base)
    |
    +-- AuthError
    |   +-- SignatureMissingError
    |   +-- SignatureMismatchError
    |
    +-- ConfigError
    |   +-- WebhookNotConfiguredError
    |   +-- BoardNotConfiguredError
    |   +-- StageMapError
    |
    +-- ValidationError
    |   +-- MalformedPayloadError
    |   +-- QuantityOutOfRangeError
    |
    +-- NotFoundError
    |   +-- JobNotFoundError
    |   +-- MaterialNotFoundError
    |
    +-- StageError
    |   +-- UnknownStageError
    |
    +-- BOMError
    |   +-- BOMResolutionError
    |   +-- ProductListMissingError
    |
    +-- LedgerError
    |   +-- InsufficientStockError
    |   +-- InvalidMovementError
    |
    +-- BoardError
    |   +-- BoardUnavailableError
    |   +-- CardNotFoundError
    |
    +-- ConcurrencyError
    |   +-- StageTransitionConflictError
    |
    +-- StoreError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | Webhook answer | When Raised
-------------|---------------------------|----------------|--------------------------------
Auth         | signature_missing         | 401            | No signature header
             | signature_mismatch        | 401            | Header malformed or wrong
-------------|---------------------------|----------------|--------------------------------
Config       | webhook_not_configured    | 500            | Secret / callback URL unset
             | board_not_configured      | 500            | Board API key / token unset
             | stage_map_invalid         | 500            | Stage table references unknown slug
-------------|---------------------------|----------------|--------------------------------
Validation   | malformed_payload         | 400            | Body is not a JSON object
             | quantity_out_of_range     | 200 (ack)      | Quantity exceeds storage precision
-------------|---------------------------|----------------|--------------------------------
NotFound     | job_not_found             | 200 (ack)      | No job for the card / id
             | material_not_found        | 500            | Rate points at a missing material
-------------|---------------------------|----------------|--------------------------------
Stage        | unknown_stage             | n/a            | Manual move to an unknown slug
-------------|---------------------------|----------------|--------------------------------
BOM          | bom_missing               | 200 (ack)      | A line item has no usage rate
             | product_list_missing      | 200 (ack)      | Card has no product list block
-------------|---------------------------|----------------|--------------------------------
Ledger       | insufficient_stock        | 200 (ack)      | On-hand would go negative (opt-in)
             | invalid_movement          | n/a            | Delta sign contradicts type
-------------|---------------------------|----------------|--------------------------------
Board        | board_unavailable         | 500            | Timeout / transport / 5xx / 429
             | card_not_found            | 200 (ack)      | Card deleted on the board
-------------|---------------------------|----------------|--------------------------------
Concurrency  | stage_transition_conflict | 500            | Transition retries exhausted
-------------|---------------------------|----------------|--------------------------------
Store        | store_error               | 500            | Database unavailable / timed out
-------------|---------------------------|----------------|--------------------------------
Immutability | immutability_violation    | 500            | UPDATE/DELETE of a ledger row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ACK OR RETRY (webhook edge):

    try:
        pipeline.handle(...)
    except NotFoundError:
        return ack()            # board event for an untracked card
    except (StoreError, ConcurrencyError, BoardUnavailableError):
        return retry()          # idempotency guards make a retry safe

2. STRUCTURED RESULT (operator edge):

    except BOMResolutionError as e:
        return {"error": e.code, "missing": e.missing}

3. IDEMPOTENCY (not an exception):

    A repeated deduction returns DeductionResult with status
    ALREADY_DEDUCTED and the original transaction id.

===============================================================================
"""

from decimal import Decimal
from typing import Any


class ProductionKernelError(Exception):
    """
    Base exception for all production kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "production_kernel_error"


# Authentication


class AuthError(ProductionKernelError):
    """Base exception for webhook authentication failures."""

    code: str = "auth_error"


class SignatureMissingError(AuthError):
    """The request carried no signature header."""

    code: str = "signature_missing"

    def __init__(self, header_name: str):
        self.header_name = header_name
        super().__init__(f"Missing signature header: {header_name}")


class SignatureMismatchError(AuthError):
    """The signature header was malformed or did not match the body."""

    code: str = "signature_mismatch"

    def __init__(self, reason: str = "signature does not match"):
        self.reason = reason
        super().__init__(f"Webhook signature rejected: {reason}")


# Configuration


class ConfigError(ProductionKernelError):
    """Base exception for operator-fixable configuration problems."""

    code: str = "config_error"


class WebhookNotConfiguredError(ConfigError):
    """Webhook secret or callback URL has not been provisioned."""

    code: str = "webhook_not_configured"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Webhook not configured, missing: {', '.join(missing)}")


class BoardNotConfiguredError(ConfigError):
    """Board API credentials have not been provisioned."""

    code: str = "board_not_configured"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Board API not configured, missing: {', '.join(missing)}")


class StageMapError(ConfigError):
    """The stage table is internally inconsistent."""

    code: str = "stage_map_invalid"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Stage map validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


# Validation


class ValidationError(ProductionKernelError):
    """Base exception for malformed input that retrying cannot fix."""

    code: str = "validation_error"


class MalformedPayloadError(ValidationError):
    """Webhook body is not a JSON object."""

    code: str = "malformed_payload"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed webhook payload: {reason}")


class QuantityOutOfRangeError(ValidationError):
    """A quantity cannot be represented at storage precision (38 digits, 9 places)."""

    code: str = "quantity_out_of_range"

    def __init__(self, value: Any):
        self.value = str(value)
        super().__init__(f"Quantity out of range: {value}")


# Not found


class NotFoundError(ProductionKernelError):
    """Base exception for records that do not exist."""

    code: str = "not_found"


class JobNotFoundError(NotFoundError):
    """No job matches the given id or card."""

    code: str = "job_not_found"

    def __init__(self, job_id: Any = None, card_id: str | None = None):
        self.job_id = str(job_id) if job_id is not None else None
        self.card_id = card_id
        target = f"card {card_id}" if card_id is not None else f"id {job_id}"
        super().__init__(f"Job not found for {target}")


class MaterialNotFoundError(NotFoundError):
    """A usage rate or movement references a missing material."""

    code: str = "material_not_found"

    def __init__(self, material_id: Any):
        self.material_id = str(material_id)
        super().__init__(f"Material not found: {material_id}")


# Stages


class StageError(ProductionKernelError):
    """Base exception for stage-related errors."""

    code: str = "stage_error"


class UnknownStageError(StageError):
    """Target stage slug is not in the stage catalog."""

    code: str = "unknown_stage"

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Unknown production stage: {stage!r}")


# BOM


class BOMError(ProductionKernelError):
    """Base exception for bill-of-materials problems."""

    code: str = "bom_error"


class BOMResolutionError(BOMError):
    """
    One or more line items have no configured usage rate.

    The whole batch fails: deducting the resolvable subset would understate
    consumption in the ledger.
    """

    code: str = "bom_missing"

    def __init__(self, missing: list[tuple[str, str | None]]):
        self.missing = [
            {"product_type": product_type, "size": size}
            for product_type, size in missing
        ]
        described = ", ".join(
            f"{product_type} ({size})" if size else product_type
            for product_type, size in missing
        )
        super().__init__(f"No BOM configured for: {described}")


class ProductListMissingError(BOMError):
    """The job's card has no product list block, or it holds no valid rows."""

    code: str = "product_list_missing"

    def __init__(self, job_id: Any, card_id: str | None = None):
        self.job_id = str(job_id)
        self.card_id = card_id
        super().__init__(f"No product list found for job {job_id}")


# Ledger


class LedgerError(ProductionKernelError):
    """Base exception for stock ledger errors."""

    code: str = "ledger_error"


class InsufficientStockError(LedgerError):
    """Applying a movement would take a material's on-hand below zero."""

    code: str = "insufficient_stock"

    def __init__(self, material_id: Any, material_name: str, on_hand: Decimal, required: Decimal):
        self.material_id = str(material_id)
        self.material_name = material_name
        self.on_hand = on_hand
        self.required = required
        super().__init__(
            f"Insufficient stock for {material_name}: "
            f"on hand {on_hand}, required {required}"
        )


class InvalidMovementError(LedgerError):
    """Movement delta contradicts its type (or is zero)."""

    code: str = "invalid_movement"

    def __init__(self, movement_type: str, delta_qty: Decimal, reason: str):
        self.movement_type = movement_type
        self.delta_qty = delta_qty
        self.reason = reason
        super().__init__(f"Invalid {movement_type} movement {delta_qty}: {reason}")


# Board


class BoardError(ProductionKernelError):
    """Base exception for external board service errors."""

    code: str = "board_error"


class BoardUnavailableError(BoardError):
    """Board service timed out, refused, or answered with a transient error."""

    code: str = "board_unavailable"

    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Board service unavailable: {reason}")


class CardNotFoundError(BoardError):
    """The card no longer exists on the board."""

    code: str = "card_not_found"

    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Card not found on board: {card_id}")


# Concurrency


class ConcurrencyError(ProductionKernelError):
    """Base exception for lost races that a retry can resolve."""

    code: str = "concurrency_error"


class StageTransitionConflictError(ConcurrencyError):
    """Concurrent transitions kept colliding on the open history entry."""

    code: str = "stage_transition_conflict"

    def __init__(self, job_id: Any, attempts: int):
        self.job_id = str(job_id)
        self.attempts = attempts
        super().__init__(
            f"Stage transition for job {job_id} still conflicting after {attempts} attempts"
        )


# Store


class StoreError(ProductionKernelError):
    """The relational store failed or timed out. Safe to retry."""

    code: str = "store_error"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store failure during {operation}: {reason}")


# Immutability


class ImmutabilityViolationError(ProductionKernelError):
    """Attempted UPDATE or DELETE of an append-only ledger row."""

    code: str = "immutability_violation"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} rows are append-only: cannot modify {entity_id}")
