"""Typed errors raised by the stock ledger and delivery engine.

Callers catch by type, never by message. Each class carries a static ``code``
for API payloads and keeps its context as attributes so the HTTP layer can
render ``details`` without parsing strings.

    EppLedgerError
    +-- ValidationError              VALIDATION_ERROR
    +-- NotFoundError                NOT_FOUND
    +-- InsufficientStockError       INSUFFICIENT_STOCK
    +-- InvalidStateError            INVALID_STATE
    +-- ConsistencyViolationError    CONSISTENCY_VIOLATION
    |   +-- ItemFrozenError          ITEM_FROZEN
    +-- StockConflictError           STOCK_CONFLICT (internal, retried)
"""

from __future__ import annotations

from typing import Any


class EppLedgerError(Exception):
    """Base class for every domain error of the ledger service."""

    code: str = "EPP_LEDGER_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {key: value for key, value in details.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.lower(), "message": self.message, "details": self.details}


class ValidationError(EppLedgerError):
    """A request is well-formed but breaks a business rule before any write."""

    code = "VALIDATION_ERROR"


class NotFoundError(EppLedgerError):
    """Referenced item, delivery, assignment or employee does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Any) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found", entity=entity, id=identifier)


class InsufficientStockError(EppLedgerError):
    """A decrement would drive ``current_stock`` below zero."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, item_id: int, item_name: str, requested: int, available: int) -> None:
        self.item_id = item_id
        self.item_name = item_name
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"cannot deliver {requested} units of {item_name}, only {available} in stock",
            item_id=item_id,
            item_name=item_name,
            requested=requested,
            available=available,
            shortfall=self.shortfall,
        )


class InvalidStateError(EppLedgerError):
    """The target record's status forbids the operation; re-fetch and retry."""

    code = "INVALID_STATE"

    def __init__(self, message: str, *, entity: str, identifier: Any, status: str | None = None) -> None:
        self.entity = entity
        self.identifier = identifier
        self.status = status
        super().__init__(message, entity=entity, id=identifier, status=status)


class ConsistencyViolationError(EppLedgerError):
    """Ledger replay disagrees with the aggregate balance.

    Not recoverable by the caller: the item is frozen until an operator runs a
    repair.
    """

    code = "CONSISTENCY_VIOLATION"

    def __init__(
        self,
        message: str,
        *,
        item_id: int,
        recorded_stock: int | None = None,
        ledger_stock: int | None = None,
        **extra: Any,
    ) -> None:
        self.item_id = item_id
        self.recorded_stock = recorded_stock
        self.ledger_stock = ledger_stock
        super().__init__(
            message,
            item_id=item_id,
            recorded_stock=recorded_stock,
            ledger_stock=ledger_stock,
            **extra,
        )


class ItemFrozenError(ConsistencyViolationError):
    """Stock adjustments are refused while an item awaits manual reconciliation."""

    code = "ITEM_FROZEN"

    def __init__(self, *, item_id: int, item_name: str, reason: str | None) -> None:
        super().__init__(
            f"{item_name} is frozen pending reconciliation",
            item_id=item_id,
            item_name=item_name,
            frozen_reason=reason,
        )


class StockConflictError(EppLedgerError):
    """Another writer changed ``current_stock`` between read and compare-and-swap."""

    code = "STOCK_CONFLICT"

    def __init__(self, *, item_id: int, expected: int) -> None:
        self.item_id = item_id
        self.expected = expected
        super().__init__(
            f"stock for item {item_id} changed concurrently (expected {expected})",
            item_id=item_id,
            expected=expected,
        )


__all__ = [
    "ConsistencyViolationError",
    "EppLedgerError",
    "InsufficientStockError",
    "InvalidStateError",
    "ItemFrozenError",
    "NotFoundError",
    "StockConflictError",
    "ValidationError",
]
