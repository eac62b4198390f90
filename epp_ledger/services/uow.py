"""Unit-of-work wrapper shared by every mutating service call.

A decorated function runs inside one database transaction: commit on success,
rollback on any error. Nested decorated calls join the outer transaction. Lost
compare-and-swap races (``StockConflictError``) and database deadlocks or
serialization failures replay the whole unit; ledger drift
(``ConsistencyViolationError``) freezes the affected item in a separate commit
before the error propagates.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterator
from typing import Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConsistencyViolationError, ItemFrozenError, StockConflictError
from ..core.logging import log_extra
from ..models.inventory import InventoryItem
from .dates import utcnow_iso

logger = logging.getLogger("epp_ledger.uow")

_DEPTH_KEY = "epp_ledger.uow_depth"

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected.
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def in_transaction(db: Session) -> bool:
    return bool(db.info.get(_DEPTH_KEY))


def freeze_item(db: Session, item_id: int, reason: str) -> None:
    """Mark an item frozen and commit immediately."""

    db.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id)
        .values(is_frozen=True, frozen_reason=reason, updated_at=utcnow_iso())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _materialize(value):
    # A retried unit must see the same arguments again.
    return list(value) if isinstance(value, Iterator) else value


def is_retryable_db_error(exc: DBAPIError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code in RETRYABLE_SQLSTATES


def transactional(func: Callable[..., T]) -> Callable[..., T]:
    @functools.wraps(func)
    def wrapper(db: Session, *args, **kwargs) -> T:
        if in_transaction(db):
            return func(db, *args, **kwargs)

        args = tuple(_materialize(value) for value in args)
        kwargs = {key: _materialize(value) for key, value in kwargs.items()}
        attempts = max(settings.STOCK_CONFLICT_RETRIES, 0) + 1
        for attempt in range(1, attempts + 1):
            db.info[_DEPTH_KEY] = 1
            try:
                result = func(db, *args, **kwargs)
                db.commit()
                return result
            except StockConflictError as exc:
                db.rollback()
                if attempt == attempts:
                    logger.error(
                        "uow.conflict_exhausted",
                        extra=log_extra(operation=func.__name__, item_id=exc.item_id, attempts=attempt),
                    )
                    raise
                logger.warning(
                    "uow.conflict_retry",
                    extra=log_extra(operation=func.__name__, item_id=exc.item_id, attempt=attempt),
                )
            except DBAPIError as exc:
                db.rollback()
                if not is_retryable_db_error(exc) or attempt == attempts:
                    raise
                logger.warning(
                    "uow.serialization_retry",
                    extra=log_extra(operation=func.__name__, error=str(exc.orig), attempt=attempt),
                )
            except ItemFrozenError:
                db.rollback()
                raise
            except ConsistencyViolationError as exc:
                db.rollback()
                freeze_item(db, exc.item_id, exc.message)
                logger.error(
                    "stock.consistency_violation",
                    extra=log_extra(operation=func.__name__, **exc.details),
                )
                raise
            except Exception:
                db.rollback()
                raise
            finally:
                db.info.pop(_DEPTH_KEY, None)
        raise AssertionError("unreachable")  # pragma: no cover

    return wrapper


__all__ = ["RETRYABLE_SQLSTATES", "freeze_item", "in_transaction", "is_retryable_db_error", "transactional"]
