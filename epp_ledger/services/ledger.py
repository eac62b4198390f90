"""Stock ledger and the current-stock projection kept beside it.

``adjust_stock`` is the only sanctioned writer of ``InventoryItem.current_stock``.
It writes the immutable ledger row first, then moves the aggregate with a
compare-and-swap guarded by the balance it read under a row lock. The ledger is
the source of truth: ``replay_ledger`` recomputes a balance from it and
``reconcile_item`` / ``repair_item`` detect and fix drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import case, desc, func, select, update
from sqlalchemy.orm import Session

from ..core.exceptions import (
    ConsistencyViolationError,
    InsufficientStockError,
    ItemFrozenError,
    NotFoundError,
    StockConflictError,
    ValidationError,
)
from ..core.logging import log_extra
from ..core.statuses import ItemClass, MovementType, ReferenceKind
from ..models.inventory import InventoryItem
from ..models.stock import StockMovement
from .dates import utcnow_iso
from .uow import transactional

logger = logging.getLogger("epp_ledger.ledger")

_OUTBOUND_VALUES = [m.value for m in MovementType if m.direction < 0]


def lock_item(db: Session, item_id: int) -> InventoryItem:
    """Load an item under a row lock (``FOR UPDATE`` where the backend supports it)."""

    stmt = (
        select(InventoryItem)
        .where(InventoryItem.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = db.execute(stmt).scalars().first()
    if item is None:
        raise NotFoundError("inventory item", item_id)
    return item


@transactional
def adjust_stock(
    db: Session,
    *,
    item_id: int,
    quantity: int,
    movement_type: MovementType | str,
    reason: str | None = None,
    actor: str | None = None,
    reference_kind: ReferenceKind | str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    """Apply a signed stock change to one item and record it in the ledger."""

    movement_type = MovementType(movement_type)
    if not quantity:
        raise ValidationError("quantity must be non-zero", item_id=item_id)
    if (quantity > 0) != (movement_type.direction > 0):
        raise ValidationError(
            f"{movement_type.value} movements must be {'positive' if movement_type.direction > 0 else 'negative'}",
            item_id=item_id,
            quantity=quantity,
            movement_type=movement_type.value,
        )

    item = lock_item(db, item_id)
    if item.is_frozen:
        raise ItemFrozenError(item_id=item.id, item_name=item.label, reason=item.frozen_reason)

    before = item.current_stock
    after = before + quantity
    if after < 0:
        raise InsufficientStockError(
            item_id=item.id,
            item_name=item.label,
            requested=abs(quantity),
            available=before,
        )

    now = utcnow_iso()
    movement = StockMovement(
        item_id=item.id,
        site_id=item.site_id,
        movement_type=movement_type.value,
        quantity=abs(quantity),
        balance_before=before,
        balance_after=after,
        reason=reason,
        performed_by=actor,
        reference_kind=ReferenceKind(reference_kind).value if reference_kind else None,
        reference_id=reference_id,
        created_at=now,
    )
    db.add(movement)
    db.flush()

    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id, InventoryItem.current_stock == before)
        .values(current_stock=after, updated_at=now)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise StockConflictError(item_id=item.id, expected=before)

    logger.info(
        "stock.adjusted",
        extra=log_extra(
            item_id=item.id,
            movement_type=movement_type.value,
            quantity=quantity,
            balance_before=before,
            balance_after=after,
            reference_kind=movement.reference_kind,
            reference_id=reference_id,
        ),
    )
    return movement


def list_movements(db: Session, item_id: int, limit: int = 50, offset: int = 0) -> list[StockMovement]:
    """Ledger history for an item, newest first."""

    stmt = (
        select(StockMovement)
        .where(StockMovement.item_id == item_id)
        .order_by(desc(StockMovement.id))
        .limit(limit)
        .offset(offset)
    )
    return db.execute(stmt).scalars().all()


def ledger_balance(db: Session, item_id: int) -> int:
    """Sum of all signed ledger deltas for an item."""

    signed = case(
        (StockMovement.movement_type.in_(_OUTBOUND_VALUES), -StockMovement.quantity),
        else_=StockMovement.quantity,
    )
    stmt = select(func.coalesce(func.sum(signed), 0)).where(StockMovement.item_id == item_id)
    return int(db.execute(stmt).scalar_one())


@dataclass
class ReplayReport:
    item_id: int
    item_name: str
    recorded_stock: int
    ledger_stock: int
    entries: int
    chain_breaks: list[dict[str, int]] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.recorded_stock == self.ledger_stock and not self.chain_breaks

    def as_dict(self) -> dict[str, object]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "recorded_stock": self.recorded_stock,
            "ledger_stock": self.ledger_stock,
            "entries": self.entries,
            "chain_breaks": list(self.chain_breaks),
            "consistent": self.consistent,
        }


def replay_ledger(db: Session, item: InventoryItem) -> ReplayReport:
    """Walk the ledger in write order, checking each entry chains onto the last."""

    stmt = select(StockMovement).where(StockMovement.item_id == item.id).order_by(StockMovement.id)
    balance = 0
    breaks: list[dict[str, int]] = []
    count = 0
    for movement in db.execute(stmt).scalars():
        count += 1
        expected_after = movement.balance_before + movement.signed_quantity
        if movement.balance_before != balance or movement.balance_after != expected_after:
            breaks.append(
                {
                    "movement_id": movement.id,
                    "expected_before": balance,
                    "balance_before": movement.balance_before,
                    "balance_after": movement.balance_after,
                }
            )
        balance += movement.signed_quantity
    return ReplayReport(
        item_id=item.id,
        item_name=item.label,
        recorded_stock=item.current_stock,
        ledger_stock=balance,
        entries=count,
        chain_breaks=breaks,
    )


@transactional
def reconcile_item(db: Session, item_id: int) -> ReplayReport:
    """Verify an item against its ledger; drift raises and freezes the item."""

    item = lock_item(db, item_id)
    report = replay_ledger(db, item)
    if not report.consistent:
        recent = [
            {
                "id": m.id,
                "type": m.movement_type,
                "quantity": m.quantity,
                "before": m.balance_before,
                "after": m.balance_after,
            }
            for m in list_movements(db, item.id, limit=5)
        ]
        raise ConsistencyViolationError(
            f"ledger for {item.label} sums to {report.ledger_stock} but stock shows {report.recorded_stock}",
            item_id=item.id,
            recorded_stock=report.recorded_stock,
            ledger_stock=report.ledger_stock,
            chain_breaks=report.chain_breaks or None,
            recent_movements=recent,
        )
    return report


def reconcile_site(db: Session, site_id: str | None = None) -> list[ReplayReport]:
    """Check every item of a site (or all sites); drifting items end up frozen."""

    stmt = select(InventoryItem.id).order_by(InventoryItem.id)
    if site_id:
        stmt = stmt.where(InventoryItem.site_id == site_id)
    reports: list[ReplayReport] = []
    for item_id in db.execute(stmt).scalars().all():
        try:
            reports.append(reconcile_item(db, item_id))
        except ConsistencyViolationError:
            item = db.get(InventoryItem, item_id)
            reports.append(replay_ledger(db, item))
    return reports


@transactional
def repair_item(db: Session, item_id: int, *, actor: str | None = None) -> ReplayReport:
    """Reset ``current_stock`` to the ledger balance and lift the freeze.

    Operator-only path: history is never edited, the aggregate is rebuilt from it.
    """

    item = lock_item(db, item_id)
    balance = ledger_balance(db, item.id)
    if balance < 0:
        raise ConsistencyViolationError(
            f"ledger for {item.label} sums to a negative balance and cannot be replayed",
            item_id=item.id,
            recorded_stock=item.current_stock,
            ledger_stock=balance,
        )
    previous = item.current_stock
    item.current_stock = balance
    item.is_frozen = False
    item.frozen_reason = None
    item.updated_at = utcnow_iso()
    db.flush()
    logger.warning(
        "stock.repaired",
        extra=log_extra(item_id=item.id, previous_stock=previous, ledger_stock=balance, actor=actor),
    )
    return replay_ledger(db, item)


def _active_items(site_id: str):
    return select(InventoryItem).where(InventoryItem.site_id == site_id, InventoryItem.is_active.is_(True))


def low_stock_items(db: Session, site_id: str) -> list[InventoryItem]:
    stmt = (
        _active_items(site_id)
        .where(InventoryItem.current_stock < InventoryItem.stock_min)
        .order_by(InventoryItem.current_stock, InventoryItem.name)
    )
    return db.execute(stmt).scalars().all()


def out_of_stock_items(db: Session, site_id: str) -> list[InventoryItem]:
    stmt = _active_items(site_id).where(InventoryItem.current_stock <= 0).order_by(InventoryItem.name)
    return db.execute(stmt).scalars().all()


def inventory_stats(db: Session, site_id: str) -> dict[str, object]:
    items = db.execute(_active_items(site_id)).scalars().all()
    by_class = {klass.value: 0 for klass in ItemClass}
    for item in items:
        by_class[item.item_class] = by_class.get(item.item_class, 0) + 1
    return {
        "total": len(items),
        "low_stock": sum(1 for item in items if item.is_low_stock),
        "out_of_stock": sum(1 for item in items if item.is_out_of_stock),
        "frozen": sum(1 for item in items if item.is_frozen),
        "by_class": by_class,
    }
