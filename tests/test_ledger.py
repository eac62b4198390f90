import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from epp_ledger.core.config import settings
from epp_ledger.core.exceptions import (
    ConsistencyViolationError,
    InsufficientStockError,
    ItemFrozenError,
    StockConflictError,
    ValidationError,
)
from epp_ledger.core.statuses import MovementType
from epp_ledger.crud.inventory import register_item, update_item
from epp_ledger.db.session import Base
from epp_ledger.models.inventory import InventoryItem
from epp_ledger.models.stock import StockMovement
from epp_ledger.services.ledger import (
    adjust_stock,
    inventory_stats,
    ledger_balance,
    list_movements,
    low_stock_items,
    reconcile_item,
    reconcile_site,
    repair_item,
    replay_ledger,
)
from epp_ledger.services.uow import transactional

# Ensure models are imported so metadata is populated
from epp_ledger.models import assignment as assignment_model  # noqa: F401
from epp_ledger.models import delivery as delivery_model  # noqa: F401
from epp_ledger.models import employee as employee_model  # noqa: F401


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _item(db, name="Safety helmet", stock=10, **extra):
    payload = {"name": name, "site_id": "site-1", "initial_stock": stock, **extra}
    return register_item(db, payload, actor="storekeeper")


def _movement_count(db, item_id):
    return db.execute(
        select(func.count()).select_from(StockMovement).where(StockMovement.item_id == item_id)
    ).scalar_one()


def test_register_item_books_opening_stock(db_session):
    item = _item(db_session, stock=10)

    assert item.current_stock == 10
    movements = list_movements(db_session, item.id)
    assert len(movements) == 1
    opening = movements[0]
    assert opening.movement_type == MovementType.INBOUND_SUPPLY.value
    assert (opening.balance_before, opening.balance_after) == (0, 10)
    assert opening.performed_by == "storekeeper"
    assert ledger_balance(db_session, item.id) == 10


def test_register_item_rejects_duplicate_name_and_size(db_session):
    _item(db_session, name="Gloves", size="M")
    _item(db_session, name="Gloves", size="L")

    with pytest.raises(ValidationError):
        _item(db_session, name="Gloves", size="M")


def test_adjust_stock_refuses_to_go_negative(db_session):
    item = _item(db_session, stock=3)

    with pytest.raises(InsufficientStockError) as excinfo:
        adjust_stock(
            db_session,
            item_id=item.id,
            quantity=-5,
            movement_type=MovementType.DELIVERY_OUT,
            reason="Issue",
        )

    error = excinfo.value
    assert error.requested == 5
    assert error.available == 3
    assert error.shortfall == 2
    assert "only 3 in stock" in error.message
    db_session.refresh(item)
    assert item.current_stock == 3
    assert _movement_count(db_session, item.id) == 1


def test_adjust_stock_checks_sign_against_movement_type(db_session):
    item = _item(db_session, stock=3)

    with pytest.raises(ValidationError):
        adjust_stock(db_session, item_id=item.id, quantity=2, movement_type=MovementType.DELIVERY_OUT)
    with pytest.raises(ValidationError):
        adjust_stock(db_session, item_id=item.id, quantity=-2, movement_type=MovementType.RETURN_IN)
    with pytest.raises(ValidationError):
        adjust_stock(db_session, item_id=item.id, quantity=0, movement_type=MovementType.CORRECTION_IN)


def test_ledger_replay_matches_current_stock(db_session):
    item = _item(db_session, stock=10)
    adjust_stock(db_session, item_id=item.id, quantity=-4, movement_type=MovementType.DELIVERY_OUT)
    adjust_stock(db_session, item_id=item.id, quantity=6, movement_type=MovementType.INBOUND_SUPPLY)
    adjust_stock(db_session, item_id=item.id, quantity=2, movement_type=MovementType.RETURN_IN)
    adjust_stock(
        db_session,
        item_id=item.id,
        quantity=-1,
        movement_type=MovementType.CORRECTION_OUT,
        reason="Physical count",
    )

    db_session.refresh(item)
    assert item.current_stock == 13
    report = replay_ledger(db_session, item)
    assert report.consistent
    assert report.entries == 5
    assert report.ledger_stock == 13

    newest = list_movements(db_session, item.id, limit=2)
    assert [m.movement_type for m in newest] == [
        MovementType.CORRECTION_OUT.value,
        MovementType.RETURN_IN.value,
    ]
    assert newest[0].signed_quantity == -1


def test_reconcile_freezes_drifting_item_until_repaired(db_session):
    item = _item(db_session, stock=10)
    db_session.execute(update(InventoryItem).where(InventoryItem.id == item.id).values(current_stock=99))
    db_session.commit()

    with pytest.raises(ConsistencyViolationError) as excinfo:
        reconcile_item(db_session, item.id)
    assert excinfo.value.details["ledger_stock"] == 10
    assert excinfo.value.details["recorded_stock"] == 99

    db_session.refresh(item)
    assert item.is_frozen
    with pytest.raises(ItemFrozenError):
        adjust_stock(db_session, item_id=item.id, quantity=-1, movement_type=MovementType.DELIVERY_OUT)

    report = repair_item(db_session, item.id, actor="operator")
    assert report.consistent
    db_session.refresh(item)
    assert item.current_stock == 10
    assert not item.is_frozen
    assert item.frozen_reason is None
    assert _movement_count(db_session, item.id) == 1


def test_reconcile_site_reports_every_item(db_session):
    healthy = _item(db_session, name="Boots", stock=4)
    drifting = _item(db_session, name="Vest", stock=2)
    db_session.execute(update(InventoryItem).where(InventoryItem.id == drifting.id).values(current_stock=0))
    db_session.commit()

    reports = {report.item_id: report for report in reconcile_site(db_session, "site-1")}

    assert reports[healthy.id].consistent
    assert not reports[drifting.id].consistent
    db_session.refresh(drifting)
    assert drifting.is_frozen


def test_transactional_replays_unit_after_stock_conflict(db_session):
    calls = []

    @transactional
    def flaky(db):
        calls.append(1)
        if len(calls) == 1:
            raise StockConflictError(item_id=1, expected=0)
        return "done"

    assert flaky(db_session) == "done"
    assert len(calls) == 2


def test_transactional_gives_up_after_retry_budget(db_session, monkeypatch):
    monkeypatch.setattr(settings, "STOCK_CONFLICT_RETRIES", 1)
    calls = []

    @transactional
    def always_conflicts(db):
        calls.append(1)
        raise StockConflictError(item_id=1, expected=0)

    with pytest.raises(StockConflictError):
        always_conflicts(db_session)
    assert len(calls) == 2


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"sqlstate {pgcode}")
        self.pgcode = pgcode


def test_transactional_replays_unit_after_deadlock(db_session):
    calls = []

    @transactional
    def deadlocked_once(db):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE inventory_items", {}, _PgError("40P01"))
        return "done"

    assert deadlocked_once(db_session) == "done"
    assert len(calls) == 2


def test_transactional_does_not_replay_other_database_errors(db_session):
    calls = []

    @transactional
    def broken(db):
        calls.append(1)
        raise OperationalError("UPDATE inventory_items", {}, _PgError("23505"))

    with pytest.raises(OperationalError):
        broken(db_session)
    assert len(calls) == 1


def test_transactional_replays_with_the_same_iterable_arguments(db_session):
    seen = []

    @transactional
    def consume(db, quantities, *, labels):
        seen.append((list(quantities), list(labels)))
        if len(seen) == 1:
            raise StockConflictError(item_id=1, expected=0)
        return len(seen)

    assert consume(db_session, (q for q in (1, 2, 3)), labels=iter(["a", "b"])) == 2
    assert seen == [([1, 2, 3], ["a", "b"]), ([1, 2, 3], ["a", "b"])]


def test_update_item_never_touches_stock(db_session):
    item = _item(db_session, stock=5)

    with pytest.raises(ValidationError):
        update_item(db_session, item, {"current_stock": 50})

    updated = update_item(db_session, item, {"stock_min": 8, "description": "Class E"})
    assert updated.stock_min == 8
    assert updated.current_stock == 5


def test_inventory_stats_and_low_stock(db_session):
    _item(db_session, name="Helmet", stock=1, stock_min=5)
    _item(db_session, name="Coverall", stock=0, item_class="UNIFORM")
    _item(db_session, name="Goggles", stock=20, stock_min=5)

    stats = inventory_stats(db_session, "site-1")
    assert stats["total"] == 3
    assert stats["low_stock"] == 1
    assert stats["out_of_stock"] == 1
    assert stats["by_class"]["UNIFORM"] == 1
    assert stats["by_class"]["PROTECTIVE_GEAR"] == 2
    assert [item.name for item in low_stock_items(db_session, "site-1")] == ["Helmet"]
