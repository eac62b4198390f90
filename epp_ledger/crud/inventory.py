"""Inventory item registration and maintenance.

Stock never changes here except through ``services.ledger.adjust_stock``;
opening stock on registration is booked as an inbound ledger entry so the
ledger replays to the aggregate from the item's first day.
"""

from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundError, ValidationError
from ..core.statuses import ItemClass, MovementType, UnitOfMeasure
from ..models.inventory import InventoryItem
from ..services.dates import utcnow_iso
from ..services.ledger import adjust_stock
from ..services.uow import transactional

# Fields an operator may edit directly. ``current_stock`` is not one of them.
EDITABLE_FIELDS = (
    "name",
    "description",
    "item_class",
    "unit",
    "size",
    "useful_life_months",
    "stock_min",
    "stock_max",
    "unit_price",
)


def _normalize(data: dict) -> dict:
    cleaned = {}
    for key, value in data.items():
        if isinstance(value, str):
            value = value.strip()
        cleaned[key] = value
    if "size" in cleaned:
        cleaned["size"] = cleaned["size"] or ""
    if "item_class" in cleaned and cleaned["item_class"] is not None:
        cleaned["item_class"] = ItemClass(cleaned["item_class"]).value
    if "unit" in cleaned and cleaned["unit"] is not None:
        cleaned["unit"] = UnitOfMeasure(cleaned["unit"]).value
    return cleaned


def _check_thresholds(stock_min: int | None, stock_max: int | None) -> None:
    if stock_min is not None and stock_min < 0:
        raise ValidationError("stock_min cannot be negative", stock_min=stock_min)
    if stock_max is not None and stock_min is not None and stock_max < stock_min:
        raise ValidationError("stock_max cannot be lower than stock_min", stock_min=stock_min, stock_max=stock_max)


def _ensure_unique(db: Session, site_id: str, name: str, size: str, exclude_id: int | None = None) -> None:
    stmt = select(InventoryItem.id).where(
        InventoryItem.site_id == site_id,
        func.lower(InventoryItem.name) == name.lower(),
        InventoryItem.size == size,
        InventoryItem.is_active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(InventoryItem.id != exclude_id)
    if db.execute(stmt).first():
        raise ValidationError(
            f"an item named {name} with size {size or '-'} already exists at this site",
            site_id=site_id,
            name=name,
            size=size,
        )


@transactional
def register_item(db: Session, payload: dict, *, actor: str | None = None) -> InventoryItem:
    """Create an item; ``initial_stock`` becomes an INBOUND_SUPPLY ledger entry."""

    data = _normalize(payload)
    initial_stock = int(data.pop("initial_stock", 0) or 0)
    if initial_stock < 0:
        raise ValidationError("initial_stock cannot be negative", initial_stock=initial_stock)
    name = data.get("name") or ""
    site_id = data.get("site_id") or ""
    if not name:
        raise ValidationError("name is required")
    if not site_id:
        raise ValidationError("site_id is required")
    data.setdefault("item_class", ItemClass.PROTECTIVE_GEAR.value)
    data.setdefault("unit", UnitOfMeasure.UNIT.value)
    data.setdefault("size", "")
    data.setdefault("stock_min", 0)
    if data.get("useful_life_months") is not None and data["useful_life_months"] <= 0:
        raise ValidationError("useful_life_months must be positive", useful_life_months=data["useful_life_months"])
    _check_thresholds(data.get("stock_min"), data.get("stock_max"))
    _ensure_unique(db, site_id, name, data["size"])

    now = utcnow_iso()
    item = InventoryItem(
        **{key: data[key] for key in (*EDITABLE_FIELDS, "site_id") if key in data},
        current_stock=0,
        is_active=True,
        is_frozen=False,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    db.flush()
    if initial_stock:
        adjust_stock(
            db,
            item_id=item.id,
            quantity=initial_stock,
            movement_type=MovementType.INBOUND_SUPPLY,
            reason="Opening stock",
            actor=actor,
        )
    return item


def require_item(db: Session, item_id: int) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError("inventory item", item_id)
    return item


def list_items(
    db: Session,
    site_id: str,
    *,
    item_class: ItemClass | str | None = None,
    search: str | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[InventoryItem], int]:
    """Page through a site's catalog; returns ``(rows, total_count)``."""

    stmt = select(InventoryItem).where(InventoryItem.site_id == site_id)
    if not include_inactive:
        stmt = stmt.where(InventoryItem.is_active.is_(True))
    if item_class:
        try:
            klass = ItemClass(item_class)
        except ValueError as exc:
            raise ValidationError(f"unknown item class {item_class!r}", item_class=str(item_class)) from exc
        stmt = stmt.where(InventoryItem.item_class == klass.value)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(InventoryItem.name.ilike(pattern), InventoryItem.description.ilike(pattern)))
    if low_stock:
        stmt = stmt.where(InventoryItem.current_stock < InventoryItem.stock_min)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(InventoryItem.name).limit(limit).offset(offset)).scalars().all()
    return rows, int(total)


@transactional
def update_item(db: Session, item: InventoryItem, payload: dict) -> InventoryItem:
    """Edit descriptive fields and thresholds. Stock cannot be set here."""

    if "current_stock" in payload:
        raise ValidationError("current_stock can only change through stock adjustments", item_id=item.id)
    data = _normalize({key: value for key, value in payload.items() if key in EDITABLE_FIELDS})
    if data.get("name") == "":
        raise ValidationError("name is required", item_id=item.id)
    if data.get("useful_life_months") is not None and data["useful_life_months"] <= 0:
        raise ValidationError("useful_life_months must be positive", item_id=item.id)
    _check_thresholds(data.get("stock_min", item.stock_min), data.get("stock_max", item.stock_max))
    if "name" in data or "size" in data:
        _ensure_unique(db, item.site_id, data.get("name", item.name), data.get("size", item.size), exclude_id=item.id)
    for key, value in data.items():
        setattr(item, key, value)
    item.updated_at = utcnow_iso()
    db.flush()
    return item


@transactional
def deactivate_item(db: Session, item: InventoryItem) -> InventoryItem:
    """Soft delete: history keeps referencing the row."""

    item.is_active = False
    item.updated_at = utcnow_iso()
    db.flush()
    return item
