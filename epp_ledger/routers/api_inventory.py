from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundError
from ..core.statuses import ItemClass
from ..crud.inventory import deactivate_item, list_items, register_item, require_item, update_item
from ..db.session import get_db
from ..deps.auth import ActorContext, require_actor
from ..models.inventory import InventoryItem
from ..schemas.inventory import (
    InventoryStats,
    ItemCreate,
    ItemOut,
    ItemPage,
    ItemUpdate,
    ReconciliationOut,
    StockAdjustment,
    StockMovementOut,
)
from ..services.ledger import (
    adjust_stock,
    inventory_stats,
    list_movements,
    low_stock_items,
    out_of_stock_items,
    reconcile_item,
    repair_item,
)

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"], dependencies=[Depends(require_actor)])


def _site_item(db: Session, item_id: int, actor: ActorContext) -> InventoryItem:
    item = require_item(db, item_id)
    # Items of other sites are reported as missing rather than forbidden.
    if item.site_id != actor.site_id:
        raise NotFoundError("inventory item", item_id)
    return item


@router.get("/items", response_model=ItemPage)
def api_list_items(
    item_class: Optional[ItemClass] = None,
    search: Optional[str] = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    rows, total = list_items(
        db,
        actor.site_id,
        item_class=item_class,
        search=search,
        low_stock=low_stock,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )
    return {"items": rows, "count": total}


@router.post("/items", response_model=ItemOut, status_code=201)
def api_register_item(payload: ItemCreate, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    data = payload.model_dump(exclude_unset=True)
    data["site_id"] = actor.site_id
    return register_item(db, data, actor=actor.actor_id)


@router.get("/items/{item_id}", response_model=ItemOut)
def api_get_item(item_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return _site_item(db, item_id, actor)


@router.patch("/items/{item_id}", response_model=ItemOut)
def api_update_item(
    item_id: int,
    payload: ItemUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    item = _site_item(db, item_id, actor)
    return update_item(db, item, payload.model_dump(exclude_unset=True))


@router.delete("/items/{item_id}", response_model=ItemOut)
def api_deactivate_item(item_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    item = _site_item(db, item_id, actor)
    return deactivate_item(db, item)


@router.post("/items/{item_id}/adjust", response_model=StockMovementOut, status_code=201)
def api_adjust_stock(
    item_id: int,
    payload: StockAdjustment,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_item(db, item_id, actor)
    return adjust_stock(
        db,
        item_id=item_id,
        quantity=payload.signed_quantity,
        movement_type=payload.movement_type,
        reason=payload.reason,
        actor=actor.actor_id,
    )


@router.get("/items/{item_id}/movements", response_model=list[StockMovementOut])
def api_list_movements(
    item_id: int,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_item(db, item_id, actor)
    return list_movements(db, item_id, limit=limit, offset=offset)


@router.post("/items/{item_id}/reconcile", response_model=ReconciliationOut)
def api_reconcile_item(item_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    _site_item(db, item_id, actor)
    return reconcile_item(db, item_id).as_dict()


@router.post("/items/{item_id}/repair", response_model=ReconciliationOut)
def api_repair_item(item_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    _site_item(db, item_id, actor)
    return repair_item(db, item_id, actor=actor.actor_id).as_dict()


@router.get("/low-stock", response_model=list[ItemOut])
def api_low_stock(db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return low_stock_items(db, actor.site_id)


@router.get("/out-of-stock", response_model=list[ItemOut])
def api_out_of_stock(db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return out_of_stock_items(db, actor.site_id)


@router.get("/stats", response_model=InventoryStats)
def api_inventory_stats(db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return inventory_stats(db, actor.site_id)
