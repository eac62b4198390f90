from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundError
from ..core.statuses import DeliveryStatus
from ..crud.deliveries import delivery_assignments, delivery_stats, list_deliveries, list_signed_deliveries, require_delivery
from ..db.session import get_db
from ..deps.auth import ActorContext, require_actor, require_eraser
from ..models.delivery import Delivery
from ..schemas.delivery import (
    DeliveryCancel,
    DeliveryCreate,
    DeliveryOut,
    DeliveryPage,
    DeliveryStats,
    EmployeeSignature,
    ResponsibleSignature,
)
from ..schemas.renewal import AssignmentOut
from ..services.deliveries import cancel_delivery, create_delivery, erase_delivery, remove_delivery_line
from ..services.signatures import sign_employee, sign_responsible

router = APIRouter(prefix="/api/v1/deliveries", tags=["deliveries"], dependencies=[Depends(require_actor)])


def _site_delivery(db: Session, delivery_id: int, actor: ActorContext) -> Delivery:
    delivery = require_delivery(db, delivery_id)
    if delivery.site_id != actor.site_id:
        raise NotFoundError("delivery", delivery_id)
    return delivery


@router.get("", response_model=DeliveryPage)
def api_list_deliveries(
    employee_id: Optional[int] = None,
    status: Optional[DeliveryStatus] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    rows, total = list_deliveries(
        db,
        actor.site_id,
        employee_id=employee_id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return {"items": rows, "count": total}


@router.post("", response_model=DeliveryOut, status_code=201)
def api_create_delivery(payload: DeliveryCreate, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return create_delivery(
        db,
        employee_id=payload.employee_id,
        site_id=actor.site_id,
        actor=actor.actor_id,
        lines=[line.model_dump() for line in payload.lines],
        delivery_date=payload.delivery_date,
        reason=payload.reason,
        notes=payload.notes,
    )


@router.get("/stats", response_model=DeliveryStats)
def api_delivery_stats(
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    return delivery_stats(db, actor.site_id, start, end)


@router.get("/signed", response_model=list[DeliveryOut])
def api_signed_deliveries(
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    return list_signed_deliveries(db, actor.site_id, start=start, end=end)


@router.get("/{delivery_id}", response_model=DeliveryOut)
def api_get_delivery(delivery_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return _site_delivery(db, delivery_id, actor)


@router.post("/{delivery_id}/cancel", response_model=DeliveryOut)
def api_cancel_delivery(
    delivery_id: int,
    payload: DeliveryCancel,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_delivery(db, delivery_id, actor)
    return cancel_delivery(db, delivery_id, payload.reason, actor=actor.actor_id)


@router.delete("/{delivery_id}/lines/{line_index}", response_model=DeliveryOut)
def api_remove_delivery_line(
    delivery_id: int,
    line_index: int,
    item_id: int = Query(..., description="Item the caller expects at this position"),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_delivery(db, delivery_id, actor)
    return remove_delivery_line(db, delivery_id, line_index, expected_item_id=item_id, actor=actor.actor_id)


@router.delete("/{delivery_id}")
def api_erase_delivery(delivery_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_eraser)):
    _site_delivery(db, delivery_id, actor)
    erased = erase_delivery(db, delivery_id, actor=actor.actor_id)
    return {"status": "erased", "id": erased}


@router.post("/{delivery_id}/sign/employee", response_model=DeliveryOut)
def api_sign_employee(
    delivery_id: int,
    payload: EmployeeSignature,
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_delivery(db, delivery_id, actor)
    signer_ip = request.client.host if request.client else None
    return sign_employee(db, delivery_id, payload.signature, signer_ip=signer_ip)


@router.post("/{delivery_id}/sign/responsible", response_model=DeliveryOut)
def api_sign_responsible(
    delivery_id: int,
    payload: ResponsibleSignature,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    _site_delivery(db, delivery_id, actor)
    return sign_responsible(
        db,
        delivery_id,
        payload.signature,
        responsible_name=payload.responsible_name,
        responsible_position=payload.responsible_position,
    )


@router.get("/{delivery_id}/assignments", response_model=list[AssignmentOut])
def api_delivery_assignments(delivery_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    _site_delivery(db, delivery_id, actor)
    return delivery_assignments(db, delivery_id)
