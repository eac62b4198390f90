from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.statuses import DeliveryStatus
from ..crud.deliveries import list_employee_deliveries
from ..crud.employees import create_employee, get_employee, list_employees, update_employee
from ..db.session import get_db
from ..deps.auth import ActorContext, require_actor
from ..schemas.delivery import DeliveryOut
from ..schemas.employee import EmployeeCreate, EmployeeOut, EmployeeUpdate

router = APIRouter(prefix="/api/v1/employees", tags=["employees"], dependencies=[Depends(require_actor)])


@router.get("", response_model=list[EmployeeOut])
def api_list_employees(
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    return list_employees(db, actor.site_id, include_inactive=include_inactive, limit=limit, offset=offset)


@router.post("", response_model=EmployeeOut, status_code=201)
def api_create_employee(payload: EmployeeCreate, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    data = payload.model_dump(exclude_unset=True)
    data["site_id"] = actor.site_id
    try:
        return create_employee(db, data)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/{employee_id}", response_model=EmployeeOut)
def api_get_employee(employee_id: int, db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    employee = get_employee(db, employee_id)
    if not employee or employee.site_id != actor.site_id:
        raise HTTPException(404, "Not found")
    return employee


@router.patch("/{employee_id}", response_model=EmployeeOut)
def api_update_employee(
    employee_id: int,
    payload: EmployeeUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    employee = get_employee(db, employee_id)
    if not employee or employee.site_id != actor.site_id:
        raise HTTPException(404, "Not found")
    try:
        return update_employee(db, employee, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/{employee_id}/deliveries", response_model=list[DeliveryOut])
def api_employee_deliveries(
    employee_id: int,
    status: Optional[DeliveryStatus] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    employee = get_employee(db, employee_id)
    if not employee or employee.site_id != actor.site_id:
        raise HTTPException(404, "Not found")
    return list_employee_deliveries(db, employee.id, status)
