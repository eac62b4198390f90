from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..deps.auth import ActorContext, require_actor
from ..schemas.delivery import DeliveryOut
from ..schemas.renewal import EmployeeRenewalGroup, PendingRenewalOut, RenewalRequest, RenewalSummary
from ..services.renewals import group_by_employee, list_pending_renewals, renew_for_employee, renewal_summary

router = APIRouter(prefix="/api/v1/renewals", tags=["renewals"], dependencies=[Depends(require_actor)])


def _pending_to_schema(pending) -> PendingRenewalOut:
    return PendingRenewalOut.model_validate(
        {
            "assignment": pending.assignment,
            "days_remaining": pending.days_remaining,
            "urgency": pending.urgency.value,
        },
        from_attributes=True,
    )


@router.get("", response_model=list[PendingRenewalOut])
def api_pending_renewals(
    horizon_days: Optional[int] = Query(None, ge=0),
    employee_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    pending = list_pending_renewals(db, actor.site_id, horizon_days, employee_id=employee_id)
    return [_pending_to_schema(item) for item in pending]


@router.get("/by-employee", response_model=list[EmployeeRenewalGroup])
def api_pending_renewals_by_employee(
    horizon_days: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    groups = group_by_employee(list_pending_renewals(db, actor.site_id, horizon_days))
    return [
        EmployeeRenewalGroup(
            employee_id=group.employee_id,
            employee_name=group.employee_name,
            renewals=[_pending_to_schema(item) for item in group.renewals],
        )
        for group in groups
    ]


@router.get("/summary", response_model=RenewalSummary)
def api_renewal_summary(db: Session = Depends(get_db), actor: ActorContext = Depends(require_actor)):
    return renewal_summary(db, actor.site_id)


@router.post("/employees/{employee_id}", response_model=DeliveryOut, status_code=201)
def api_renew_for_employee(
    employee_id: int,
    payload: RenewalRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_actor),
):
    return renew_for_employee(
        db,
        employee_id=employee_id,
        assignment_ids=payload.assignment_ids,
        site_id=actor.site_id,
        actor=actor.actor_id,
        renewal_date=payload.renewal_date,
        notes=payload.notes,
    )
