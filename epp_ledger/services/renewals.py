"""Renewal scheduling and batch renewal per employee."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InsufficientStockError, InvalidStateError, ItemFrozenError, NotFoundError, ValidationError
from ..core.logging import log_extra
from ..core.statuses import AssignmentStatus, DeliveryReason, MovementType, ReferenceKind, RenewalUrgency
from ..crud.employees import require_active_employee
from ..models.assignment import Assignment
from ..models.delivery import Delivery
from ..models.inventory import InventoryItem
from .dates import days_until, today_in
from .deliveries import LineRequest, issue_delivery, lock_holdings, validate_lines
from .ledger import lock_item
from .uow import transactional

logger = logging.getLogger("epp_ledger.renewals")


def classify(days_remaining: int, due_soon_days: int | None = None) -> RenewalUrgency:
    window = settings.RENEWAL_DUE_SOON_DAYS if due_soon_days is None else due_soon_days
    if days_remaining < 0:
        return RenewalUrgency.OVERDUE
    if days_remaining <= window:
        return RenewalUrgency.DUE_SOON
    return RenewalUrgency.CURRENT


@dataclass
class PendingRenewal:
    assignment: Assignment
    days_remaining: int
    urgency: RenewalUrgency


@dataclass
class EmployeeRenewals:
    employee_id: int
    employee_name: str | None
    renewals: list[PendingRenewal] = field(default_factory=list)


def _active_assignments(site_id: str):
    return select(Assignment).where(
        Assignment.site_id == site_id,
        Assignment.status == AssignmentStatus.ACTIVE.value,
    )


def list_pending_renewals(
    db: Session,
    site_id: str,
    horizon_days: int | None = None,
    *,
    today: date | None = None,
    employee_id: int | None = None,
) -> list[PendingRenewal]:
    """ACTIVE assignments due on or before ``today + horizon_days``, soonest first."""

    today = today or today_in(settings.TZ)
    horizon = settings.RENEWAL_DEFAULT_HORIZON_DAYS if horizon_days is None else horizon_days
    cutoff = today + timedelta(days=horizon)
    stmt = _active_assignments(site_id).where(Assignment.renewal_date <= cutoff)
    if employee_id is not None:
        stmt = stmt.where(Assignment.employee_id == employee_id)
    stmt = stmt.order_by(Assignment.renewal_date, Assignment.employee_id, Assignment.id)
    pending = []
    for assignment in db.execute(stmt).scalars().all():
        remaining = days_until(assignment.renewal_date, today)
        pending.append(PendingRenewal(assignment, remaining, classify(remaining)))
    return pending


def group_by_employee(renewals: Iterable[PendingRenewal]) -> list[EmployeeRenewals]:
    """Presentation grouping; keeps first-seen employee order."""

    groups: "OrderedDict[int, EmployeeRenewals]" = OrderedDict()
    for renewal in renewals:
        assignment = renewal.assignment
        group = groups.get(assignment.employee_id)
        if group is None:
            group = groups[assignment.employee_id] = EmployeeRenewals(
                employee_id=assignment.employee_id,
                employee_name=assignment.employee_name,
            )
        group.renewals.append(renewal)
    return list(groups.values())


def renewal_summary(db: Session, site_id: str, *, today: date | None = None) -> dict[str, int]:
    """Counts of every ACTIVE assignment of the site per urgency bucket."""

    today = today or today_in(settings.TZ)
    counts = {urgency.value: 0 for urgency in RenewalUrgency}
    total = 0
    for renewal_date in db.execute(
        select(Assignment.renewal_date).where(
            Assignment.site_id == site_id,
            Assignment.status == AssignmentStatus.ACTIVE.value,
        )
    ).scalars():
        counts[classify(days_until(renewal_date, today)).value] += 1
        total += 1
    return {
        "total": total,
        "overdue": counts[RenewalUrgency.OVERDUE.value],
        "due_soon": counts[RenewalUrgency.DUE_SOON.value],
        "current": counts[RenewalUrgency.CURRENT.value],
    }


def _check_stock(db: Session, assignments: list[Assignment]) -> None:
    """Every item must cover the batch's total demand before anything is written."""

    demand: "OrderedDict[int, int]" = OrderedDict()
    for assignment in assignments:
        demand[assignment.item_id] = demand.get(assignment.item_id, 0) + assignment.quantity
    for item_id, needed in sorted(demand.items()):
        item: InventoryItem = lock_item(db, item_id)
        if item.is_frozen:
            raise ItemFrozenError(item_id=item.id, item_name=item.label, reason=item.frozen_reason)
        if item.current_stock < needed:
            raise InsufficientStockError(
                item_id=item.id,
                item_name=item.label,
                requested=needed,
                available=item.current_stock,
            )


@transactional
def renew_for_employee(
    db: Session,
    *,
    employee_id: int,
    assignment_ids: Iterable[int],
    site_id: str,
    actor: str | None,
    renewal_date: date | None = None,
    notes: str | None = None,
) -> Delivery:
    """Replace the selected ACTIVE assignments with one PENDING renewal delivery.

    All-or-nothing: ownership, status and stock are verified for the whole batch
    before the first write. The returned delivery still needs both signatures.
    """

    ids = list(assignment_ids)
    if not ids:
        raise ValidationError("select at least one assignment to renew", employee_id=employee_id)
    if len(set(ids)) != len(ids):
        raise ValidationError("an assignment was selected more than once", employee_id=employee_id)

    employee = require_active_employee(db, employee_id, site_id)
    item_ids = db.execute(select(Assignment.item_id).where(Assignment.id.in_(ids))).scalars().all()
    locked, _ = lock_holdings(db, employee.id, item_ids, ids)
    missing = [assignment_id for assignment_id in ids if assignment_id not in locked]
    if missing:
        raise NotFoundError("assignment", missing[0])

    selected = [locked[assignment_id] for assignment_id in ids]
    for assignment in selected:
        if assignment.employee_id != employee.id:
            raise ValidationError(
                f"assignment {assignment.id} belongs to another employee",
                assignment_id=assignment.id,
                employee_id=employee.id,
            )
        # Re-checked under lock: a concurrent renewal or cancel loses here.
        if assignment.status != AssignmentStatus.ACTIVE.value:
            raise InvalidStateError(
                f"assignment {assignment.id} is {assignment.status} and cannot be renewed",
                entity="assignment",
                identifier=assignment.id,
                status=assignment.status,
            )

    _check_stock(db, selected)
    lines = [
        LineRequest(
            item_id=assignment.item_id,
            quantity=assignment.quantity,
            size=assignment.size,
            replaces_assignment_id=assignment.id,
        )
        for assignment in selected
    ]
    items = validate_lines(db, lines, site_id)
    delivered_on = renewal_date or today_in(settings.TZ)

    delivery = issue_delivery(
        db,
        employee=employee,
        site_id=site_id,
        actor=actor,
        delivered_on=delivered_on,
        reason=DeliveryReason.RENEWAL,
        notes=notes or "Renewal",
        lines=lines,
        items=items,
        movement_type=MovementType.RENEWAL_OUT,
        reference_kind=ReferenceKind.RENEWAL,
    )
    logger.info(
        "renewal.batch_created",
        extra=log_extra(
            delivery_id=delivery.id,
            employee_id=employee.id,
            assignments=ids,
            actor=actor,
        ),
    )
    return delivery
