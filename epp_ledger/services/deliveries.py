"""Delivery transaction manager.

Every public function here is one unit of work: the delivery row, its ledger
entries and its assignments land together or not at all. Issuing a line
decrements stock through ``adjust_stock`` and opens an ACTIVE assignment whose
renewal date is the delivery date plus the item's useful life. Undoing a line
(cancel, line removal, erase) books an equal and opposite RETURN_IN entry,
drops the assignment, and re-activates any assignment the line had superseded.

Row locks are always taken in the same order: the delivery, then assignments
by ascending id, then inventory items by ascending id. Ledger writes only start
once every lock of the unit is held.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..core.logging import log_extra
from ..core.statuses import (
    AssignmentStatus,
    DeliveryReason,
    DeliveryStatus,
    MovementType,
    ReferenceKind,
    require_delivery_status,
    transition_assignment,
    transition_delivery,
)
from ..crud.employees import require_active_employee
from ..models.assignment import Assignment
from ..models.delivery import Delivery, DeliveryLine
from ..models.employee import Employee
from ..models.inventory import InventoryItem
from .dates import add_months, today_in, utcnow_iso
from .ledger import adjust_stock, lock_item
from .uow import transactional

logger = logging.getLogger("epp_ledger.deliveries")


@dataclass
class LineRequest:
    item_id: int
    quantity: int
    size: str | None = None
    replaces_assignment_id: int | None = None


def coerce_lines(lines: Iterable[LineRequest | Mapping[str, Any]]) -> list[LineRequest]:
    coerced = []
    for line in lines:
        if isinstance(line, LineRequest):
            coerced.append(line)
        else:
            coerced.append(LineRequest(**dict(line)))
    return coerced


def lock_delivery(db: Session, delivery_id: int) -> Delivery:
    stmt = (
        select(Delivery)
        .where(Delivery.id == delivery_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    delivery = db.execute(stmt).scalars().first()
    if delivery is None:
        raise NotFoundError("delivery", delivery_id)
    return delivery


def lock_items(db: Session, item_ids: Iterable[int]) -> dict[int, InventoryItem]:
    return {item_id: lock_item(db, item_id) for item_id in sorted(set(item_ids))}


def line_size(line: LineRequest, item: InventoryItem) -> str:
    return (line.size or item.size or "").strip()


def renewal_date_for(item: InventoryItem, delivered_on: date) -> date:
    months = item.useful_life_months or settings.DEFAULT_USEFUL_LIFE_MONTHS
    return add_months(delivered_on, months)


def validate_lines(db: Session, lines: list[LineRequest], site_id: str) -> dict[int, InventoryItem]:
    """Check every line before any write: active item of this site, positive quantity."""

    if not lines:
        raise ValidationError("a delivery needs at least one line")
    items: dict[int, InventoryItem] = {}
    seen: set[tuple[int, str]] = set()
    for index, line in enumerate(lines):
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(
                f"line {index}: quantity must be positive",
                line=index,
                item_id=line.item_id,
                quantity=line.quantity,
            )
        item = items.get(line.item_id) or db.get(InventoryItem, line.item_id)
        if item is None:
            raise NotFoundError("inventory item", line.item_id)
        if not item.is_active:
            raise ValidationError(f"line {index}: {item.label} is no longer active", line=index, item_id=item.id)
        if item.site_id != site_id:
            raise ValidationError(
                f"line {index}: {item.label} belongs to another site",
                line=index,
                item_id=item.id,
                site_id=site_id,
            )
        key = (item.id, line_size(line, item))
        if key in seen:
            raise ValidationError(
                f"line {index}: {item.label} appears twice in the same delivery",
                line=index,
                item_id=item.id,
            )
        seen.add(key)
        items[item.id] = item
    return items


def lock_holdings(
    db: Session, employee_id: int, item_ids: Iterable[int], assignment_ids: Iterable[int] = ()
) -> tuple[dict[int, Assignment], dict[tuple[int, str], Assignment]]:
    """Lock the employee's ACTIVE holdings of ``item_ids`` plus ``assignment_ids`` in one id-ordered query."""

    stmt = (
        select(Assignment)
        .where(
            or_(
                and_(
                    Assignment.employee_id == employee_id,
                    Assignment.item_id.in_(list(item_ids)),
                    Assignment.status == AssignmentStatus.ACTIVE.value,
                ),
                Assignment.id.in_(list(assignment_ids)),
            )
        )
        .order_by(Assignment.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    by_id: dict[int, Assignment] = {}
    by_key: dict[tuple[int, str], Assignment] = {}
    for assignment in db.execute(stmt).scalars().all():
        by_id[assignment.id] = assignment
        if assignment.employee_id == employee_id and assignment.status == AssignmentStatus.ACTIVE.value:
            by_key[(assignment.item_id, assignment.size)] = assignment
    return by_id, by_key


def _supersede(
    db: Session,
    *,
    employee: Employee,
    item: InventoryItem,
    size: str,
    line: LineRequest,
    delivery: Delivery,
    held_by_id: dict[int, Assignment],
    held_by_key: dict[tuple[int, str], Assignment],
) -> Assignment | None:
    """Retire the holding this line replaces so only one ACTIVE row remains."""

    if line.replaces_assignment_id is not None:
        previous = held_by_id.get(line.replaces_assignment_id)
        if previous is None:
            raise NotFoundError("assignment", line.replaces_assignment_id)
        if previous.employee_id != employee.id or previous.item_id != item.id:
            raise ValidationError(
                f"assignment {previous.id} is not a holding of {item.label} for {employee.full_name}",
                assignment_id=previous.id,
            )
    else:
        previous = held_by_key.get((item.id, size))
        # Already retired by an explicit replacement on another line.
        if previous is None or previous.status != AssignmentStatus.ACTIVE.value:
            return None

    previous.status = transition_assignment(
        previous.status, AssignmentStatus.RENEWED, assignment_id=previous.id
    ).value
    previous.renewed_by_delivery_id = delivery.id
    previous.updated_at = utcnow_iso()
    # The partial unique index must see RENEWED before the new ACTIVE row.
    db.flush()
    return previous


def issue_delivery(
    db: Session,
    *,
    employee: Employee,
    site_id: str,
    actor: str | None,
    delivered_on: date,
    reason: DeliveryReason,
    notes: str | None,
    lines: list[LineRequest],
    items: dict[int, InventoryItem],
    movement_type: MovementType,
    reference_kind: ReferenceKind,
) -> Delivery:
    """Insert a PENDING delivery and, line by line, book stock and open assignments.

    Runs inside the caller's unit of work; any failure rolls every line back.
    """

    explicit = [line.replaces_assignment_id for line in lines if line.replaces_assignment_id is not None]
    held_by_id, held_by_key = lock_holdings(db, employee.id, items, explicit)
    lock_items(db, items)

    now = utcnow_iso()
    delivery = Delivery(
        site_id=site_id,
        employee_id=employee.id,
        delivered_by=actor,
        delivery_date=delivered_on,
        reason=reason.value,
        notes=notes,
        status=DeliveryStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.add(delivery)
    db.flush()

    for position, line in enumerate(lines):
        item = items[line.item_id]
        size = line_size(line, item)
        record = DeliveryLine(
            delivery=delivery,
            position=position,
            item_id=item.id,
            item_name=item.name,
            quantity=line.quantity,
            size=size,
        )
        db.add(record)
        db.flush()

        adjust_stock(
            db,
            item_id=item.id,
            quantity=-line.quantity,
            movement_type=movement_type,
            reason=f"{reason.value.replace('_', ' ').title()} to {employee.full_name}",
            actor=actor,
            reference_kind=reference_kind,
            reference_id=delivery.id,
        )

        previous = _supersede(
            db,
            employee=employee,
            item=item,
            size=size,
            line=line,
            delivery=delivery,
            held_by_id=held_by_id,
            held_by_key=held_by_key,
        )
        if previous is not None:
            record.replaces_assignment_id = previous.id

        db.add(
            Assignment(
                site_id=site_id,
                employee_id=employee.id,
                item_id=item.id,
                delivery_id=delivery.id,
                delivery_line_id=record.id,
                quantity=line.quantity,
                size=size,
                delivery_date=delivered_on,
                renewal_date=renewal_date_for(item, delivered_on),
                status=AssignmentStatus.ACTIVE.value,
                created_at=now,
                updated_at=now,
            )
        )
        db.flush()

    db.refresh(delivery)
    return delivery


@transactional
def create_delivery(
    db: Session,
    *,
    employee_id: int,
    site_id: str,
    actor: str | None,
    lines: Iterable[LineRequest | Mapping[str, Any]],
    delivery_date: date | None = None,
    reason: DeliveryReason | str = DeliveryReason.STANDARD_ISSUE,
    notes: str | None = None,
) -> Delivery:
    reason = DeliveryReason(reason)
    requested = coerce_lines(lines)
    employee = require_active_employee(db, employee_id, site_id)
    items = validate_lines(db, requested, site_id)
    delivered_on = delivery_date or today_in(settings.TZ)

    delivery = issue_delivery(
        db,
        employee=employee,
        site_id=site_id,
        actor=actor,
        delivered_on=delivered_on,
        reason=reason,
        notes=notes,
        lines=requested,
        items=items,
        movement_type=MovementType.RENEWAL_OUT if reason is DeliveryReason.RENEWAL else MovementType.DELIVERY_OUT,
        reference_kind=ReferenceKind.RENEWAL if reason is DeliveryReason.RENEWAL else ReferenceKind.DELIVERY,
    )
    logger.info(
        "delivery.created",
        extra=log_extra(
            delivery_id=delivery.id,
            employee_id=employee.id,
            site_id=site_id,
            lines=len(requested),
            reason=reason.value,
            actor=actor,
        ),
    )
    return delivery


def _line_assignments(db: Session, delivery: Delivery) -> dict[int | None, Assignment]:
    """Lock this delivery's assignments and the ones its lines superseded, in id order."""

    replaced = [line.replaces_assignment_id for line in delivery.lines if line.replaces_assignment_id is not None]
    stmt = (
        select(Assignment)
        .where(or_(Assignment.delivery_id == delivery.id, Assignment.id.in_(replaced)))
        .order_by(Assignment.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {
        assignment.delivery_line_id: assignment
        for assignment in db.execute(stmt).scalars().all()
        if assignment.delivery_id == delivery.id
    }


def _restore_superseded(db: Session, line: DeliveryLine, delivery_id: int) -> None:
    if line.replaces_assignment_id is None:
        return
    previous = db.get(Assignment, line.replaces_assignment_id)
    if previous is None or previous.renewed_by_delivery_id != delivery_id:
        return
    previous.status = transition_assignment(
        previous.status, AssignmentStatus.ACTIVE, assignment_id=previous.id
    ).value
    previous.renewed_by_delivery_id = None
    previous.updated_at = utcnow_iso()


def _undo_line(
    db: Session,
    delivery: Delivery,
    line: DeliveryLine,
    assignment: Assignment | None,
    *,
    restore_stock: bool,
    reason: str,
    actor: str | None,
    reference_kind: ReferenceKind,
) -> None:
    if restore_stock:
        adjust_stock(
            db,
            item_id=line.item_id,
            quantity=line.quantity,
            movement_type=MovementType.RETURN_IN,
            reason=reason,
            actor=actor,
            reference_kind=reference_kind,
            reference_id=delivery.id,
        )
    was_current = assignment is None or assignment.status == AssignmentStatus.ACTIVE.value
    if assignment is not None:
        db.delete(assignment)
        db.flush()
    # A holding superseded later stays with its successor; only undo the current one.
    if was_current:
        _restore_superseded(db, line, delivery.id)
        db.flush()


def _ensure_not_superseded(delivery: Delivery, assignments: dict[int | None, Assignment], action: str) -> None:
    for assignment in assignments.values():
        if assignment.status != AssignmentStatus.ACTIVE.value:
            raise InvalidStateError(
                f"cannot {action} delivery {delivery.id}: assignment {assignment.id} "
                f"was already renewed by delivery {assignment.renewed_by_delivery_id}",
                entity="assignment",
                identifier=assignment.id,
                status=assignment.status,
            )


@transactional
def cancel_delivery(db: Session, delivery_id: int, reason: str, *, actor: str | None = None) -> Delivery:
    """Return a PENDING delivery's stock and drop its assignments."""

    delivery = lock_delivery(db, delivery_id)
    target = transition_delivery(delivery.status, DeliveryStatus.CANCELLED, delivery_id=delivery.id)
    reason = (reason or "").strip() or "no reason given"
    assignments = _line_assignments(db, delivery)
    _ensure_not_superseded(delivery, assignments, "cancel")
    lock_items(db, (line.item_id for line in delivery.lines))

    for line in list(delivery.lines):
        _undo_line(
            db,
            delivery,
            line,
            assignments.get(line.id),
            restore_stock=True,
            reason=f"Returned on cancellation of delivery {delivery.id}: {reason}",
            actor=actor,
            reference_kind=ReferenceKind.CANCELLATION,
        )

    delivery.notes = "\n".join(part for part in (delivery.notes, f"[CANCELLED] {reason}") if part)
    delivery.status = target.value
    delivery.updated_at = utcnow_iso()
    db.flush()
    logger.info(
        "delivery.cancelled",
        extra=log_extra(delivery_id=delivery.id, reason=reason, actor=actor, lines=len(delivery.lines)),
    )
    return delivery


@transactional
def remove_delivery_line(
    db: Session,
    delivery_id: int,
    line_index: int,
    *,
    expected_item_id: int,
    actor: str | None = None,
) -> Delivery:
    """Take one mis-entered line off a PENDING delivery.

    An emptied delivery is left PENDING; the caller decides whether to cancel it.
    """

    delivery = lock_delivery(db, delivery_id)
    require_delivery_status(delivery.status, DeliveryStatus.PENDING, delivery_id=delivery.id, action="edit lines of")
    lines = list(delivery.lines)
    if line_index < 0 or line_index >= len(lines):
        raise NotFoundError("delivery line", f"{delivery.id}#{line_index}")
    line = lines[line_index]
    if line.item_id != expected_item_id:
        raise ValidationError(
            f"line {line_index} of delivery {delivery.id} is {line.item_name}, not item {expected_item_id}",
            delivery_id=delivery.id,
            line=line_index,
            item_id=line.item_id,
            expected_item_id=expected_item_id,
        )
    assignment = _line_assignments(db, delivery).get(line.id)
    if assignment is not None:
        _ensure_not_superseded(delivery, {line.id: assignment}, "edit")
    lock_items(db, [line.item_id])

    _undo_line(
        db,
        delivery,
        line,
        assignment,
        restore_stock=True,
        reason=f"Line {line_index} removed from delivery {delivery.id}",
        actor=actor,
        reference_kind=ReferenceKind.LINE_REMOVAL,
    )
    delivery.lines.remove(line)
    for position, remaining in enumerate(delivery.lines):
        remaining.position = position
    delivery.updated_at = utcnow_iso()
    db.flush()
    logger.info(
        "delivery.line_removed",
        extra=log_extra(
            delivery_id=delivery.id,
            line=line_index,
            item_id=line.item_id,
            quantity=line.quantity,
            remaining_lines=len(delivery.lines),
            actor=actor,
        ),
    )
    return delivery


@transactional
def erase_delivery(db: Session, delivery_id: int, *, actor: str | None = None) -> int:
    """Hard-delete a delivery after reversing every side effect it still has.

    Not gated by status so mistakes can be corrected after signing; privilege is
    checked by the caller. A CANCELLED delivery already returned its stock.
    """

    delivery = lock_delivery(db, delivery_id)
    restore_stock = delivery.status != DeliveryStatus.CANCELLED.value
    assignments = _line_assignments(db, delivery)
    lines = list(delivery.lines)
    if restore_stock:
        lock_items(db, (line.item_id for line in lines))
    for line in lines:
        _undo_line(
            db,
            delivery,
            line,
            assignments.pop(line.id, None),
            restore_stock=restore_stock,
            reason=f"Reversal of erased delivery {delivery.id}",
            actor=actor,
            reference_kind=ReferenceKind.ERASURE,
        )
    for orphan in assignments.values():
        db.delete(orphan)

    # Assignments superseded by this delivery must not point at a vanished row.
    for previous in db.execute(
        select(Assignment).where(Assignment.renewed_by_delivery_id == delivery.id)
    ).scalars():
        previous.renewed_by_delivery_id = None

    status = delivery.status
    db.delete(delivery)
    db.flush()
    logger.warning(
        "delivery.erased",
        extra=log_extra(
            delivery_id=delivery_id,
            status=status,
            lines=len(lines),
            stock_restored=restore_stock,
            actor=actor,
        ),
    )
    return delivery_id
