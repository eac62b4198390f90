"""Read-side helpers for deliveries and their assignments."""

from __future__ import annotations

from datetime import date

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import NotFoundError, ValidationError
from ..core.statuses import DeliveryStatus
from ..models.assignment import Assignment
from ..models.delivery import Delivery


def _status_filter(status: DeliveryStatus | str) -> str:
    try:
        return DeliveryStatus(status).value
    except ValueError as exc:
        raise ValidationError(f"unknown delivery status {status!r}", status=str(status)) from exc


def get_delivery(db: Session, delivery_id: int) -> Delivery | None:
    stmt = select(Delivery).options(selectinload(Delivery.lines)).where(Delivery.id == delivery_id)
    return db.execute(stmt).scalars().first()


def require_delivery(db: Session, delivery_id: int) -> Delivery:
    delivery = get_delivery(db, delivery_id)
    if delivery is None:
        raise NotFoundError("delivery", delivery_id)
    return delivery


def list_deliveries(
    db: Session,
    site_id: str,
    *,
    employee_id: int | None = None,
    status: DeliveryStatus | str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Delivery], int]:
    """Newest deliveries first; returns ``(rows, total_count)`` for pagination."""

    stmt = select(Delivery).where(Delivery.site_id == site_id)
    if employee_id is not None:
        stmt = stmt.where(Delivery.employee_id == employee_id)
    if status:
        stmt = stmt.where(Delivery.status == _status_filter(status))
    if start:
        stmt = stmt.where(Delivery.delivery_date >= start)
    if end:
        stmt = stmt.where(Delivery.delivery_date <= end)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    stmt = (
        stmt.options(selectinload(Delivery.lines))
        .order_by(desc(Delivery.delivery_date), desc(Delivery.id))
        .limit(limit)
        .offset(offset)
    )
    return db.execute(stmt).scalars().all(), int(total)


def list_employee_deliveries(db: Session, employee_id: int, status: DeliveryStatus | str | None = None) -> list[Delivery]:
    stmt = select(Delivery).options(selectinload(Delivery.lines)).where(Delivery.employee_id == employee_id)
    if status:
        stmt = stmt.where(Delivery.status == _status_filter(status))
    return db.execute(stmt.order_by(desc(Delivery.delivery_date), desc(Delivery.id))).scalars().all()


def list_signed_deliveries(db: Session, site_id: str, *, start: date | None = None, end: date | None = None) -> list[Delivery]:
    """Finalised deliveries for the document/export collaborator (read-only)."""

    rows, _ = list_deliveries(db, site_id, status=DeliveryStatus.SIGNED.value, start=start, end=end, limit=10_000)
    return rows


def delivery_assignments(db: Session, delivery_id: int) -> list[Assignment]:
    stmt = select(Assignment).where(Assignment.delivery_id == delivery_id).order_by(Assignment.id)
    return db.execute(stmt).scalars().all()


def delivery_stats(db: Session, site_id: str, start: date | None = None, end: date | None = None) -> dict[str, int]:
    stmt = select(Delivery).options(selectinload(Delivery.lines)).where(Delivery.site_id == site_id)
    if start:
        stmt = stmt.where(Delivery.delivery_date >= start)
    if end:
        stmt = stmt.where(Delivery.delivery_date <= end)
    deliveries = db.execute(stmt).scalars().all()
    counts = {status.value: 0 for status in DeliveryStatus}
    for delivery in deliveries:
        counts[delivery.status] = counts.get(delivery.status, 0) + 1
    return {
        "total": len(deliveries),
        "pending": counts[DeliveryStatus.PENDING.value],
        "signed": counts[DeliveryStatus.SIGNED.value],
        "cancelled": counts[DeliveryStatus.CANCELLED.value],
        # Cancelled deliveries returned their stock, so they do not count as issued.
        "total_units": sum(
            d.total_units for d in deliveries if d.status != DeliveryStatus.CANCELLED.value
        ),
    }
