"""Employee directory mirror: the core only needs identity and the active flag."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundError, ValidationError
from ..models.employee import Employee
from ..services.dates import utcnow_iso


def list_employees(db: Session, site_id: str, *, include_inactive: bool = False, limit: int = 100, offset: int = 0):
    stmt = select(Employee).where(Employee.site_id == site_id)
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    stmt = stmt.order_by(Employee.full_name).limit(limit).offset(offset)
    return db.execute(stmt).scalars().all()


def get_employee(db: Session, employee_id: int) -> Employee | None:
    return db.get(Employee, employee_id)


def create_employee(db: Session, payload: dict) -> Employee:
    data = payload.copy()
    name = (data.get("full_name") or "").strip()
    if not name:
        raise ValueError("full_name is required")
    site_id = (data.get("site_id") or "").strip()
    if not site_id:
        raise ValueError("site_id is required")
    data["full_name"] = name
    data["site_id"] = site_id
    data.setdefault("is_active", True)
    data.setdefault("created_at", utcnow_iso())
    employee = Employee(**data)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def update_employee(db: Session, employee: Employee, payload: dict) -> Employee:
    # Unknown keys are ignored so directory syncs with extra fields do not break.
    for key, value in payload.items():
        if not hasattr(employee, key) or key in ("id", "created_at"):
            continue
        if isinstance(value, str):
            value = value.strip()
        if key == "full_name" and not value:
            raise ValueError("full_name is required")
        setattr(employee, key, value)
    db.commit()
    db.refresh(employee)
    return employee


def require_active_employee(db: Session, employee_id: int, site_id: str | None = None) -> Employee:
    """Boundary guard: deliveries only go to known, active employees of the site."""

    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("employee", employee_id)
    if not employee.is_active:
        raise ValidationError(
            f"employee {employee.full_name} is inactive and cannot receive equipment",
            employee_id=employee.id,
        )
    if site_id is not None and employee.site_id != site_id:
        raise ValidationError(
            f"employee {employee.full_name} does not belong to site {site_id}",
            employee_id=employee.id,
            site_id=site_id,
        )
    return employee
