from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class AssignmentOut(BaseModel):
    id: int
    employee_id: int
    employee_name: Optional[str] = None
    item_id: int
    item_name: Optional[str] = None
    delivery_id: int
    quantity: int
    size: str
    delivery_date: dt.date
    renewal_date: dt.date
    status: str
    renewed_by_delivery_id: Optional[int] = None

    class Config:
        from_attributes = True


class PendingRenewalOut(BaseModel):
    assignment: AssignmentOut
    days_remaining: int
    urgency: str


class EmployeeRenewalGroup(BaseModel):
    employee_id: int
    employee_name: Optional[str]
    renewals: list[PendingRenewalOut]


class RenewalSummary(BaseModel):
    total: int
    overdue: int
    due_soon: int
    current: int


class RenewalRequest(BaseModel):
    assignment_ids: list[int] = Field(min_length=1)
    renewal_date: Optional[dt.date] = None
    notes: Optional[str] = None
