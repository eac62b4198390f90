from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field

from ..core.statuses import DeliveryReason, SignatureStage


class DeliveryLineIn(BaseModel):
    item_id: int
    quantity: int = Field(gt=0)
    size: Optional[str] = None


class DeliveryCreate(BaseModel):
    employee_id: int
    delivery_date: Optional[dt.date] = None
    reason: DeliveryReason = DeliveryReason.STANDARD_ISSUE
    notes: Optional[str] = None
    lines: list[DeliveryLineIn] = Field(min_length=1)


class DeliveryCancel(BaseModel):
    reason: str = Field(min_length=1)


class EmployeeSignature(BaseModel):
    signature: str = Field(min_length=1)


class ResponsibleSignature(BaseModel):
    signature: str = Field(min_length=1)
    responsible_name: str = Field(min_length=1)
    responsible_position: Optional[str] = None


class DeliveryLineOut(BaseModel):
    position: int
    item_id: int
    item_name: str
    quantity: int
    size: str
    replaces_assignment_id: Optional[int] = None

    class Config:
        from_attributes = True


class DeliveryOut(BaseModel):
    id: int
    site_id: str
    employee_id: int
    employee_name: Optional[str] = None
    delivered_by: Optional[str]
    delivery_date: dt.date
    reason: str
    notes: Optional[str]
    status: str
    signature_stage: SignatureStage
    employee_signed_at: Optional[str] = None
    employee_signature_ip: Optional[str] = None
    responsible_name: Optional[str] = None
    responsible_position: Optional[str] = None
    responsible_signed_at: Optional[str] = None
    total_units: int
    lines: list[DeliveryLineOut] = Field(default_factory=list)
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class DeliveryPage(BaseModel):
    items: list[DeliveryOut]
    count: int


class DeliveryStats(BaseModel):
    total: int
    pending: int
    signed: int
    cancelled: int
    total_units: int
