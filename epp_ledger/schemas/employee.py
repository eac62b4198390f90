from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class EmployeeCreate(BaseModel):
    full_name: str = Field(min_length=1)
    document_id: Optional[str] = None
    role_name: Optional[str] = None
    area: Optional[str] = None


class EmployeeUpdate(BaseModel):
    full_name: Optional[str] = None
    document_id: Optional[str] = None
    role_name: Optional[str] = None
    area: Optional[str] = None
    is_active: Optional[bool] = None


class EmployeeOut(BaseModel):
    id: int
    site_id: str
    full_name: str
    document_id: Optional[str]
    role_name: Optional[str]
    area: Optional[str]
    is_active: bool
    created_at: str

    class Config:
        from_attributes = True
