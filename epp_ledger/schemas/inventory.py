from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..core.statuses import ItemClass, MovementType, UnitOfMeasure


class ItemBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    item_class: ItemClass = ItemClass.PROTECTIVE_GEAR
    unit: UnitOfMeasure = UnitOfMeasure.UNIT
    size: Optional[str] = None
    useful_life_months: Optional[int] = Field(default=None, gt=0)
    stock_min: int = Field(default=0, ge=0)
    stock_max: Optional[int] = Field(default=None, ge=0)
    unit_price: Optional[float] = Field(default=None, ge=0)


class ItemCreate(ItemBase):
    initial_stock: int = Field(default=0, ge=0)


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    item_class: Optional[ItemClass] = None
    unit: Optional[UnitOfMeasure] = None
    size: Optional[str] = None
    useful_life_months: Optional[int] = Field(default=None, gt=0)
    stock_min: Optional[int] = Field(default=None, ge=0)
    stock_max: Optional[int] = Field(default=None, ge=0)
    unit_price: Optional[float] = Field(default=None, ge=0)


class ItemOut(BaseModel):
    id: int
    site_id: str
    name: str
    description: Optional[str]
    item_class: str
    unit: str
    size: str
    useful_life_months: Optional[int]
    current_stock: int
    stock_min: int
    stock_max: Optional[int]
    unit_price: Optional[float]
    is_active: bool
    is_frozen: bool
    frozen_reason: Optional[str] = None
    is_low_stock: bool
    is_out_of_stock: bool
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class ItemPage(BaseModel):
    items: list[ItemOut]
    count: int


class StockAdjustment(BaseModel):
    quantity: int = Field(gt=0)
    movement_type: MovementType
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_reason(self) -> "StockAdjustment":
        corrections = {MovementType.CORRECTION_IN, MovementType.CORRECTION_OUT}
        if self.movement_type in corrections and not (self.reason and self.reason.strip()):
            raise ValueError("corrections need a reason")
        return self

    @property
    def signed_quantity(self) -> int:
        return self.movement_type.direction * self.quantity


class StockMovementOut(BaseModel):
    id: int
    item_id: int
    item_name: Optional[str] = None
    site_id: str
    movement_type: str
    quantity: int
    signed_quantity: int
    balance_before: int
    balance_after: int
    reason: Optional[str]
    performed_by: Optional[str]
    reference_kind: Optional[str]
    reference_id: Optional[int]
    created_at: str

    class Config:
        from_attributes = True


class InventoryStats(BaseModel):
    total: int
    low_stock: int
    out_of_stock: int
    frozen: int
    by_class: dict[str, int]


class ReconciliationOut(BaseModel):
    item_id: int
    item_name: str
    recorded_stock: int
    ledger_stock: int
    entries: int
    chain_breaks: list[dict[str, int]] = Field(default_factory=list)
    consistent: bool
