"""Stockable catalog entries at a site (the current-stock projection)."""

from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Column, Float, Integer, Text

from ..db.session import Base


class InventoryItem(Base):
    """One stockable item at one site.

    ``current_stock`` is a projection of the ledger in ``stock_movements`` and is
    only written by ``services.ledger.adjust_stock`` (or an operator repair).
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_inventory_items_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    item_class = Column(Text, nullable=False)
    unit = Column(Text, nullable=False, default="UNIT")
    size = Column(Text, nullable=False, default="")
    useful_life_months = Column(Integer, nullable=True)
    current_stock = Column(Integer, nullable=False, default=0)
    stock_min = Column(Integer, nullable=False, default=0)
    stock_max = Column(Integer, nullable=True)
    unit_price = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_frozen = Column(Boolean, nullable=False, default=False)
    frozen_reason = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    @property
    def is_low_stock(self) -> bool:
        return (self.current_stock or 0) < (self.stock_min or 0)

    @property
    def is_out_of_stock(self) -> bool:
        return (self.current_stock or 0) <= 0

    @property
    def label(self) -> str:
        return f"{self.name} ({self.size})" if self.size else self.name
