from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from ..core.statuses import MovementType
from ..db.session import Base


class StockMovement(Base):
    """Immutable ledger entry for one change of an item's stock.

    ``quantity`` is the unsigned magnitude; the sign comes from
    ``movement_type``. Reversals are new rows, never edits.
    """

    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        CheckConstraint("balance_after >= 0", name="ck_stock_movements_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    site_id = Column(Text, nullable=False, index=True)
    movement_type = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    performed_by = Column(Text, nullable=True)
    # Not a foreign key: ledger rows outlive erased deliveries.
    reference_kind = Column(Text, nullable=True)
    reference_id = Column(Integer, nullable=True, index=True)
    created_at = Column(Text, nullable=False)

    item = relationship("InventoryItem", lazy="joined")

    @property
    def signed_quantity(self) -> int:
        return MovementType(self.movement_type).direction * self.quantity

    @property
    def item_name(self) -> str | None:
        return self.item.name if self.item else None
