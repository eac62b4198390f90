from __future__ import annotations

from sqlalchemy import Column, Date, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import relationship

from ..core.statuses import AssignmentStatus
from ..db.session import Base

_ACTIVE_ONLY = text("status = 'ACTIVE'")


class Assignment(Base):
    """An item/quantity currently (or formerly) held by an employee.

    At most one ACTIVE row may exist per (employee, item, size); the partial
    unique index below enforces it in the store.
    """

    __tablename__ = "assignments"
    __table_args__ = (
        Index(
            "uq_assignments_active_holding",
            "employee_id",
            "item_id",
            "size",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Text, nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=False, index=True)
    delivery_line_id = Column(Integer, ForeignKey("delivery_lines.id"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    size = Column(Text, nullable=False, default="")
    delivery_date = Column(Date, nullable=False)
    renewal_date = Column(Date, nullable=False, index=True)
    status = Column(Text, nullable=False, default=AssignmentStatus.ACTIVE.value, index=True)
    renewed_by_delivery_id = Column(Integer, nullable=True)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    item = relationship("InventoryItem", lazy="joined")
    employee = relationship("Employee", lazy="joined")

    @property
    def item_name(self) -> str | None:
        return self.item.name if self.item else None

    @property
    def employee_name(self) -> str | None:
        return self.employee.full_name if self.employee else None
