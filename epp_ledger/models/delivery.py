"""Delivery records (one issue event) and their ordered line items."""

from __future__ import annotations

from sqlalchemy import Column, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from ..core.statuses import DeliveryStatus, SignatureStage
from ..db.session import Base


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Text, nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    delivered_by = Column(Text, nullable=True)
    delivery_date = Column(Date, nullable=False, index=True)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=DeliveryStatus.PENDING.value, index=True)

    employee_signature_data = Column(Text, nullable=True)
    employee_signature_ip = Column(Text, nullable=True)
    employee_signed_at = Column(Text, nullable=True)
    responsible_signature_data = Column(Text, nullable=True)
    responsible_name = Column(Text, nullable=True)
    responsible_position = Column(Text, nullable=True)
    responsible_signed_at = Column(Text, nullable=True)

    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    lines = relationship(
        "DeliveryLine",
        back_populates="delivery",
        order_by="DeliveryLine.position",
        cascade="all, delete-orphan",
    )
    employee = relationship("Employee", lazy="joined")

    @property
    def signature_stage(self) -> SignatureStage:
        if self.status == DeliveryStatus.CANCELLED.value:
            return SignatureStage.CANCELLED
        if self.status == DeliveryStatus.SIGNED.value:
            return SignatureStage.SIGNED
        if self.employee_signed_at:
            return SignatureStage.PENDING_AWAITING_RESPONSIBLE
        return SignatureStage.PENDING

    @property
    def total_units(self) -> int:
        return sum(line.quantity for line in self.lines or [])

    @property
    def employee_name(self) -> str | None:
        return self.employee.full_name if self.employee else None


class DeliveryLine(Base):
    __tablename__ = "delivery_lines"

    id = Column(Integer, primary_key=True, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    item_name = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    size = Column(Text, nullable=False, default="")
    # Assignment superseded by this line (renewals and re-issues).
    replaces_assignment_id = Column(Integer, nullable=True)

    delivery = relationship("Delivery", back_populates="lines")
