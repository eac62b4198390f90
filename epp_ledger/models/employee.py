from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, Text

from ..db.session import Base


class Employee(Base):
    """Local mirror of the employee directory (identity and active flag)."""

    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Text, nullable=False, index=True)
    full_name = Column(Text, nullable=False)
    document_id = Column(Text, nullable=True, index=True)
    role_name = Column(Text, nullable=True)
    area = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Text, nullable=False)
