# leadrelay/models/form.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from leadrelay.db.base import Base


class Form(Base):
    """Owned by the admin console; only the columns read here are mapped."""

    __tablename__ = "forms"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    type = Column(String(50))
    fields = Column(JSONB, nullable=False, server_default="[]")
    settings = Column(JSONB, nullable=False, server_default="{}")
    is_active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
