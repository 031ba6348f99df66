# leadrelay/models/whatsapp_instance.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from leadrelay.db.base import Base


class EvolutionInstance(Base):
    __tablename__ = "evolution_instances"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    api_url = Column(String(500), nullable=False)
    # Private-network URL, preferred when present
    internal_api_url = Column(String(500))
    api_key = Column(String(500), nullable=False)
    default_number = Column(String(50))
    is_active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
