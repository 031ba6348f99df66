# leadrelay/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from leadrelay.db.base import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True)
    form_id = Column(ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)

    # Free-form answers keyed by field label
    data = Column(JSONB, nullable=False, server_default="{}")

    source = Column(String(100), nullable=False, server_default="organic")
    ip_address = Column(String(255))
    user_agent = Column(Text)

    # Partial rows are upgraded to false on completion, never back
    is_partial = Column(Boolean, nullable=False, server_default="false")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_leads_form_partial_created", "form_id", "is_partial", "created_at"),
        Index("idx_leads_form_partial_updated", "form_id", "is_partial", "updated_at"),
    )
