# leadrelay/models/logs.py
from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
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


class RemarketingLog(Base):
    """Delivery ledger: a (lead_id, step_id) success row is never re-attempted."""

    __tablename__ = "remarketing_logs"

    id = Column(Integer, primary_key=True)
    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(ForeignKey("remarketing_campaigns.id", ondelete="CASCADE"), nullable=False)
    step_id = Column(ForeignKey("remarketing_steps.id", ondelete="CASCADE"), nullable=False)
    sent_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    status = Column(String(20), nullable=False)
    error_message = Column(Text)

    __table_args__ = (
        Index("idx_remarketing_logs_lead_step_status", "lead_id", "step_id", "status"),
        Index("idx_remarketing_logs_campaign", "campaign_id"),
        CheckConstraint("status IN ('success', 'error', 'skipped')", name="status_check"),
    )


class IntegrationLog(Base):
    """Audit trail for fire-and-forget channels."""

    __tablename__ = "integration_logs"

    id = Column(Integer, primary_key=True)
    form_id = Column(ForeignKey("forms.id", ondelete="CASCADE"), nullable=True)
    lead_id = Column(ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    integration_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    payload = Column(JSONB)
    response = Column(JSONB)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_integration_logs_form_created", "form_id", "created_at"),
        Index("idx_integration_logs_status", "status"),
    )
