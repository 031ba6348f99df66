# leadrelay/models/campaign.py
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from leadrelay.db.base import Base


class RemarketingCampaign(Base):
    __tablename__ = "remarketing_campaigns"

    id = Column(Integer, primary_key=True)
    form_id = Column(ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    steps = relationship(
        "RemarketingStep",
        back_populates="campaign",
        order_by="RemarketingStep.step_order",
    )

    __table_args__ = (
        CheckConstraint("type IN ('recovery', 'drip')", name="type_check"),
    )


class RemarketingStep(Base):
    __tablename__ = "remarketing_steps"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(ForeignKey("remarketing_campaigns.id", ondelete="CASCADE"), nullable=False)
    step_order = Column(Integer, nullable=False)
    delay_value = Column(Integer, nullable=False)
    delay_unit = Column(String(10), nullable=False)
    message_type = Column(String(20), nullable=False, server_default="text")
    message_content = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    campaign = relationship("RemarketingCampaign", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("campaign_id", "step_order", name="uq_remarketing_steps_campaign_order"),
        Index("idx_remarketing_steps_campaign_order", "campaign_id", "step_order"),
        CheckConstraint("delay_unit IN ('minutes', 'hours', 'days')", name="delay_unit_check"),
        CheckConstraint(
            "message_type IN ('text', 'audio', 'video', 'document', 'image', 'multi')",
            name="message_type_check",
        ),
        CheckConstraint("delay_value >= 0", name="delay_value_check"),
    )
