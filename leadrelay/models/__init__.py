# leadrelay/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from leadrelay.models.campaign import RemarketingCampaign, RemarketingStep
from leadrelay.models.form import Form
from leadrelay.models.lead import Lead
from leadrelay.models.logs import IntegrationLog, RemarketingLog
from leadrelay.models.whatsapp_instance import EvolutionInstance

__all__ = [
    "EvolutionInstance",
    "Form",
    "IntegrationLog",
    "Lead",
    "RemarketingCampaign",
    "RemarketingLog",
    "RemarketingStep",
]
