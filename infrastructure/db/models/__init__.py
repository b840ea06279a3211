"""
Database models package.
Import Base from here or from base.py directly.
"""
from infrastructure.db.models.base import Base

# Import all models to ensure they're registered in the same registry
# This must be done after Base is created
from infrastructure.db.models.plans import PlanModel
from infrastructure.db.models.installments import InstallmentModel
from infrastructure.db.models.settlements import SettlementModel
from infrastructure.db.models.notifications import OutboundNotificationModel

__all__ = ["Base", "PlanModel", "InstallmentModel", "SettlementModel", "OutboundNotificationModel"]
