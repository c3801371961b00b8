# leads_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .importer import ImportRow, ImportRowStatus, ImportRun, ImportRunStatus, MergeLog
from .lead import Lead, LeadNote, LeadTask
from .workspace import Workspace

__all__ = [
    "db",
    "BaseModel",
    "Workspace",
    # Lead models
    "Lead",
    "LeadNote",
    "LeadTask",
    # Importer models
    "ImportRun",
    "ImportRunStatus",
    "ImportRow",
    "ImportRowStatus",
    "MergeLog",
]
