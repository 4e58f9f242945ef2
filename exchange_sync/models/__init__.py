# exchange_sync/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .contact import Contact
from .exchange import Exchange, ExchangeParticipant, ExchangeStatus, ParticipantRole
from .sync import OAuthToken, SyncKind, SyncRun, SyncRunStatus
from .task import Task, TaskPriority, TaskStatus
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "Contact",
    "Exchange",
    "ExchangeParticipant",
    "ExchangeStatus",
    "ParticipantRole",
    "Task",
    "TaskStatus",
    "TaskPriority",
    # Sync models
    "SyncRun",
    "SyncKind",
    "SyncRunStatus",
    "OAuthToken",
]
