"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from netgate.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from netgate.models.user import User
from netgate.models.device import Device
from netgate.models.session import UserSession
from netgate.models.connection import Connection
from netgate.models.audit_log import AuditLog
from netgate.models.system_config import SystemConfig

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "Device",
    "UserSession",
    "Connection",
    "AuditLog",
    "SystemConfig",
]
