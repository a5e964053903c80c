"""
Audit writer — append-only ``(action, actor, details, timestamp)`` rows.

Each entry is committed in its own transaction so it is written after
(and independently of) the state change it describes.  A failure to
write the audit row is logged and never undoes the action itself.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from netgate.core.database import Database
from netgate.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_REJECTED = "LOGIN_REJECTED"
    LOGOUT = "LOGOUT"
    DEVICE_DISCONNECT = "DEVICE_DISCONNECT"
    DEVICE_DELETE = "DEVICE_DELETE"
    DEVICE_RENAME = "DEVICE_RENAME"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PROFILE_UPDATE = "PROFILE_UPDATE"
    ADMIN_DEACTIVATE_USER = "ADMIN_DEACTIVATE_USER"
    ADMIN_PURGE_USER = "ADMIN_PURGE_USER"
    NETWORK_DISCONNECT_ALL = "NETWORK_DISCONNECT_ALL"
    NETWORK_INITIALIZE = "NETWORK_INITIALIZE"


@dataclass(frozen=True)
class RequestContext:
    """Where an action came from; filled in by the web layer."""

    ip_address: str | None = None
    user_agent: str | None = None


class AuditWriter:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def record(
        self,
        action: AuditAction,
        actor_id: uuid.UUID | None,
        details: dict[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> None:
        context = context or RequestContext()
        entry = AuditLog(
            action=action.value,
            actor_id=actor_id,
            ip_address=context.ip_address,
            user_agent=(context.user_agent or "")[:255] or None,
            details=details,
        )
        try:
            async with self.database.transaction() as session:
                session.add(entry)
        except SQLAlchemyError:
            logger.exception("Failed to write audit entry %s for actor %s", action.value, actor_id)
