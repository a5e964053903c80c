"""
Declarative base and the column mixins shared by the access tables.

- ``UUIDPrimaryKeyMixin``: ``id`` for every table.
- ``CreatedAtMixin``: insert time, for append-style rows (sessions,
  audit entries).
- ``TimestampMixin``: insert and last-update time, for rows that are
  edited in place (users, devices, configuration).
- ``ActiveFlagMixin``: the ``is_active`` switch that revocation flips.
  Users, devices, sessions and connections are deactivated, never
  deleted, by the normal flows.

All timestamps are timezone-aware UTC; ``utc_column`` builds the
remaining per-table time columns the same way.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, func, true
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_column(*, nullable: bool = False, index: bool = False, server_now: bool = False):
    """A ``DateTime(timezone=True)`` column defaulting to now on insert."""
    return mapped_column(
        DateTime(timezone=True),
        default=None if nullable else utcnow,
        server_default=func.now() if server_now else None,
        nullable=nullable,
        index=index,
    )


class Base(DeclarativeBase):
    pass


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


class CreatedAtMixin:
    created_at: Mapped[datetime] = utc_column(server_now=True)


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class ActiveFlagMixin:
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true(), nullable=False)
