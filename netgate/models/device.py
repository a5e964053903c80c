"""
Device model — one physical client, exclusively owned by one user.

``mac_address`` is the normalized hardware identity (or the pseudo
identity produced by the fingerprint fallback) and is globally unique:
a device never changes owner.  At most ``MAX_DEVICES_PER_USER`` rows
per user may have ``is_active = True``; the device registry enforces
that under a per-user lock.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netgate.models.base import ActiveFlagMixin, Base, TimestampMixin, UUIDPrimaryKeyMixin, utc_column

if TYPE_CHECKING:
    from netgate.models.connection import Connection
    from netgate.models.user import User


class Device(Base, UUIDPrimaryKeyMixin, TimestampMixin, ActiveFlagMixin):
    __tablename__ = "devices"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mac_address: Mapped[str] = mapped_column(String(17), unique=True, index=True, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    device_name: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown Device")
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_seen: Mapped[datetime] = utc_column()

    user: Mapped["User"] = relationship(back_populates="devices")  # noqa: F821
    connections: Mapped[list["Connection"]] = relationship(  # noqa: F821
        back_populates="device",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_devices_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Device {self.mac_address} user={self.user_id} active={self.is_active}>"
