"""
Connection model — one stretch of granted network access for a device.

Opened when the device is granted, closed when access is revoked.
Byte/packet counters may only change while the row is open.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netgate.models.base import ActiveFlagMixin, Base, UUIDPrimaryKeyMixin, utc_column

if TYPE_CHECKING:
    from netgate.models.device import Device
    from netgate.models.user import User


class Connection(Base, UUIDPrimaryKeyMixin, ActiveFlagMixin):
    __tablename__ = "connections"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    start_time: Mapped[datetime] = utc_column()
    end_time: Mapped[datetime | None] = utc_column(nullable=True)
    bytes_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    packets_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    user: Mapped["User"] = relationship(back_populates="connections")  # noqa: F821
    device: Mapped["Device"] = relationship(back_populates="connections")  # noqa: F821

    __table_args__ = (
        Index("ix_connections_device_active", "device_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Connection device={self.device_id} active={self.is_active}>"
