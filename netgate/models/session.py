"""
User session model — refresh-credential registry.

Tracks login sessions per user and device, enabling:
- Refresh-token rotation with hash-based storage (only one refresh
  value is valid per row; rotation swaps the hash in a single
  conditional UPDATE)
- Server-side revocation of one session, a device's sessions, or every
  session of a user
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netgate.models.base import ActiveFlagMixin, Base, CreatedAtMixin, UUIDPrimaryKeyMixin, utc_column

if TYPE_CHECKING:
    from netgate.models.user import User


class UserSession(Base, UUIDPrimaryKeyMixin, CreatedAtMixin, ActiveFlagMixin):
    __tablename__ = "user_sessions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("devices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    refresh_token_hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    # Bumped on every rotation.
    generation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = utc_column()

    user: Mapped["User"] = relationship(back_populates="sessions")  # noqa: F821

    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<UserSession user={self.user_id} device={self.device_id} active={self.is_active}>"
