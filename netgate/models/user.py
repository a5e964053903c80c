from __future__ import annotations

"""
User model.

Design decisions:
- Users are deactivated (``is_active = False``) rather than deleted in
  normal flows; hard delete is an explicit admin purge that cascades to
  devices, sessions and connections.
- A single ``is_admin`` flag gates the administrative operations.
- Login accepts either the email or the username, both unique.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netgate.models.base import ActiveFlagMixin, Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from netgate.models.connection import Connection
    from netgate.models.device import Device
    from netgate.models.session import UserSession


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin, ActiveFlagMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # ── Relationships ────────────────────────────────────────────────
    devices: Mapped[list["Device"]] = relationship(  # noqa: F821
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    sessions: Mapped[list["UserSession"]] = relationship(  # noqa: F821
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    connections: Mapped[list["Connection"]] = relationship(  # noqa: F821
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
