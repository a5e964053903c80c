"""
System configuration — admin-editable key/value pairs.

The core only reads a handful of keys (see
``netgate.services.runtime_config``); editing them is the job of the
surrounding admin tooling.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from netgate.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SystemConfig(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(String(1024), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_editable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<SystemConfig {self.key}={self.value}>"
