"""
Connection ledger — open/close records and usage counters.

Handles:
- Opening a connection when a device is granted (closing any stale
  open row for the same device first)
- Closing connections for a device, a user, or everyone
- Updating byte/packet counters on open rows only
- Paginated history per device
"""

import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update

from netgate.core.database import Database
from netgate.firewall.base import UsageCounters
from netgate.models.base import utcnow
from netgate.models.connection import Connection


@dataclass(frozen=True)
class ConnectionPage:
    items: list[Connection]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class ConnectionLedger:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def open(self, user_id: uuid.UUID, device_id: uuid.UUID, address: str | None) -> Connection:
        async with self.database.transaction() as session:
            await session.execute(
                update(Connection)
                .where(Connection.device_id == device_id, Connection.is_active == True)  # noqa: E712
                .values(is_active=False, end_time=utcnow())
            )
            connection = Connection(user_id=user_id, device_id=device_id, ip_address=address)
            session.add(connection)
        return connection

    async def _close(self, *criteria) -> int:
        async with self.database.transaction() as session:
            result = await session.execute(
                update(Connection)
                .where(Connection.is_active == True, *criteria)  # noqa: E712
                .values(is_active=False, end_time=utcnow())
            )
            return result.rowcount

    async def close_for_device(self, device_id: uuid.UUID) -> int:
        return await self._close(Connection.device_id == device_id)

    async def close_for_user(self, user_id: uuid.UUID) -> int:
        return await self._close(Connection.user_id == user_id)

    async def close_all(self) -> int:
        return await self._close()

    async def record_usage(self, connection_id: uuid.UUID, usage: UsageCounters) -> bool:
        """Store the latest cumulative counters; ignored once closed."""
        async with self.database.transaction() as session:
            result = await session.execute(
                update(Connection)
                .where(Connection.id == connection_id, Connection.is_active == True)  # noqa: E712
                .values(bytes_total=usage.bytes, packets_total=usage.packets)
            )
            return result.rowcount == 1

    async def list_open(self) -> list[Connection]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Connection).where(Connection.is_active == True)  # noqa: E712
            )
            return list(result.scalars().all())

    async def history(self, device_id: uuid.UUID, page: int = 1, limit: int = 20) -> ConnectionPage:
        async with self.database.session() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(Connection).where(Connection.device_id == device_id)
                )
            ).scalar_one()
            result = await session.execute(
                select(Connection)
                .where(Connection.device_id == device_id)
                .order_by(Connection.start_time.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return ConnectionPage(list(result.scalars().all()), total, page, limit)
