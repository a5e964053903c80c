"""
Runtime configuration reader.

Exposes the values the core needs at request time.  Each is looked up
in ``system_config`` first (admins may tune them without a restart) and
falls back to the environment ``Settings``.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select

from netgate.core.config import Settings
from netgate.core.database import Database
from netgate.models.system_config import SystemConfig

logger = logging.getLogger(__name__)

MAX_DEVICES_KEY = "MAX_DEVICES_PER_USER"
ACCESS_TTL_KEY = "ACCESS_TOKEN_EXPIRE_MINUTES"
REFRESH_TTL_KEY = "REFRESH_TOKEN_EXPIRE_DAYS"


@dataclass(frozen=True)
class AccessLimits:
    max_devices_per_user: int
    access_token_ttl: timedelta
    refresh_token_ttl: timedelta


class RuntimeConfig:
    def __init__(self, database: Database, settings: Settings) -> None:
        self.database = database
        self.settings = settings

    async def _read_int(self, key: str, default: int) -> int:
        async with self.database.session() as session:
            raw = (
                await session.execute(select(SystemConfig.value).where(SystemConfig.key == key))
            ).scalar_one_or_none()
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            logger.warning("system_config %s=%r is not an integer, using %s", key, raw, default)
            return default
        if value < 0:
            logger.warning("system_config %s=%r is negative, using %s", key, raw, default)
            return default
        return value

    async def max_devices_per_user(self) -> int:
        return await self._read_int(MAX_DEVICES_KEY, self.settings.MAX_DEVICES_PER_USER)

    async def access_token_ttl(self) -> timedelta:
        minutes = await self._read_int(ACCESS_TTL_KEY, self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        return timedelta(minutes=minutes)

    async def refresh_token_ttl(self) -> timedelta:
        days = await self._read_int(REFRESH_TTL_KEY, self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        return timedelta(days=days)

    async def limits(self) -> AccessLimits:
        return AccessLimits(
            max_devices_per_user=await self.max_devices_per_user(),
            access_token_ttl=await self.access_token_ttl(),
            refresh_token_ttl=await self.refresh_token_ttl(),
        )
