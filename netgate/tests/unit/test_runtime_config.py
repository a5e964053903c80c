from __future__ import annotations

from datetime import timedelta

import pytest

from netgate.models.system_config import SystemConfig
from netgate.services.runtime_config import (
    ACCESS_TTL_KEY,
    MAX_DEVICES_KEY,
    REFRESH_TTL_KEY,
    RuntimeConfig,
)


async def _set(database, key: str, value: str) -> None:
    async with database.transaction() as session:
        session.add(SystemConfig(key=key, value=value))


@pytest.mark.asyncio
async def test_falls_back_to_settings(database, settings) -> None:
    config = RuntimeConfig(database, settings)
    limits = await config.limits()
    assert limits.max_devices_per_user == settings.MAX_DEVICES_PER_USER
    assert limits.access_token_ttl == timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    assert limits.refresh_token_ttl == timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)


@pytest.mark.asyncio
async def test_stored_values_override_settings(database, settings) -> None:
    await _set(database, MAX_DEVICES_KEY, "2")
    await _set(database, ACCESS_TTL_KEY, "5")
    await _set(database, REFRESH_TTL_KEY, "1")
    config = RuntimeConfig(database, settings)

    assert await config.max_devices_per_user() == 2
    assert await config.access_token_ttl() == timedelta(minutes=5)
    assert await config.refresh_token_ttl() == timedelta(days=1)


@pytest.mark.asyncio
async def test_unusable_stored_values_are_ignored(database, settings) -> None:
    await _set(database, MAX_DEVICES_KEY, "lots")
    await _set(database, ACCESS_TTL_KEY, "-3")
    config = RuntimeConfig(database, settings)

    assert await config.max_devices_per_user() == settings.MAX_DEVICES_PER_USER
    assert await config.access_token_ttl() == timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
