from __future__ import annotations

import uuid

import pytest

from netgate.core.config import Settings
from netgate.core.database import Database
from netgate.models import Base
from netgate.services.access_coordinator import AccessCoordinator
from netgate.tests.helpers import PASSWORD, FlakyFirewall, mac_of, write_arp_table


@pytest.fixture
def arp_table(tmp_path):
    # Test devices 1..16 sit at 10.0.0.n with hardware address mac_of(n).
    path = tmp_path / "arp"
    write_arp_table(path, {f"10.0.0.{n}": mac_of(n) for n in range(1, 17)})
    return path


@pytest.fixture
def settings(tmp_path, arp_table) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'netgate.db'}",
        SECRET_KEY="test-access-secret",
        REFRESH_SECRET_KEY="test-refresh-secret",
        BCRYPT_ROUNDS=4,
        MAX_DEVICES_PER_USER=4,
        ADMISSION_BACKOFF_MS=1,
        FIREWALL_BACKEND="memory",
        FIREWALL_TIMEOUT_SECONDS=2.0,
        FIREWALL_INIT_ON_STARTUP=False,
        FINGERPRINT_STRATEGY="arp+pseudo",
        ARP_TABLE_PATH=str(arp_table),
    )


@pytest.fixture
async def database(settings: Settings):
    db = Database.from_settings(settings)
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest.fixture
def firewall(settings: Settings) -> FlakyFirewall:
    return FlakyFirewall(timeout=settings.FIREWALL_TIMEOUT_SECONDS, portal_ports=settings.PORTAL_PORTS)


@pytest.fixture
def coordinator(settings: Settings, database: Database, firewall: FlakyFirewall) -> AccessCoordinator:
    return AccessCoordinator.build(settings, database, firewall)


@pytest.fixture
def make_user(coordinator: AccessCoordinator):
    async def _make(username: str | None = None, *, password: str = PASSWORD, is_admin: bool = False):
        username = username or f"user{uuid.uuid4().hex[:8]}"
        return await coordinator.users.create_user(
            email=f"{username}@example.com",
            username=username,
            password=password,
            is_admin=is_admin,
        )

    return _make
