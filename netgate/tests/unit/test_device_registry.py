from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from netgate.core.errors import AdmissionConflict, DeviceNotFound, QuotaExceeded, ValidationError
from netgate.services.device_registry import DeviceRegistry
from netgate.services.fingerprint import DeviceFingerprint
from netgate.services.runtime_config import RuntimeConfig
from netgate.tests.helpers import WINDOWS_UA, mac_of


def _fingerprint(n: int, address: str | None = None) -> DeviceFingerprint:
    return DeviceFingerprint(
        identity=mac_of(n),
        address=address or f"10.0.0.{n}",
        device_name="Windows PC",
        user_agent=WINDOWS_UA,
        source="explicit",
    )


class _ConflictingRegistry(DeviceRegistry):
    # Raises a storage conflict for the first ``conflicts`` attempts.
    def __init__(self, *args, conflicts: int, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.conflicts = conflicts
        self.attempts = 0

    async def _admit_once(self, user_id, fingerprint, maximum):
        self.attempts += 1
        if self.attempts <= self.conflicts:
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))
        return await super()._admit_once(user_id, fingerprint, maximum)


@pytest.fixture
def registry(database, settings) -> DeviceRegistry:
    return DeviceRegistry(database, RuntimeConfig(database, settings), backoff_ms=1)


@pytest.mark.asyncio
async def test_fifth_new_device_exceeds_quota(registry, make_user) -> None:
    user = await make_user()
    for n in range(1, 5):
        admission = await registry.resolve_or_admit(user.id, _fingerprint(n))
        assert admission.created

    with pytest.raises(QuotaExceeded) as excinfo:
        await registry.resolve_or_admit(user.id, _fingerprint(5))

    assert (excinfo.value.active, excinfo.value.maximum) == (4, 4)
    assert excinfo.value.extra == {"active": 4, "max": 4}
    assert await registry.count_active(user.id) == 4


@pytest.mark.asyncio
async def test_known_active_device_does_not_consume_quota(registry, make_user) -> None:
    user = await make_user()
    for n in range(1, 5):
        await registry.resolve_or_admit(user.id, _fingerprint(n))

    admission = await registry.resolve_or_admit(user.id, _fingerprint(1, address="10.0.0.50"))

    assert not admission.created
    assert not admission.reactivated
    assert not admission.consumed_quota
    assert admission.previous_address == "10.0.0.1"
    assert admission.device.ip_address == "10.0.0.50"
    assert await registry.count_active(user.id) == 4


@pytest.mark.asyncio
async def test_reactivation_respects_quota(registry, make_user) -> None:
    user = await make_user()
    devices = [(await registry.resolve_or_admit(user.id, _fingerprint(n))).device for n in range(1, 5)]
    await registry.deactivate(devices[0].id)
    await registry.resolve_or_admit(user.id, _fingerprint(5))

    with pytest.raises(QuotaExceeded):
        await registry.resolve_or_admit(user.id, _fingerprint(1))

    await registry.deactivate(devices[1].id)
    admission = await registry.resolve_or_admit(user.id, _fingerprint(1))
    assert admission.reactivated
    assert admission.device.id == devices[0].id


@pytest.mark.asyncio
async def test_concurrent_admissions_never_exceed_quota(registry, make_user) -> None:
    user = await make_user()
    await registry.resolve_or_admit(user.id, _fingerprint(1))

    results = await asyncio.gather(
        *(registry.resolve_or_admit(user.id, _fingerprint(n)) for n in range(2, 10)),
        return_exceptions=True,
    )

    admitted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, QuotaExceeded)]
    assert len(admitted) == 3
    assert len(rejected) == 5
    assert await registry.count_active(user.id) == 4


@pytest.mark.asyncio
async def test_quota_holds_across_workers(database, settings, make_user) -> None:
    # Two registries share the database but not their per-user locks,
    # like two server processes.
    workers = [DeviceRegistry(database, RuntimeConfig(database, settings), backoff_ms=1) for _ in range(2)]
    user = await make_user()
    for n in range(1, 4):
        await workers[0].resolve_or_admit(user.id, _fingerprint(n))

    results = await asyncio.gather(
        *(workers[n % 2].resolve_or_admit(user.id, _fingerprint(n)) for n in range(4, 10)),
        return_exceptions=True,
    )

    admitted = [r for r in results if not isinstance(r, Exception)]
    assert len(admitted) == 1
    assert all(isinstance(r, QuotaExceeded) for r in results if isinstance(r, Exception))
    assert await workers[1].count_active(user.id) == 4


@pytest.mark.asyncio
async def test_device_never_changes_owner(registry, make_user) -> None:
    owner = await make_user()
    other = await make_user()
    await registry.resolve_or_admit(owner.id, _fingerprint(1))

    with pytest.raises(ValidationError):
        await registry.resolve_or_admit(other.id, _fingerprint(1))


@pytest.mark.asyncio
async def test_storage_conflicts_are_retried(database, settings, make_user) -> None:
    user = await make_user()
    registry = _ConflictingRegistry(database, RuntimeConfig(database, settings), conflicts=2, backoff_ms=1)

    admission = await registry.resolve_or_admit(user.id, _fingerprint(1))

    assert admission.created
    assert registry.attempts == 3


@pytest.mark.asyncio
async def test_persistent_conflict_is_not_a_quota_verdict(database, settings, make_user) -> None:
    user = await make_user()
    registry = _ConflictingRegistry(
        database, RuntimeConfig(database, settings), conflicts=99, max_attempts=3, backoff_ms=1,
    )

    with pytest.raises(AdmissionConflict):
        await registry.resolve_or_admit(user.id, _fingerprint(1))
    assert registry.attempts == 3


@pytest.mark.asyncio
async def test_deactivate_is_idempotent(registry, make_user) -> None:
    user = await make_user()
    device = (await registry.resolve_or_admit(user.id, _fingerprint(1))).device

    assert await registry.deactivate(device.id) is True
    assert await registry.deactivate(device.id) is False
    assert (await registry.get(device.id)).is_active is False


@pytest.mark.asyncio
async def test_rename_and_delete(registry, make_user) -> None:
    user = await make_user()
    device = (await registry.resolve_or_admit(user.id, _fingerprint(1))).device

    renamed = await registry.rename(device.id, "  Work laptop  ")
    assert renamed.device_name == "Work laptop"
    with pytest.raises(ValidationError):
        await registry.rename(device.id, "   ")

    await registry.delete(device.id)
    with pytest.raises(DeviceNotFound):
        await registry.get(device.id)
    with pytest.raises(DeviceNotFound):
        await registry.delete(device.id)


@pytest.mark.asyncio
async def test_get_hides_foreign_devices(registry, make_user) -> None:
    owner = await make_user()
    other = await make_user()
    device = (await registry.resolve_or_admit(owner.id, _fingerprint(1))).device

    assert (await registry.get(device.id, owner_id=owner.id)).id == device.id
    with pytest.raises(DeviceNotFound):
        await registry.get(device.id, owner_id=other.id)
