"""
Device registry — device records and the per-user quota.

Quota rule: a user never has more than ``max_devices_per_user`` devices
with ``is_active = True``.

Admission (look up by identity, then reactivate or create) happens as
ONE step per user:

1. An in-process ``asyncio.Lock`` keyed by user id serializes admits
   for the same user inside this worker.
2. Inside one transaction the owning user row is read
   ``FOR UPDATE``, which serializes admits across workers on
   PostgreSQL.  SQLite ignores ``FOR UPDATE``; there the transaction
   starts with ``BEGIN IMMEDIATE`` (see ``netgate.core.database``), so
   it holds the database write lock before the count is taken.
3. The active count is taken and the device inserted / reactivated in
   that same transaction.

Storage conflicts (lock timeouts, a concurrent insert of the same
identity) are retried with jittered exponential backoff and surface as
``AdmissionConflict`` when retries run out, never as a quota verdict.
"""

import asyncio
import logging
import random
import uuid
import weakref
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from netgate.core.database import Database
from netgate.core.errors import (
    AdmissionConflict,
    DeviceNotFound,
    QuotaExceeded,
    UserNotFound,
    ValidationError,
)
from netgate.models.base import utcnow
from netgate.models.device import Device
from netgate.models.user import User
from netgate.services.fingerprint import DeviceFingerprint
from netgate.services.runtime_config import RuntimeConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    device: Device
    created: bool
    reactivated: bool
    previous_address: str | None

    @property
    def consumed_quota(self) -> bool:
        return self.created or self.reactivated


class DeviceRegistry:
    def __init__(
        self,
        database: Database,
        runtime_config: RuntimeConfig,
        *,
        max_attempts: int = 3,
        backoff_ms: int = 50,
    ) -> None:
        self.database = database
        self.runtime_config = runtime_config
        self.max_attempts = max(max_attempts, 1)
        self.backoff_ms = backoff_ms
        self._user_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: uuid.UUID) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    # ── Admission ────────────────────────────────────────────────────
    async def resolve_or_admit(self, user_id: uuid.UUID, fingerprint: DeviceFingerprint) -> Admission:
        maximum = await self.runtime_config.max_devices_per_user()
        attempt = 1
        while True:
            try:
                lock = self._lock_for(user_id)
                async with lock:
                    return await self._admit_once(user_id, fingerprint, maximum)
            except (OperationalError, IntegrityError) as exc:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Device admission for user %s gave up after %d attempts: %s",
                        user_id, attempt, exc,
                    )
                    raise AdmissionConflict() from exc
                delay = (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
                logger.info("Device admission conflict for user %s, retrying in %.3fs", user_id, delay)
                await asyncio.sleep(delay)
                attempt += 1

    async def _admit_once(
        self,
        user_id: uuid.UUID,
        fingerprint: DeviceFingerprint,
        maximum: int,
    ) -> Admission:
        async with self.database.transaction() as session:
            owner = (
                await session.execute(select(User).where(User.id == user_id).with_for_update())
            ).scalar_one_or_none()
            if owner is None:
                raise UserNotFound()

            device = (
                await session.execute(
                    select(Device).where(Device.mac_address == fingerprint.identity).with_for_update()
                )
            ).scalar_one_or_none()

            if device is not None and device.user_id != user_id:
                # Devices never change owner.
                raise ValidationError("Device is registered to another account")

            if device is None or not device.is_active:
                active = (
                    await session.execute(
                        select(func.count())
                        .select_from(Device)
                        .where(Device.user_id == user_id, Device.is_active == True)  # noqa: E712
                    )
                ).scalar_one()
                if active >= maximum:
                    logger.warning(
                        "Quota exceeded for user %s: %d/%d active devices", user_id, active, maximum,
                    )
                    raise QuotaExceeded(active=active, maximum=maximum)

            now = utcnow()
            if device is None:
                device = Device(
                    user_id=user_id,
                    mac_address=fingerprint.identity,
                    ip_address=fingerprint.address,
                    device_name=fingerprint.device_name,
                    user_agent=fingerprint.user_agent,
                    is_active=True,
                    last_seen=now,
                )
                session.add(device)
                await session.flush()
                logger.info("Admitted new device %s for user %s", device.mac_address, user_id)
                return Admission(device, created=True, reactivated=False, previous_address=None)

            previous_address = device.ip_address
            reactivated = not device.is_active
            device.ip_address = fingerprint.address
            device.user_agent = fingerprint.user_agent or device.user_agent
            device.last_seen = now
            device.is_active = True
            await session.flush()
            return Admission(
                device,
                created=False,
                reactivated=reactivated,
                previous_address=previous_address,
            )

    # ── Lifecycle ────────────────────────────────────────────────────
    async def deactivate(self, device_id: uuid.UUID) -> bool:
        """Mark inactive; returns False when it already was (idempotent)."""
        async with self.database.transaction() as session:
            result = await session.execute(
                update(Device)
                .where(Device.id == device_id, Device.is_active == True)  # noqa: E712
                .values(is_active=False)
            )
            return result.rowcount == 1

    async def deactivate_all(self) -> int:
        async with self.database.transaction() as session:
            result = await session.execute(
                update(Device).where(Device.is_active == True).values(is_active=False)  # noqa: E712
            )
            return result.rowcount

    async def delete(self, device_id: uuid.UUID) -> None:
        """Permanent removal; only reachable through explicit user/admin action."""
        async with self.database.transaction() as session:
            result = await session.execute(delete(Device).where(Device.id == device_id))
            if result.rowcount == 0:
                raise DeviceNotFound()

    async def rename(self, device_id: uuid.UUID, name: str) -> Device:
        name = name.strip()
        if not name:
            raise ValidationError("Device name is required", field="device_name")
        async with self.database.transaction() as session:
            device = await session.get(Device, device_id)
            if device is None:
                raise DeviceNotFound()
            device.device_name = name[:100]
        return device

    # ── Queries ──────────────────────────────────────────────────────
    async def get(self, device_id: uuid.UUID, owner_id: uuid.UUID | None = None) -> Device:
        """Fetch a device; with ``owner_id`` a foreign device is reported as missing."""
        async with self.database.session() as session:
            device = await session.get(Device, device_id)
        if device is None or (owner_id is not None and device.user_id != owner_id):
            raise DeviceNotFound()
        return device

    async def list_for_user(self, user_id: uuid.UUID, *, active_only: bool = False) -> list[Device]:
        stmt = select(Device).where(Device.user_id == user_id)
        if active_only:
            stmt = stmt.where(Device.is_active == True)  # noqa: E712
        async with self.database.session() as session:
            result = await session.execute(stmt.order_by(Device.last_seen.desc()))
            return list(result.scalars().all())

    async def list_active(self) -> list[Device]:
        async with self.database.session() as session:
            result = await session.execute(select(Device).where(Device.is_active == True))  # noqa: E712
            return list(result.scalars().all())

    async def count_active(self, user_id: uuid.UUID) -> int:
        async with self.database.session() as session:
            return (
                await session.execute(
                    select(func.count())
                    .select_from(Device)
                    .where(Device.user_id == user_id, Device.is_active == True)  # noqa: E712
                )
            ).scalar_one()
