"""
Access coordinator — login / logout / admin flows.

Handles:
- Login: authenticate → admit device under quota → issue credentials →
  grant at the firewall → open a ledger entry → audit
- Refresh (rotation) and bearer validation
- Logout and per-device disconnect: firewall revoke first, then
  sessions, then the ledger, so network access is cut before the
  credentials disappear
- Device rename / delete / history / live traffic for the owner (or an
  admin)
- Admin: deactivate user, purge user, disconnect everyone,
  re-initialize the network, list grants, collect usage counters

Firewall failures never block a logical revoke.  On the grant path they
are tolerated (fail open) unless ``fail_closed`` is set, in which case
the login is rolled back and the firewall error re-raised.

Audit entries are written last in every flow and reflect the outcome.
"""

import logging
import uuid
from dataclasses import dataclass, field

from netgate.core.config import Settings
from netgate.core.database import Database
from netgate.core.errors import (
    AccountInactive,
    DeviceNotFound,
    FirewallError,
    InvalidCredentials,
    QuotaExceeded,
    ValidationError,
)
from netgate.firewall.base import BulkRevokeReport, FirewallDriver, Grant
from netgate.models.device import Device
from netgate.models.user import User
from netgate.services.audit import AuditAction, AuditWriter, RequestContext
from netgate.services.connection_ledger import ConnectionLedger, ConnectionPage
from netgate.services.device_registry import DeviceRegistry
from netgate.services.fingerprint import ChainedFingerprintResolver, ClientHints, build_fingerprint_resolver
from netgate.services.runtime_config import RuntimeConfig
from netgate.services.session_manager import SessionManager, TokenPair, UserIdentity
from netgate.services.user_service import UserService

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────
@dataclass(frozen=True)
class LoginResult:
    user: UserIdentity
    tokens: TokenPair
    device: Device
    created: bool
    # False when the grant failed and the login went through fail-open.
    enforced: bool


@dataclass(frozen=True)
class DeviceRevocation:
    device_id: uuid.UUID
    firewall_revoked: bool
    sessions_revoked: int
    connections_closed: int


@dataclass
class DeactivationReport:
    user_id: uuid.UUID
    devices: int = 0
    firewall_failures: list[str] = field(default_factory=list)
    sessions_revoked: int = 0
    connections_closed: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.firewall_failures)


@dataclass
class DisconnectAllReport:
    firewall: BulkRevokeReport
    devices_deactivated: int = 0
    connections_closed: int = 0
    firewall_error: str | None = None


@dataclass
class NetworkInitReport:
    regranted: int = 0
    failed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UsageReport:
    open_connections: int
    updated: int


@dataclass(frozen=True)
class DeviceTraffic:
    device_id: uuid.UUID
    ip_address: str | None
    is_active: bool
    bytes: int = 0
    packets: int = 0


class AccessCoordinator:
    def __init__(
        self,
        *,
        sessions: SessionManager,
        devices: DeviceRegistry,
        firewall: FirewallDriver,
        ledger: ConnectionLedger,
        audit: AuditWriter,
        fingerprints: ChainedFingerprintResolver,
        users: UserService,
        fail_closed: bool = False,
    ) -> None:
        self.sessions = sessions
        self.devices = devices
        self.firewall = firewall
        self.ledger = ledger
        self.audit = audit
        self.fingerprints = fingerprints
        self.users = users
        self.fail_closed = fail_closed

    @classmethod
    def build(cls, settings: Settings, database: Database, firewall: FirewallDriver) -> "AccessCoordinator":
        """Wire every component around one database and one firewall driver."""
        runtime_config = RuntimeConfig(database, settings)
        return cls(
            sessions=SessionManager(database, settings, runtime_config),
            devices=DeviceRegistry(
                database,
                runtime_config,
                max_attempts=settings.ADMISSION_MAX_ATTEMPTS,
                backoff_ms=settings.ADMISSION_BACKOFF_MS,
            ),
            firewall=firewall,
            ledger=ConnectionLedger(database),
            audit=AuditWriter(database),
            fingerprints=build_fingerprint_resolver(settings),
            users=UserService(database, settings),
            fail_closed=settings.FIREWALL_FAIL_CLOSED,
        )

    # ── Firewall helpers ─────────────────────────────────────────────
    async def _revoke_quietly(self, identity: str, address: str | None) -> bool:
        try:
            await self.firewall.revoke(identity, address)
        except FirewallError as exc:
            logger.warning("Firewall revoke failed for %s (%s): %s", identity, address, exc)
            return False
        return True

    async def _grant(self, device: Device, previous_address: str | None) -> None:
        if previous_address and previous_address != device.ip_address:
            # The old address rule would otherwise keep accepting traffic.
            await self._revoke_quietly(device.mac_address, previous_address)
        await self.firewall.grant(device.mac_address, device.ip_address)

    # ── Login ────────────────────────────────────────────────────────
    async def login(
        self,
        identifier: str,
        secret: str,
        hints: ClientHints,
        context: RequestContext | None = None,
    ) -> LoginResult:
        try:
            identity = await self.sessions.authenticate(identifier, secret)
        except (InvalidCredentials, AccountInactive) as exc:
            await self.audit.record(
                AuditAction.LOGIN_FAILED, None,
                {"identifier": identifier, "reason": exc.code},
                context,
            )
            raise

        try:
            fingerprint = await self.fingerprints.resolve(hints)
        except ValidationError as exc:
            await self.audit.record(
                AuditAction.LOGIN_REJECTED, identity.id,
                {"reason": exc.code, "reported_mac": hints.hardware_address, "ip": hints.address},
                context,
            )
            raise

        try:
            admission = await self.devices.resolve_or_admit(identity.id, fingerprint)
        except QuotaExceeded as exc:
            await self.audit.record(
                AuditAction.LOGIN_REJECTED, identity.id,
                {"reason": exc.code, "active": exc.active, "max": exc.maximum, "mac": fingerprint.identity},
                context,
            )
            raise

        device = admission.device
        tokens = await self.sessions.issue(identity.id, device.id)

        enforced = True
        try:
            await self._grant(device, admission.previous_address)
        except FirewallError as exc:
            enforced = False
            if self.fail_closed:
                await self._undo_login(tokens, device, admission.consumed_quota)
                await self.audit.record(
                    AuditAction.LOGIN_REJECTED, identity.id,
                    {"reason": exc.code, "mac": device.mac_address},
                    context,
                )
                raise
            logger.warning(
                "Login for %s proceeds without firewall enforcement of %s: %s",
                identity.username, device.mac_address, exc,
            )

        await self.ledger.open(identity.id, device.id, device.ip_address)
        await self.audit.record(
            AuditAction.LOGIN, identity.id,
            {
                "device_id": str(device.id),
                "mac": device.mac_address,
                "ip": device.ip_address,
                "source": fingerprint.source,
                "new_device": admission.created,
                "enforced": enforced,
            },
            context,
        )
        return LoginResult(identity, tokens, device, admission.created, enforced)

    async def _undo_login(self, tokens: TokenPair, device: Device, consumed_quota: bool) -> None:
        await self.sessions.revoke(tokens.refresh_token)
        await self.ledger.close_for_device(device.id)
        if consumed_quota:
            await self.devices.deactivate(device.id)
        logger.warning("Rolled back login on %s after firewall grant failure", device.mac_address)

    # ── Credentials ──────────────────────────────────────────────────
    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self.sessions.rotate(refresh_token)

    async def validate_bearer(self, access_token: str) -> UserIdentity:
        return await self.sessions.validate(access_token)

    async def logout(
        self,
        refresh_token: str | None = None,
        actor_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> None:
        """Always succeeds; an unknown or stale refresh value just means nothing to revoke."""
        info = await self.sessions.describe(refresh_token) if refresh_token else None
        if info is None:
            if actor_id is not None:
                await self.audit.record(AuditAction.LOGOUT, actor_id, {"session": None}, context)
            return

        device: Device | None = None
        if info.device_id is not None:
            try:
                device = await self.devices.get(info.device_id)
            except DeviceNotFound:
                device = None
        enforced_revoke = True
        if device is not None:
            enforced_revoke = await self._revoke_quietly(device.mac_address, device.ip_address)
            await self.devices.deactivate(device.id)

        await self.sessions.revoke(refresh_token)
        if device is not None:
            await self.ledger.close_for_device(device.id)

        await self.audit.record(
            AuditAction.LOGOUT, info.user_id,
            {
                "session_id": str(info.session_id),
                "device_id": str(device.id) if device else None,
                "firewall_revoked": enforced_revoke,
            },
            context,
        )

    async def change_password(
        self,
        actor: UserIdentity,
        current: str,
        new: str,
        context: RequestContext | None = None,
    ) -> int:
        await self.users.change_password(actor.id, current, new)
        revoked = await self.sessions.revoke_all(actor.id)
        await self.audit.record(AuditAction.PASSWORD_CHANGE, actor.id, {"sessions_revoked": revoked}, context)
        return revoked

    async def update_profile(
        self,
        actor: UserIdentity,
        changes: dict,
        context: RequestContext | None = None,
    ) -> User:
        user = await self.users.update_profile(actor.id, changes)
        await self.audit.record(AuditAction.PROFILE_UPDATE, actor.id, {"fields": sorted(changes)}, context)
        return user

    # ── Devices ──────────────────────────────────────────────────────
    async def _owned_device(self, device_id: uuid.UUID, actor: UserIdentity) -> Device:
        return await self.devices.get(device_id, owner_id=None if actor.is_admin else actor.id)

    async def list_devices(self, actor: UserIdentity, *, active_only: bool = False) -> list[Device]:
        return await self.devices.list_for_user(actor.id, active_only=active_only)

    async def get_device(self, device_id: uuid.UUID, actor: UserIdentity) -> Device:
        return await self._owned_device(device_id, actor)

    async def disconnect_device(
        self,
        device_id: uuid.UUID,
        actor: UserIdentity,
        context: RequestContext | None = None,
    ) -> DeviceRevocation:
        device = await self._owned_device(device_id, actor)
        revoked = await self._revoke_quietly(device.mac_address, device.ip_address)
        await self.devices.deactivate(device.id)
        sessions = await self.sessions.revoke_device(device.id)
        closed = await self.ledger.close_for_device(device.id)
        await self.audit.record(
            AuditAction.DEVICE_DISCONNECT, actor.id,
            {"device_id": str(device.id), "mac": device.mac_address, "firewall_revoked": revoked},
            context,
        )
        return DeviceRevocation(device.id, revoked, sessions, closed)

    async def delete_device(
        self,
        device_id: uuid.UUID,
        actor: UserIdentity,
        context: RequestContext | None = None,
    ) -> DeviceRevocation:
        device = await self._owned_device(device_id, actor)
        revoked = await self._revoke_quietly(device.mac_address, device.ip_address)
        sessions = await self.sessions.revoke_device(device.id)
        closed = await self.ledger.close_for_device(device.id)
        await self.devices.delete(device.id)
        await self.audit.record(
            AuditAction.DEVICE_DELETE, actor.id,
            {"device_id": str(device.id), "mac": device.mac_address, "firewall_revoked": revoked},
            context,
        )
        return DeviceRevocation(device.id, revoked, sessions, closed)

    async def rename_device(
        self,
        device_id: uuid.UUID,
        name: str,
        actor: UserIdentity,
        context: RequestContext | None = None,
    ) -> Device:
        device = await self._owned_device(device_id, actor)
        renamed = await self.devices.rename(device.id, name)
        await self.audit.record(
            AuditAction.DEVICE_RENAME, actor.id,
            {"device_id": str(device.id), "old": device.device_name, "new": renamed.device_name},
            context,
        )
        return renamed

    async def device_history(
        self,
        device_id: uuid.UUID,
        actor: UserIdentity,
        page: int = 1,
        limit: int = 20,
    ) -> ConnectionPage:
        device = await self._owned_device(device_id, actor)
        return await self.ledger.history(device.id, page=page, limit=limit)

    async def device_traffic(self, device_id: uuid.UUID, actor: UserIdentity) -> DeviceTraffic:
        """Live counters for the device's current address; zero when it has none."""
        device = await self._owned_device(device_id, actor)
        if not device.is_active or not device.ip_address:
            return DeviceTraffic(device.id, device.ip_address, device.is_active)
        usage = await self.firewall.query_usage(device.ip_address)
        return DeviceTraffic(device.id, device.ip_address, True, usage.bytes, usage.packets)

    # ── Admin ────────────────────────────────────────────────────────
    async def admin_deactivate_user(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> DeactivationReport:
        """
        Fan out over every active device of the user.

        A device whose firewall revoke fails is still marked inactive in
        storage and reported in ``firewall_failures``.
        """
        if actor_id is not None and actor_id == user_id:
            raise ValidationError("You cannot deactivate your own account")
        user = await self.users.set_active(user_id, False)

        report = DeactivationReport(user_id=user_id)
        for device in await self.devices.list_for_user(user_id, active_only=True):
            report.devices += 1
            if not await self._revoke_quietly(device.mac_address, device.ip_address):
                report.firewall_failures.append(device.mac_address)
            await self.devices.deactivate(device.id)

        report.sessions_revoked = await self.sessions.revoke_all(user_id)
        report.connections_closed = await self.ledger.close_for_user(user_id)

        await self.audit.record(
            AuditAction.ADMIN_DEACTIVATE_USER, actor_id,
            {
                "user_id": str(user_id),
                "email": user.email,
                "devices": report.devices,
                "firewall_failures": report.firewall_failures,
            },
            context,
        )
        return report

    async def admin_purge_user(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> DeactivationReport:
        if actor_id is not None and actor_id == user_id:
            raise ValidationError("You cannot delete your own account")
        user = await self.users.get(user_id)

        report = DeactivationReport(user_id=user_id)
        for device in await self.devices.list_for_user(user_id):
            report.devices += 1
            if not await self._revoke_quietly(device.mac_address, device.ip_address):
                report.firewall_failures.append(device.mac_address)

        report.sessions_revoked = await self.sessions.revoke_all(user_id)
        report.connections_closed = await self.ledger.close_for_user(user_id)
        await self.users.purge(user_id)

        await self.audit.record(
            AuditAction.ADMIN_PURGE_USER, actor_id,
            {
                "user_id": str(user_id),
                "email": user.email,
                "username": user.username,
                "devices": report.devices,
            },
            context,
        )
        return report

    async def admin_disconnect_all(
        self,
        actor_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> DisconnectAllReport:
        try:
            firewall_report = await self.firewall.disconnect_all()
            firewall_error = None
        except FirewallError as exc:
            # Listing the grants failed; storage is still brought in line.
            logger.error("Firewall disconnect-all failed: %s", exc)
            firewall_report = BulkRevokeReport()
            firewall_error = exc.message

        report = DisconnectAllReport(firewall=firewall_report, firewall_error=firewall_error)
        report.devices_deactivated = await self.devices.deactivate_all()
        report.connections_closed = await self.ledger.close_all()

        await self.audit.record(
            AuditAction.NETWORK_DISCONNECT_ALL, actor_id,
            {
                "revoked": firewall_report.succeeded,
                "failed": firewall_report.failed_count,
                "devices": report.devices_deactivated,
                "error": firewall_error,
            },
            context,
        )
        return report

    async def initialize_network(
        self,
        actor_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> NetworkInitReport:
        """Rebuild the base policy, then re-grant every device still active in storage."""
        await self.firewall.initialize()

        report = NetworkInitReport()
        for device in await self.devices.list_active():
            try:
                await self.firewall.grant(device.mac_address, device.ip_address)
            except (FirewallError, ValidationError) as exc:
                logger.warning("Could not re-grant %s: %s", device.mac_address, exc)
                report.failed.append(device.mac_address)
            else:
                report.regranted += 1

        await self.audit.record(
            AuditAction.NETWORK_INITIALIZE, actor_id,
            {"regranted": report.regranted, "failed": report.failed},
            context,
        )
        return report

    async def list_grants(self) -> list[Grant]:
        return await self.firewall.list_grants()

    async def collect_usage(self) -> UsageReport:
        """Copy the firewall's per-address counters onto every open connection."""
        connections = await self.ledger.list_open()
        updated = 0
        for connection in connections:
            if not connection.ip_address:
                continue
            usage = await self.firewall.query_usage(connection.ip_address)
            if await self.ledger.record_usage(connection.id, usage):
                updated += 1
        return UsageReport(open_connections=len(connections), updated=updated)
