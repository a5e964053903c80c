"""
Firewall driver contract.

The packet filter is imperative, non-transactional and can be changed
behind our back, so every operation here is idempotent:

- ``grant`` checks for an equivalent rule before inserting one.
- ``revoke`` treats "no such rule" as success.
- ``initialize`` rebuilds only the rules this driver manages.

All calls against the resource go through one lock per driver instance
(the application builds exactly one), and each call, including the wait
for that lock, is bounded by ``timeout`` seconds.  Backends implement
the ``_``-prefixed hooks and never take the lock themselves.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from netgate.core.addresses import normalize_ip, normalize_mac
from netgate.core.errors import FirewallError, FirewallTimeout, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Grant:
    """One accept entry: device identity plus (optionally) its address."""

    identity: str
    address: str | None = None


@dataclass(frozen=True)
class UsageCounters:
    bytes: int = 0
    packets: int = 0


@dataclass
class BulkRevokeReport:
    succeeded: int = 0
    failed: list[Grant] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class FirewallDriver(ABC):
    """Idempotent grant / revoke / query against the host packet filter."""

    name = "abstract"

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._lock = asyncio.Lock()

    # ── Serialization ────────────────────────────────────────────────
    async def _serialized(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        async def _locked() -> T:
            async with self._lock:
                return await call()

        try:
            return await asyncio.wait_for(_locked(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Firewall %s timed out after %.1fs", operation, self.timeout)
            raise FirewallTimeout(f"Firewall {operation} timed out after {self.timeout}s")

    # ── Public API ───────────────────────────────────────────────────
    async def initialize(self) -> None:
        """Install the base policy; safe to call repeatedly."""
        await self._serialized("initialize", self._initialize)
        logger.info("Firewall base policy initialized (%s)", self.name)

    async def grant(self, identity: str, address: str | None) -> None:
        mac = normalize_mac(identity)
        ip = normalize_ip(address) if address else None
        await self._serialized("grant", lambda: self._grant(mac, ip))
        logger.info("Granted network access to %s (%s)", mac, ip)

    async def revoke(self, identity: str, address: str | None) -> None:
        mac = normalize_mac(identity)
        ip = normalize_ip(address) if address else None
        await self._serialized("revoke", lambda: self._revoke(mac, ip))
        logger.info("Revoked network access for %s (%s)", mac, ip)

    async def list_grants(self) -> list[Grant]:
        return await self._serialized("list", self._list_grants)

    async def query_usage(self, address: str) -> UsageCounters:
        """Best-effort accounting; zeroed counters when unavailable."""
        try:
            ip = normalize_ip(address)
            return await self._serialized("query", lambda: self._query_usage(ip))
        except (FirewallError, ValidationError) as exc:
            logger.warning("Traffic accounting unavailable for %s: %s", address, exc)
            return UsageCounters()

    async def disconnect_all(self) -> BulkRevokeReport:
        """
        Revoke every granted identity/address pair.

        Individual failures are logged and collected; the loop never
        stops early.
        """
        report = BulkRevokeReport()
        for grant in await self.list_grants():
            try:
                await self.revoke(grant.identity, grant.address)
            except FirewallError as exc:
                logger.warning("Failed to revoke %s (%s): %s", grant.identity, grant.address, exc)
                report.failed.append(grant)
            else:
                report.succeeded += 1
        return report

    # ── Backend hooks ────────────────────────────────────────────────
    @abstractmethod
    async def _initialize(self) -> None: ...

    @abstractmethod
    async def _grant(self, identity: str, address: str | None) -> None: ...

    @abstractmethod
    async def _revoke(self, identity: str, address: str | None) -> None: ...

    @abstractmethod
    async def _list_grants(self) -> list[Grant]: ...

    @abstractmethod
    async def _query_usage(self, address: str) -> UsageCounters: ...
