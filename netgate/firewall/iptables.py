"""
iptables adapter.

Manages a dedicated chain (``FIREWALL_CHAIN``) jumped to from
``FIREWALL_PARENT_CHAIN``.  Only that chain is ever flushed, so rules
owned by other tooling are left alone.

Per granted device there are two accept rules, both tagged with an
``netgate:<mac>`` comment so they can be listed and paired again from
the live table:

    -m mac --mac-source <mac> -m comment --comment netgate:<mac> -j ACCEPT
    -s <ip>                   -m comment --comment netgate:<mac> -j ACCEPT

Commands are executed without a shell; arguments are normalized MAC /
IP strings only.  ``-w`` makes iptables wait for the xtables lock, which
serializes us against other processes touching the same table.
"""

import asyncio
import logging
import shlex

from netgate.core.errors import FirewallCommandFailed
from netgate.firewall.base import FirewallDriver, Grant, UsageCounters

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "netgate:"
# Upper bound when deleting duplicates someone else inserted.
_MAX_DUPLICATE_DELETES = 16


class IptablesFirewall(FirewallDriver):
    name = "iptables"

    def __init__(
        self,
        *,
        binary: str = "iptables",
        chain: str = "NETGATE_ACCESS",
        parent_chain: str = "FORWARD",
        portal_ports: list[int] | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self.binary = binary
        self.chain = chain
        self.parent_chain = parent_chain
        self.portal_ports = list(portal_ports or [80, 443])

    # ── Process plumbing ─────────────────────────────────────────────
    async def _run(self, *args: str, ok_codes: tuple[int, ...] = (0,)) -> tuple[int, str]:
        argv = [self.binary, "-w", *args]
        logger.debug("iptables: %s", shlex.join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise FirewallCommandFailed(f"Cannot execute {self.binary}: {exc}")

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Timed out upstream; do not leave the child running.
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode not in ok_codes:
            message = stderr.decode("utf-8", "replace").strip() or "iptables command failed"
            raise FirewallCommandFailed(message, returncode=proc.returncode)
        return proc.returncode, stdout.decode("utf-8", "replace")

    async def _exists(self, chain: str, spec: list[str]) -> bool:
        # -C exits 1 when the rule is absent.
        returncode, _ = await self._run("-C", chain, *spec, ok_codes=(0, 1))
        return returncode == 0

    async def _delete_all(self, spec: list[str]) -> None:
        for _ in range(_MAX_DUPLICATE_DELETES):
            returncode, _ = await self._run("-D", self.chain, *spec, ok_codes=(0, 1))
            if returncode == 1:
                return

    # ── Rule specs ───────────────────────────────────────────────────
    @staticmethod
    def _comment(identity: str) -> list[str]:
        return ["-m", "comment", "--comment", f"{COMMENT_PREFIX}{identity}"]

    def _mac_spec(self, identity: str) -> list[str]:
        return ["-m", "mac", "--mac-source", identity, *self._comment(identity), "-j", "ACCEPT"]

    def _ip_spec(self, identity: str, address: str) -> list[str]:
        return ["-s", address, *self._comment(identity), "-j", "ACCEPT"]

    def _base_policy(self) -> list[list[str]]:
        rules = [
            ["-i", "lo", "-j", "ACCEPT"],
            ["-o", "lo", "-j", "ACCEPT"],
            ["-m", "conntrack", "--ctstate", "ESTABLISHED,RELATED", "-j", "ACCEPT"],
            ["-p", "udp", "--dport", "53", "-j", "ACCEPT"],
            ["-p", "tcp", "--dport", "53", "-j", "ACCEPT"],
        ]
        rules.extend(["-p", "tcp", "--dport", str(port), "-j", "ACCEPT"] for port in self.portal_ports)
        rules.append(["-j", "DROP"])
        return rules

    # ── Hooks ────────────────────────────────────────────────────────
    async def _initialize(self) -> None:
        # -N exits 1 when the chain already exists.
        await self._run("-N", self.chain, ok_codes=(0, 1))
        await self._run("-F", self.chain)
        if not await self._exists(self.parent_chain, ["-j", self.chain]):
            await self._run("-I", self.parent_chain, "1", "-j", self.chain)
        for spec in self._base_policy():
            await self._run("-A", self.chain, *spec)

    async def _grant(self, identity: str, address: str | None) -> None:
        specs = [self._mac_spec(identity)]
        if address:
            specs.append(self._ip_spec(identity, address))
        for spec in specs:
            if await self._exists(self.chain, spec):
                logger.debug("Rule already present for %s, skipping insert", identity)
                continue
            # Insert at the top so grants precede the trailing DROP.
            await self._run("-I", self.chain, "1", *spec)

    async def _revoke(self, identity: str, address: str | None) -> None:
        await self._delete_all(self._mac_spec(identity))
        if address:
            addresses = [address]
        else:
            addresses = [g.address for g in await self._list_grants() if g.identity == identity and g.address]
        for ip in addresses:
            await self._delete_all(self._ip_spec(identity, ip))

    async def _list_grants(self) -> list[Grant]:
        _, output = await self._run("-S", self.chain)
        return parse_grants(output, self.chain)

    async def _query_usage(self, address: str) -> UsageCounters:
        _, output = await self._run("-L", self.chain, "-n", "-v", "-x")
        return parse_usage(output, address)


def parse_grants(output: str, chain: str) -> list[Grant]:
    """Pair the tagged MAC / address rules from ``iptables -S <chain>`` output."""
    addresses: dict[str, list[str]] = {}
    for line in output.splitlines():
        try:
            tokens = shlex.split(line)
        except ValueError:
            continue
        if tokens[:2] != ["-A", chain] or "--comment" not in tokens:
            continue
        tag = tokens[tokens.index("--comment") + 1]
        if not tag.startswith(COMMENT_PREFIX):
            continue
        identity = tag[len(COMMENT_PREFIX):].lower()
        bucket = addresses.setdefault(identity, [])
        if "-s" in tokens:
            source = tokens[tokens.index("-s") + 1]
            bucket.append(source.removesuffix("/32").removesuffix("/128"))

    grants: list[Grant] = []
    for identity, ips in addresses.items():
        if ips:
            grants.extend(Grant(identity, ip) for ip in dict.fromkeys(ips))
        else:
            grants.append(Grant(identity, None))
    return grants


def parse_usage(output: str, address: str) -> UsageCounters:
    """
    Sum packet/byte counters of ACCEPT rules whose source is ``address``
    in ``iptables -L <chain> -n -v -x`` output.

    Columns: pkts bytes target prot opt in out source destination ...
    """
    packets = 0
    total_bytes = 0
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 9 or not parts[0].isdigit():
            continue
        source = parts[7].removesuffix("/32").removesuffix("/128")
        if source != address or parts[2] != "ACCEPT":
            continue
        packets += int(parts[0])
        total_bytes += int(parts[1])
    return UsageCounters(bytes=total_bytes, packets=packets)
