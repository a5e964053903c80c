"""
In-process firewall backend.

Keeps the rule table in a list with the same keying as the iptables
adapter (MAC rule + address rule, both tagged with the identity), so
coordinator and registry logic can run without root or a real packet
filter.  Selected with ``FIREWALL_BACKEND=memory``.
"""

from dataclasses import dataclass

from netgate.firewall.base import FirewallDriver, Grant, UsageCounters


@dataclass(frozen=True)
class MemoryRule:
    kind: str  # "mac" | "ip"
    value: str
    tag: str


class InMemoryFirewall(FirewallDriver):
    name = "memory"

    def __init__(self, timeout: float = 10.0, portal_ports: list[int] | None = None) -> None:
        super().__init__(timeout=timeout)
        self.portal_ports = list(portal_ports or [80, 443])
        self.rules: list[MemoryRule] = []
        self.base_policy: list[str] = []
        self.traffic: dict[str, UsageCounters] = {}

    # ── Helpers used by tests and dev tooling ───────────────────────
    def record_traffic(self, address: str, bytes_: int, packets: int) -> None:
        current = self.traffic.get(address, UsageCounters())
        self.traffic[address] = UsageCounters(current.bytes + bytes_, current.packets + packets)

    def rules_for(self, identity: str) -> list[MemoryRule]:
        return [r for r in self.rules if r.tag == identity]

    # ── Hooks ────────────────────────────────────────────────────────
    async def _initialize(self) -> None:
        self.rules.clear()
        self.base_policy = [
            "accept loopback",
            "accept established,related",
            "accept dns udp/53",
            "accept dns tcp/53",
            *[f"accept portal tcp/{port}" for port in self.portal_ports],
            "drop",
        ]

    async def _grant(self, identity: str, address: str | None) -> None:
        wanted = [MemoryRule("mac", identity, identity)]
        if address:
            wanted.append(MemoryRule("ip", address, identity))
        for rule in wanted:
            if rule not in self.rules:
                self.rules.insert(0, rule)

    async def _revoke(self, identity: str, address: str | None) -> None:
        def matches(rule: MemoryRule) -> bool:
            if rule.tag != identity:
                return False
            if rule.kind == "mac":
                return True
            return address is None or rule.value == address

        self.rules = [r for r in self.rules if not matches(r)]

    async def _list_grants(self) -> list[Grant]:
        grants: dict[str, list[str]] = {}
        for rule in self.rules:
            addresses = grants.setdefault(rule.tag, [])
            if rule.kind == "ip":
                addresses.append(rule.value)
        result: list[Grant] = []
        for identity, addresses in grants.items():
            if addresses:
                result.extend(Grant(identity, address) for address in addresses)
            else:
                result.append(Grant(identity, None))
        return result

    async def _query_usage(self, address: str) -> UsageCounters:
        return self.traffic.get(address, UsageCounters())
