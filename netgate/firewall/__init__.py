"""
Firewall package — driver contract plus the concrete backends.

``build_firewall`` picks the backend named by ``FIREWALL_BACKEND``.
"""

from netgate.core.config import Settings
from netgate.firewall.base import BulkRevokeReport, FirewallDriver, Grant, UsageCounters
from netgate.firewall.iptables import IptablesFirewall
from netgate.firewall.memory import InMemoryFirewall


def build_firewall(settings: Settings) -> FirewallDriver:
    if settings.FIREWALL_BACKEND == "memory":
        return InMemoryFirewall(
            timeout=settings.FIREWALL_TIMEOUT_SECONDS,
            portal_ports=settings.PORTAL_PORTS,
        )
    return IptablesFirewall(
        binary=settings.IPTABLES_PATH,
        chain=settings.FIREWALL_CHAIN,
        parent_chain=settings.FIREWALL_PARENT_CHAIN,
        portal_ports=settings.PORTAL_PORTS,
        timeout=settings.FIREWALL_TIMEOUT_SECONDS,
    )


__all__ = [
    "BulkRevokeReport",
    "FirewallDriver",
    "Grant",
    "InMemoryFirewall",
    "IptablesFirewall",
    "UsageCounters",
    "build_firewall",
]
