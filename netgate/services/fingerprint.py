"""
Device identity resolution.

A ``FingerprintResolver`` turns what we know about a client (address,
user agent, optionally a hardware address the portal page reported)
into a normalized device identity.  Strategies:

- ``ArpFingerprintResolver``: looks the address up in the kernel ARP
  table.  Only works when the client is on a directly attached segment.
- ``PseudoFingerprintResolver``: MD5 of address + user agent, formatted
  as a MAC.  Stable for a given address/browser pair but trivially
  spoofable and it changes when either input changes; it is NOT a
  hardware identity and must not be treated as one.
- ``ChainedFingerprintResolver``: first strategy that yields a value.

A reported hardware address is client-controlled.  It is used only when
the ARP table shows the same address for the caller, or when the caller
sits in one of ``trusted_networks`` (the gateway that forwards it).  A
report contradicting the ARP table is rejected; an unverifiable one is
ignored.
"""

import asyncio
import hashlib
import ipaddress
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from netgate.core.addresses import is_mac, normalize_ip, normalize_mac
from netgate.core.config import Settings
from netgate.core.errors import ValidationError

logger = logging.getLogger(__name__)

_DEVICE_NAMES = (
    ("Windows", "Windows PC"),
    ("iPhone", "iPhone"),
    ("iPad", "iPad"),
    ("Android", "Android Device"),
    ("Mac", "Mac"),
    ("Linux", "Linux Device"),
)


@dataclass(frozen=True)
class ClientHints:
    address: str
    user_agent: str = ""
    hardware_address: str | None = None


@dataclass(frozen=True)
class DeviceFingerprint:
    identity: str
    address: str
    device_name: str
    user_agent: str | None
    source: str  # "explicit" | "arp" | "pseudo"


def device_name_from_user_agent(user_agent: str | None) -> str:
    # iPhone/iPad agents also mention "Mac OS X"; check them first.
    agent = user_agent or ""
    for needle, name in _DEVICE_NAMES:
        if needle in agent:
            return name
    return "Unknown Device"


class FingerprintResolver(Protocol):
    source: str

    async def lookup(self, hints: ClientHints) -> str | None: ...


class ArpFingerprintResolver:
    source = "arp"

    def __init__(self, table_path: str = "/proc/net/arp") -> None:
        self.table_path = Path(table_path)

    async def lookup(self, hints: ClientHints) -> str | None:
        try:
            text = await asyncio.to_thread(self.table_path.read_text)
        except OSError:
            logger.debug("ARP table %s unreadable", self.table_path)
            return None
        # IP address  HW type  Flags  HW address  Mask  Device
        for line in text.splitlines()[1:]:
            parts = line.split()
            if len(parts) >= 4 and parts[0] == hints.address and is_mac(parts[3]):
                mac = normalize_mac(parts[3])
                if mac != "00:00:00:00:00:00":
                    return mac
        return None


class PseudoFingerprintResolver:
    source = "pseudo"

    async def lookup(self, hints: ClientHints) -> str | None:
        digest = hashlib.md5((hints.address + hints.user_agent).encode("utf-8")).hexdigest()
        return ":".join(digest[i:i + 2] for i in range(0, 12, 2))


class ChainedFingerprintResolver:
    def __init__(self, *resolvers: FingerprintResolver, trusted_networks: Iterable[str] = ()) -> None:
        self.resolvers = resolvers
        self.trusted_networks = tuple(ipaddress.ip_network(net, strict=False) for net in trusted_networks)

    def _trusted(self, address: str) -> bool:
        ip = ipaddress.ip_address(address)
        return any(ip in network for network in self.trusted_networks)

    async def resolve(self, hints: ClientHints) -> DeviceFingerprint:
        address = normalize_ip(hints.address)
        hints = ClientHints(address, hints.user_agent or "", hints.hardware_address)
        name = device_name_from_user_agent(hints.user_agent)
        agent = hints.user_agent or None

        reported = normalize_mac(hints.hardware_address) if hints.hardware_address else None
        if reported and self._trusted(address):
            return DeviceFingerprint(reported, address, name, agent, "explicit")

        for resolver in self.resolvers:
            identity = await resolver.lookup(hints)
            if not identity:
                continue
            if reported and resolver.source == "arp" and identity != reported:
                logger.warning(
                    "Reported hardware address %s for %s contradicts ARP entry %s", reported, address, identity,
                )
                raise ValidationError("Reported hardware address does not match this client", field="mac_address")
            if reported and resolver.source != "arp":
                logger.warning("Ignoring unverified hardware address %s from %s", reported, address)
            return DeviceFingerprint(identity, address, name, agent, resolver.source)

        # The pseudo strategy never returns None; this only triggers on
        # a chain built without it.
        pseudo = PseudoFingerprintResolver()
        return DeviceFingerprint(await pseudo.lookup(hints), address, name, agent, pseudo.source)


def build_fingerprint_resolver(settings: Settings) -> ChainedFingerprintResolver:
    trusted = settings.TRUSTED_HARDWARE_NETWORKS
    if settings.FINGERPRINT_STRATEGY == "pseudo":
        return ChainedFingerprintResolver(PseudoFingerprintResolver(), trusted_networks=trusted)
    return ChainedFingerprintResolver(
        ArpFingerprintResolver(settings.ARP_TABLE_PATH),
        PseudoFingerprintResolver(),
        trusted_networks=trusted,
    )
