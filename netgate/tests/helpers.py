from __future__ import annotations

from netgate.core.errors import FirewallCommandFailed
from netgate.firewall.memory import InMemoryFirewall
from netgate.services.fingerprint import ClientHints

PASSWORD = "correct-horse-battery"
WINDOWS_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"


class FlakyFirewall(InMemoryFirewall):
    """In-memory backend with per-identity failure injection."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_grant_for: set[str] = set()
        self.fail_revoke_for: set[str] = set()
        self.fail_all_grants = False

    async def _grant(self, identity: str, address: str | None) -> None:
        if self.fail_all_grants or identity in self.fail_grant_for:
            raise FirewallCommandFailed(f"injected grant failure for {identity}", returncode=4)
        await super()._grant(identity, address)

    async def _revoke(self, identity: str, address: str | None) -> None:
        if identity in self.fail_revoke_for:
            raise FirewallCommandFailed(f"injected revoke failure for {identity}", returncode=4)
        await super()._revoke(identity, address)


def device_hints(n: int, user_agent: str = WINDOWS_UA) -> ClientHints:
    # One distinct hardware address / IP per test device.
    return ClientHints(
        address=f"10.0.0.{n}",
        user_agent=user_agent,
        hardware_address=f"02:00:00:00:00:{n:02x}",
    )


def mac_of(n: int) -> str:
    return f"02:00:00:00:00:{n:02x}"


ARP_HEADER = "IP address       HW type     Flags       HW address            Mask     Device\n"


def write_arp_table(path, entries: dict[str, str], *, append: bool = False) -> None:
    """Write ``/proc/net/arp``-formatted lines for ``{address: mac}``."""
    lines = "".join(
        f"{address:<16} 0x1         0x2         {mac:<21} *        wlan0\n" for address, mac in entries.items()
    )
    if append:
        with open(path, "a") as handle:
            handle.write(lines)
    else:
        with open(path, "w") as handle:
            handle.write(ARP_HEADER + lines)
