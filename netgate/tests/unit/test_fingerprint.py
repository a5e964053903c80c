from __future__ import annotations

import pytest

from netgate.core.addresses import is_mac, normalize_ip, normalize_mac
from netgate.core.errors import ValidationError
from netgate.services.fingerprint import (
    ArpFingerprintResolver,
    ChainedFingerprintResolver,
    ClientHints,
    PseudoFingerprintResolver,
    device_name_from_user_agent,
)

ARP_TABLE = """\
IP address       HW type     Flags       HW address            Mask     Device
10.0.0.7         0x1         0x2         AA:BB:CC:DD:EE:07     *        wlan0
10.0.0.8         0x1         0x0         00:00:00:00:00:00     *        wlan0
"""


@pytest.mark.parametrize(
    ("agent", "expected"),
    [
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "Windows PC"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "iPhone"),
        ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)", "iPad"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "Android Device"),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", "Mac"),
        ("Mozilla/5.0 (X11; Linux x86_64)", "Linux Device"),
        ("curl/8.4.0", "Unknown Device"),
        (None, "Unknown Device"),
    ],
)
def test_device_name_from_user_agent(agent, expected) -> None:
    assert device_name_from_user_agent(agent) == expected


def test_mac_normalization() -> None:
    assert normalize_mac("AA-BB-CC-DD-EE-FF") == "aa:bb:cc:dd:ee:ff"
    assert normalize_mac("aabbccddeeff") == "aa:bb:cc:dd:ee:ff"
    assert normalize_mac(" AA:BB:CC:DD:EE:FF ") == "aa:bb:cc:dd:ee:ff"
    for bad in ("", "aa:bb:cc:dd:ee", "aa:bb-cc:dd:ee:ff", "zz:bb:cc:dd:ee:ff", "-j ACCEPT"):
        assert not is_mac(bad)
    with pytest.raises(ValidationError):
        normalize_mac("--flush")


def test_ip_normalization() -> None:
    assert normalize_ip(" 10.0.0.1 ") == "10.0.0.1"
    assert normalize_ip("2001:DB8::1") == "2001:db8::1"
    with pytest.raises(ValidationError):
        normalize_ip("10.0.0.256")


@pytest.mark.asyncio
async def test_pseudo_identity_is_stable_per_address_and_agent() -> None:
    resolver = PseudoFingerprintResolver()
    first = await resolver.lookup(ClientHints("10.0.0.1", "agent-a"))
    assert first == await resolver.lookup(ClientHints("10.0.0.1", "agent-a"))
    assert first != await resolver.lookup(ClientHints("10.0.0.1", "agent-b"))
    assert first != await resolver.lookup(ClientHints("10.0.0.2", "agent-a"))
    assert is_mac(first)


def _chain(tmp_path, **kwargs) -> ChainedFingerprintResolver:
    table = tmp_path / "arp"
    table.write_text(ARP_TABLE)
    return ChainedFingerprintResolver(ArpFingerprintResolver(str(table)), PseudoFingerprintResolver(), **kwargs)


@pytest.mark.asyncio
async def test_reported_hardware_address_matching_arp_is_used(tmp_path) -> None:
    resolver = _chain(tmp_path)

    fingerprint = await resolver.resolve(ClientHints("10.0.0.7", "agent", hardware_address="AA-BB-CC-DD-EE-07"))

    assert (fingerprint.identity, fingerprint.source) == ("aa:bb:cc:dd:ee:07", "arp")


@pytest.mark.asyncio
async def test_reported_hardware_address_contradicting_arp_is_rejected(tmp_path) -> None:
    resolver = _chain(tmp_path)

    with pytest.raises(ValidationError):
        await resolver.resolve(ClientHints("10.0.0.7", "agent", hardware_address="02-00-00-00-00-09"))


@pytest.mark.asyncio
async def test_unverifiable_hardware_address_is_ignored(tmp_path) -> None:
    resolver = _chain(tmp_path)

    fingerprint = await resolver.resolve(ClientHints("10.0.0.9", "agent", hardware_address="02:00:00:00:00:09"))

    assert fingerprint.source == "pseudo"
    assert fingerprint.identity != "02:00:00:00:00:09"


@pytest.mark.asyncio
async def test_trusted_network_may_report_hardware_address(tmp_path) -> None:
    resolver = _chain(tmp_path, trusted_networks=["10.0.0.0/29"])

    inside = await resolver.resolve(ClientHints("10.0.0.7", "agent", hardware_address="02:00:00:00:00:09"))
    assert (inside.identity, inside.source) == ("02:00:00:00:00:09", "explicit")

    outside = await resolver.resolve(ClientHints("10.0.0.9", "agent", hardware_address="02:00:00:00:00:09"))
    assert outside.source == "pseudo"


@pytest.mark.asyncio
async def test_arp_lookup_then_pseudo_fallback(tmp_path) -> None:
    resolver = _chain(tmp_path)

    from_arp = await resolver.resolve(ClientHints("10.0.0.7", "Mozilla/5.0 (X11; Linux x86_64)"))
    assert (from_arp.identity, from_arp.source) == ("aa:bb:cc:dd:ee:07", "arp")
    assert from_arp.device_name == "Linux Device"

    # Incomplete entry (all-zero MAC) and unknown address both fall through.
    assert (await resolver.resolve(ClientHints("10.0.0.8", "x"))).source == "pseudo"
    assert (await resolver.resolve(ClientHints("10.0.0.9", "x"))).source == "pseudo"


@pytest.mark.asyncio
async def test_unreadable_arp_table_falls_back(tmp_path) -> None:
    resolver = ChainedFingerprintResolver(
        ArpFingerprintResolver(str(tmp_path / "missing")), PseudoFingerprintResolver(),
    )
    assert (await resolver.resolve(ClientHints("10.0.0.7", "x"))).source == "pseudo"


@pytest.mark.asyncio
async def test_invalid_client_address_is_rejected() -> None:
    resolver = ChainedFingerprintResolver(PseudoFingerprintResolver())
    with pytest.raises(ValidationError):
        await resolver.resolve(ClientHints("not-an-ip", "x"))
