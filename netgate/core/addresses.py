"""
Hardware / network address normalization.

Everything that reaches the firewall goes through these helpers, so a
rule key is always ``aa:bb:cc:dd:ee:ff`` / a canonical IP string and
never something that could be read as a command-line flag.
"""

import ipaddress
import re

from netgate.core.errors import ValidationError

_MAC_RE = re.compile(r"^([0-9a-f]{2})([:-]?)([0-9a-f]{2})(\2[0-9a-f]{2}){4}$")


def normalize_mac(value: str) -> str:
    """Return ``aa:bb:cc:dd:ee:ff``; accepts ``:``/``-`` separated or bare hex."""
    candidate = (value or "").strip().lower()
    if not _MAC_RE.match(candidate):
        raise ValidationError("Invalid MAC address format", field="mac_address")
    digits = re.sub(r"[^0-9a-f]", "", candidate)
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def is_mac(value: str | None) -> bool:
    try:
        normalize_mac(value or "")
    except ValidationError:
        return False
    return True


def normalize_ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address((value or "").strip()))
    except ValueError:
        raise ValidationError("Invalid IP address", field="ip_address")
