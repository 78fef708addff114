# testme/utils/domain.py
"""
Domain normalization and validation.

Domain names come straight from user input and later end up in outbound
requests (verification probes, scan checks), so validation also blocks
local and private targets.
"""

from __future__ import annotations

import ipaddress
import re
import secrets

from testme.errors import InputError

DOMAIN_RE = re.compile(r"^([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$", re.IGNORECASE)

MAX_DOMAIN_LENGTH = 253

# Hostnames that resolve locally or are reserved for internal use
BLOCKED_HOSTNAMES = ("localhost",)
BLOCKED_SUFFIXES = (".localhost", ".local", ".internal", ".lan", ".home.arpa", ".localdomain")

# Networks that should never be scanned
BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),         # "This" network
    ipaddress.ip_network("10.0.0.0/8"),         # Private (RFC 1918)
    ipaddress.ip_network("100.64.0.0/10"),      # Carrier-grade NAT
    ipaddress.ip_network("127.0.0.0/8"),        # Loopback
    ipaddress.ip_network("169.254.0.0/16"),     # Link-local / cloud metadata
    ipaddress.ip_network("172.16.0.0/12"),      # Private (RFC 1918)
    ipaddress.ip_network("192.168.0.0/16"),     # Private (RFC 1918)
    ipaddress.ip_network("224.0.0.0/4"),        # Multicast
    ipaddress.ip_network("240.0.0.0/4"),        # Reserved
    ipaddress.ip_network("::1/128"),            # Loopback
    ipaddress.ip_network("fc00::/7"),           # Unique local
    ipaddress.ip_network("fe80::/10"),          # Link-local
]

TOKEN_PREFIX = "testme-verify-"


def normalize_domain(raw: str) -> str:
    """
    Reduce user input to a bare hostname.

        "HTTPS://Sub.Example.com:8443/path?q=1" → "sub.example.com"
    """
    d = (raw or "").strip().lower()
    d = re.sub(r"^[a-z][a-z0-9+.-]*://", "", d)
    # drop path, query and fragment
    d = re.split(r"[/?#]", d, maxsplit=1)[0]
    # drop credentials
    if "@" in d:
        d = d.rsplit("@", 1)[1]
    # drop port
    d = d.split(":", 1)[0]
    return d.rstrip(".")


def _is_private_ip(value: str) -> bool:
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return False
    return any(addr in network for network in BLOCKED_NETWORKS)


def validate_domain(name: str) -> None:
    """Raise InputError if a normalized domain is unusable as a scan target."""
    if not name:
        raise InputError("Domain must not be empty.")

    if len(name) > MAX_DOMAIN_LENGTH:
        raise InputError(f"Domain is too long (max. {MAX_DOMAIN_LENGTH} characters).")

    if name in BLOCKED_HOSTNAMES or name.endswith(BLOCKED_SUFFIXES):
        raise InputError("Local hostnames are not allowed.")

    if _is_private_ip(name):
        raise InputError("Local/private IP addresses are not allowed.")

    if not DOMAIN_RE.match(name):
        raise InputError("Invalid domain format.")


def clean_domain(raw: str) -> str:
    """Normalize and validate in one go. Returns the normalized name."""
    name = normalize_domain(raw)
    validate_domain(name)
    return name


def generate_verification_token() -> str:
    return TOKEN_PREFIX + secrets.token_hex(24)
