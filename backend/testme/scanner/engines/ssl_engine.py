# testme/scanner/engines/ssl_engine.py
"""
SSL/TLS data collection engine.

Uses Python's built-in ssl and socket modules to connect to the HTTPS port
and extract certificate and protocol information.

The certificate is first checked with a verifying handshake against the
system trust store. If verification fails, OpenSSL's verify code says why
(expired, self-signed, hostname mismatch, unknown issuer) and a second,
unverified handshake still collects protocol and cipher.

Output of inspect():
    {
        "host": "example.com",
        "port": 443,
        "verified": true,
        "verify_error": null,
        "verify_code": null,
        "subject": {"CN": "example.com"},
        "issuer": {"CN": "R3", "O": "Let's Encrypt"},
        "sans": ["example.com", "www.example.com"],
        "not_after": "2025-04-01T00:00:00+00:00",
        "days_until_expiry": 52,
        "is_expired": false,
        "is_self_signed": false,
        "hostname_match": true,
        "protocol_version": "TLSv1.3",
        "cipher": ["TLS_AES_256_GCM_SHA384", "TLSv1.3", 256]
    }

Connection failures (refused, timeout, handshake errors other than
certificate verification) are raised unchanged; they are probe errors.
"""

from __future__ import annotations

import logging
import socket
import ssl
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# OpenSSL X509_V_ERR_* codes we classify
X509_CERT_HAS_EXPIRED = 10
X509_DEPTH_ZERO_SELF_SIGNED = 18
X509_SELF_SIGNED_IN_CHAIN = 19
X509_HOSTNAME_MISMATCH = 62

TLS_VERSIONS = {
    "TLSv1.0": ssl.TLSVersion.TLSv1,
    "TLSv1.1": ssl.TLSVersion.TLSv1_1,
    "TLSv1.2": ssl.TLSVersion.TLSv1_2,
    "TLSv1.3": ssl.TLSVersion.TLSv1_3,
}

LEGACY_TLS_VERSIONS = ("TLSv1.0", "TLSv1.1")


class TlsInspector:

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    def inspect(self, host: str, port: int = 443) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "host": host,
            "port": port,
            "verified": False,
            "verify_error": None,
            "verify_code": None,
        }

        context = ssl.create_default_context()
        try:
            with socket.create_connection((host, port), timeout=self.timeout) as sock:
                with context.wrap_socket(sock, server_hostname=host) as ssock:
                    info.update(self._build_cert_info(ssock.getpeercert() or {}))
                    info["protocol_version"] = ssock.version()
                    info["cipher"] = list(ssock.cipher() or ()) or None
                    info["verified"] = True
                    info["hostname_match"] = True
                    info["is_self_signed"] = False
        except ssl.SSLCertVerificationError as e:
            code = getattr(e, "verify_code", None)
            info["verify_code"] = code
            info["verify_error"] = getattr(e, "verify_message", None) or str(e)
            info["is_expired"] = code == X509_CERT_HAS_EXPIRED
            info["is_self_signed"] = code in (X509_DEPTH_ZERO_SELF_SIGNED, X509_SELF_SIGNED_IN_CHAIN)
            info["hostname_match"] = code != X509_HOSTNAME_MISMATCH
            info.update(self._unverified_handshake(host, port))

        return info

    def probe_protocols(
        self,
        host: str,
        port: int = 443,
        versions: Sequence[str] = tuple(TLS_VERSIONS),
    ) -> Dict[str, bool]:
        """
        Probe which TLS protocol versions the server accepts.
        Tries a handshake pinned to each version individually.
        """
        return {
            name: self._test_protocol_version(host, port, TLS_VERSIONS[name])
            for name in versions
            if name in TLS_VERSIONS
        }

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _unverified_handshake(self, host: str, port: int) -> Dict[str, Any]:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                return {
                    "protocol_version": ssock.version(),
                    "cipher": list(ssock.cipher() or ()) or None,
                }

    def _test_protocol_version(self, host: str, port: int, version: ssl.TLSVersion) -> bool:
        try:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            if version in (ssl.TLSVersion.TLSv1, ssl.TLSVersion.TLSv1_1):
                # legacy suites are disabled at the default security level
                context.set_ciphers("ALL:@SECLEVEL=0")
            context.minimum_version = version
            context.maximum_version = version

            with socket.create_connection((host, port), timeout=self.timeout) as sock:
                with context.wrap_socket(sock, server_hostname=host):
                    return True
        except (ssl.SSLError, OSError, ValueError):
            return False

    def _build_cert_info(self, cert_dict: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        info: Dict[str, Any] = {
            "subject": self._flatten_cert_field(cert_dict.get("subject", ())),
            "issuer": self._flatten_cert_field(cert_dict.get("issuer", ())),
            "sans": [v for t, v in cert_dict.get("subjectAltName", ()) if t.lower() == "dns"],
        }

        not_after = self._parse_cert_date(cert_dict.get("notAfter"))
        info["not_after"] = not_after.isoformat() if not_after else None
        if not_after:
            info["is_expired"] = now > not_after
            info["days_until_expiry"] = (not_after - now).days
        else:
            info["is_expired"] = None
            info["days_until_expiry"] = None
        return info

    def _flatten_cert_field(self, field_tuple: tuple) -> Dict[str, str]:
        """((('commonName', 'example.com'),),) → {"CN": "example.com"}"""
        short = {
            "commonName": "CN",
            "organizationName": "O",
            "organizationalUnitName": "OU",
            "countryName": "C",
        }
        result: Dict[str, str] = {}
        for rdn in field_tuple:
            for key, val in rdn:
                result[short.get(key, key)] = val
        return result

    def _parse_cert_date(self, date_str: Optional[str]) -> Optional[datetime]:
        """ssl module dates look like "Jan  5 00:00:00 2025 GMT"."""
        if not date_str:
            return None
        try:
            return datetime.fromtimestamp(ssl.cert_time_to_seconds(date_str), tz=timezone.utc)
        except ValueError:
            return None


def legacy_versions_accepted(protocols: Dict[str, bool]) -> List[str]:
    return [v for v in LEGACY_TLS_VERSIONS if protocols.get(v)]
