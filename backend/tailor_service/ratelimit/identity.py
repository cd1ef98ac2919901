"""
Caller identity helpers: network address resolution, privacy-preserving
fingerprints and rough token estimates.
"""

import math
import hashlib
import logging
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"

# Checked in order; the first non-empty header wins
PROXY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def extract_ip_address(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """
    Best-effort caller address from proxy headers.

    ``x-forwarded-for`` may hold a chain of addresses; the first one is the
    original client. Falls back to the transport peer, then ``"unknown"``.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    for header in PROXY_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        if header == "x-forwarded-for":
            first = value.split(",")[0].strip()
            return first or UNKNOWN_IP
        return value.strip()

    return client_host or UNKNOWN_IP


def hash_ip_address(ip: str, salt: str) -> str:
    """One-way, salted, truncated fingerprint of a network address."""
    if ip == UNKNOWN_IP:
        return UNKNOWN_IP

    digest = hashlib.sha256(f"{ip}{salt}".encode("utf-8")).hexdigest()
    return digest[:16]


def estimate_tokens(text: Optional[str]) -> int:
    """Rule of thumb: roughly four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)
