"""Canonical payload serialization and integrity digests."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

CHECKSUM_PREFIX = "sha256:"


def canonical_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload to the exact bytes the checksum covers.

    JSON with sorted keys, compact separators and UTF-8 text, so the same
    payload always yields the same bytes regardless of key insertion order.
    """
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def digest_bytes(data: bytes) -> str:
    """Return the prefixed SHA-256 digest of ``data``."""
    return CHECKSUM_PREFIX + hashlib.sha256(data).hexdigest()


def compute_checksum(payload: Mapping[str, Any]) -> str:
    """Return the checksum of ``payload`` in its canonical serialization."""
    return digest_bytes(canonical_payload(payload))


def payload_size(payload: Mapping[str, Any]) -> int:
    """Return the byte length of the canonical serialization."""
    return len(canonical_payload(payload))


def legacy_checksum(text: str) -> str:
    """Return the 32-bit rolling hash used by backups from older installations.

    Hashes UTF-16 code units of ``text`` with ``h = h * 31 + unit`` in signed
    32-bit arithmetic and renders ``abs(h)`` in hex.
    """
    if not text:
        return "0"
    encoded = text.encode("utf-16-le")
    value = 0
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x")


def _legacy_payload_text(payload: Mapping[str, Any]) -> str:
    # Older installations hashed the payload in key insertion order.
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def recompute_checksum(payload: Mapping[str, Any], stored: str) -> str:
    """Recompute a checksum with the same scheme as ``stored``."""
    if stored.startswith(CHECKSUM_PREFIX) or not stored:
        return compute_checksum(payload)
    return legacy_checksum(_legacy_payload_text(payload))


def verify_checksum(payload: Mapping[str, Any], stored: str) -> bool:
    """Return True when ``stored`` matches the payload; empty checksums never match."""
    if not stored:
        return False
    return recompute_checksum(payload, stored) == stored
