"""
WireGuard key material.

Keys are Curve25519 (X25519) keys encoded as base64 of the raw 32
bytes, the same format ``wg genkey`` prints. They are generated per
install and never shipped with the code.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

_KEY_LEN = 32


def generate_private_key() -> str:
    """Fresh private key, base64 encoded."""
    raw = X25519PrivateKey.generate().private_bytes(
        encoding=Encoding.Raw,
        format=PrivateFormat.Raw,
        encryption_algorithm=NoEncryption(),
    )
    return base64.b64encode(raw).decode("ascii")


def public_key_for(private_key: str) -> str:
    """Public key matching a base64 private key."""
    raw = _decode(private_key)
    if raw is None:
        raise ValueError("Not a valid WireGuard private key")
    public = X25519PrivateKey.from_private_bytes(raw).public_key()
    return base64.b64encode(
        public.public_bytes(encoding=Encoding.Raw, format=PublicFormat.Raw)
    ).decode("ascii")


def is_valid_key(text: str) -> bool:
    """Whether ``text`` is base64 of exactly 32 bytes."""
    return _decode(text) is not None


def _decode(text: str) -> bytes | None:
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw if len(raw) == _KEY_LEN else None
