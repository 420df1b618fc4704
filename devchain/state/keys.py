"""
devchain.state.keys — deterministic Ed25519 identities for devnet accounts.

Test identities must be reproducible across resets and machines, so the
private key for a handle is derived from ``(devnet_seed, handle)`` rather than
generated randomly:

    sk = Ed25519(sha3_256("devchain/key/v1" || seed || 0x00 || handle))

Keys are never persisted; they are recomputed on demand. Public keys and
signatures travel as 0x-prefixed hex.
"""

from __future__ import annotations

import hashlib
from typing import Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

_DOMAIN = b"devchain/key/v1"


def _hex(b: bytes) -> str:
    return "0x" + b.hex()


def _unhex(s: str) -> bytes:
    return bytes.fromhex(s[2:] if s.startswith(("0x", "0X")) else s)


class Keyring:
    """Derives, caches and uses per-handle Ed25519 keys."""

    def __init__(self, seed: str) -> None:
        self._seed = seed.encode("utf-8")
        self._cache: Dict[str, Ed25519PrivateKey] = {}

    def _private_key(self, handle: str) -> Ed25519PrivateKey:
        sk = self._cache.get(handle)
        if sk is None:
            material = hashlib.sha3_256(_DOMAIN + self._seed + b"\x00" + handle.encode("utf-8")).digest()
            sk = Ed25519PrivateKey.from_private_bytes(material)
            self._cache[handle] = sk
        return sk

    def public_key(self, handle: str) -> str:
        pk = self._private_key(handle).public_key()
        raw = pk.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return _hex(raw)

    def sign(self, handle: str, payload: bytes) -> str:
        return _hex(self._private_key(handle).sign(payload))

    @staticmethod
    def verify(public_key: str, payload: bytes, signature: str) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(_unhex(public_key)).verify(_unhex(signature), payload)
        except (InvalidSignature, ValueError):
            return False
        return True


__all__ = ["Keyring"]
