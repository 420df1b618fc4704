"""
hashing.py
----------

Stable cryptographic identifiers used across devchain.

- `sha3_hex(data) -> str`
    0x-prefixed SHA3-256 of raw bytes. Contract code hashes, instance ids,
    transaction hashes and state roots are all of this shape.

- `canonical_json(obj) -> bytes` / `json_hash(obj) -> str`
    Canonical JSON (sorted keys, no whitespace) and its SHA3-256. Used for
    signed receipt payloads and record ids.

- `canonical_cbor(obj) -> bytes` / `cbor_hash(obj) -> str`
    Canonical CBOR (RFC 8949 deterministic encoding via cbor2) and its
    SHA3-256. Used for transaction hashes and ledger state roots.

- `domain_hash(domain, *parts) -> str`
    Domain-separated SHA3-256 over length-prefixed parts.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Union

import cbor2

HexStr = str
BytesLike = Union[bytes, bytearray, memoryview, HexStr]


def as_bytes(b: BytesLike) -> bytes:
    """Accept raw bytes or a 0x-hex string."""
    if isinstance(b, (bytes, bytearray, memoryview)):
        return bytes(b)
    if isinstance(b, str):
        s = b.strip()
        if s.startswith(("0x", "0X")):
            try:
                return bytes.fromhex(s[2:])
            except ValueError as e:
                raise ValueError("invalid hex string for bytes input") from e
        return s.encode("utf-8")
    raise TypeError(f"unsupported bytes-like type: {type(b)!r}")


def sha3_hex(data: BytesLike) -> str:
    return "0x" + hashlib.sha3_256(as_bytes(data)).hexdigest()


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def json_hash(obj: Any) -> str:
    return sha3_hex(canonical_json(obj))


def canonical_cbor(obj: Any) -> bytes:
    return cbor2.dumps(obj, canonical=True)


def cbor_hash(obj: Any) -> str:
    return sha3_hex(canonical_cbor(obj))


def domain_hash(domain: str, *parts: Union[bytes, str, int]) -> str:
    """
    H(domain || len(p0) || p0 || len(p1) || p1 ...), 0x-prefixed.

    Strings are taken verbatim as UTF-8, ints as 8-byte big-endian. Lengths are
    4-byte big-endian so adjacent parts cannot be re-split.
    """
    h = hashlib.sha3_256()
    h.update(domain.encode("utf-8"))
    for p in parts:
        if isinstance(p, bool) or not isinstance(p, (bytes, str, int)):
            raise TypeError(f"unsupported part type: {type(p)!r}")
        if isinstance(p, int):
            b = p.to_bytes(8, "big", signed=False)
        elif isinstance(p, str):
            b = p.encode("utf-8")
        else:
            b = p
        h.update(len(b).to_bytes(4, "big"))
        h.update(b)
    return "0x" + h.hexdigest()


__all__ = [
    "as_bytes",
    "sha3_hex",
    "canonical_json",
    "json_hash",
    "canonical_cbor",
    "cbor_hash",
    "domain_hash",
]
