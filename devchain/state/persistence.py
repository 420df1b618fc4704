"""
devchain.state.persistence — durable devnet snapshots on the filesystem.

Format
------
    b"DVCS" || u8(version) || canonical_cbor({
        "sequence": int, "timestamp": float,
        "accounts": {...}, "instances": {...}, "codes": {...}
    })

Canonical CBOR keeps the encoding byte-stable, so
``decode_snapshot(encode_snapshot(s)) == s`` and re-encoding is idempotent.

Layout
------
    <state_dir>/snapshots/snapshot-<sequence:012d>.cbor
    <state_dir>/snapshots/LATEST            (text: the latest sequence)

Writes go to a temp file in the same directory followed by ``os.replace``, so
a crash mid-write never leaves a torn snapshot behind LATEST.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union

import cbor2

from devchain.errors import PersistenceError
from devchain.hashing import canonical_cbor
from devchain.logging import get_logger
from devchain.state.accounts import Account
from devchain.state.contracts import ContractCode, ContractInstance
from devchain.state.snapshots import LedgerSnapshot

log = get_logger(__name__)

MAGIC = b"DVCS"
VERSION = 1
_LATEST = "LATEST"


# ------------------------------- codec ---------------------------------------


def encode_snapshot(snapshot: LedgerSnapshot) -> bytes:
    body = {"sequence": snapshot.sequence, "timestamp": float(snapshot.timestamp), **snapshot.tables()}
    return MAGIC + bytes([VERSION]) + canonical_cbor(body)


def decode_snapshot(data: bytes) -> LedgerSnapshot:
    if len(data) < 5 or data[:4] != MAGIC:
        raise PersistenceError("not a devchain snapshot (bad magic)")
    if data[4] != VERSION:
        raise PersistenceError(f"unsupported snapshot version {data[4]}")
    try:
        body = cbor2.loads(data[5:])
        return LedgerSnapshot(
            sequence=int(body["sequence"]),
            timestamp=float(body["timestamp"]),
            accounts={h: Account.from_dict(a) for h, a in body["accounts"].items()},
            instances={i: ContractInstance.from_dict(x) for i, x in body["instances"].items()},
            codes={c: ContractCode.from_dict(x) for c, x in body["codes"].items()},
        )
    except (cbor2.CBORDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise PersistenceError(f"corrupt snapshot: {e}") from e


# ------------------------------- store ---------------------------------------


class SnapshotStore:
    """Snapshot files keyed by ledger sequence, plus a LATEST pointer."""

    def __init__(self, state_dir: Union[str, Path]) -> None:
        self.state_dir = Path(state_dir).expanduser()
        self.root = self.state_dir / "snapshots"

    def path_for(self, sequence: int) -> Path:
        return self.root / f"snapshot-{sequence:012d}.cbor"

    def _atomic_write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile("wb", delete=False, dir=path.parent, prefix=".tmp-") as tf:
            tmp_path = Path(tf.name)
            tf.write(data)
            tf.flush()
            os.fsync(tf.fileno())
        try:
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def save(self, snapshot: LedgerSnapshot) -> Path:
        path = self.path_for(snapshot.sequence)
        try:
            self._atomic_write(path, encode_snapshot(snapshot))
            self._atomic_write(self.root / _LATEST, f"{snapshot.sequence}\n".encode("ascii"))
        except OSError as e:
            raise PersistenceError(f"failed to write snapshot: {e}", path=str(path)) from e
        log.info("persistence.saved", ledger_sequence=snapshot.sequence, path=str(path))
        return path

    def sequences(self) -> List[int]:
        if not self.root.is_dir():
            return []
        out = []
        for p in self.root.glob("snapshot-*.cbor"):
            try:
                out.append(int(p.stem.split("-", 1)[1]))
            except ValueError:
                continue
        return sorted(out)

    def latest_sequence(self) -> Optional[int]:
        pointer = self.root / _LATEST
        if pointer.is_file():
            try:
                return int(pointer.read_text("ascii").strip())
            except ValueError as e:
                raise PersistenceError("corrupt LATEST pointer", path=str(pointer)) from e
        seqs = self.sequences()
        return seqs[-1] if seqs else None

    def load(self, sequence: int) -> LedgerSnapshot:
        path = self.path_for(sequence)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PersistenceError(f"failed to read snapshot: {e}", path=str(path)) from e
        snap = decode_snapshot(data)
        if snap.sequence != sequence:
            raise PersistenceError("snapshot sequence does not match file name", path=str(path))
        return snap

    def load_latest(self) -> Optional[LedgerSnapshot]:
        seq = self.latest_sequence()
        return None if seq is None else self.load(seq)

    def prune(self, keep: int) -> int:
        """Delete all but the newest ``keep`` snapshot files. Returns count removed."""
        seqs = self.sequences()
        doomed = seqs[:-keep] if keep > 0 else seqs
        for s in doomed:
            self.path_for(s).unlink(missing_ok=True)
        return len(doomed)

    def wipe(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
            log.info("persistence.wiped", path=str(self.root))


__all__ = ["encode_snapshot", "decode_snapshot", "SnapshotStore", "MAGIC", "VERSION"]
