"""
SQLite-backed store for deployment receipts and verification records.

- One connection per thread (thread-local), opened lazily.
- Sane PRAGMAs for a small local database (WAL, busy_timeout).
- Schema from the bundled ``storage/schema.sql``, applied idempotently on open.
- Insert-only: re-inserting a record with the same id and identical body is a
  no-op; the same id with a different body raises PersistenceError.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from importlib.resources import files as pkg_files
from pathlib import Path
from typing import Iterator, List, Optional, Union

from devchain.errors import PersistenceError
from devchain.hashing import canonical_json
from devchain.logging import get_logger
from devchain.models.records import DeployReceipt, VerificationRecord

log = get_logger(__name__)

SCHEMA_VERSION = "1"


def _schema_sql_text() -> str:
    return pkg_files("devchain.storage").joinpath("schema.sql").read_text(encoding="utf-8")


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA busy_timeout=5000;")


class RecordStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        self._tlocal = threading.local()
        self._opened: List[sqlite3.Connection] = []
        self._opened_lock = threading.Lock()
        self._migrate()

    # --------------------------------------------------------- connections

    def _open_connection(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.path.as_posix(),
                check_same_thread=False,
                isolation_level=None,  # autocommit; explicit transactions via transaction()
            )
            _configure_connection(conn)
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"cannot open record store: {e}", path=str(self.path)) from e
        with self._opened_lock:
            self._opened.append(conn)
        return conn

    def db(self) -> sqlite3.Connection:
        """The current thread's connection, opening it if needed."""
        conn: Optional[sqlite3.Connection] = getattr(self._tlocal, "conn", None)
        if conn is None:
            conn = self._open_connection()
            self._tlocal.conn = conn
        return conn

    def close(self) -> None:
        with self._opened_lock:
            conns, self._opened = self._opened, []
        for conn in conns:
            conn.close()
        self._tlocal = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commits on success, rolls back on exception."""
        db = self.db()
        try:
            db.execute("BEGIN IMMEDIATE;")
            yield db
            db.execute("COMMIT;")
        except Exception:
            try:
                db.execute("ROLLBACK;")
            finally:
                raise

    def _migrate(self) -> None:
        try:
            db = self.db()
            db.executescript(_schema_sql_text())
            db.execute("INSERT OR REPLACE INTO meta_kv(key, value) VALUES('schema_version', ?);", (SCHEMA_VERSION,))
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot apply record schema: {e}", path=str(self.path)) from e

    # ------------------------------------------------------------- inserts

    def _insert(self, table: str, key_col: str, key: str, row: dict, body: str) -> bool:
        """Insert once. Returns True if a new row was written."""
        cols = [key_col, *row.keys(), "body"]
        sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        try:
            with self.transaction() as db:
                existing = db.execute(f"SELECT body FROM {table} WHERE {key_col} = ?", (key,)).fetchone()
                if existing is not None:
                    if existing["body"] != body:
                        raise PersistenceError(f"{table} {key} already stored with different content", path=str(self.path))
                    return False
                db.execute(sql, (key, *row.values(), body))
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot write {table}: {e}", path=str(self.path)) from e
        return True

    @staticmethod
    def _body(model: Union[DeployReceipt, VerificationRecord]) -> str:
        return canonical_json(model.model_dump(mode="json")).decode("utf-8")

    def save_receipt(self, receipt: DeployReceipt) -> bool:
        fresh = self._insert(
            "deploy_receipts",
            "receipt_id",
            receipt.receipt_id,
            {
                "contract_id": receipt.contract_id,
                "code_hash": receipt.code_hash,
                "network": receipt.network,
                "deployer": receipt.deployer,
                "created_at": receipt.timestamp,
            },
            self._body(receipt),
        )
        if fresh:
            log.info("records.receipt_saved", receipt_id=receipt.receipt_id, network=receipt.network)
        return fresh

    def save_verification(self, record: VerificationRecord) -> bool:
        fresh = self._insert(
            "verifications",
            "record_id",
            record.record_id,
            {
                "contract_id": record.contract_id,
                "match": 1 if record.match else 0,
                "network": record.network,
                "created_at": record.timestamp,
            },
            self._body(record),
        )
        if fresh:
            log.info("records.verification_saved", record_id=record.record_id, match=record.match)
        return fresh

    # ------------------------------------------------------------- queries

    def _select(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            return self.db().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"record query failed: {e}", path=str(self.path)) from e

    def get_receipt(self, receipt_id: str) -> Optional[DeployReceipt]:
        rows = self._select("SELECT body FROM deploy_receipts WHERE receipt_id = ?", (receipt_id,))
        return DeployReceipt.model_validate_json(rows[0]["body"]) if rows else None

    def list_receipts(self, *, contract_id: Optional[str] = None, network: Optional[str] = None) -> List[DeployReceipt]:
        where, params = [], []
        if contract_id is not None:
            where.append("contract_id = ?")
            params.append(contract_id)
        if network is not None:
            where.append("network = ?")
            params.append(network)
        sql = "SELECT body FROM deploy_receipts"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at, receipt_id"
        return [DeployReceipt.model_validate_json(r["body"]) for r in self._select(sql, tuple(params))]

    def get_verification(self, record_id: str) -> Optional[VerificationRecord]:
        rows = self._select("SELECT body FROM verifications WHERE record_id = ?", (record_id,))
        return VerificationRecord.model_validate_json(rows[0]["body"]) if rows else None

    def list_verifications(self, *, contract_id: Optional[str] = None) -> List[VerificationRecord]:
        if contract_id is None:
            rows = self._select("SELECT body FROM verifications ORDER BY created_at, record_id", ())
        else:
            rows = self._select(
                "SELECT body FROM verifications WHERE contract_id = ? ORDER BY created_at, record_id",
                (contract_id,),
            )
        return [VerificationRecord.model_validate_json(r["body"]) for r in rows]


__all__ = ["RecordStore", "SCHEMA_VERSION"]
