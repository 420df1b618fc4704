"""
Remote RPC collaborators for deployment and verification.

This adapter is intentionally small. It provides:
- the ``RemoteRpc`` protocol the pipelines depend on:
  * submit(envelope) -> submission id
  * get_submission(submission_id) -> status dict | None
  * get_code_hash(contract_id) -> 0x code hash | None
  * get_sequence(account) -> int
- ``HttpNodeRpc``: a JSON-RPC 2.0 client over HTTP(S) using httpx
- ``LocalNodeRpc``: the same surface served by an in-process devnet, so the
  remote code path can be exercised end to end without a network

Error mapping
-------------
* httpx timeouts                   -> devchain.errors.Timeout         (transient)
* connection/transport failures    -> TransientRpcError               (transient)
* HTTP 429/502/503/504             -> TransientRpcError               (transient)
* JSON-RPC error objects, other
  non-200 statuses                 -> RpcRejected                     (semantic)

Single calls never retry here; retry policy belongs to the caller, which
knows whether the operation is safe to repeat.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import httpx

from devchain.errors import RpcRejected, Timeout, TransientRpcError
from devchain.hashing import as_bytes, canonical_json
from devchain.logging import get_logger
from devchain.state.keys import Keyring
from devchain.types.tx import Transaction

if TYPE_CHECKING:  # pragma: no cover
    from devchain.network.controller import DevnetController

log = get_logger(__name__)

HexStr = str

# JSON-RPC error codes used by devchain nodes
RPC_INVALID_PARAMS = -32602
RPC_NOT_FOUND = -32004
RPC_INSUFFICIENT_BALANCE = -32010
RPC_SEQUENCE_MISMATCH = -32011
RPC_REJECTED = -32000

_ERROR_CODES = {
    "INSUFFICIENT_BALANCE": RPC_INSUFFICIENT_BALANCE,
    "SEQUENCE_MISMATCH": RPC_SEQUENCE_MISMATCH,
    "UNKNOWN_ACCOUNT": RPC_NOT_FOUND,
}

_TRANSIENT_STATUSES = (429, 502, 503, 504)


class RemoteRpc(Protocol):
    def submit(self, envelope: Dict[str, Any]) -> str: ...

    def get_submission(self, submission_id: str) -> Optional[Dict[str, Any]]: ...

    def get_code_hash(self, contract_id: str) -> Optional[str]: ...

    def get_sequence(self, account: str) -> int: ...

    def close(self) -> None: ...


def envelope_signing_bytes(envelope: Dict[str, Any]) -> bytes:
    """Canonical JSON of the envelope without its signature."""
    return canonical_json({k: v for k, v in envelope.items() if k != "signature"})


def _build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    hdrs = {
        "content-type": "application/json",
        "accept": "application/json",
    }
    if extra:
        hdrs.update(extra)
    return hdrs


# ----------------------------- HTTP client -----------------------------------


class HttpNodeRpc:
    """
    Minimal synchronous JSON-RPC client.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
        path: str = "/rpc",
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._path = path
        self._id = 0
        self._id_lock = threading.Lock()
        self._client = httpx.Client(
            base_url=url,
            timeout=timeout_s,
            headers=_build_headers(headers),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpNodeRpc":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- core transport ----------

    def _next_id(self) -> int:
        with self._id_lock:
            self._id += 1
            return self._id

    def _call(self, method: str, params: Any = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params or []}
        try:
            resp = self._client.post(self._path, json=payload)
        except httpx.TimeoutException as e:
            raise Timeout(f"rpc {method}", timeout_s=self.timeout_s) from e
        except httpx.TransportError as e:
            raise TransientRpcError(f"rpc {method} failed: {e}", data={"method": method}) from e

        status = resp.status_code
        if status in _TRANSIENT_STATUSES:
            raise TransientRpcError(f"rpc {method}: HTTP {status}", data={"method": method, "status": status})
        if status != 200:
            raise RpcRejected(status, f"HTTP {status}: {resp.text[:256]}", data={"method": method})
        try:
            data = resp.json()
        except ValueError as e:
            raise RpcRejected(-32700, "malformed JSON-RPC response", data={"method": method}) from e
        err = data.get("error") if isinstance(data, dict) else None
        if err:
            raise RpcRejected(int(err.get("code", RPC_REJECTED)), str(err.get("message", "unknown error")), data=err.get("data"))
        return data.get("result") if isinstance(data, dict) else None

    # ---------- typed methods ----------

    def submit(self, envelope: Dict[str, Any]) -> str:
        return str(self._call("devchain.submit", [envelope]))

    def get_submission(self, submission_id: str) -> Optional[Dict[str, Any]]:
        return self._call("devchain.getSubmission", [submission_id])

    def get_code_hash(self, contract_id: str) -> Optional[str]:
        result = self._call("devchain.getCodeHash", [contract_id])
        return None if result is None else str(result).lower()

    def get_sequence(self, account: str) -> int:
        return int(self._call("devchain.getSequence", [account]))


# ----------------------------- In-process node -------------------------------


class LocalNodeRpc:
    """``RemoteRpc`` served by a running DevnetController."""

    def __init__(self, controller: "DevnetController") -> None:
        self._controller = controller
        self._submissions: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def submit(self, envelope: Dict[str, Any]) -> str:
        submission_id = str(envelope.get("submission_id", ""))
        if not submission_id:
            raise RpcRejected(RPC_INVALID_PARAMS, "envelope needs a submission_id")
        with self._lock:
            if submission_id in self._submissions:
                return submission_id

            source = str(envelope.get("source", ""))
            account = self._controller.accounts.find(source)
            if account is None:
                raise RpcRejected(RPC_NOT_FOUND, f"unknown account {source!r}")
            if envelope.get("public_key") != account.public_key or not Keyring.verify(
                account.public_key, envelope_signing_bytes(envelope), str(envelope.get("signature", ""))
            ):
                raise RpcRejected(RPC_INVALID_PARAMS, "bad envelope signature")

            tx = Transaction.deploy(source, int(envelope["sequence"]), as_bytes(str(envelope["binary"])))
            outcome = self._controller.executor.execute(tx)
            if not outcome.ok:
                self._submissions[submission_id] = {
                    "submission_id": submission_id,
                    "status": "rejected",
                    "error_code": outcome.error_code,
                    "error": outcome.cause,
                }
                raise RpcRejected(
                    _ERROR_CODES.get(outcome.error_code, RPC_REJECTED),
                    outcome.cause,
                    data=outcome.to_dict(),
                )
            self._submissions[submission_id] = {
                "submission_id": submission_id,
                "status": "applied",
                "contract_id": outcome.instance_id,
                "code_hash": outcome.contract_id,
                "position": outcome.ledger_sequence,
                "tx_hash": outcome.tx_hash,
            }
        log.info("rpc.local.submitted", submission_id=submission_id, position=outcome.ledger_sequence)
        return submission_id

    def get_submission(self, submission_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            found = self._submissions.get(submission_id)
            return dict(found) if found is not None else None

    def get_code_hash(self, contract_id: str) -> Optional[str]:
        registry = self._controller.registry
        inst = registry.find_instance(contract_id)
        if inst is not None:
            return inst.code_hash
        code = registry.find(contract_id)
        return code.code_hash if code is not None else None

    def get_sequence(self, account: str) -> int:
        acc = self._controller.accounts.find(account)
        if acc is None:
            raise RpcRejected(RPC_NOT_FOUND, f"unknown account {account!r}")
        return acc.sequence

    def close(self) -> None:
        pass


__all__ = [
    "RemoteRpc",
    "HttpNodeRpc",
    "LocalNodeRpc",
    "envelope_signing_bytes",
    "RPC_INVALID_PARAMS",
    "RPC_NOT_FOUND",
    "RPC_INSUFFICIENT_BALANCE",
    "RPC_SEQUENCE_MISMATCH",
    "RPC_REJECTED",
]
