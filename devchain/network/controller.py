"""
devchain.network.controller — lifecycle of the local devnet.

States
------
    STOPPED --start--> STARTING --(ok)--> RUNNING --stop--> STOPPED
                          |
                          +--(any error)--> STOPPED (error re-raised)

- ``start`` on a RUNNING devnet is a no-op that logs a warning.
- ``stop`` persists the current snapshot first when persistence is enabled.
  The write runs on a worker thread with a bounded wait; if it does not finish
  within ``io_timeout_s`` the call raises ``Timeout`` and the devnet stays
  RUNNING with its state intact.
- ``reset`` tears down whatever is running, wipes persisted snapshots and
  starts fresh with the same configuration: sequence 0, no accounts.
- ``checkpoint`` persists without stopping.
- Every save prunes the state dir down to the newest ``ledger.retention``
  snapshot files. Saves and wipes take one I/O lock, and a save that wakes
  up after a ``reset`` drops its write.

All transitions serialize on one lock acquired with ``lock_timeout_s``, so two
concurrent starts can never both initialize a ledger and no caller blocks on
the lifecycle indefinitely.

Usage
-----
    ctl = DevnetController(get_settings())
    ctl.start()
    ctl.accounts.create("alice")
    ctl.executor.execute(tx)
    ctl.stop()
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from devchain.config import Settings, get_settings
from devchain.errors import DevnetNotRunning, InvalidTransition, Timeout
from devchain.logging import get_logger
from devchain.runtime.executor import Executor
from devchain.services.retry import run_bounded
from devchain.state.accounts import AccountStore
from devchain.state.contracts import ContractRegistry
from devchain.state.keys import Keyring
from devchain.state.ledger import LedgerStateEngine
from devchain.state.persistence import SnapshotStore
from devchain.state.snapshots import LedgerSnapshot

log = get_logger(__name__)


class DevnetState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass(frozen=True)
class DevnetStatus:
    state: DevnetState
    ledger_sequence: Optional[int] = None
    account_count: int = 0
    contract_count: int = 0
    instance_count: int = 0
    uptime_s: float = 0.0
    persistence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "ledger_sequence": self.ledger_sequence,
            "account_count": self.account_count,
            "contract_count": self.contract_count,
            "instance_count": self.instance_count,
            "uptime_s": round(self.uptime_s, 3),
            "persistence": self.persistence,
        }


class DevnetController:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._state = DevnetState.STOPPED
        self._started_at: Optional[float] = None
        self._engine: Optional[LedgerStateEngine] = None
        self._accounts: Optional[AccountStore] = None
        self._registry: Optional[ContractRegistry] = None
        self._executor: Optional[Executor] = None
        self._store: Optional[SnapshotStore] = None
        self._io_lock = threading.Lock()
        self._generation = 0

    # ------------------------------------------------------------- plumbing

    @contextmanager
    def _transition(self) -> Iterator[None]:
        timeout_s = self._settings.lock_timeout_s
        if not self._lock.acquire(timeout=timeout_s):
            raise Timeout("devnet lifecycle lock", timeout_s=timeout_s)
        try:
            yield
        finally:
            self._lock.release()

    def _io_timeout(self) -> float:
        return self._settings.persistence.io_timeout_s

    def _persist(self, store: SnapshotStore, snapshot: LedgerSnapshot) -> Optional[Path]:
        """
        Save ``snapshot`` and prune to the retention window, on a bounded
        worker. A worker that outlives its caller and only gets the I/O lock
        after a reset finds the generation moved on and writes nothing.
        """
        generation = self._generation
        keep = self._settings.ledger.retention

        def write() -> Optional[Path]:
            with self._io_lock:
                if generation != self._generation:
                    log.warning("devnet.persist_discarded", ledger_sequence=snapshot.sequence)
                    return None
                path = store.save(snapshot)
                removed = store.prune(keep)
                if removed:
                    log.debug("devnet.snapshots_pruned", removed=removed, keep=keep)
                return path

        return run_bounded(write, operation="snapshot persistence", timeout_s=self._io_timeout())

    def _wipe(self) -> None:
        self._generation += 1
        store = SnapshotStore(self._settings.persistence.state_dir)

        def wipe() -> None:
            with self._io_lock:
                store.wipe()

        run_bounded(wipe, operation="snapshot wipe", timeout_s=self._io_timeout())

    def _teardown(self) -> None:
        self._engine = None
        self._accounts = None
        self._registry = None
        self._executor = None
        self._store = None
        self._started_at = None
        self._state = DevnetState.STOPPED

    def _start_locked(self) -> None:
        settings = self._settings
        self._state = DevnetState.STARTING
        try:
            store = SnapshotStore(settings.persistence.state_dir) if settings.persistence.enabled else None
            snapshot = None
            if store is not None:
                snapshot = run_bounded(store.load_latest, operation="snapshot load", timeout_s=self._io_timeout())
            retention = settings.ledger.retention
            if snapshot is not None:
                engine = LedgerStateEngine.from_snapshot(snapshot, retention, clock=self._clock)
            else:
                engine = LedgerStateEngine(retention, clock=self._clock)
            self._engine = engine
            self._store = store
            self._accounts = AccountStore(engine, Keyring(settings.devnet_seed))
            self._registry = ContractRegistry(engine, settings.limits)
            self._executor = Executor(engine, self._registry, settings.limits)
            self._started_at = self._monotonic()
            self._state = DevnetState.RUNNING
        except BaseException:
            self._teardown()
            log.warning("devnet.start_failed")
            raise
        log.info(
            "devnet.started",
            ledger_sequence=engine.current().sequence,
            resumed=snapshot is not None,
            persistence=store is not None,
        )

    # ------------------------------------------------------------ lifecycle

    @property
    def state(self) -> DevnetState:
        return self._state

    @property
    def settings(self) -> Settings:
        return self._settings

    def start(self, config: Optional[Settings] = None) -> DevnetStatus:
        with self._transition():
            if self._state is DevnetState.RUNNING:
                log.warning("devnet.already_running")
                return self._status_locked()
            if config is not None:
                self._settings = config
            self._start_locked()
            return self._status_locked()

    def stop(self) -> DevnetStatus:
        with self._transition():
            if self._state is not DevnetState.RUNNING:
                raise InvalidTransition(self._state.value, "stop")
            if self._store is not None and self._engine is not None:
                self._persist(self._store, self._engine.current())
            seq = self._engine.current().sequence if self._engine else None
            self._teardown()
            log.info("devnet.stopped", ledger_sequence=seq)
            return self._status_locked()

    def reset(self) -> DevnetStatus:
        """Stop (without persisting), wipe persisted state, start fresh."""
        with self._transition():
            if self._state is DevnetState.RUNNING:
                self._teardown()
            if self._settings.persistence.enabled:
                self._wipe()
            self._start_locked()
            log.info("devnet.reset")
            return self._status_locked()

    def checkpoint(self) -> Optional[Path]:
        """Persist the current snapshot without stopping. None if persistence is off."""
        with self._transition():
            self._require_running()
            if self._store is None:
                return None
            return self._persist(self._store, self._engine.current())

    def status(self) -> DevnetStatus:
        with self._transition():
            return self._status_locked()

    def _status_locked(self) -> DevnetStatus:
        if self._state is not DevnetState.RUNNING or self._engine is None:
            return DevnetStatus(state=self._state, persistence=self._settings.persistence.enabled)
        snap = self._engine.current()
        return DevnetStatus(
            state=self._state,
            ledger_sequence=snap.sequence,
            account_count=len(snap.accounts),
            contract_count=len(snap.codes),
            instance_count=len(snap.instances),
            uptime_s=self._monotonic() - (self._started_at or self._monotonic()),
            persistence=self._store is not None,
        )

    # ------------------------------------------------------------ accessors

    def _require_running(self) -> None:
        if self._state is not DevnetState.RUNNING:
            raise DevnetNotRunning(self._state.value)

    @property
    def engine(self) -> LedgerStateEngine:
        self._require_running()
        return self._engine

    @property
    def accounts(self) -> AccountStore:
        self._require_running()
        return self._accounts

    @property
    def registry(self) -> ContractRegistry:
        self._require_running()
        return self._registry

    @property
    def executor(self) -> Executor:
        self._require_running()
        return self._executor

    @property
    def keyring(self) -> Keyring:
        return self.accounts.keyring


__all__ = ["DevnetController", "DevnetState", "DevnetStatus"]
